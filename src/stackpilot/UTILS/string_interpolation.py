"""
Utilities for string interpolation using environment variables.
"""
import logging
import re
from typing import Dict, Optional

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in compose documents.
    Supports ``$VAR``, ``${VAR}``, ``${VAR:-default}``, ``${VAR-default}``,
    ``${VAR:+value}``, ``${VAR+value}``, ``${VAR:?message}``,
    ``${VAR?message}`` and ``$$`` as a literal dollar sign.
    """
    # Group 1: braced VAR name
    # Group 2: modifier (:-, -, :+, +, :?, ?)
    # Group 3: default, alternate value or error message
    # Group 4: bare $VAR name
    PATTERN = re.compile(
        r'\$(?:\$|\{([A-Za-z_][A-Za-z0-9_]*)(?:(:?[-+?])([^}]*))?\}|([A-Za-z_][A-Za-z0-9_]*))'
    )

    @classmethod
    def interpolate(cls, template: str, context: Dict[str, str]) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        :param template: The string containing ``${VAR}`` placeholders.
        :param context: The environment variables context.
        :return: The interpolated string.
        :raises ConfigurationError: If a ``${VAR:?message}`` variable is missing.
        """
        def replace(match):
            """
            Internal replacement function for re.sub.
            """
            if match.group(0) == '$$':
                return '$'

            var_name = match.group(1) or match.group(4)
            modifier = match.group(2)
            alt_value = match.group(3) or ''
            value: Optional[str] = context.get(var_name)

            if modifier == ':-':
                return value if value else alt_value
            if modifier == '-':
                return value if value is not None else alt_value
            if modifier == ':+':
                return alt_value if value else ''
            if modifier == '+':
                return alt_value if value is not None else ''
            if modifier in (':?', '?'):
                missing = not value if modifier == ':?' else value is None
                if missing:
                    raise ConfigurationError(
                        f"Required variable {var_name} is missing: {alt_value or 'no value set'}"
                    )
                return value

            if value is None:
                logger.warning("Variable %s is not set, substituting an empty string", var_name)
                return ''
            return value

        return cls.PATTERN.sub(replace, template)
