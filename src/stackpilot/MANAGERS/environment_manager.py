"""
Managers for handling environment variables and env_file resolution.
"""
import os
from typing import Dict, List

from dotenv import dotenv_values

from ..errors import ConfigurationError


class EnvironmentManager:
    """
    Manages the merging and resolution of environment variables from multiple sources.
    """
    def __init__(self, base_dir: str = "."):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to env files.
        """
        self.base_dir = base_dir

    def load_env_file(self, env_file: str) -> Dict[str, str]:
        """
        Reads one env file.

        :raises ConfigurationError: If the file does not exist.
        """
        file_path = os.path.join(self.base_dir, os.path.expanduser(env_file))
        if not os.path.isfile(file_path):
            raise ConfigurationError(f"env_file {env_file} not found")
        return {key: value or "" for key, value in dotenv_values(file_path).items()}

    def get_merged_environment(self,
                               explicit_env: Dict[str, str],
                               env_files: List[str]) -> Dict[str, str]:
        """
        Merges variables from the service's env files and its explicit
        environment. Unlike a local process, a container does not inherit the
        caller's environment.

        :param explicit_env: A dictionary of explicitly defined environment variables.
        :param env_files: A list of paths to env files.
        :return: A dictionary containing the merged environment variables.
        """
        merged_env: Dict[str, str] = {}

        # 1. Load from env files (later files override earlier ones)
        for env_file in env_files:
            merged_env.update(self.load_env_file(env_file))

        # 2. Explicit environment variables override everything
        merged_env.update(explicit_env)

        return merged_env
