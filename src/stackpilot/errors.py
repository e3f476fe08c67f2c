# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Exception hierarchy shared by the definition model, the config loader,
runtime clients and the orchestrator.
"""
from typing import Dict, List, Optional


class StackError(Exception):
    """Base class for every error raised by stackpilot."""


class ConfigurationError(StackError):
    """
    The stack definition is invalid: a missing dependency, a cycle, malformed
    YAML or a service with neither image nor build.
    """


class RuntimeUnavailableError(StackError):
    """
    A runtime client call failed (connection, timeout, or an error response
    from the engine).
    """

    def __init__(self, message: str, operation: Optional[str] = None, resource: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.resource = resource


class ResourceNotFoundError(RuntimeUnavailableError):
    """The engine has no container, network or volume with the given id."""


class ResourceExistsError(RuntimeUnavailableError):
    """The engine refused to create a resource because the name is taken."""


class NotSupportedError(StackError):
    """The requested feature is intentionally out of scope (e.g. image builds)."""


class ServiceNotFoundError(ConfigurationError):
    """The named service is not part of the stack definition."""

    def __init__(self, service: str, stack: Optional[str] = None):
        where = f" in stack '{stack}'" if stack else ""
        super().__init__(f"Service '{service}' not found{where}")
        self.service = service


class InvalidStateError(StackError):
    """The lifecycle operation is not allowed from the stack's current status."""


class DeploymentError(StackError):
    """
    Raised by ``up`` when at least one part of the stack could not be
    deployed. Already-created resources are kept; the error lists what
    succeeded, what failed and what was skipped because a dependency failed.
    """

    def __init__(
        self,
        message: str,
        deployed: Optional[List[str]] = None,
        failed: Optional[Dict[str, Exception]] = None,
        skipped: Optional[List[str]] = None,
    ):
        self.deployed = list(deployed or [])
        self.failed = dict(failed or {})
        self.skipped = list(skipped or [])
        details = []
        if self.failed:
            details.append("failed: " + ", ".join(f"{k} ({v})" for k, v in self.failed.items()))
        if self.skipped:
            details.append("skipped: " + ", ".join(self.skipped))
        if self.deployed:
            details.append("deployed: " + ", ".join(self.deployed))
        super().__init__(f"{message}; {'; '.join(details)}" if details else message)
