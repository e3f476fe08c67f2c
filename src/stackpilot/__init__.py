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
stackpilot - Compose-style stack orchestration

Parses a declarative multi-service topology, computes a dependency-respecting
deployment order and drives a container runtime to bring the stack up, scale
it, inspect it and tear it down again.
"""

__version__ = "0.1.0"
__author__ = "Michael Maillet, Damien Davison, Sacha Davison"
__license__ = "Apache-2.0"

from .errors import (
    StackError,
    ConfigurationError,
    RuntimeUnavailableError,
    ResourceNotFoundError,
    ResourceExistsError,
    NotSupportedError,
    ServiceNotFoundError,
    InvalidStateError,
    DeploymentError,
)
from .MODELS.service_definition import ServiceDefinition
from .MODELS.stack_definition import StackDefinition, ScalePolicy, ScaleStrategy
from .MODELS.runtime_state import StackRuntimeState, StackStatus, OperationReport
from .MANAGERS.stack_orchestrator import Stack

__all__ = [
    "Stack",
    "ServiceDefinition",
    "StackDefinition",
    "ScalePolicy",
    "ScaleStrategy",
    "StackRuntimeState",
    "StackStatus",
    "OperationReport",
    "StackError",
    "ConfigurationError",
    "RuntimeUnavailableError",
    "ResourceNotFoundError",
    "ResourceExistsError",
    "NotSupportedError",
    "ServiceNotFoundError",
    "InvalidStateError",
    "DeploymentError",
]
