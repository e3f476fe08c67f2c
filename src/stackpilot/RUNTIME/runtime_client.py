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
Capability surface the orchestrator needs from a container engine.

Implementations raise ``ResourceNotFoundError`` for unknown ids,
``ResourceExistsError`` when a name is already taken and
``RuntimeUnavailableError`` for every other failure.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ContainerSpec(BaseModel):
    """
    Everything needed to create one container.
    """
    image: str
    name: str
    command: List[str] = []
    entrypoint: List[str] = []
    environment: Dict[str, str] = {}
    volumes: List[str] = []  # "source:target[:mode]" with sources already resolved
    anonymous_volumes: List[str] = []  # container paths
    working_dir: Optional[str] = None
    hostname: Optional[str] = None
    user: Optional[str] = None
    labels: Dict[str, str] = {}
    ports: Dict[str, Optional[Any]] = {}  # {"80/tcp": 8080 | ("127.0.0.1", 8080) | None}
    restart_policy: Optional[Dict[str, Any]] = None
    resource_limits: Dict[str, int] = {}  # mem_limit, mem_reservation, cpu_shares, cpu_quota, cpu_period, nano_cpus
    healthcheck: Optional[Dict[str, Any]] = None  # durations in nanoseconds
    network: Optional[str] = None
    network_aliases: List[str] = []


class ContainerInfo(BaseModel):
    """
    Result of inspecting a container.
    """
    id: str
    name: str = ""
    running: bool = False
    status: str = "unknown"
    exit_code: Optional[int] = None
    health: Optional[str] = None  # None when the container has no health check
    labels: Dict[str, str] = {}


class NetworkInfo(BaseModel):
    id: str
    name: str
    labels: Dict[str, str] = {}


class VolumeInfo(BaseModel):
    name: str
    labels: Dict[str, str] = {}


class LogOptions(BaseModel):
    """
    Which log output to fetch from a container.
    """
    stdout: bool = True
    stderr: bool = True
    timestamps: bool = False
    since: Optional[int] = None  # unix timestamp
    n_lines: Optional[int] = None
    all: bool = False  # complete output regardless of n_lines


class RuntimeClient(ABC):
    """
    Container, network and volume lifecycle operations against a container engine.
    One instance is created per process and shared by every component that
    talks to the engine.
    """

    @abstractmethod
    def ping(self) -> bool:
        """Returns True when the engine is reachable."""

    # Networks

    @abstractmethod
    def create_network(self, name: str, options: Optional[Dict[str, Any]] = None) -> str:
        """Creates a network and returns its id."""

    @abstractmethod
    def get_network(self, name_or_id: str) -> NetworkInfo:
        """Looks up a network by name or id."""

    @abstractmethod
    def remove_network(self, network_id: str) -> None:
        """Deletes a network."""

    @abstractmethod
    def connect_network(self, network_id: str, container_id: str, aliases: Optional[List[str]] = None) -> None:
        """Attaches a container to an additional network."""

    @abstractmethod
    def list_networks(self, labels: Dict[str, str]) -> List[NetworkInfo]:
        """Lists networks carrying every given label."""

    # Volumes

    @abstractmethod
    def create_volume(self, name: str, options: Optional[Dict[str, Any]] = None) -> str:
        """Creates a volume and returns its name."""

    @abstractmethod
    def get_volume(self, name: str) -> VolumeInfo:
        """Looks up a volume by name."""

    @abstractmethod
    def remove_volume(self, name: str) -> None:
        """Deletes a volume."""

    @abstractmethod
    def list_volumes(self, labels: Dict[str, str]) -> List[VolumeInfo]:
        """Lists volumes carrying every given label."""

    # Containers

    @abstractmethod
    def create_container(self, spec: ContainerSpec) -> str:
        """Creates (but does not start) a container and returns its id."""

    @abstractmethod
    def start_container(self, container_id: str) -> None:
        """Starts a created or stopped container."""

    @abstractmethod
    def stop_container(self, container_id: str, timeout: Optional[int] = None) -> None:
        """Stops a running container."""

    @abstractmethod
    def remove_container(self, container_id: str, force: bool = False) -> None:
        """Removes a container."""

    @abstractmethod
    def inspect_container(self, container_id: str) -> ContainerInfo:
        """Returns the current state of a container."""

    @abstractmethod
    def container_logs(self, container_id: str, options: Optional[LogOptions] = None) -> str:
        """Returns the container's log output as text."""

    @abstractmethod
    def list_containers(self, labels: Dict[str, str]) -> List[ContainerInfo]:
        """Lists containers, running or not, carrying every given label."""
