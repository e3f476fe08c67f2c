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
Runtime client backed by the Docker Engine API through the docker SDK.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.utils import parse_repository_tag
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import ResourceExistsError, ResourceNotFoundError, RuntimeUnavailableError
from .runtime_client import (
    ContainerInfo,
    ContainerSpec,
    LogOptions,
    NetworkInfo,
    RuntimeClient,
    VolumeInfo,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60


def _label_filters(labels: Dict[str, str]) -> Dict[str, List[str]]:
    return {"label": [f"{key}={value}" for key, value in labels.items()]}


@contextmanager
def _translate_errors(operation: str, resource: str):
    """
    Maps docker SDK exceptions onto the runtime error taxonomy.
    """
    try:
        yield
    except NotFound as exc:
        raise ResourceNotFoundError(
            f"{operation} {resource}: {exc.explanation or exc}", operation, resource
        ) from exc
    except APIError as exc:
        explanation = str(exc.explanation or exc)
        if exc.status_code == 409 or "already exists" in explanation:
            raise ResourceExistsError(f"{operation} {resource}: {explanation}", operation, resource) from exc
        raise RuntimeUnavailableError(f"{operation} {resource}: {explanation}", operation, resource) from exc
    except (DockerException, OSError) as exc:
        # requests' connection and timeout errors are OSError subclasses
        raise RuntimeUnavailableError(f"{operation} {resource}: {exc}", operation, resource) from exc


class DockerRuntimeClient(RuntimeClient):
    """
    Talks to a Docker engine through the low-level ``docker.APIClient``.

    The connection is opened lazily on the first call, so constructing the
    client never touches the daemon.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        connect_attempts: int = 3,
    ):
        """
        :param base_url: Engine endpoint, e.g. ``unix:///var/run/docker.sock``.
            Defaults to ``DOCKER_HOST`` and the rest of the docker environment.
        :param timeout: Per-call timeout in seconds.
        :param connect_attempts: How often to try reaching the engine before giving up.
        """
        self.base_url = base_url
        self.timeout = timeout
        self.connect_attempts = connect_attempts
        self._api: Optional[docker.APIClient] = None

    @property
    def api(self) -> docker.APIClient:
        if self._api is None:
            self._api = self._connect()
        return self._api

    def _open(self) -> docker.APIClient:
        if self.base_url:
            api = docker.APIClient(base_url=self.base_url, timeout=self.timeout)
        else:
            api = docker.from_env(timeout=self.timeout).api
        api.ping()
        return api

    def _connect(self) -> docker.APIClient:
        retrying = Retrying(
            stop=stop_after_attempt(self.connect_attempts),
            wait=wait_exponential(multiplier=0.5, max=4),
            retry=retry_if_exception_type((DockerException, OSError)),
            reraise=True,
        )
        with _translate_errors("connect", self.base_url or "docker environment"):
            for attempt in retrying:
                with attempt:
                    api = self._open()
        logger.debug("Connected to docker engine at %s", api.base_url)
        return api

    def ping(self) -> bool:
        try:
            with _translate_errors("ping", "engine"):
                return bool(self.api.ping())
        except RuntimeUnavailableError:
            return False

    # Networks

    def create_network(self, name: str, options: Optional[Dict[str, Any]] = None) -> str:
        options = options or {}
        with _translate_errors("create network", name):
            result = self.api.create_network(
                name,
                driver=options.get("driver"),
                options=options.get("driver_opts"),
                check_duplicate=True,
                internal=options.get("internal", False),
                attachable=options.get("attachable"),
                labels=options.get("labels"),
            )
        return result["Id"]

    def get_network(self, name_or_id: str) -> NetworkInfo:
        with _translate_errors("inspect network", name_or_id):
            attrs = self.api.inspect_network(name_or_id)
        return NetworkInfo(id=attrs["Id"], name=attrs.get("Name", name_or_id), labels=attrs.get("Labels") or {})

    def remove_network(self, network_id: str) -> None:
        with _translate_errors("remove network", network_id):
            self.api.remove_network(network_id)

    def connect_network(self, network_id: str, container_id: str, aliases: Optional[List[str]] = None) -> None:
        with _translate_errors("connect network", network_id):
            self.api.connect_container_to_network(container_id, network_id, aliases=aliases or None)

    def list_networks(self, labels: Dict[str, str]) -> List[NetworkInfo]:
        with _translate_errors("list networks", ",".join(labels)):
            items = self.api.networks(filters=_label_filters(labels))
        return [NetworkInfo(id=n["Id"], name=n.get("Name", ""), labels=n.get("Labels") or {}) for n in items]

    # Volumes

    def create_volume(self, name: str, options: Optional[Dict[str, Any]] = None) -> str:
        options = options or {}
        with _translate_errors("create volume", name):
            result = self.api.create_volume(
                name=name,
                driver=options.get("driver"),
                driver_opts=options.get("driver_opts"),
                labels=options.get("labels"),
            )
        return result["Name"]

    def get_volume(self, name: str) -> VolumeInfo:
        with _translate_errors("inspect volume", name):
            attrs = self.api.inspect_volume(name)
        return VolumeInfo(name=attrs["Name"], labels=attrs.get("Labels") or {})

    def remove_volume(self, name: str) -> None:
        with _translate_errors("remove volume", name):
            self.api.remove_volume(name)

    def list_volumes(self, labels: Dict[str, str]) -> List[VolumeInfo]:
        with _translate_errors("list volumes", ",".join(labels)):
            result = self.api.volumes(filters=_label_filters(labels))
        return [VolumeInfo(name=v["Name"], labels=v.get("Labels") or {}) for v in result.get("Volumes") or []]

    # Containers

    def _create_kwargs(self, spec: ContainerSpec) -> Dict[str, Any]:
        api = self.api
        host_config = api.create_host_config(
            binds=spec.volumes or None,
            port_bindings=spec.ports or None,
            restart_policy=spec.restart_policy,
            network_mode=spec.network,
            **spec.resource_limits,
        )
        networking_config = None
        if spec.network:
            networking_config = api.create_networking_config(
                {spec.network: api.create_endpoint_config(aliases=spec.network_aliases or None)}
            )
        exposed = []
        for key in spec.ports:
            port, _, protocol = key.partition('/')
            exposed.append((int(port), protocol or "tcp"))
        return {
            "image": spec.image,
            "name": spec.name,
            "command": spec.command or None,
            "entrypoint": spec.entrypoint or None,
            "environment": spec.environment or None,
            "working_dir": spec.working_dir,
            "hostname": spec.hostname,
            "user": spec.user,
            "labels": spec.labels or None,
            "ports": exposed or None,
            "volumes": spec.anonymous_volumes or None,
            "healthcheck": spec.healthcheck,
            "host_config": host_config,
            "networking_config": networking_config,
        }

    def _pull(self, image: str) -> None:
        repository, tag = parse_repository_tag(image)
        logger.info("Pulling image %s", image)
        with _translate_errors("pull image", image):
            self.api.pull(repository, tag=tag or "latest")

    def create_container(self, spec: ContainerSpec) -> str:
        with _translate_errors("create container", spec.name):
            kwargs = self._create_kwargs(spec)
            try:
                result = self.api.create_container(**kwargs)
            except ImageNotFound:
                self._pull(spec.image)
                result = self.api.create_container(**kwargs)
        for warning in result.get("Warnings") or []:
            logger.warning("Container %s: %s", spec.name, warning)
        return result["Id"]

    def start_container(self, container_id: str) -> None:
        with _translate_errors("start container", container_id):
            self.api.start(container_id)

    def stop_container(self, container_id: str, timeout: Optional[int] = None) -> None:
        with _translate_errors("stop container", container_id):
            if timeout is None:
                self.api.stop(container_id)
            else:
                self.api.stop(container_id, timeout=timeout)

    def remove_container(self, container_id: str, force: bool = False) -> None:
        with _translate_errors("remove container", container_id):
            self.api.remove_container(container_id, force=force)

    def inspect_container(self, container_id: str) -> ContainerInfo:
        with _translate_errors("inspect container", container_id):
            attrs = self.api.inspect_container(container_id)
        state = attrs.get("State") or {}
        health = state.get("Health")
        return ContainerInfo(
            id=attrs["Id"],
            name=attrs.get("Name", "").lstrip("/"),
            running=bool(state.get("Running")),
            status=state.get("Status", "unknown"),
            exit_code=state.get("ExitCode"),
            health=health.get("Status") if health else None,
            labels=(attrs.get("Config") or {}).get("Labels") or {},
        )

    def container_logs(self, container_id: str, options: Optional[LogOptions] = None) -> str:
        options = options or LogOptions()
        tail = "all" if options.all or options.n_lines is None else options.n_lines
        with _translate_errors("logs", container_id):
            output = self.api.logs(
                container_id,
                stdout=options.stdout,
                stderr=options.stderr,
                timestamps=options.timestamps,
                since=options.since,
                tail=tail,
            )
        if isinstance(output, bytes):
            return output.decode("utf-8", errors="replace")
        return output

    def list_containers(self, labels: Dict[str, str]) -> List[ContainerInfo]:
        with _translate_errors("list containers", ",".join(labels)):
            items = self.api.containers(all=True, filters=_label_filters(labels))
        containers = []
        for item in items:
            names = item.get("Names") or [""]
            containers.append(
                ContainerInfo(
                    id=item["Id"],
                    name=names[0].lstrip("/"),
                    running=item.get("State") == "running",
                    status=item.get("State", "unknown"),
                    labels=item.get("Labels") or {},
                )
            )
        return containers
