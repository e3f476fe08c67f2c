"""
Models for defining services, including ports, mounts, restart policies,
resource limits and health checks.

Every model is frozen. ``ServiceDefinition`` is edited through its ``with_*``
methods, each of which returns a new definition and never partially applies.
"""
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SERVICE_NAME_PATTERN = r'^[a-zA-Z0-9][a-zA-Z0-9_.-]*$'


class RestartPolicyCondition(str, Enum):
    """
    Conditions under which a service should be restarted.
    """
    NO = "no"
    ALWAYS = "always"
    ON_FAILURE = "on-failure"
    UNLESS_STOPPED = "unless-stopped"


class RestartPolicy(BaseModel):
    """
    Defines how a service should be restarted on failure or exit.
    """
    model_config = ConfigDict(frozen=True)

    condition: RestartPolicyCondition = RestartPolicyCondition.NO
    max_retries: int = Field(default=0, ge=0)


class HealthCheck(BaseModel):
    """
    Defines a command to run to check the health of a service.
    Durations are in seconds.
    """
    model_config = ConfigDict(frozen=True)

    test: List[str]
    interval: float = 30.0
    timeout: float = 30.0
    retries: int = 3
    start_period: float = 0.0


class ResourceLimits(BaseModel):
    """
    Memory and CPU constraints for every replica of a service.
    Memory values keep their compose spelling (``512m``, ``1GB``).
    """
    model_config = ConfigDict(frozen=True)

    memory: Optional[str] = None
    memory_reservation: Optional[str] = None
    cpus: Optional[float] = None
    cpu_shares: Optional[int] = None
    cpu_quota: Optional[int] = None
    cpu_period: Optional[int] = None

    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())


class BuildConfig(BaseModel):
    """
    Build context for services that are built rather than pulled.
    """
    model_config = ConfigDict(frozen=True)

    context: str
    dockerfile: Optional[str] = None
    target: Optional[str] = None
    args: Dict[str, str] = {}
    cache_from: List[str] = []


class PortMapping(BaseModel):
    """
    A published port, ``[host_ip:][published:]target[/protocol]``.
    """
    model_config = ConfigDict(frozen=True)

    target: int = Field(gt=0, lt=65536)
    published: Optional[int] = Field(default=None, gt=0, lt=65536)
    protocol: str = "tcp"
    host_ip: Optional[str] = None

    @classmethod
    def parse(cls, spec: Union[str, int]) -> "PortMapping":
        """
        Parses the short port syntax.

        :param spec: e.g. ``"8080:80"``, ``"53:53/udp"``, ``"127.0.0.1:8080:80"`` or ``80``.
        :raises ValueError: If the spec is malformed.
        """
        text = str(spec).strip()
        protocol = "tcp"
        if '/' in text:
            text, protocol = text.rsplit('/', 1)
        parts = text.rsplit(':', 2)
        if len(parts) == 1:
            return cls(target=int(parts[0]), protocol=protocol)
        if len(parts) == 2:
            published, target = parts
            return cls(target=int(target), published=int(published) if published else None, protocol=protocol)
        host_ip, published, target = parts
        return cls(
            target=int(target),
            published=int(published) if published else None,
            protocol=protocol,
            host_ip=host_ip or None,
        )

    def __str__(self) -> str:
        text = str(self.target)
        if self.published is not None:
            text = f"{self.published}:{text}"
            if self.host_ip:
                text = f"{self.host_ip}:{text}"
        elif self.host_ip:
            text = f"{self.host_ip}::{text}"
        if self.protocol != "tcp":
            text = f"{text}/{self.protocol}"
        return text


class VolumeMount(BaseModel):
    """
    Defines a mapping between a volume source and a path inside the container.

    A source starting with ``/``, ``.`` or ``~`` is a bind mount; a bare
    identifier is a named volume; an empty source is an anonymous volume.
    """
    model_config = ConfigDict(frozen=True)

    source: str = ""
    target: str
    mode: str = "rw"

    @classmethod
    def parse(cls, spec: str) -> "VolumeMount":
        """
        Parses the short volume syntax ``source:target[:mode]``.

        :raises ValueError: If the spec is malformed.
        """
        parts = spec.split(':')
        if len(parts) == 1 and parts[0]:
            return cls(target=parts[0])
        if len(parts) == 2:
            return cls(source=parts[0], target=parts[1])
        if len(parts) == 3:
            return cls(source=parts[0], target=parts[1], mode=parts[2] or "rw")
        raise ValueError(f"Invalid volume spec: {spec!r}")

    @property
    def read_only(self) -> bool:
        return "ro" in self.mode.split(',')

    @property
    def is_bind_mount(self) -> bool:
        return self.source.startswith(('/', '.', '~'))

    @property
    def is_named_volume(self) -> bool:
        return bool(self.source) and not self.is_bind_mount

    def __str__(self) -> str:
        if not self.source:
            return self.target
        text = f"{self.source}:{self.target}"
        if self.mode != "rw":
            text = f"{text}:{self.mode}"
        return text


def _unique(items: Iterable[str]) -> List[str]:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


class ServiceDefinition(BaseModel):
    """
    The full definition of a single service within a stack.

    ``image_name`` and ``build`` are mutually exclusive: ``with_image`` clears
    the build configuration and ``with_build`` clears the image.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(pattern=SERVICE_NAME_PATTERN)
    image_name: Optional[str] = None
    build: Optional[BuildConfig] = None

    # Execution
    command: List[str] = []
    entrypoint: List[str] = []
    working_dir: Optional[str] = None
    user: Optional[str] = None

    # Environment
    environment: Dict[str, str] = {}
    env_files: List[str] = []

    # Networking
    ports: List[PortMapping] = []
    networks: List[str] = []
    hostname: Optional[str] = None

    # Storage
    volumes: List[VolumeMount] = []

    # Lifecycle
    restart_policy: RestartPolicy = Field(default_factory=RestartPolicy)
    health_check: Optional[HealthCheck] = None
    depends_on: List[str] = []

    # Resources
    resource_limits: ResourceLimits = Field(default_factory=ResourceLimits)

    # Metadata
    labels: Dict[str, str] = {}

    @field_validator("depends_on", "networks")
    @classmethod
    def _deduplicate(cls, value: List[str]) -> List[str]:
        return _unique(value)

    @model_validator(mode="after")
    def _check_image_or_build(self) -> "ServiceDefinition":
        if self.image_name and self.build is not None:
            raise ValueError(f"Service '{self.name}' cannot set both image and build")
        return self

    @property
    def requires_build(self) -> bool:
        """True when the service can only be obtained by building an image."""
        return not self.image_name and self.build is not None

    @property
    def has_source(self) -> bool:
        return bool(self.image_name) or self.build is not None

    def named_volumes(self) -> List[str]:
        return _unique(v.source for v in self.volumes if v.is_named_volume)

    def _replace(self, **changes) -> "ServiceDefinition":
        return self.model_copy(update=changes)

    # Image / build

    def with_image(self, image: str) -> "ServiceDefinition":
        return self._replace(image_name=image, build=None)

    def with_build(
        self,
        context: str,
        dockerfile: Optional[str] = None,
        target: Optional[str] = None,
        args: Optional[Mapping[str, str]] = None,
    ) -> "ServiceDefinition":
        build = BuildConfig(context=context, dockerfile=dockerfile, target=target, args=dict(args or {}))
        return self._replace(build=build, image_name=None)

    def with_build_arg(self, key: str, value: str) -> "ServiceDefinition":
        """Adds a build argument, starting a build from ``.`` if none is configured."""
        build = self.build or BuildConfig(context=".")
        args = {**build.args, key: value}
        return self._replace(build=build.model_copy(update={"args": args}), image_name=None)

    # Execution

    def with_command(self, command: List[str]) -> "ServiceDefinition":
        return self._replace(command=list(command))

    def with_entrypoint(self, entrypoint: List[str]) -> "ServiceDefinition":
        return self._replace(entrypoint=list(entrypoint))

    def with_working_dir(self, working_dir: str) -> "ServiceDefinition":
        return self._replace(working_dir=working_dir)

    def with_user(self, user: str) -> "ServiceDefinition":
        return self._replace(user=user)

    # Environment

    def with_env(self, key: str, value: str) -> "ServiceDefinition":
        return self._replace(environment={**self.environment, key: str(value)})

    def with_environment(self, environment: Mapping[str, str]) -> "ServiceDefinition":
        merged = dict(self.environment)
        for key, value in environment.items():
            merged[key] = str(value)
        return self._replace(environment=merged)

    def with_env_file(self, path: str) -> "ServiceDefinition":
        return self._replace(env_files=[*self.env_files, path])

    # Networking

    def with_port(self, port: Union[str, int, PortMapping]) -> "ServiceDefinition":
        mapping = port if isinstance(port, PortMapping) else PortMapping.parse(port)
        return self._replace(ports=[*self.ports, mapping])

    def with_ports(self, ports: Iterable[Union[str, int, PortMapping]]) -> "ServiceDefinition":
        mappings = [p if isinstance(p, PortMapping) else PortMapping.parse(p) for p in ports]
        return self._replace(ports=mappings)

    def with_network(self, network: str) -> "ServiceDefinition":
        return self._replace(networks=_unique([*self.networks, network]))

    def with_hostname(self, hostname: str) -> "ServiceDefinition":
        return self._replace(hostname=hostname)

    # Storage

    def with_volume(self, volume: Union[str, VolumeMount]) -> "ServiceDefinition":
        mount = volume if isinstance(volume, VolumeMount) else VolumeMount.parse(volume)
        return self._replace(volumes=[*self.volumes, mount])

    # Lifecycle

    def with_dependency(self, service: str) -> "ServiceDefinition":
        return self._replace(depends_on=_unique([*self.depends_on, service]))

    def without_dependency(self, service: str) -> "ServiceDefinition":
        return self._replace(depends_on=[d for d in self.depends_on if d != service])

    def with_restart_policy(
        self,
        condition: Union[str, RestartPolicyCondition],
        max_retries: int = 0,
    ) -> "ServiceDefinition":
        policy = RestartPolicy(condition=RestartPolicyCondition(condition), max_retries=max_retries)
        return self._replace(restart_policy=policy)

    def with_health_check(
        self,
        test: List[str],
        interval: float = 30.0,
        timeout: float = 30.0,
        retries: int = 3,
        start_period: float = 0.0,
    ) -> "ServiceDefinition":
        check = HealthCheck(
            test=list(test), interval=interval, timeout=timeout, retries=retries, start_period=start_period
        )
        return self._replace(health_check=check)

    # Resources

    def with_resources(self, **limits) -> "ServiceDefinition":
        """
        Updates resource limits, e.g. ``with_resources(memory="512m", cpus=0.5)``.
        Unspecified limits keep their current value.
        """
        merged = {**self.resource_limits.model_dump(), **limits}
        return self._replace(resource_limits=ResourceLimits(**merged))

    # Metadata

    def with_label(self, key: str, value: str) -> "ServiceDefinition":
        return self._replace(labels={**self.labels, key: value})

    def clone_with_name(self, name: str) -> "ServiceDefinition":
        """
        Returns a copy of this service under a different name.
        """
        return ServiceDefinition(**{**self.model_dump(), "name": name})

    # Convenience constructors

    @classmethod
    def web_service(cls, name: str) -> "ServiceDefinition":
        return cls(name=name).with_restart_policy("unless-stopped").with_label("service.type", "web")

    @classmethod
    def database_service(cls, name: str) -> "ServiceDefinition":
        return cls(name=name).with_restart_policy("unless-stopped").with_label("service.type", "database")

    @classmethod
    def redis_service(cls, name: str) -> "ServiceDefinition":
        return (
            cls(name=name, image_name="redis:7-alpine")
            .with_port("6379:6379")
            .with_restart_policy("unless-stopped")
            .with_label("service.type", "cache")
        )
