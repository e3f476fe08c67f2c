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
Parsers for Docker Compose YAML files.

Compose allows most fields in several shapes (short strings, lists, mappings).
``ComposeParser`` normalizes all of them into ``ServiceDefinition`` fields so
nothing downstream ever sees a raw compose shape.
"""
import logging
import os
import re
import shlex
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from ..errors import ConfigurationError
from ..MODELS.service_definition import (
    BuildConfig,
    HealthCheck,
    PortMapping,
    ResourceLimits,
    RestartPolicy,
    RestartPolicyCondition,
    ServiceDefinition,
    VolumeMount,
)
from ..MODELS.stack_definition import ScalePolicy, ScaleStrategy, StackDefinition
from ..UTILS.string_interpolation import EnvironmentInterpolator
from ..UTILS.units import format_duration, parse_duration

logger = logging.getLogger(__name__)

DEFAULT_STACK_NAME = "imported-stack"

# deploy.restart_policy uses swarm spellings
_SWARM_RESTART = {"none": "no", "any": "always", "on-failure": "on-failure"}
STRATEGY_KEY = "x-scale-strategy"


def normalize_stack_name(name: str) -> str:
    """
    Lowercases a name and drops characters not allowed in resource names.
    """
    return re.sub(r'[^a-z0-9_-]', '', name.lower())


class ComposeParser:
    """
    Parser for docker-compose.yml files.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: Variables for interpolation. Defaults to the process
            environment, plus the ``.env`` file next to the compose file in ``parse``.
        """
        self.context = context

    def parse(self, compose_path: str, name: Optional[str] = None) -> StackDefinition:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :param name: Stack name; defaults to the top-level ``name`` key, then
            to the name of the directory holding the file.
        :return: Parsed stack definition.
        :raises ConfigurationError: If the file cannot be read or is invalid.
        """
        try:
            with open(compose_path, 'r') as f:
                content = f.read()
        except OSError as exc:
            raise ConfigurationError(f"Failed to read compose file {compose_path}: {exc}") from exc

        project_dir = os.path.dirname(os.path.abspath(compose_path))
        context = self.context
        if context is None:
            context = {}
            env_path = os.path.join(project_dir, ".env")
            if os.path.isfile(env_path):
                context.update({k: v or "" for k, v in dotenv_values(env_path).items()})
            context.update(os.environ)

        default_name = normalize_stack_name(os.path.basename(project_dir)) or DEFAULT_STACK_NAME
        return self._parse(content, name, default_name, context)

    def parse_from_string(self, content: str, name: Optional[str] = None) -> StackDefinition:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :param name: Stack name; defaults to the top-level ``name`` key, then
            to ``imported-stack``.
        :return: Parsed stack definition.
        :raises ConfigurationError: If the document is invalid.
        """
        context = self.context if self.context is not None else dict(os.environ)
        return self._parse(content, name, DEFAULT_STACK_NAME, context)

    def _parse(self, content: str, name: Optional[str], default_name: str, context: Dict[str, str]) -> StackDefinition:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Failed to parse YAML: {exc}") from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError("Compose document must be a mapping")

        data = self._interpolate(data, context)

        raw_services = data.get('services') or {}
        if not isinstance(raw_services, dict):
            raise ConfigurationError("'services' must be a mapping")

        services = {}
        scale_policies = {}
        for service_name, spec in raw_services.items():
            service, policy = self._parse_service(str(service_name), spec, context)
            services[service.name] = service
            if policy is not None:
                scale_policies[service.name] = policy

        stack_name = name or data.get('name') or default_name
        try:
            definition = StackDefinition(
                name=str(stack_name),
                services=services,
                scale_policies=scale_policies,
                networks=self._top_level(data.get('networks'), 'networks'),
                volumes=self._top_level(data.get('volumes'), 'volumes'),
            )
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid stack: {exc}") from exc
        definition.compute_deployment_order()
        return definition

    def _interpolate(self, value: Any, context: Dict[str, str]) -> Any:
        if isinstance(value, str):
            return EnvironmentInterpolator.interpolate(value, context)
        if isinstance(value, dict):
            return {key: self._interpolate(item, context) for key, item in value.items()}
        if isinstance(value, list):
            return [self._interpolate(item, context) for item in value]
        return value

    def _top_level(self, value: Any, section: str) -> Dict[str, Dict[str, Any]]:
        if not value:
            return {}
        if isinstance(value, list):
            return {str(item): {} for item in value}
        if not isinstance(value, dict):
            raise ConfigurationError(f"'{section}' must be a mapping")
        return {str(key): dict(self._mapping(item, f"{section}.{key}")) for key, item in value.items()}

    def _parse_service(self, name: str, spec: Any, context: Dict[str, str]) -> Tuple[ServiceDefinition, Optional[ScalePolicy]]:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: The service and its scale policy if the file sets a replica count or strategy.
        """
        if spec is None:
            spec = {}
        if not isinstance(spec, dict):
            raise ConfigurationError(f"Service '{name}' must be a mapping")

        try:
            image = spec.get('image')
            build = self._parse_build(spec.get('build'))
            if not image and build is None:
                raise ConfigurationError(f"Service '{name}' has neither image nor build")
            if image and build is not None:
                logger.info("Service %s sets both image and build, using image %s", name, image)
                build = None

            service = ServiceDefinition(
                name=name,
                image_name=str(image) if image else None,
                build=build,
                command=self._to_command(spec.get('command')),
                entrypoint=self._to_command(spec.get('entrypoint')),
                working_dir=spec.get('working_dir'),
                user=str(spec['user']) if spec.get('user') is not None else None,
                environment=self._parse_environment(spec.get('environment'), context),
                env_files=self._parse_env_files(spec.get('env_file')),
                ports=self._parse_ports(spec.get('ports')),
                networks=self._keys(spec.get('networks')),
                hostname=spec.get('hostname'),
                volumes=self._parse_volumes(name, spec.get('volumes')),
                restart_policy=self._parse_restart(spec),
                health_check=self._parse_health_check(spec.get('healthcheck')),
                depends_on=self._keys(spec.get('depends_on')),
                resource_limits=self._parse_resources(spec),
                labels=self._parse_labels(spec.get('labels')),
            )
        except (ValidationError, ValueError, TypeError, KeyError) as exc:
            raise ConfigurationError(f"Invalid service '{name}': {exc}") from exc

        deploy = self._mapping(spec.get('deploy'), 'deploy')
        replicas = deploy.get('replicas', spec.get('scale'))
        if replicas is not None:
            try:
                replicas = int(replicas)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"Invalid replica count for service '{name}': {replicas!r}") from exc
            if replicas < 0:
                raise ConfigurationError(f"Invalid replica count for service '{name}': {replicas}")

        strategy = spec.get(STRATEGY_KEY)
        if strategy is not None:
            try:
                strategy = ScaleStrategy(strategy)
            except ValueError as exc:
                raise ConfigurationError(f"Invalid {STRATEGY_KEY} for service '{name}': {strategy!r}") from exc
        if replicas is None and strategy is None:
            return service, None
        return service, ScalePolicy(
            replicas=1 if replicas is None else replicas,
            strategy=strategy or ScaleStrategy.ROLLING_UPDATE,
        )

    def _parse_build(self, value: Any) -> Optional[BuildConfig]:
        if value is None:
            return None
        if isinstance(value, str):
            return BuildConfig(context=value)
        if isinstance(value, dict):
            args = value.get('args') or {}
            if isinstance(args, list):
                args = dict(self._split_pair(item) for item in args)
            args = self._mapping(args, 'build.args')
            return BuildConfig(
                context=value.get('context', '.'),
                dockerfile=value.get('dockerfile'),
                target=value.get('target'),
                args={str(k): self._scalar(v) for k, v in args.items()},
                cache_from=[str(item) for item in value.get('cache_from') or []],
            )
        raise ConfigurationError(f"Invalid build configuration: {value!r}")

    def _parse_ports(self, value: Any) -> List[PortMapping]:
        ports = []
        for p in value or []:
            if isinstance(p, (str, int)):
                ports.append(PortMapping.parse(p))
            elif isinstance(p, dict):
                published = p.get('published')
                ports.append(PortMapping(
                    target=int(p['target']),
                    published=int(published) if published not in (None, '') else None,
                    protocol=p.get('protocol', 'tcp'),
                    host_ip=p.get('host_ip'),
                ))
            else:
                raise ValueError(f"Invalid port: {p!r}")
        return ports

    def _parse_volumes(self, service: str, value: Any) -> List[VolumeMount]:
        volumes = []
        for v in value or []:
            if isinstance(v, str):
                volumes.append(VolumeMount.parse(v))
            elif isinstance(v, dict):
                if v.get('type') == 'tmpfs':
                    logger.warning("Service %s: tmpfs mount %s is not supported, skipping", service, v.get('target'))
                    continue
                volumes.append(VolumeMount(
                    source=v.get('source') or '',
                    target=v['target'],
                    mode='ro' if v.get('read_only') else 'rw',
                ))
            else:
                raise ValueError(f"Invalid volume: {v!r}")
        return volumes

    def _parse_environment(self, value: Any, context: Dict[str, str]) -> Dict[str, str]:
        environment: Dict[str, str] = {}
        if isinstance(value, list):
            for e in value:
                key, sep, val = str(e).partition('=')
                if sep:
                    environment[key] = val
                elif key in context:
                    environment[key] = context[key]
        elif isinstance(value, dict):
            for key, val in value.items():
                if val is None:
                    if key in context:
                        environment[str(key)] = context[key]
                else:
                    environment[str(key)] = self._scalar(val)
        elif value is not None:
            raise ValueError(f"Invalid environment: {value!r}")
        return environment

    def _parse_env_files(self, value: Any) -> List[str]:
        files = []
        for item in self._to_list(value):
            files.append(item['path'] if isinstance(item, dict) else str(item))
        return files

    def _parse_labels(self, value: Any) -> Dict[str, str]:
        if isinstance(value, list):
            return dict(self._split_pair(item) for item in value)
        if isinstance(value, dict):
            return {str(k): self._scalar(v) for k, v in value.items()}
        return {}

    def _parse_restart(self, spec: Dict[str, Any]) -> RestartPolicy:
        restart = spec.get('restart')
        if restart is None:
            policy = self._mapping(self._mapping(spec.get('deploy'), 'deploy').get('restart_policy'), 'restart_policy')
            condition = _SWARM_RESTART.get(policy.get('condition', 'none'), 'no')
            return RestartPolicy(
                condition=RestartPolicyCondition(condition),
                max_retries=int(policy.get('max_attempts', 0)),
            )
        if restart is False:
            return RestartPolicy()
        condition, _, retries = str(restart).partition(':')
        return RestartPolicy(condition=RestartPolicyCondition(condition), max_retries=int(retries or 0))

    def _parse_health_check(self, value: Any) -> Optional[HealthCheck]:
        value = self._mapping(value, 'healthcheck')
        if not value or value.get('disable'):
            return None
        test = value.get('test')
        if isinstance(test, str):
            test = ['CMD-SHELL', test]
        if not test or test[0] == 'NONE':
            return None
        settings: Dict[str, Any] = {'test': [str(t) for t in test]}
        for key in ('interval', 'timeout', 'start_period'):
            if value.get(key) is not None:
                settings[key] = parse_duration(value[key])
        if value.get('retries') is not None:
            settings['retries'] = int(value['retries'])
        return HealthCheck(**settings)

    def _parse_resources(self, spec: Dict[str, Any]) -> ResourceLimits:
        resources = self._mapping(self._mapping(spec.get('deploy'), 'deploy').get('resources'), 'resources')
        limits = self._mapping(resources.get('limits'), 'limits')
        reservations = self._mapping(resources.get('reservations'), 'reservations')
        memory = spec.get('mem_limit', limits.get('memory'))
        reservation = spec.get('mem_reservation', reservations.get('memory'))
        cpus = spec.get('cpus', limits.get('cpus'))
        return ResourceLimits(
            memory=str(memory) if memory is not None else None,
            memory_reservation=str(reservation) if reservation is not None else None,
            cpus=float(cpus) if cpus is not None else None,
            cpu_shares=spec.get('cpu_shares'),
            cpu_quota=spec.get('cpu_quota'),
            cpu_period=spec.get('cpu_period'),
        )

    def _mapping(self, value: Any, field: str) -> Dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ConfigurationError(f"'{field}' must be a mapping")
        return value

    def _keys(self, value: Any) -> List[str]:
        """
        Names from a field that may be a list or a mapping keyed by name
        (``depends_on`` with conditions, ``networks`` with aliases).
        """
        if isinstance(value, dict):
            return [str(k) for k in value]
        return [str(v) for v in self._to_list(value)]

    def _split_pair(self, item: Any) -> Tuple[str, str]:
        key, _, val = str(item).partition('=')
        return key, val

    def _scalar(self, value: Any) -> str:
        if isinstance(value, bool):
            return 'true' if value else 'false'
        return str(value)

    def _to_command(self, val: Any) -> List[str]:
        if val is None:
            return []
        if isinstance(val, str):
            return shlex.split(val)
        return [str(v) for v in val]

    def _to_list(self, val: Any) -> List[Any]:
        """
        Helper to ensure a value is a list.

        :param val: The value to convert.
        :return: A list.
        """
        if val is None:
            return []
        if isinstance(val, (str, dict)):
            return [val]
        return list(val)

    # Serialization

    def serialize(self, definition: StackDefinition) -> str:
        """
        Renders a stack definition as a compose document.

        :param definition: The stack to render.
        :return: YAML text that ``parse_from_string`` reads back into an equivalent stack.
        """
        doc: Dict[str, Any] = {'name': definition.name, 'services': {}}
        for name, svc in definition.services.items():
            doc['services'][name] = self._serialize_service(svc, definition.get_scale_policy(name))
        if definition.networks:
            doc['networks'] = {k: (v or None) for k, v in definition.networks.items()}
        if definition.volumes:
            doc['volumes'] = {k: (v or None) for k, v in definition.volumes.items()}
        return yaml.safe_dump(self._escape(doc), sort_keys=False, default_flow_style=False)

    def _escape(self, value: Any) -> Any:
        """
        Doubles every ``$`` in string values so that interpolation on the way
        back in restores them literally.
        """
        if isinstance(value, str):
            return value.replace('$', '$$')
        if isinstance(value, dict):
            return {key: self._escape(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._escape(item) for item in value]
        return value

    def _serialize_service(self, svc: ServiceDefinition, policy: Optional[ScalePolicy]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if svc.image_name:
            out['image'] = svc.image_name
        if svc.build is not None:
            build = {k: v for k, v in svc.build.model_dump().items() if v}
            out['build'] = build['context'] if list(build) == ['context'] else build
        if svc.command:
            out['command'] = list(svc.command)
        if svc.entrypoint:
            out['entrypoint'] = list(svc.entrypoint)
        for key in ('working_dir', 'user', 'hostname'):
            if getattr(svc, key):
                out[key] = getattr(svc, key)
        if svc.environment:
            out['environment'] = dict(svc.environment)
        if svc.env_files:
            out['env_file'] = list(svc.env_files)
        if svc.ports:
            out['ports'] = [str(p) for p in svc.ports]
        if svc.networks:
            out['networks'] = list(svc.networks)
        if svc.volumes:
            out['volumes'] = [str(v) for v in svc.volumes]
        if svc.depends_on:
            out['depends_on'] = list(svc.depends_on)

        restart = svc.restart_policy
        if restart.condition != RestartPolicyCondition.NO:
            out['restart'] = restart.condition.value
            if restart.condition == RestartPolicyCondition.ON_FAILURE and restart.max_retries:
                out['restart'] = f"{restart.condition.value}:{restart.max_retries}"

        hc = svc.health_check
        if hc is not None:
            out['healthcheck'] = {
                'test': list(hc.test),
                'interval': format_duration(hc.interval),
                'timeout': format_duration(hc.timeout),
                'retries': hc.retries,
                'start_period': format_duration(hc.start_period),
            }

        limits = svc.resource_limits
        for key in ('cpu_shares', 'cpu_quota', 'cpu_period'):
            if getattr(limits, key) is not None:
                out[key] = getattr(limits, key)
        if svc.labels:
            out['labels'] = dict(svc.labels)

        if policy is not None and policy.strategy != ScaleStrategy.ROLLING_UPDATE:
            out[STRATEGY_KEY] = policy.strategy.value

        deploy: Dict[str, Any] = {}
        if policy is not None and policy.replicas != 1:
            deploy['replicas'] = policy.replicas
        resource_limits = {k: v for k, v in (('memory', limits.memory), ('cpus', limits.cpus)) if v is not None}
        if resource_limits:
            deploy.setdefault('resources', {})['limits'] = resource_limits
        if limits.memory_reservation is not None:
            deploy.setdefault('resources', {})['reservations'] = {'memory': limits.memory_reservation}
        if deploy:
            out['deploy'] = deploy
        return out
