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
Command-line interface: ``stackpilot up``, ``down``, ``ps``, ``logs``, ``scale``...
"""
import logging
import time
from contextlib import contextmanager
from typing import Iterator

import click

from ..errors import StackError
from ..MANAGERS.stack_orchestrator import Stack
from ..RUNTIME.docker_client import DockerRuntimeClient


@contextmanager
def _errors() -> Iterator[None]:
    """
    Turns stack errors into a one-line ``Error: ...`` message and exit status 1.
    """
    try:
        yield
    except StackError as exc:
        raise click.ClickException(str(exc)) from exc


def _load_stack(ctx: click.Context, discover: bool = True) -> Stack:
    """
    Builds the stack from the compose file and, unless told otherwise, picks
    up whatever an earlier invocation deployed.
    """
    obj = ctx.obj
    client = obj.get('client')
    if client is None:
        client = obj['client'] = DockerRuntimeClient(base_url=obj.get('host'), timeout=obj['timeout'])
    with _errors():
        stack = Stack.from_file(obj['file'], client=client, name=obj.get('project_name'))
        if discover:
            stack.discover()
    return stack


@click.group()
@click.option('--file', '-f', 'file', default='docker-compose.yml', envvar='COMPOSE_FILE',
              show_default=True, help='Path to the compose file')
@click.option('--project-name', '-p', envvar='COMPOSE_PROJECT_NAME',
              help='Stack name (default: name from the file, then its directory)')
@click.option('--host', '-H', envvar='DOCKER_HOST', help='Docker daemon socket to connect to')
@click.option('--timeout', type=int, default=60, envvar='STACKPILOT_TIMEOUT', show_default=True,
              help='Timeout in seconds for each Docker API call')
@click.option('--verbose', '-v', is_flag=True, help='Show debug output')
@click.pass_context
def cli(ctx, file, project_name, host, timeout, verbose):
    """
    stackpilot - deploy multi-container stacks from compose files.
    """
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    ctx.obj['file'] = file
    ctx.obj['project_name'] = project_name
    ctx.obj['host'] = host
    ctx.obj['timeout'] = timeout


@cli.command()
@click.option('--order', is_flag=True, help='Print the deployment order instead of the YAML')
@click.pass_context
def config(ctx, order):
    """Validate the compose file and print the resolved configuration."""
    stack = _load_stack(ctx, discover=False)
    if order:
        for name in stack.get_deployment_order():
            click.echo(name)
    else:
        click.echo(stack.to_yaml(), nl=False)


@cli.command()
@click.option('--detach', '-d', is_flag=True, help='Run in background')
@click.option('--wait', is_flag=True, help='Wait for services to be running and healthy')
@click.option('--wait-timeout', type=int, default=60, show_default=True, help='Seconds to wait with --wait')
@click.pass_context
def up(ctx, detach, wait, wait_timeout):
    """Create and start the stack."""
    stack = _load_stack(ctx, discover=False)
    with _errors():
        stack.up()
    click.echo(f"Stack {stack.name} started ({stack.state.total_containers()} containers).")

    if wait and not stack.wait_until_healthy(wait_timeout):
        raise click.ClickException(f"Services did not become healthy within {wait_timeout}s")

    if not detach:
        click.echo("Running... Press Ctrl+C to stop.")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            click.echo("\nStopping stack...")
            stack.down()


@cli.command()
@click.option('--keep-volumes', is_flag=True, help='Do not remove named volumes')
@click.pass_context
def down(ctx, keep_volumes):
    """Stop and remove containers, networks and volumes."""
    stack = _load_stack(ctx)
    report = stack.down(remove_volumes=not keep_volumes)
    click.echo(f"Removed {len(report.removed_containers)} containers, "
               f"{len(report.removed_networks)} networks, {len(report.removed_volumes)} volumes.")
    for error in report.suppressed:
        click.echo(f"Warning: {error}", err=True)


@cli.command()
@click.pass_context
def ps(ctx):
    """List containers"""
    stack = _load_stack(ctx)
    status = stack.status()
    click.echo(f"Stack {status['name']}: {status['status']}")
    click.echo(f"{'SERVICE':15} {'#':>3} {'CONTAINER':12} {'STATUS':10} {'HEALTH':14}")
    click.echo("-" * 58)
    for name, service in status['services'].items():
        for index, container in enumerate(service['containers'], start=1):
            click.echo(f"{name:15} {index:>3} {container['id'][:12]:12} "
                       f"{container['status']:10} {container['health']:14}")


@cli.command()
@click.argument('services', nargs=-1)
@click.option('--tail', type=int, default=None, help='Number of lines from the end of each log')
@click.option('--timestamps', '-t', is_flag=True, help='Show timestamps')
@click.pass_context
def logs(ctx, services, tail, timestamps):
    """Show container output"""
    stack = _load_stack(ctx)
    output = stack.logs(list(services) or None, tail=tail, timestamps=timestamps)
    if output:
        click.echo(output)


@cli.command()
@click.argument('targets', nargs=-1, required=True)
@click.pass_context
def scale(ctx, targets):
    """Set the number of containers, e.g. ``scale web=3 worker=2``."""
    requested = []
    for target in targets:
        service, sep, count = target.partition('=')
        if not sep or not count.isdigit():
            raise click.BadParameter(f"expected SERVICE=N, got {target!r}", param_hint='TARGETS')
        requested.append((service, int(count)))

    stack = _load_stack(ctx)
    with _errors():
        for service, count in requested:
            stack.scale(service, count)
            click.echo(f"{service}: {count} replica(s)")


@cli.command()
@click.argument('service')
@click.pass_context
def restart(ctx, service):
    """Recreate the containers of a service."""
    stack = _load_stack(ctx)
    with _errors():
        stack.restart_service(service)
    click.echo(f"Restarted {service}.")


@cli.command()
@click.pass_context
def stop(ctx):
    """Stop containers without removing them."""
    stack = _load_stack(ctx)
    with _errors():
        stack.stop()
    click.echo(f"Stack {stack.name} stopped.")


@cli.command()
@click.pass_context
def start(ctx):
    """Start stopped containers."""
    stack = _load_stack(ctx)
    with _errors():
        stack.start()
    click.echo(f"Stack {stack.name} started.")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
