import random
import string

import pytest
import yaml

from stackpilot.errors import ConfigurationError
from stackpilot.MODELS.stack_definition import StackDefinition
from stackpilot.PARSERS.compose_parser import ComposeParser
from stackpilot.UTILS.string_interpolation import EnvironmentInterpolator

VALID_DOCUMENT = """\
name: fuzzed
services:
  db:
    image: postgres:13
    environment:
      - POSTGRES_PASSWORD=${DB_PASSWORD:-secret}
    volumes:
      - pgdata:/var/lib/postgresql/data
  web:
    image: nginx:${WEB_TAG-latest}
    ports:
      - "8080:80"
      - 443
    depends_on:
      - db
    deploy:
      replicas: 2
    networks:
      - front
networks:
  front: {}
volumes:
  pgdata: {}
"""


def random_string(rng, length):
    return ''.join(rng.choice(string.printable) for _ in range(length))


def parse_or_reject(content):
    """Parsing either succeeds or fails with a ConfigurationError, never anything else."""
    try:
        return ComposeParser(context={}).parse_from_string(content)
    except ConfigurationError:
        return None


@pytest.mark.parametrize("seed", range(5))
def test_fuzz_compose_parser(seed):
    rng = random.Random(seed)
    for _ in range(100):
        result = parse_or_reject(random_string(rng, rng.randint(0, 1000)))
        assert result is None or isinstance(result, StackDefinition)


def test_fuzz_truncated_document():
    for cut in range(len(VALID_DOCUMENT) + 1):
        result = parse_or_reject(VALID_DOCUMENT[:cut])
        if result is not None:
            order = result.deployment_order
            assert sorted(order) == sorted(result.services)


@pytest.mark.parametrize("seed", range(10))
def test_fuzz_dependency_graphs(seed):
    rng = random.Random(seed)
    names = [f"svc{i}" for i in range(rng.randint(1, 15))]
    services = {}
    for name in names:
        deps = rng.sample(names + ["missing"], rng.randint(0, 3))
        services[name] = {'image': 'busybox', 'depends_on': [d for d in deps if d != name]}
    content = yaml.safe_dump({'services': services})

    result = parse_or_reject(content)
    if result is None:
        return
    position = {name: i for i, name in enumerate(result.deployment_order)}
    assert len(position) == len(services)
    for name, spec in services.items():
        for dep in spec['depends_on']:
            assert position[dep] < position[name]


def test_fuzz_interpolation():
    rng = random.Random(42)
    alphabet = "${}:-+?_AB01 x"
    for _ in range(500):
        template = ''.join(rng.choice(alphabet) for _ in range(rng.randint(0, 40)))
        try:
            result = EnvironmentInterpolator.interpolate(template, {'A': '1', 'B': ''})
        except ConfigurationError:
            continue
        assert isinstance(result, str)


def test_edge_cases_parsers():
    parser = ComposeParser(context={})

    # Empty document and whitespace only
    assert parser.parse_from_string("").services == {}
    assert parser.parse_from_string("   \n  \n").services == {}

    # Very long values
    definition = parser.parse_from_string("services:\n  web:\n    image: " + "a" * 10000 + "\n")
    assert len(definition.services['web'].image_name) == 10000

    # Deeply nested but valid YAML under an unknown key
    nested = "x-extra: " + "[" * 50 + "]" * 50 + "\nservices: {}\n"
    assert parser.parse_from_string(nested).services == {}
