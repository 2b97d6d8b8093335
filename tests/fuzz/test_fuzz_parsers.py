import random
import string
import pytest
from stackplan.errors import StackPlanError
from stackplan.PARSERS.manifest_loader import ManifestLoader
from stackplan.PARSERS.port_parser import parse_port_spec

rng = random.Random(1234)


def random_string(length):
    return ''.join(rng.choice(string.printable) for _ in range(length))


def test_fuzz_manifest_loader():
    loader = ManifestLoader({})
    for _ in range(200):
        content = random_string(rng.randint(0, 1000))
        try:
            loader.parse_from_string(content)
        except StackPlanError:
            # Random junk must fail with a pipeline error, never an unhandled one
            pass


def test_fuzz_service_bodies():
    loader = ManifestLoader({})
    values = ["", "x", 0, -1, 3.5, True, None, [], {}, [1, "a"], {"a": 1}, "80:80", "a:b:c:d"]
    keys = ["image", "build", "ports", "networks", "depends_on", "environment",
            "env_file", "secrets", "volumes", "restart", "command"]
    for _ in range(300):
        body = {rng.choice(keys): rng.choice(values) for _ in range(rng.randint(1, 4))}
        try:
            loader.fragment_from_data({"services": {"svc": body}}, "<fuzz>")
        except StackPlanError:
            pass


def test_fuzz_port_parser():
    for _ in range(300):
        spec = ''.join(rng.choice("0123456789:-/[].udptc") for _ in range(rng.randint(0, 20)))
        try:
            parse_port_spec(spec)
        except ValueError:
            pass


def test_edge_cases_loader():
    loader = ManifestLoader({})

    # Empty string
    assert loader.parse_from_string("")[-1].services == {}

    # Only whitespace
    assert loader.parse_from_string("   \n   \n")[-1].services == {}

    # Very long value
    manifest = loader.parse_from_string("services:\n  app:\n    image: " + "a" * 10000 + "\n")[-1]
    assert len(manifest.services["app"].image) == 10000

    with pytest.raises(StackPlanError):
        loader.parse_from_string("services:\n  app:\n    image: app\n    ports: [" + "[" * 50)
