"""Pytest configuration for tests.

No sys.path hacks - tests should import from installed contractvm package.
"""

import pytest

from contractvm.kernel.publickey import Key

SECP256K1_P = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F

PK1 = {
    "kty": "EC",
    "crv": "secp256k1",
    "alg": "ES256K",
    "use": "sig",
    "x": "nnzHFO4bZ239bIuAo8t0wQwXH3fPwbKQnpWPzOptv0Q=",
    "y": "Z1-oY62A6q5kCRGfBuk6E3IrSUjPCK2F6_EwVhW22lY=",
}


def pytest_addoption(parser):
    """Add gated perf test option."""
    parser.addoption(
        "--run-perf",
        action="store_true",
        default=False,
        help="Run performance sentinel benchmarks (gated)."
    )


def pytest_collection_modifyitems(config, items):
    """Skip perf-marked tests unless --run-perf is set."""
    if config.getoption("--run-perf"):
        return
    skip_perf = pytest.mark.skip(reason="perf tests gated; pass --run-perf")
    for item in items:
        if "perf" in item.keywords:
            item.add_marker(skip_perf)


@pytest.fixture
def pk1_json():
    return dict(PK1)


@pytest.fixture
def pk1_key(pk1_json):
    return Key.from_json(pk1_json)


@pytest.fixture
def pk2_key(pk1_key):
    """A second valid key: pk1 mirrored across the x axis (same x, y' = p - y)."""
    y = SECP256K1_P - int.from_bytes(pk1_key.y, "big")
    return Key.from_coordinates(pk1_key.x, y.to_bytes(32, "big"))


@pytest.fixture
def pk2_json(pk2_key):
    return pk2_key.to_json()
