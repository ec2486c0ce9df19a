import os
import sys

import pytest

# Enable post-load verification in tests unless explicitly overridden.
os.environ.setdefault("SNAPSHOT_TEST_GUARDS", "1")

import jax

# Ensure repo root and src/ are importable when pytest uses importlib mode.
ROOT = os.path.dirname(os.path.dirname(__file__))
SRC = os.path.join(ROOT, "src")
for _path in (SRC, ROOT):
    if _path not in sys.path:
        sys.path.insert(0, _path)

_MARKER_DESCRIPTIONS = {
    "format": "bytecode table, density helpers and byte stream",
    "refs": "hot list, backreference and forward-reference tables",
    "heap": "reference heap and root set",
    "codec": "serializer/deserializer sessions",
}


def pytest_configure(config):
    for name, desc in _MARKER_DESCRIPTIONS.items():
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def _set_default_device():
    with jax.default_device(jax.devices("cpu")[0]):
        yield


@pytest.fixture
def codec_metrics(monkeypatch):
    from snap_metrics.metrics import codec_metrics_reset

    monkeypatch.setenv("SNAPSHOT_METRICS", "1")
    codec_metrics_reset()
    yield
    codec_metrics_reset()
