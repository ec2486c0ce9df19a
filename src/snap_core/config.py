from __future__ import annotations

import os
from dataclasses import dataclass

from snap_core.errors import SnapshotConfigError

_TRUTHY = ("1", "true", "yes", "on")

DEFAULT_CHUNK_SIZE = 4096
DEFAULT_MAX_DEPTH = 32
DEFAULT_MAX_OBJECT_SIZE = 1 << 20


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUTHY


def _env_positive_int(name: str, default: int) -> int:
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    if not value.isdigit() or int(value) <= 0:
        raise SnapshotConfigError(name=name, value=value, context="env")
    return int(value)


def _test_guards_enabled() -> bool:
    return _env_flag("SNAPSHOT_TEST_GUARDS")


def guards_enabled() -> bool:
    return _test_guards_enabled() or _env_flag("SNAPSHOT_GUARDS")


def metrics_enabled() -> bool:
    return _env_flag("SNAPSHOT_METRICS")


@dataclass(frozen=True, slots=True)
class SerializerConfig:
    """Serializer DI bundle; None fields fall back to env/defaults."""

    chunk_size: int | None = None
    max_depth: int | None = None
    pad: bool = True


@dataclass(frozen=True, slots=True)
class SerializerResolved:
    chunk_size: int
    max_depth: int
    pad: bool


def resolve_serializer_config(cfg: SerializerConfig | None = None) -> SerializerResolved:
    cfg = cfg or SerializerConfig()
    chunk_size = cfg.chunk_size
    if chunk_size is None:
        chunk_size = _env_positive_int("SNAPSHOT_CHUNK_SIZE", DEFAULT_CHUNK_SIZE)
    elif chunk_size <= 0:
        raise SnapshotConfigError(name="chunk_size", value=chunk_size, context="serializer")
    max_depth = cfg.max_depth
    if max_depth is None:
        max_depth = _env_positive_int("SNAPSHOT_MAX_DEPTH", DEFAULT_MAX_DEPTH)
    elif max_depth <= 0:
        raise SnapshotConfigError(name="max_depth", value=max_depth, context="serializer")
    return SerializerResolved(chunk_size=chunk_size, max_depth=max_depth, pad=cfg.pad)


@dataclass(frozen=True, slots=True)
class DeserializerConfig:
    """Deserializer DI bundle; verify=None follows SNAPSHOT_GUARDS.

    max_object_size bounds the tagged words a single object header may
    request (env SNAPSHOT_MAX_OBJECT_SIZE).
    """

    verify: bool | None = None
    max_object_size: int | None = None


@dataclass(frozen=True, slots=True)
class DeserializerResolved:
    verify: bool
    max_object_size: int


def resolve_deserializer_config(
    cfg: DeserializerConfig | None = None,
) -> DeserializerResolved:
    cfg = cfg or DeserializerConfig()
    verify = guards_enabled() if cfg.verify is None else bool(cfg.verify)
    max_object_size = cfg.max_object_size
    if max_object_size is None:
        max_object_size = _env_positive_int(
            "SNAPSHOT_MAX_OBJECT_SIZE", DEFAULT_MAX_OBJECT_SIZE
        )
    elif max_object_size <= 0:
        raise SnapshotConfigError(
            name="max_object_size", value=max_object_size, context="deserializer"
        )
    return DeserializerResolved(verify=verify, max_object_size=max_object_size)


DEFAULT_SERIALIZER_CONFIG = SerializerConfig()
DEFAULT_DESERIALIZER_CONFIG = DeserializerConfig()

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_MAX_DEPTH",
    "DEFAULT_MAX_OBJECT_SIZE",
    "_test_guards_enabled",
    "guards_enabled",
    "metrics_enabled",
    "SerializerConfig",
    "SerializerResolved",
    "resolve_serializer_config",
    "DeserializerConfig",
    "DeserializerResolved",
    "resolve_deserializer_config",
    "DEFAULT_SERIALIZER_CONFIG",
    "DEFAULT_DESERIALIZER_CONFIG",
]
