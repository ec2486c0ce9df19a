from collections import deque

import jax.numpy as jnp

from snap_core.config import metrics_enabled
from snap_core.host import host_array
from snap_format.bytecodes import BytecodeKind
from snap_format.table import classify_bytecodes

_serialized_objects = 0
_deserialized_objects = 0
_hot_hits = 0
_backrefs = 0
_forward_refs = 0
_deferred_objects = 0
_sync_markers = 0
_bytecode_count = 0
# Most recent decoded bytecodes only; the count above is the full total.
BYTECODE_TRACE_LIMIT = 1 << 16
_bytecodes: deque = deque(maxlen=BYTECODE_TRACE_LIMIT)


def codec_metrics_reset():
    global _serialized_objects
    global _deserialized_objects
    global _hot_hits
    global _backrefs
    global _forward_refs
    global _deferred_objects
    global _sync_markers
    global _bytecode_count
    _serialized_objects = 0
    _deserialized_objects = 0
    _hot_hits = 0
    _backrefs = 0
    _forward_refs = 0
    _deferred_objects = 0
    _sync_markers = 0
    _bytecode_count = 0
    _bytecodes.clear()


def _codec_metrics_serialized(count=1):
    global _serialized_objects
    if metrics_enabled():
        _serialized_objects += count


def _codec_metrics_deserialized(count=1):
    global _deserialized_objects
    if metrics_enabled():
        _deserialized_objects += count


def _codec_metrics_hot_hit():
    global _hot_hits
    if metrics_enabled():
        _hot_hits += 1


def _codec_metrics_backref():
    global _backrefs
    if metrics_enabled():
        _backrefs += 1


def _codec_metrics_forward_ref():
    global _forward_refs
    if metrics_enabled():
        _forward_refs += 1


def _codec_metrics_deferred():
    global _deferred_objects
    if metrics_enabled():
        _deferred_objects += 1


def _codec_metrics_sync():
    global _sync_markers
    if metrics_enabled():
        _sync_markers += 1


def _codec_metrics_bytecode(code):
    global _bytecode_count
    if metrics_enabled():
        _bytecode_count += 1
        _bytecodes.append(int(code))


def codec_metrics_get():
    if not metrics_enabled():
        return {
            "serialized_objects": 0,
            "deserialized_objects": 0,
            "hot_hits": 0,
            "backrefs": 0,
            "forward_refs": 0,
            "deferred_objects": 0,
            "sync_markers": 0,
            "bytecodes": 0,
        }
    return {
        "serialized_objects": int(_serialized_objects),
        "deserialized_objects": int(_deserialized_objects),
        "hot_hits": int(_hot_hits),
        "backrefs": int(_backrefs),
        "forward_refs": int(_forward_refs),
        "deferred_objects": int(_deferred_objects),
        "sync_markers": int(_sync_markers),
        "bytecodes": int(_bytecode_count),
    }


def bytecode_histogram(codes=None):
    """Count bytecodes per kind name (defaults to the recent decode trace)."""
    if codes is None:
        codes = list(_bytecodes)
    if len(codes) == 0:
        return {}
    kinds, _ = classify_bytecodes(jnp.asarray(codes, dtype=jnp.int32))
    counts = host_array(jnp.bincount(kinds, length=len(BytecodeKind)))
    return {
        BytecodeKind(i).name: int(c) for i, c in enumerate(counts) if int(c) > 0
    }


__all__ = [
    "BYTECODE_TRACE_LIMIT",
    "codec_metrics_reset",
    "codec_metrics_get",
    "bytecode_histogram",
]
