"""Public surface of the snapshot codec.

Re-exports the session entry points, the object model and the collaborator
bundles so callers and tests can import one module.
"""

from __future__ import annotations

from snap_codec.common import SnapshotData, can_be_deferred
from snap_codec.deserializer import Deserializer, deserialize
from snap_codec.serializer import Serializer, serialize
from snap_codec.tables import DEFAULT_SNAPSHOT_TABLES, SnapshotTables
from snap_core.config import (
    DEFAULT_DESERIALIZER_CONFIG,
    DEFAULT_SERIALIZER_CONFIG,
    DeserializerConfig,
    SerializerConfig,
    guards_enabled,
    metrics_enabled,
    resolve_deserializer_config,
    resolve_serializer_config,
)
from snap_core.domains import (
    ANY_OLD_SPACE,
    NUMBER_OF_SPACES,
    TAGGED_SIZE,
    Alignment,
    SnapshotSpace,
    addressing_space,
)
from snap_core.errors import (
    BytecodeTableError,
    ExternalIndexOutOfRangeError,
    FormatMismatchError,
    ForwardReferenceResolutionError,
    HeapRelocationError,
    OutOfRangeParameterError,
    SnapshotConfigError,
    SnapshotCorruptError,
    SnapshotError,
    TruncatedStreamError,
    UnencodableGraphError,
    UnknownBytecodeError,
    UnknownExternalReferenceError,
    UnresolvedForwardReferenceError,
)
from snap_format.bytecodes import BytecodeKind
from snap_format.table import classify_bytecodes, decode_bytecode, verify_partition
from snap_heap.heap import Heap
from snap_heap.objects import (
    CLEARED_WEAK,
    ApiPointer,
    BackingStore,
    EmbedderField,
    ExternalPointer,
    HeapObject,
    InternalReference,
    OffHeapTarget,
    Smi,
    WeakRef,
    make_map,
    make_meta_map,
)
from snap_heap.roots import RootSet, SyncTag
from snap_metrics.metrics import bytecode_histogram, codec_metrics_get, codec_metrics_reset


def round_trip(
    root_set: RootSet,
    *,
    tables: SnapshotTables = DEFAULT_SNAPSHOT_TABLES,
    serializer_cfg: SerializerConfig | None = None,
    deserializer_cfg: DeserializerConfig | None = None,
) -> tuple[RootSet, Heap, SnapshotData]:
    """Serialize then deserialize into a fresh heap sized from the reservations."""
    data = serialize(root_set, tables=tables, cfg=serializer_cfg)
    heap = Heap(data.reservations)
    restored = deserialize(data, heap=heap, tables=tables, cfg=deserializer_cfg)
    return restored, heap, data


__all__ = [
    "SnapshotData",
    "can_be_deferred",
    "Serializer",
    "serialize",
    "Deserializer",
    "deserialize",
    "round_trip",
    "SnapshotTables",
    "DEFAULT_SNAPSHOT_TABLES",
    "SerializerConfig",
    "DeserializerConfig",
    "DEFAULT_SERIALIZER_CONFIG",
    "DEFAULT_DESERIALIZER_CONFIG",
    "resolve_serializer_config",
    "resolve_deserializer_config",
    "guards_enabled",
    "metrics_enabled",
    "SnapshotSpace",
    "ANY_OLD_SPACE",
    "NUMBER_OF_SPACES",
    "TAGGED_SIZE",
    "Alignment",
    "addressing_space",
    "SnapshotError",
    "FormatMismatchError",
    "UnknownBytecodeError",
    "UnresolvedForwardReferenceError",
    "ForwardReferenceResolutionError",
    "OutOfRangeParameterError",
    "TruncatedStreamError",
    "ExternalIndexOutOfRangeError",
    "UnknownExternalReferenceError",
    "SnapshotCorruptError",
    "UnencodableGraphError",
    "BytecodeTableError",
    "HeapRelocationError",
    "SnapshotConfigError",
    "BytecodeKind",
    "decode_bytecode",
    "classify_bytecodes",
    "verify_partition",
    "Heap",
    "HeapObject",
    "Smi",
    "WeakRef",
    "CLEARED_WEAK",
    "ExternalPointer",
    "ApiPointer",
    "InternalReference",
    "OffHeapTarget",
    "BackingStore",
    "EmbedderField",
    "make_map",
    "make_meta_map",
    "RootSet",
    "SyncTag",
    "codec_metrics_reset",
    "codec_metrics_get",
    "bytecode_histogram",
]
