"""Graph -> snapshot bytecode, in one ordered traversal.

Every reference is resolved in this order: hot object, root array,
read-only cache, startup cache, attached list, backreference, pending
forward reference, and finally a new object.
"""

from __future__ import annotations

from collections import deque

from snap_core.config import SerializerConfig, resolve_serializer_config
from snap_core.domains import (
    NUMBER_OF_SPACES,
    TAGGED_SIZE,
    Alignment,
    SnapshotSpace,
    addressing_space,
)
from snap_core.errors import (
    ExternalIndexOutOfRangeError,
    UnencodableGraphError,
    UnresolvedForwardReferenceError,
)
from snap_format.bytecodes import (
    OP_API_REFERENCE,
    OP_ATTACHED_REFERENCE,
    OP_BACKREF,
    OP_CLEARED_WEAK_REFERENCE,
    OP_DEFERRED,
    OP_EMBEDDER_FIELDS_DATA,
    OP_EXTERNAL_REFERENCE,
    OP_INTERNAL_REFERENCE,
    OP_NEW_META_MAP,
    OP_NEW_OBJECT,
    OP_NEXT_CHUNK,
    OP_NOP,
    OP_OFF_HEAP_BACKING_STORE,
    OP_OFF_HEAP_TARGET,
    OP_READ_ONLY_OBJECT_CACHE,
    OP_REGISTER_PENDING_FORWARD_REF,
    OP_RESOLVE_PENDING_FORWARD_REF,
    OP_ROOT_ARRAY,
    OP_SANDBOXED_API_REFERENCE,
    OP_SANDBOXED_EXTERNAL_REFERENCE,
    OP_STARTUP_OBJECT_CACHE,
    OP_SYNCHRONIZE,
    OP_VARIABLE_RAW_CODE,
    OP_VARIABLE_RAW_DATA,
    OP_VARIABLE_REPEAT,
    OP_WEAK_PREFIX,
    ROOT_ARRAY_CONSTANTS_COUNT,
    alignment_prefix_bytecode,
    bytecode_with_space,
    hot_object_bytecode,
    root_constant_bytecode,
)
from snap_format.density import (
    FIRST_ENCODABLE_REPEAT_COUNT,
    encode_fixed_raw_data_size,
    encode_fixed_repeat_count,
    encode_variable_repeat_count,
    is_fixed_raw_data_size,
    is_fixed_repeat_count,
)
from snap_format.stream import SnapshotByteSink
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
)
from snap_heap.roots import RootSet
from snap_metrics import metrics as _metrics
from snap_refs.backrefs import SpaceCounters
from snap_refs.forward import PendingObjects
from snap_refs.hot import NOT_FOUND
from snap_codec.common import SerializerDeserializer, SnapshotData, can_be_deferred
from snap_codec.tables import (
    DEFAULT_SNAPSHOT_TABLES,
    AddressEncoder,
    IdentityIndex,
    SnapshotTables,
)

_PAD_ALIGNMENT = 8
_PAD_MIN = 3


class Serializer(SerializerDeserializer):
    def __init__(
        self,
        tables: SnapshotTables = DEFAULT_SNAPSHOT_TABLES,
        cfg: SerializerConfig | None = None,
    ):
        super().__init__()
        self._cfg = resolve_serializer_config(cfg)
        self._tables = tables
        self.sink = SnapshotByteSink()
        self._counters = SpaceCounters()
        self._pending = PendingObjects()
        self._external = AddressEncoder(tables.external_references, "external_references")
        self._api = AddressEncoder(tables.api_references, "api_references")
        self._attached = IdentityIndex(tables.attached_references)
        self._startup_cache = IdentityIndex(tables.startup_object_cache)
        self._read_only_cache = IdentityIndex(tables.read_only_object_cache)
        self._root_index: dict[int, int] = {}
        self._roots_done = 0
        self._completed_chunks: list[list[int]] = [[] for _ in range(NUMBER_OF_SPACES)]
        self._pending_chunk = [0] * NUMBER_OF_SPACES
        self._large_objects: list[int] = []
        self._backing_stores: dict[int, int] = {}
        self._keep_alive: list = []
        self._deferred: deque[HeapObject] = deque()
        self._depth = 0
        self._used = False

    # --- session entry point ---

    def serialize(self, root_set: RootSet) -> SnapshotData:
        if self._used:
            raise RuntimeError("serializer sessions are single-use")
        self._used = True
        for i, slot in enumerate(root_set.root_list()):
            if isinstance(slot, HeapObject):
                self._root_index.setdefault(id(slot), i)
        self.iterate(root_set, self)
        self._serialize_deferred_objects()
        if self._pending.open_count:
            raise UnresolvedForwardReferenceError(
                "serializer finished with pending objects"
            )
        if self._cfg.pad:
            self._pad()
        return SnapshotData(
            payload=self.sink.data(),
            reservations=self.reservations(),
            root_shape=root_set.shape(),
        )

    def reservations(self) -> tuple[tuple[int, ...], ...]:
        out = []
        for s in range(NUMBER_OF_SPACES):
            if s == SnapshotSpace.LARGE_OBJECT:
                out.append(tuple(self._large_objects))
            else:
                out.append(tuple(self._completed_chunks[s]) + (self._pending_chunk[s],))
        return tuple(out)

    # --- root visitor ---

    def visit_root_pointers(self, tag, slots: list, start: int, end: int) -> None:
        for i in range(start, end):
            self._serialize_slots(slots, i, i + 1, holder=None)
            self._roots_done += 1

    def synchronize(self, tag) -> None:
        self.sink.put(OP_SYNCHRONIZE)
        _metrics._codec_metrics_sync()

    # --- references ---

    def _serialize_object(self, obj: HeapObject, *, can_forward: bool) -> None:
        slot = self.hot_objects.find(obj)
        if slot != NOT_FOUND:
            self.sink.put(hot_object_bytecode(slot))
            _metrics._codec_metrics_hot_hit()
            return
        if self._serialize_root(obj):
            return
        if self._serialize_indexed(obj, self._read_only_cache, OP_READ_ONLY_OBJECT_CACHE):
            return
        if self._serialize_indexed(obj, self._startup_cache, OP_STARTUP_OBJECT_CACHE):
            return
        if self._serialize_indexed(obj, self._attached, OP_ATTACHED_REFERENCE):
            return
        ref = self._counters.lookup(obj)
        if ref is not None:
            self.sink.put(bytecode_with_space(OP_BACKREF, ref.space))
            self.sink.put_int(ref.ordinal)
            self.hot_objects.add(obj)
            _metrics._codec_metrics_backref()
            return
        if self._pending.is_pending(obj):
            if not can_forward:
                raise UnencodableGraphError("map chain cycles outside the meta map", obj)
            self.sink.put(OP_REGISTER_PENDING_FORWARD_REF)
            self.sink.put_int(self._pending.register(obj))
            _metrics._codec_metrics_forward_ref()
            return
        self._serialize_new(obj)

    def _serialize_root(self, obj: HeapObject) -> bool:
        index = self._root_index.get(id(obj))
        if index is None or index >= self._roots_done:
            return False
        if index < ROOT_ARRAY_CONSTANTS_COUNT:
            self.sink.put(root_constant_bytecode(index))
        else:
            self.sink.put(OP_ROOT_ARRAY)
            self.sink.put_int(index)
        self.hot_objects.add(obj)
        return True

    def _serialize_indexed(self, obj, index: IdentityIndex, bytecode: int) -> bool:
        i = index.find(obj)
        if i is None:
            return False
        self.sink.put(bytecode)
        self.sink.put_int(i)
        return True

    def _is_addressable(self, obj: HeapObject) -> bool:
        if self.hot_objects.find(obj) != NOT_FOUND:
            return True
        index = self._root_index.get(id(obj))
        if index is not None and index < self._roots_done:
            return True
        return (
            self._read_only_cache.find(obj) is not None
            or self._startup_cache.find(obj) is not None
            or self._attached.find(obj) is not None
            or self._counters.lookup(obj) is not None
        )

    # --- new objects ---

    def _reserve(self, space: SnapshotSpace, size: int) -> None:
        if space == SnapshotSpace.LARGE_OBJECT:
            self._large_objects.append(size)
            return
        pending = self._pending_chunk[space]
        if pending and pending + size > self._cfg.chunk_size:
            self._completed_chunks[space].append(pending)
            self._pending_chunk[space] = 0
            self.sink.put(OP_NEXT_CHUNK)
            self.sink.put(int(space))
        self._pending_chunk[space] += size

    def _serialize_new(self, obj: HeapObject) -> None:
        if obj.is_meta_map():
            self._serialize_meta_map(obj)
            return
        if obj.map is None:
            raise UnencodableGraphError("object has no map", obj)
        space = addressing_space(obj.space)
        size = obj.size_in_tagged()
        self._depth += 1
        try:
            self._reserve(space, size)
            if obj.alignment != Alignment.WORD_ALIGNED:
                self.sink.put(alignment_prefix_bytecode(obj.alignment))
            self.sink.put(bytecode_with_space(OP_NEW_OBJECT, space))
            self.sink.put_int(size)
            self._pending.begin(obj)
            self._serialize_object(obj.map, can_forward=False)
            ref_id = self._pending.end(obj)
            self._counters.assign(obj, space)
            self.hot_objects.add(obj)
            _metrics._codec_metrics_serialized()
            if ref_id is not None:
                self.sink.put(OP_RESOLVE_PENDING_FORWARD_REF)
                self.sink.put_int(ref_id)
            if self._depth > self._cfg.max_depth and can_be_deferred(obj):
                self.sink.put(OP_DEFERRED)
                self._deferred.append(obj)
                _metrics._codec_metrics_deferred()
                return
            self._serialize_body(obj)
        finally:
            self._depth -= 1

    def _serialize_meta_map(self, obj: HeapObject) -> None:
        if addressing_space(obj.space) != SnapshotSpace.MAP:
            raise UnencodableGraphError("meta map must live in map space", obj)
        size = obj.size_in_tagged()
        self._reserve(SnapshotSpace.MAP, size)
        self.sink.put(OP_NEW_META_MAP)
        self.sink.put_int(size)
        self._counters.assign(obj, SnapshotSpace.MAP)
        self.hot_objects.add(obj)
        _metrics._codec_metrics_serialized()
        self._serialize_body(obj)

    def _serialize_body(self, obj: HeapObject) -> None:
        self._serialize_slots(obj.slots, 0, len(obj.slots), holder=obj)
        if obj.instructions:
            self.sink.put(OP_VARIABLE_RAW_CODE)
            self.sink.put_int(len(obj.instructions))
            self.sink.put_raw(obj.instructions)

    def _serialize_deferred_objects(self) -> None:
        while self._deferred:
            obj = self._deferred.popleft()
            ref = self._counters.lookup(obj)
            self.sink.put(bytecode_with_space(OP_NEW_OBJECT, ref.space))
            self.sink.put_int(ref.ordinal)
            self.sink.put_int(obj.size_in_tagged())
            self._depth = 0
            self._serialize_body(obj)
        self.sink.put(OP_SYNCHRONIZE)
        _metrics._codec_metrics_sync()

    # --- slot data ---

    def _serialize_slots(self, slots: list, start: int, end: int, *, holder) -> None:
        i = start
        while i < end:
            value = slots[i]
            if isinstance(value, Smi):
                j = i + 1
                while j < end and isinstance(slots[j], Smi):
                    j += 1
                self._put_raw_words([s.value for s in slots[i:j]])
                i = j
                continue
            if isinstance(value, HeapObject):
                j = i + 1
                while j < end and slots[j] is value:
                    j += 1
                count = j - i
                if count >= FIRST_ENCODABLE_REPEAT_COUNT and self._is_addressable(value):
                    self._put_repeat(count)
                    self._serialize_object(value, can_forward=False)
                    i = j
                    continue
            self._serialize_slot_value(value, holder)
            i += 1

    def _put_raw_words(self, words: list[int]) -> None:
        if is_fixed_raw_data_size(len(words)):
            self.sink.put(encode_fixed_raw_data_size(len(words)))
        else:
            self.sink.put(OP_VARIABLE_RAW_DATA)
            self.sink.put_int(len(words) * TAGGED_SIZE)
        self.sink.put_words(words)

    def _put_repeat(self, count: int) -> None:
        if is_fixed_repeat_count(count):
            self.sink.put(encode_fixed_repeat_count(count))
        else:
            self.sink.put(OP_VARIABLE_REPEAT)
            self.sink.put_int(encode_variable_repeat_count(count))

    def _serialize_slot_value(self, value, holder) -> None:
        can_forward = holder is not None
        if isinstance(value, HeapObject):
            self._serialize_object(value, can_forward=can_forward)
        elif isinstance(value, WeakRef):
            self.sink.put(OP_WEAK_PREFIX)
            self._serialize_object(value.target, can_forward=can_forward)
        elif value is CLEARED_WEAK:
            self.sink.put(OP_CLEARED_WEAK_REFERENCE)
        elif isinstance(value, ExternalPointer):
            op = OP_SANDBOXED_EXTERNAL_REFERENCE if value.sandboxed else OP_EXTERNAL_REFERENCE
            self.sink.put(op)
            self.sink.put_int(self._external.encode(value.address))
        elif isinstance(value, ApiPointer):
            op = OP_SANDBOXED_API_REFERENCE if value.sandboxed else OP_API_REFERENCE
            self.sink.put(op)
            self.sink.put_int(self._api.encode(value.address))
        elif isinstance(value, InternalReference):
            if holder is None or not 0 <= value.offset < len(holder.instructions):
                raise UnencodableGraphError("internal reference outside instructions", value)
            self.sink.put(OP_INTERNAL_REFERENCE)
            self.sink.put_int(value.offset)
        elif isinstance(value, OffHeapTarget):
            if not 0 <= value.builtin < self._tables.builtin_count:
                raise ExternalIndexOutOfRangeError(
                    table="builtins", index=value.builtin, size=self._tables.builtin_count
                )
            self.sink.put(OP_OFF_HEAP_TARGET)
            self.sink.put_int(value.builtin)
        elif isinstance(value, BackingStore):
            self._serialize_backing_store(value)
        elif isinstance(value, EmbedderField):
            self.sink.put(OP_EMBEDDER_FIELDS_DATA)
            self.sink.put_int(len(value.payload))
            self.sink.put_raw(value.payload)
        else:
            raise UnencodableGraphError(f"unsupported slot value {type(value).__name__}", value)

    def _serialize_backing_store(self, store: BackingStore) -> None:
        self.sink.put(OP_OFF_HEAP_BACKING_STORE)
        index = self._backing_stores.get(id(store))
        if index is not None:
            self.sink.put_int(0)
            self.sink.put_int(index)
            return
        self._backing_stores[id(store)] = len(self._keep_alive)
        self._keep_alive.append(store)
        self.sink.put_int(len(store.data) + 1)
        self.sink.put_raw(store.data)

    def _pad(self) -> None:
        for _ in range(_PAD_MIN):
            self.sink.put(OP_NOP)
        while self.sink.position() % _PAD_ALIGNMENT:
            self.sink.put(OP_NOP)


def serialize(
    root_set: RootSet,
    *,
    tables: SnapshotTables = DEFAULT_SNAPSHOT_TABLES,
    cfg: SerializerConfig | None = None,
) -> SnapshotData:
    return Serializer(tables=tables, cfg=cfg).serialize(root_set)


__all__ = ["Serializer", "serialize"]
