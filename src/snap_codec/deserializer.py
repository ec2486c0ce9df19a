"""Snapshot bytecode -> graph, mirroring the serializer's traversal.

Objects are reserved when their header is read and allocated once their map
is available. Any failure releases every object the session allocated and
leaves the root set unfilled.
"""

from __future__ import annotations

from snap_core.config import DeserializerConfig, resolve_deserializer_config
from snap_core.domains import NUMBER_OF_SPACES, TAGGED_SIZE, Alignment, SnapshotSpace
from snap_core.errors import (
    ExternalIndexOutOfRangeError,
    FormatMismatchError,
    SnapshotCorruptError,
    UnresolvedForwardReferenceError,
)
from snap_core.protocols import AllocationCapability
from snap_format.bytecodes import (
    OP_NOP,
    OP_RESOLVE_PENDING_FORWARD_REF,
    OP_SYNCHRONIZE,
    BytecodeKind,
)
from snap_format.density import decode_variable_repeat_count
from snap_format.stream import SnapshotByteSource
from snap_format.table import DecodedBytecode, decode_bytecode, is_reserved
from snap_heap.heap import Heap
from snap_heap.objects import (
    CLEARED_WEAK,
    DEFERRED_CONTENT,
    UNFILLED,
    ApiPointer,
    BackingStore,
    EmbedderField,
    ExternalPointer,
    HeapObject,
    InternalReference,
    OffHeapTarget,
    Smi,
    WeakRef,
    is_unresolved,
)
from snap_heap.roots import RootSet, SyncTag
from snap_metrics import metrics as _metrics
from snap_refs.backrefs import BackReferenceTable
from snap_refs.forward import ForwardReferenceTable
from snap_codec.common import (
    SerializerDeserializer,
    SlotCursor,
    SnapshotData,
    can_be_deferred,
)
from snap_codec.tables import DEFAULT_SNAPSHOT_TABLES, SnapshotTables, lookup_index

_OBJECT_KINDS = (
    BytecodeKind.NEW_OBJECT,
    BytecodeKind.NEW_META_MAP,
    BytecodeKind.ALIGNMENT_PREFIX,
    BytecodeKind.BACKREF,
    BytecodeKind.HOT_OBJECT,
    BytecodeKind.ROOT_ARRAY,
    BytecodeKind.ROOT_ARRAY_CONSTANTS,
    BytecodeKind.STARTUP_OBJECT_CACHE,
    BytecodeKind.READ_ONLY_OBJECT_CACHE,
    BytecodeKind.ATTACHED_REFERENCE,
)


class Deserializer(SerializerDeserializer):
    def __init__(
        self,
        snapshot: SnapshotData | bytes,
        heap: AllocationCapability | None = None,
        tables: SnapshotTables = DEFAULT_SNAPSHOT_TABLES,
        cfg: DeserializerConfig | None = None,
    ):
        super().__init__()
        self._cfg = resolve_deserializer_config(cfg)
        self._tables = tables
        if isinstance(snapshot, SnapshotData):
            self._root_shape = snapshot.root_shape
            payload = snapshot.payload
            if heap is None:
                heap = Heap(snapshot.reservations)
        else:
            self._root_shape = ()
            payload = snapshot
        self.heap = heap if heap is not None else Heap()
        self.source = SnapshotByteSource(payload)
        self._backrefs = BackReferenceTable()
        self._forward = ForwardReferenceTable()
        self._root_values: list = []
        self._backing_stores: list[BackingStore] = []
        self._deferred: dict[int, HeapObject] = {}
        self._allocated: list[HeapObject] = []
        self._used = False

    # --- session entry point ---

    def deserialize(self, root_set: RootSet | None = None) -> RootSet:
        if self._used:
            raise RuntimeError("deserializer sessions are single-use")
        self._used = True
        if root_set is None:
            root_set = RootSet.from_shape(self._root_shape)
        with self.heap.placement_pinned():
            try:
                self.iterate(root_set, self)
                self._read_deferred_objects()
                self._forward.check_all_resolved()
                self._check_trailer()
                if self._cfg.verify:
                    self._verify(root_set)
            except BaseException:
                self.heap.release(self._allocated)
                for section in root_set.sections:
                    section.slots[:] = [UNFILLED] * len(section.slots)
                raise
        return root_set

    @property
    def allocated(self) -> tuple[HeapObject, ...]:
        return tuple(self._allocated)

    # --- root visitor ---

    def visit_root_pointers(self, tag, slots: list, start: int, end: int) -> None:
        for i in range(start, end):
            self._read_data(SlotCursor(slots, i, i + 1))
            self._root_values.append(slots[i])

    def synchronize(self, tag) -> None:
        self._expect_synchronize(f"synchronize marker ({SyncTag(tag).name})")

    def _expect_synchronize(self, expected: str) -> None:
        while True:
            position = self.source.position
            if not self.source.has_more():
                raise FormatMismatchError(
                    expected=expected, found="end of stream", position=position
                )
            code = self.source.get()
            if code == OP_NOP:
                continue
            if code != OP_SYNCHRONIZE:
                raise FormatMismatchError(
                    expected=expected, found=f"0x{code:02x}", position=position
                )
            _metrics._codec_metrics_bytecode(code)
            _metrics._codec_metrics_sync()
            return

    # --- bytecode reading ---

    def _next_op(self) -> tuple[DecodedBytecode, int]:
        """Next meaningful bytecode; nops and chunk switches are consumed."""
        while True:
            position = self.source.position
            code = self.source.get()
            op = decode_bytecode(code, position=position)
            _metrics._codec_metrics_bytecode(code)
            if op.kind == BytecodeKind.NOP:
                continue
            if op.kind == BytecodeKind.NEXT_CHUNK:
                self.heap.move_to_next_chunk(self._read_space(position))
                continue
            return op, position

    def _read_space(self, position: int) -> SnapshotSpace:
        space = self.source.get()
        if not 0 <= space < NUMBER_OF_SPACES:
            raise SnapshotCorruptError(f"space id {space}", position=position)
        return SnapshotSpace(space)

    def _read_data(self, cursor: SlotCursor) -> None:
        while not cursor.full():
            op, position = self._next_op()
            kind = op.kind
            if kind in _OBJECT_KINDS:
                cursor.write(self._read_object_with(op, position), position=position)
            elif kind == BytecodeKind.FIXED_RAW_DATA:
                self._read_raw_data(cursor, op.param, position)
            elif kind == BytecodeKind.VARIABLE_RAW_DATA:
                nbytes = self.source.get_int()
                if nbytes <= 0 or nbytes % TAGGED_SIZE:
                    raise SnapshotCorruptError(f"raw data of {nbytes} bytes", position=position)
                self._read_raw_data(cursor, nbytes // TAGGED_SIZE, position)
            elif kind == BytecodeKind.FIXED_REPEAT:
                self._read_repeat(cursor, op.param, position)
            elif kind == BytecodeKind.VARIABLE_REPEAT:
                count = decode_variable_repeat_count(self.source.get_int())
                self._read_repeat(cursor, count, position)
            elif kind == BytecodeKind.WEAK_PREFIX:
                self._read_weak(cursor)
            elif kind == BytecodeKind.CLEARED_WEAK_REFERENCE:
                cursor.write(CLEARED_WEAK, position=position)
            elif kind == BytecodeKind.REGISTER_PENDING_FORWARD_REF:
                self._register_forward_ref(cursor, position, weak=False)
            elif kind == BytecodeKind.RESOLVE_PENDING_FORWARD_REF:
                raise SnapshotCorruptError("resolution outside an object header", position=position)
            elif kind == BytecodeKind.DEFERRED:
                self._read_deferred_marker(cursor, position)
            elif kind == BytecodeKind.VARIABLE_RAW_CODE:
                self._read_raw_code(cursor, position)
            elif kind in (BytecodeKind.EXTERNAL_REFERENCE, BytecodeKind.SANDBOXED_EXTERNAL_REFERENCE):
                address = lookup_index(
                    self._tables.external_references, self.source.get_int(), "external_references"
                )
                sandboxed = kind == BytecodeKind.SANDBOXED_EXTERNAL_REFERENCE
                cursor.write(ExternalPointer(address, sandboxed), position=position)
            elif kind in (BytecodeKind.API_REFERENCE, BytecodeKind.SANDBOXED_API_REFERENCE):
                address = lookup_index(
                    self._tables.api_references, self.source.get_int(), "api_references"
                )
                sandboxed = kind == BytecodeKind.SANDBOXED_API_REFERENCE
                cursor.write(ApiPointer(address, sandboxed), position=position)
            elif kind == BytecodeKind.INTERNAL_REFERENCE:
                if cursor.holder is None:
                    raise SnapshotCorruptError("internal reference in a root slot", position=position)
                cursor.write(InternalReference(self.source.get_int()), position=position)
            elif kind == BytecodeKind.OFF_HEAP_TARGET:
                builtin = self.source.get_int()
                if builtin >= self._tables.builtin_count:
                    raise ExternalIndexOutOfRangeError(
                        table="builtins", index=builtin, size=self._tables.builtin_count
                    )
                cursor.write(OffHeapTarget(builtin), position=position)
            elif kind == BytecodeKind.OFF_HEAP_BACKING_STORE:
                cursor.write(self._read_backing_store(), position=position)
            elif kind == BytecodeKind.EMBEDDER_FIELDS_DATA:
                self._read_embedder_field(cursor, position)
            elif kind == BytecodeKind.SYNCHRONIZE:
                raise FormatMismatchError(
                    expected="slot data", found="synchronize marker", position=position
                )
            else:
                raise SnapshotCorruptError(f"{kind.name} inside slot data", position=position)

    def _read_object(self):
        op, position = self._next_op()
        return self._read_object_with(op, position)

    def _read_object_with(self, op: DecodedBytecode, position: int):
        kind = op.kind
        if kind == BytecodeKind.NEW_OBJECT:
            return self._read_new_object(op.param)
        if kind == BytecodeKind.ALIGNMENT_PREFIX:
            follow, follow_position = self._next_op()
            if follow.kind != BytecodeKind.NEW_OBJECT:
                raise SnapshotCorruptError(
                    "alignment prefix not followed by a new object", position=follow_position
                )
            return self._read_new_object(follow.param, Alignment(op.param))
        if kind == BytecodeKind.NEW_META_MAP:
            return self._read_meta_map()
        if kind == BytecodeKind.BACKREF:
            obj = self._backrefs.lookup(op.param, self.source.get_int(), position=position)
            self.hot_objects.add(obj)
            _metrics._codec_metrics_backref()
            return obj
        if kind == BytecodeKind.HOT_OBJECT:
            _metrics._codec_metrics_hot_hit()
            return self.hot_objects.get(op.param)
        if kind == BytecodeKind.ROOT_ARRAY:
            return self._read_root(self.source.get_int(), position)
        if kind == BytecodeKind.ROOT_ARRAY_CONSTANTS:
            return self._read_root(op.param, position)
        if kind == BytecodeKind.STARTUP_OBJECT_CACHE:
            return lookup_index(
                self._tables.startup_object_cache, self.source.get_int(), "startup_object_cache"
            )
        if kind == BytecodeKind.READ_ONLY_OBJECT_CACHE:
            return lookup_index(
                self._tables.read_only_object_cache,
                self.source.get_int(),
                "read_only_object_cache",
            )
        if kind == BytecodeKind.ATTACHED_REFERENCE:
            return lookup_index(
                self._tables.attached_references, self.source.get_int(), "attached_references"
            )
        raise SnapshotCorruptError(f"expected an object, found {kind.name}", position=position)

    def _read_root(self, index: int, position: int):
        if not 0 <= index < len(self._root_values):
            raise SnapshotCorruptError(f"root {index} not yet deserialized", position=position)
        obj = self._root_values[index]
        if not isinstance(obj, HeapObject):
            raise SnapshotCorruptError(f"root {index} is not an object", position=position)
        self.hot_objects.add(obj)
        return obj

    # --- new objects ---

    def _register_allocation(self, obj: HeapObject) -> None:
        self._allocated.append(obj)
        self._backrefs.register(obj, obj.space)
        self.hot_objects.add(obj)
        _metrics._codec_metrics_deserialized()

    def _read_object_size(self) -> int:
        position = self.source.position
        size = self.source.get_int()
        if size > self._cfg.max_object_size:
            raise SnapshotCorruptError(
                f"object size {size} exceeds limit {self._cfg.max_object_size}",
                position=position,
            )
        return size

    def _read_new_object(self, space: int, alignment: Alignment = Alignment.WORD_ALIGNED):
        reservation = self.heap.reserve(space, self._read_object_size())
        map_obj = self._read_object()
        obj = self.heap.allocate(reservation, map_obj)
        obj.alignment = alignment
        self._register_allocation(obj)
        while self.source.has_more() and self.source.peek() == OP_RESOLVE_PENDING_FORWARD_REF:
            _metrics._codec_metrics_bytecode(self.source.get())
            self._forward.resolve(self.source.get_int(), obj)
        self._read_data(SlotCursor(obj.slots, 0, len(obj.slots), holder=obj, fresh=True))
        return obj

    def _read_meta_map(self):
        reservation = self.heap.reserve(SnapshotSpace.MAP, self._read_object_size())
        obj = self.heap.allocate_meta_map(reservation)
        self._register_allocation(obj)
        self._read_data(SlotCursor(obj.slots, 0, len(obj.slots), holder=obj, fresh=True))
        return obj

    def _read_deferred_marker(self, cursor: SlotCursor, position: int) -> None:
        holder = cursor.holder
        if not cursor.at_header() or not can_be_deferred(holder):
            raise SnapshotCorruptError("misplaced deferred marker", position=position)
        holder.slots[:] = [DEFERRED_CONTENT] * len(holder.slots)
        self._deferred[id(holder)] = holder
        cursor.finish()

    def _read_deferred_objects(self) -> None:
        expected = f"synchronize marker ({SyncTag.DEFERRED_OBJECTS.name})"
        while True:
            position = self.source.position
            if not self.source.has_more():
                raise FormatMismatchError(
                    expected=expected, found="end of stream", position=position
                )
            code = self.source.get()
            if code == OP_NOP:
                continue
            if code == OP_SYNCHRONIZE:
                _metrics._codec_metrics_bytecode(code)
                _metrics._codec_metrics_sync()
                break
            if is_reserved(code) or decode_bytecode(code).kind != BytecodeKind.NEW_OBJECT:
                raise FormatMismatchError(
                    expected=expected, found=f"0x{code:02x}", position=position
                )
            _metrics._codec_metrics_bytecode(code)
            space = decode_bytecode(code).param
            obj = self._backrefs.lookup(space, self.source.get_int(), position=position)
            size = self.source.get_int()
            if self._deferred.pop(id(obj), None) is None:
                raise SnapshotCorruptError(f"{obj!r} has no deferred body", position=position)
            if size != obj.size_in_tagged():
                raise SnapshotCorruptError(
                    f"deferred body of {size} words for {obj!r}", position=position
                )
            self._read_data(SlotCursor(obj.slots, 0, len(obj.slots), holder=obj))
            _metrics._codec_metrics_deferred()
        if self._deferred:
            raise SnapshotCorruptError(
                f"{len(self._deferred)} deferred object(s) never filled"
            )

    # --- slot payloads ---

    def _read_raw_data(self, cursor: SlotCursor, count: int, position: int) -> None:
        cursor.reserve(count, position=position)
        for word in self.source.get_words(count):
            cursor.write(Smi(word), position=position)

    def _read_repeat(self, cursor: SlotCursor, count: int, position: int) -> None:
        cursor.reserve(count, position=position)
        obj = self._read_object()
        for _ in range(count):
            cursor.write(obj, position=position)

    def _read_weak(self, cursor: SlotCursor) -> None:
        op, position = self._next_op()
        if op.kind == BytecodeKind.CLEARED_WEAK_REFERENCE:
            cursor.write(CLEARED_WEAK, position=position)
        elif op.kind == BytecodeKind.REGISTER_PENDING_FORWARD_REF:
            self._register_forward_ref(cursor, position, weak=True)
        else:
            cursor.write(WeakRef(self._read_object_with(op, position)), position=position)

    def _register_forward_ref(self, cursor: SlotCursor, position: int, *, weak: bool) -> None:
        ref_id = self.source.get_int()
        if cursor.holder is None:
            raise SnapshotCorruptError("forward reference in a root slot", position=position)
        index = cursor.skip(position=position)
        self._forward.register(ref_id, cursor.holder, index, weak=weak)
        _metrics._codec_metrics_forward_ref()

    def _read_raw_code(self, cursor: SlotCursor, position: int) -> None:
        holder = cursor.holder
        if holder is None:
            raise SnapshotCorruptError("raw code in a root slot", position=position)
        code = self.source.get_raw(self.source.get_int())
        words = -(-len(code) // TAGGED_SIZE)
        if words == 0 or words != cursor.remaining:
            raise SnapshotCorruptError(
                f"{len(code)} instruction bytes for {cursor.remaining} remaining word(s)",
                position=position,
            )
        del holder.slots[cursor.index:]
        holder.instructions = code
        cursor.finish()

    def _read_backing_store(self) -> BackingStore:
        length = self.source.get_int()
        if length == 0:
            return lookup_index(self._backing_stores, self.source.get_int(), "backing_stores")
        store = BackingStore(self.source.get_raw(length - 1))
        self._backing_stores.append(store)
        return store

    def _read_embedder_field(self, cursor: SlotCursor, position: int) -> None:
        payload = self.source.get_raw(self.source.get_int())
        value = EmbedderField(payload)
        callback = self._tables.embedder_fields_callback
        if callback is not None and cursor.holder is not None:
            replacement = callback(cursor.holder, cursor.index, payload)
            if replacement is not None:
                value = replacement
        cursor.write(value, position=position)

    # --- end of stream ---

    def _check_trailer(self) -> None:
        while self.source.has_more():
            position = self.source.position
            code = self.source.get()
            if code != OP_NOP:
                raise SnapshotCorruptError(f"trailing bytecode 0x{code:02x}", position=position)

    def _verify(self, root_set: RootSet) -> None:
        for i, value in enumerate(root_set.root_list()):
            if is_unresolved(value):
                raise UnresolvedForwardReferenceError(f"root {i} left {value.reason}")
        for obj in self._allocated:
            for i, value in enumerate(obj.slots):
                if is_unresolved(value):
                    raise UnresolvedForwardReferenceError(
                        f"{obj!r} slot {i} left {value.reason}",
                        pending=() if value.ref_id is None else (value.ref_id,),
                    )


def deserialize(
    snapshot: SnapshotData | bytes,
    *,
    heap: Heap | None = None,
    tables: SnapshotTables = DEFAULT_SNAPSHOT_TABLES,
    cfg: DeserializerConfig | None = None,
    root_set: RootSet | None = None,
) -> RootSet:
    return Deserializer(snapshot, heap=heap, tables=tables, cfg=cfg).deserialize(root_set)


__all__ = ["Deserializer", "deserialize"]
