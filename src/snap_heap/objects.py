"""Managed-heap object model used by the codec and the reference heap.

An object is a map word followed by tagged slots and an optional raw
instruction tail. Identity is object identity; two distinct objects never
compare equal.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from snap_core.domains import NUMBER_OF_SPACES, TAGGED_SIZE, Alignment, SnapshotSpace
from snap_core.errors import OutOfRangeParameterError, UnresolvedForwardReferenceError

SMI_MIN = -(1 << 63)
SMI_MAX = (1 << 63) - 1


@dataclass(frozen=True)
class Smi:
    value: int

    def __post_init__(self):
        if not SMI_MIN <= int(self.value) <= SMI_MAX:
            raise OutOfRangeParameterError(name="smi", value=self.value, lo=SMI_MIN, hi=SMI_MAX)


@dataclass(frozen=True, eq=False)
class WeakRef:
    target: "HeapObject"

    def __eq__(self, other):
        return isinstance(other, WeakRef) and other.target is self.target

    def __hash__(self):
        return hash((WeakRef, id(self.target)))


class _ClearedWeak:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CLEARED_WEAK"


CLEARED_WEAK = _ClearedWeak()


@dataclass(frozen=True)
class ExternalPointer:
    address: int
    sandboxed: bool = False


@dataclass(frozen=True)
class ApiPointer:
    address: int
    sandboxed: bool = False


@dataclass(frozen=True)
class InternalReference:
    """Pointer into the owning object's instruction tail (byte offset)."""

    offset: int


@dataclass(frozen=True)
class OffHeapTarget:
    builtin: int


@dataclass(eq=False)
class BackingStore:
    data: bytes = b""

    def __repr__(self) -> str:
        return f"<BackingStore {len(self.data)}B>"


@dataclass(frozen=True)
class EmbedderField:
    payload: bytes


@dataclass(frozen=True)
class UnresolvedSlot:
    reason: str
    ref_id: int | None = None


UNFILLED = UnresolvedSlot("unfilled")
DEFERRED_CONTENT = UnresolvedSlot("deferred")


@dataclass(eq=False, repr=False)
class HeapObject:
    space: int = SnapshotSpace.OLD
    map: "HeapObject | None" = None
    slots: list = field(default_factory=list)
    instructions: bytes = b""
    alignment: Alignment = Alignment.WORD_ALIGNED
    label: str | None = None
    address: tuple[int, int] | None = None

    def instruction_words(self) -> int:
        return -(-len(self.instructions) // TAGGED_SIZE)

    def size_in_tagged(self) -> int:
        return 1 + len(self.slots) + self.instruction_words()

    def is_meta_map(self) -> bool:
        return self.map is self

    def slot(self, index: int):
        value = self.slots[index]
        if isinstance(value, UnresolvedSlot):
            raise UnresolvedForwardReferenceError(
                f"read of {value.reason} slot {index} before resolution",
                pending=() if value.ref_id is None else (value.ref_id,),
            )
        return value

    def __repr__(self) -> str:
        name = self.label or hex(id(self))
        space = SnapshotSpace(self.space).name if self.space < NUMBER_OF_SPACES else "ANY_OLD"
        return f"<HeapObject {name} space={space} slots={len(self.slots)}>"


def make_meta_map(label: str = "meta_map") -> HeapObject:
    meta = HeapObject(space=SnapshotSpace.MAP, label=label)
    meta.map = meta
    return meta


def make_map(meta_map: HeapObject, *slots, label: str | None = None) -> HeapObject:
    return HeapObject(space=SnapshotSpace.MAP, map=meta_map, slots=list(slots), label=label)


def is_unresolved(value) -> bool:
    return isinstance(value, UnresolvedSlot)


__all__ = [
    "SMI_MIN",
    "SMI_MAX",
    "Smi",
    "WeakRef",
    "CLEARED_WEAK",
    "ExternalPointer",
    "ApiPointer",
    "InternalReference",
    "OffHeapTarget",
    "BackingStore",
    "EmbedderField",
    "UnresolvedSlot",
    "UNFILLED",
    "DEFERRED_CONTENT",
    "HeapObject",
    "make_meta_map",
    "make_map",
    "is_unresolved",
]
