from __future__ import annotations

from dataclasses import dataclass

from snap_core.domains import SnapshotSpace
from snap_core.errors import SnapshotCorruptError
from snap_heap.objects import HeapObject
from snap_heap.roots import RootSet, iterate_roots
from snap_refs.hot import HotObjectsList

_NON_DEFERRABLE_SPACES = (SnapshotSpace.MAP, SnapshotSpace.CODE)


@dataclass(frozen=True)
class SnapshotData:
    """Serializer output: payload plus per-space chunk reservations."""

    payload: bytes
    reservations: tuple[tuple[int, ...], ...]
    root_shape: tuple[tuple[int, int], ...] = ()

    def __len__(self) -> int:
        return len(self.payload)


class SerializerDeserializer:
    """State and entry points shared by both directions of one session."""

    def __init__(self):
        self.hot_objects = HotObjectsList()

    @staticmethod
    def iterate(root_set: RootSet, visitor) -> None:
        iterate_roots(root_set, visitor)


def can_be_deferred(obj: HeapObject) -> bool:
    # Maps must be complete before anything uses them; code carries a raw tail.
    # An empty body has no slot for the deferred marker to occupy.
    if obj.space in _NON_DEFERRABLE_SPACES or not obj.slots:
        return False
    return not obj.is_meta_map() and not obj.instructions


class SlotCursor:
    """Sequential writer over a slot range of an object body or root section."""

    __slots__ = ("slots", "index", "end", "holder", "fresh")

    def __init__(self, slots: list, start: int, end: int, *, holder=None, fresh=False):
        self.slots = slots
        self.index = start
        self.end = end
        self.holder = holder
        # fresh: body of an object allocated just now (resolutions/deferral allowed at 0)
        self.fresh = fresh

    @property
    def remaining(self) -> int:
        return self.end - self.index

    def full(self) -> bool:
        return self.index >= self.end

    def at_header(self) -> bool:
        return self.fresh and self.index == 0

    def reserve(self, count: int, *, position: int | None = None) -> None:
        if count > self.remaining:
            raise SnapshotCorruptError(
                f"{count} slot(s) written with {self.remaining} remaining",
                position=position,
            )

    def write(self, value, *, position: int | None = None) -> None:
        self.reserve(1, position=position)
        self.slots[self.index] = value
        self.index += 1

    def skip(self, *, position: int | None = None) -> int:
        self.reserve(1, position=position)
        index = self.index
        self.index += 1
        return index

    def finish(self) -> None:
        self.index = self.end


__all__ = [
    "SnapshotData",
    "SerializerDeserializer",
    "can_be_deferred",
    "SlotCursor",
]
