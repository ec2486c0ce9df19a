from __future__ import annotations

from snap_core.errors import SnapshotCorruptError
from snap_format.bytecodes import HOT_OBJECT_COUNT

HOT_OBJECTS_SIZE = HOT_OBJECT_COUNT
_SIZE_MASK = HOT_OBJECTS_SIZE - 1
NOT_FOUND = -1

if HOT_OBJECTS_SIZE & _SIZE_MASK:
    raise ValueError("hot object list size must be a power of two")


class HotObjectsList:
    """Ring of the most recently produced/consumed objects.

    The ring is preallocated, so `add` never allocates. `find` is a linear
    identity scan over all slots.
    """

    __slots__ = ("_ring", "_index")

    def __init__(self):
        self._ring = [None] * HOT_OBJECTS_SIZE
        self._index = 0

    def add(self, obj) -> None:
        self._ring[self._index] = obj
        self._index = (self._index + 1) & _SIZE_MASK

    def get(self, slot: int):
        obj = self._ring[slot]
        if obj is None:
            raise SnapshotCorruptError(f"hot object slot {slot} is empty")
        return obj

    def find(self, obj) -> int:
        for i in range(HOT_OBJECTS_SIZE):
            if self._ring[i] is obj:
                return i
        return NOT_FOUND

    def snapshot(self) -> tuple:
        return tuple(self._ring)


__all__ = ["HOT_OBJECTS_SIZE", "NOT_FOUND", "HotObjectsList"]
