"""Reference heap implementing the allocation capability.

Objects are placed per space into chunks. When built from snapshot
reservations, every chunk has a fixed capacity (in tagged words) and an
allocation that overflows the current chunk is a corrupt snapshot. Placement
can be pinned; relocation (`compact`) is refused while any pin is held.
"""

from __future__ import annotations

from typing import Iterable, NamedTuple, Sequence

from snap_core.domains import NUMBER_OF_SPACES, SnapshotSpace, addressing_space
from snap_core.errors import HeapRelocationError, SnapshotCorruptError
from snap_heap.objects import UNFILLED, HeapObject

LARGE_OBJECT_CHUNK = -1


class _PlacementPin:
    """Pins heap placement for a `with` block; exceptions propagate unmodified."""

    __slots__ = ("_heap",)

    def __init__(self, heap: "Heap"):
        self._heap = heap

    def __enter__(self) -> "Heap":
        self._heap._pins += 1
        return self._heap

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._heap._pins -= 1
        return False


class Reservation(NamedTuple):
    space: int
    size: int
    chunk: int
    offset: int


class Heap:
    def __init__(self, reservations: Sequence[Sequence[int]] | None = None):
        if reservations is not None and len(reservations) != NUMBER_OF_SPACES:
            raise SnapshotCorruptError(
                f"expected {NUMBER_OF_SPACES} reservation lists, got {len(reservations)}"
            )
        self._reservations = (
            None if reservations is None else [list(r) for r in reservations]
        )
        self._objects: list[list[HeapObject]] = [[] for _ in range(NUMBER_OF_SPACES)]
        self._chunk = [0] * NUMBER_OF_SPACES
        self._used: list[list[int]] = [[0] for _ in range(NUMBER_OF_SPACES)]
        self._pins = 0

    # --- allocation capability ---

    def reserve(self, space: int, size: int) -> Reservation:
        s = addressing_space(space)
        if size <= 0:
            raise SnapshotCorruptError(f"object size {size} in {s.name}")
        if s == SnapshotSpace.LARGE_OBJECT:
            return Reservation(int(s), size, LARGE_OBJECT_CHUNK, 0)
        chunk = self._chunk[s]
        offset = self._used[s][chunk]
        if self._reservations is not None:
            caps = self._reservations[s]
            if chunk >= len(caps) or offset + size > caps[chunk]:
                raise SnapshotCorruptError(
                    f"allocation of {size} words overflows {s.name} chunk {chunk}"
                )
        self._used[s][chunk] = offset + size
        return Reservation(int(s), size, chunk, offset)

    def allocate(self, reservation: Reservation, map_obj: HeapObject | None) -> HeapObject:
        obj = HeapObject(
            space=reservation.space,
            map=map_obj,
            slots=[UNFILLED] * (reservation.size - 1),
            address=(reservation.chunk, reservation.offset),
        )
        self._objects[reservation.space].append(obj)
        return obj

    def allocate_meta_map(self, reservation: Reservation) -> HeapObject:
        obj = self.allocate(reservation, None)
        obj.map = obj
        return obj

    def move_to_next_chunk(self, space: int) -> None:
        s = addressing_space(space)
        if s == SnapshotSpace.LARGE_OBJECT:
            raise SnapshotCorruptError("large object space has no chunks")
        self._chunk[s] += 1
        self._used[s].append(0)
        if self._reservations is not None and self._chunk[s] >= len(self._reservations[s]):
            raise SnapshotCorruptError(f"no reserved chunk {self._chunk[s]} in {s.name}")

    def release(self, objects: Iterable[HeapObject]) -> None:
        dead = {id(obj) for obj in objects}
        if not dead:
            return
        for s in range(NUMBER_OF_SPACES):
            self._objects[s] = [o for o in self._objects[s] if id(o) not in dead]

    def placement_pinned(self) -> _PlacementPin:
        return _PlacementPin(self)

    # --- inspection / maintenance ---

    @property
    def pinned(self) -> bool:
        return self._pins > 0

    def objects(self, space: int | None = None) -> list[HeapObject]:
        if space is not None:
            return list(self._objects[addressing_space(space)])
        return [o for per_space in self._objects for o in per_space]

    def object_count(self) -> int:
        return sum(len(per_space) for per_space in self._objects)

    def chunk_usage(self) -> tuple[tuple[int, ...], ...]:
        return tuple(tuple(used) for used in self._used)

    def compact(self) -> None:
        """Relocate every object into one dense chunk per space."""
        if self._pins:
            raise HeapRelocationError(pins=self._pins)
        self._reservations = None
        for s in range(NUMBER_OF_SPACES):
            offset = 0
            for obj in self._objects[s]:
                obj.address = (0, offset)
                offset += obj.size_in_tagged()
            self._chunk[s] = 0
            self._used[s] = [offset]


__all__ = ["LARGE_OBJECT_CHUNK", "Reservation", "Heap"]
