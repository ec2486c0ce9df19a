from __future__ import annotations

from typing import ContextManager, Iterable, Protocol, runtime_checkable


@runtime_checkable
class RootVisitor(Protocol):
    """Capability shared by both directions: visit a range of root slots."""

    def visit_root_pointers(self, tag, slots: list, start: int, end: int) -> None:
        ...

    def synchronize(self, tag) -> None:
        ...


@runtime_checkable
class AllocationCapability(Protocol):
    """Object placement consumed by the deserializer.

    Allocation is two-phase: `reserve` when an object header is read,
    `allocate` once its map is available.
    """

    def reserve(self, space: int, size: int):
        ...

    def allocate(self, reservation, map_obj):
        ...

    def allocate_meta_map(self, reservation):
        ...

    def move_to_next_chunk(self, space: int) -> None:
        ...

    def release(self, objects: Iterable) -> None:
        ...

    def placement_pinned(self) -> ContextManager:
        ...


@runtime_checkable
class EmbedderFieldsCallback(Protocol):
    def __call__(self, holder, index: int, payload: bytes):
        ...


__all__ = [
    "RootVisitor",
    "AllocationCapability",
    "EmbedderFieldsCallback",
]
