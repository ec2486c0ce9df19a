"""Shared domain types for the snapshot codec.

Spaces and alignments are opaque enumerations owned by the allocator; the
codec only uses them to select addressing counters and opcode offsets.
"""

from __future__ import annotations

from enum import IntEnum


class SnapshotSpace(IntEnum):
    READ_ONLY_HEAP = 0
    NEW = 1
    OLD = 2
    CODE = 3
    MAP = 4
    LARGE_OBJECT = 5


NUMBER_OF_SPACES = len(SnapshotSpace)
# Sentinel grouping "any other old-generation space"; addresses through OLD.
ANY_OLD_SPACE = NUMBER_OF_SPACES
SPACE_MASK = 7

if NUMBER_OF_SPACES > SPACE_MASK + 1:
    raise ValueError("space ids do not fit the space mask")


def addressing_space(space: int) -> SnapshotSpace:
    """Map a space (or the ANY_OLD_SPACE sentinel) to its addressing counter."""
    if space == ANY_OLD_SPACE:
        return SnapshotSpace.OLD
    return SnapshotSpace(space)


class Alignment(IntEnum):
    WORD_ALIGNED = 0
    DOUBLE_ALIGNED = 1
    DOUBLE_UNALIGNED = 2
    CODE_ALIGNED = 3


TAGGED_SIZE = 8

__all__ = [
    "SnapshotSpace",
    "NUMBER_OF_SPACES",
    "ANY_OLD_SPACE",
    "SPACE_MASK",
    "addressing_space",
    "Alignment",
    "TAGGED_SIZE",
]
