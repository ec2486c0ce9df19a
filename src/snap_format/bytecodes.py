"""Snapshot bytecode vocabulary.

One byte per operation. Some ranges embed a bounded parameter in the low
bits (space id, raw run length, repeat count, hot slot, root index).
"""

from __future__ import annotations

from enum import IntEnum

from snap_core.domains import NUMBER_OF_SPACES, SPACE_MASK, Alignment
from snap_core.errors import BytecodeTableError, OutOfRangeParameterError

# --- 0x00..0x0f: space-merged ---
OP_NEW_OBJECT = 0x00  # 0x00..0x05
OP_BACKREF = 0x08  # 0x08..0x0d

# --- 0x10..0x2a: single purpose ---
OP_STARTUP_OBJECT_CACHE = 0x10
OP_ROOT_ARRAY = 0x11
OP_ATTACHED_REFERENCE = 0x12
OP_READ_ONLY_OBJECT_CACHE = 0x13
OP_NOP = 0x14
OP_NEXT_CHUNK = 0x15
OP_DEFERRED = 0x16
OP_ALIGNMENT_PREFIX = 0x17  # 0x17..0x19
# Checkpoint; absence at the expected moment means a build/config mismatch.
OP_SYNCHRONIZE = 0x1A
OP_VARIABLE_REPEAT = 0x1B
OP_OFF_HEAP_BACKING_STORE = 0x1C
OP_EMBEDDER_FIELDS_DATA = 0x1D
OP_VARIABLE_RAW_CODE = 0x1E
OP_VARIABLE_RAW_DATA = 0x1F
OP_API_REFERENCE = 0x20
OP_EXTERNAL_REFERENCE = 0x21
OP_SANDBOXED_API_REFERENCE = 0x22
OP_SANDBOXED_EXTERNAL_REFERENCE = 0x23
OP_INTERNAL_REFERENCE = 0x24
OP_CLEARED_WEAK_REFERENCE = 0x25
OP_WEAK_PREFIX = 0x26
OP_OFF_HEAP_TARGET = 0x27
OP_REGISTER_PENDING_FORWARD_REF = 0x28
OP_RESOLVE_PENDING_FORWARD_REF = 0x29
# The meta map's map field is itself; it cannot be a pending forward ref
# because no allocated object exists yet to hold the registration.
OP_NEW_META_MAP = 0x2A

# --- 0x40..0x9f: parameter ranges ---
OP_ROOT_ARRAY_CONSTANTS = 0x40  # 0x40..0x5f
OP_FIXED_RAW_DATA = 0x60  # 0x60..0x7f
OP_FIXED_REPEAT = 0x80  # 0x80..0x8f
OP_HOT_OBJECT = 0x90  # 0x90..0x97

ROOT_ARRAY_CONSTANTS_COUNT = 0x20
FIXED_RAW_DATA_COUNT = 0x20
FIXED_REPEAT_COUNT = 0x10
HOT_OBJECT_COUNT = 8
ALIGNMENT_PREFIX_COUNT = 3


class BytecodeKind(IntEnum):
    NEW_OBJECT = 0
    BACKREF = 1
    STARTUP_OBJECT_CACHE = 2
    ROOT_ARRAY = 3
    ATTACHED_REFERENCE = 4
    READ_ONLY_OBJECT_CACHE = 5
    NOP = 6
    NEXT_CHUNK = 7
    DEFERRED = 8
    ALIGNMENT_PREFIX = 9
    SYNCHRONIZE = 10
    VARIABLE_REPEAT = 11
    OFF_HEAP_BACKING_STORE = 12
    EMBEDDER_FIELDS_DATA = 13
    VARIABLE_RAW_CODE = 14
    VARIABLE_RAW_DATA = 15
    API_REFERENCE = 16
    EXTERNAL_REFERENCE = 17
    SANDBOXED_API_REFERENCE = 18
    SANDBOXED_EXTERNAL_REFERENCE = 19
    INTERNAL_REFERENCE = 20
    CLEARED_WEAK_REFERENCE = 21
    WEAK_PREFIX = 22
    OFF_HEAP_TARGET = 23
    REGISTER_PENDING_FORWARD_REF = 24
    RESOLVE_PENDING_FORWARD_REF = 25
    NEW_META_MAP = 26
    ROOT_ARRAY_CONSTANTS = 27
    FIXED_RAW_DATA = 28
    FIXED_REPEAT = 29
    HOT_OBJECT = 30
    RESERVED = 31


SINGLE_PURPOSE = {
    OP_STARTUP_OBJECT_CACHE: BytecodeKind.STARTUP_OBJECT_CACHE,
    OP_ROOT_ARRAY: BytecodeKind.ROOT_ARRAY,
    OP_ATTACHED_REFERENCE: BytecodeKind.ATTACHED_REFERENCE,
    OP_READ_ONLY_OBJECT_CACHE: BytecodeKind.READ_ONLY_OBJECT_CACHE,
    OP_NOP: BytecodeKind.NOP,
    OP_NEXT_CHUNK: BytecodeKind.NEXT_CHUNK,
    OP_DEFERRED: BytecodeKind.DEFERRED,
    OP_SYNCHRONIZE: BytecodeKind.SYNCHRONIZE,
    OP_VARIABLE_REPEAT: BytecodeKind.VARIABLE_REPEAT,
    OP_OFF_HEAP_BACKING_STORE: BytecodeKind.OFF_HEAP_BACKING_STORE,
    OP_EMBEDDER_FIELDS_DATA: BytecodeKind.EMBEDDER_FIELDS_DATA,
    OP_VARIABLE_RAW_CODE: BytecodeKind.VARIABLE_RAW_CODE,
    OP_VARIABLE_RAW_DATA: BytecodeKind.VARIABLE_RAW_DATA,
    OP_API_REFERENCE: BytecodeKind.API_REFERENCE,
    OP_EXTERNAL_REFERENCE: BytecodeKind.EXTERNAL_REFERENCE,
    OP_SANDBOXED_API_REFERENCE: BytecodeKind.SANDBOXED_API_REFERENCE,
    OP_SANDBOXED_EXTERNAL_REFERENCE: BytecodeKind.SANDBOXED_EXTERNAL_REFERENCE,
    OP_INTERNAL_REFERENCE: BytecodeKind.INTERNAL_REFERENCE,
    OP_CLEARED_WEAK_REFERENCE: BytecodeKind.CLEARED_WEAK_REFERENCE,
    OP_WEAK_PREFIX: BytecodeKind.WEAK_PREFIX,
    OP_OFF_HEAP_TARGET: BytecodeKind.OFF_HEAP_TARGET,
    OP_REGISTER_PENDING_FORWARD_REF: BytecodeKind.REGISTER_PENDING_FORWARD_REF,
    OP_RESOLVE_PENDING_FORWARD_REF: BytecodeKind.RESOLVE_PENDING_FORWARD_REF,
    OP_NEW_META_MAP: BytecodeKind.NEW_META_MAP,
}

# (kind, base, lo, count): byte = base + (value - lo) for value in [lo, lo+count).
PARAM_RANGES = (
    (BytecodeKind.NEW_OBJECT, OP_NEW_OBJECT, 0, NUMBER_OF_SPACES),
    (BytecodeKind.BACKREF, OP_BACKREF, 0, NUMBER_OF_SPACES),
    (
        BytecodeKind.ALIGNMENT_PREFIX,
        OP_ALIGNMENT_PREFIX,
        int(Alignment.DOUBLE_ALIGNED),
        ALIGNMENT_PREFIX_COUNT,
    ),
    (BytecodeKind.ROOT_ARRAY_CONSTANTS, OP_ROOT_ARRAY_CONSTANTS, 0, ROOT_ARRAY_CONSTANTS_COUNT),
    (BytecodeKind.FIXED_RAW_DATA, OP_FIXED_RAW_DATA, 1, FIXED_RAW_DATA_COUNT),
    (BytecodeKind.FIXED_REPEAT, OP_FIXED_REPEAT, 2, FIXED_REPEAT_COUNT),
    (BytecodeKind.HOT_OBJECT, OP_HOT_OBJECT, 0, HOT_OBJECT_COUNT),
)

SPACE_MERGED = (OP_NEW_OBJECT, OP_BACKREF)

for _base in SPACE_MERGED:
    if _base & SPACE_MASK:
        raise BytecodeTableError(f"space-merged bytecode 0x{_base:02x} has low bits set")


def encode_with_param(base: int, lo: int, count: int, value: int, *, name: str) -> int:
    """Offset-embed `value` in [lo, lo+count) into the range starting at base."""
    value = int(value)
    if not lo <= value < lo + count:
        raise OutOfRangeParameterError(name=name, value=value, lo=lo, hi=lo + count - 1)
    return base + (value - lo)


def decode_with_param(base: int, lo: int, count: int, bytecode: int, *, name: str) -> int:
    bytecode = int(bytecode)
    if not base <= bytecode < base + count:
        raise OutOfRangeParameterError(
            name=name, value=bytecode, lo=base, hi=base + count - 1
        )
    return bytecode - base + lo


def bytecode_with_space(base: int, space: int) -> int:
    if base not in SPACE_MERGED:
        raise BytecodeTableError(f"0x{base:02x} is not a space-merged bytecode")
    return encode_with_param(base, 0, NUMBER_OF_SPACES, space, name="space")


def hot_object_bytecode(slot: int) -> int:
    return encode_with_param(OP_HOT_OBJECT, 0, HOT_OBJECT_COUNT, slot, name="hot_slot")


def root_constant_bytecode(root_index: int) -> int:
    return encode_with_param(
        OP_ROOT_ARRAY_CONSTANTS,
        0,
        ROOT_ARRAY_CONSTANTS_COUNT,
        root_index,
        name="root_index",
    )


def alignment_prefix_bytecode(alignment: Alignment | int) -> int:
    return encode_with_param(
        OP_ALIGNMENT_PREFIX,
        int(Alignment.DOUBLE_ALIGNED),
        ALIGNMENT_PREFIX_COUNT,
        alignment,
        name="alignment",
    )


__all__ = [name for name in dir() if name.startswith("OP_")] + [
    "ROOT_ARRAY_CONSTANTS_COUNT",
    "FIXED_RAW_DATA_COUNT",
    "FIXED_REPEAT_COUNT",
    "HOT_OBJECT_COUNT",
    "ALIGNMENT_PREFIX_COUNT",
    "BytecodeKind",
    "SINGLE_PURPOSE",
    "PARAM_RANGES",
    "SPACE_MERGED",
    "encode_with_param",
    "decode_with_param",
    "bytecode_with_space",
    "hot_object_bytecode",
    "root_constant_bytecode",
    "alignment_prefix_bytecode",
]
