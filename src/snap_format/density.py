"""Raw-run and repeat-count density helpers.

Pure, reversible mappings between small bounded integers and opcode bytes.
Out-of-range inputs are encoder programming errors and fail fast. Each helper
accepts a Python int or a jnp array (vectorized, for stream statistics).
"""

from __future__ import annotations

import jax.numpy as jnp

from snap_core.errors import OutOfRangeParameterError
from snap_core.host import host_int
from snap_format.bytecodes import (
    FIXED_RAW_DATA_COUNT,
    FIXED_REPEAT_COUNT,
    OP_FIXED_RAW_DATA,
    OP_FIXED_REPEAT,
)

FIRST_ENCODABLE_FIXED_RAW_DATA_SIZE = 1
LAST_ENCODABLE_FIXED_RAW_DATA_SIZE = (
    FIRST_ENCODABLE_FIXED_RAW_DATA_SIZE + FIXED_RAW_DATA_COUNT - 1
)

FIRST_ENCODABLE_REPEAT_COUNT = 2
LAST_ENCODABLE_FIXED_REPEAT_COUNT = FIRST_ENCODABLE_REPEAT_COUNT + FIXED_REPEAT_COUNT - 1
FIRST_ENCODABLE_VARIABLE_REPEAT_COUNT = LAST_ENCODABLE_FIXED_REPEAT_COUNT + 1


def _check_range(value, lo: int, hi: int | None, name: str) -> None:
    if isinstance(value, int):
        ok = value >= lo and (hi is None or value <= hi)
        shown = value
    else:
        arr = jnp.asarray(value)
        ok_arr = arr >= lo
        if hi is not None:
            ok_arr = ok_arr & (arr <= hi)
        ok = bool(host_int(jnp.all(ok_arr)))
        shown = "array"
    if not ok:
        raise OutOfRangeParameterError(name=name, value=shown, lo=lo, hi=hi)


def encode_fixed_raw_data_size(size_in_tagged):
    _check_range(
        size_in_tagged,
        FIRST_ENCODABLE_FIXED_RAW_DATA_SIZE,
        LAST_ENCODABLE_FIXED_RAW_DATA_SIZE,
        "raw_data_size",
    )
    return OP_FIXED_RAW_DATA + size_in_tagged - FIRST_ENCODABLE_FIXED_RAW_DATA_SIZE


def decode_fixed_raw_data_size(bytecode):
    _check_range(
        bytecode,
        OP_FIXED_RAW_DATA,
        OP_FIXED_RAW_DATA + FIXED_RAW_DATA_COUNT - 1,
        "fixed_raw_data_bytecode",
    )
    return bytecode - OP_FIXED_RAW_DATA + FIRST_ENCODABLE_FIXED_RAW_DATA_SIZE


def encode_fixed_repeat_count(repeat_count):
    _check_range(
        repeat_count,
        FIRST_ENCODABLE_REPEAT_COUNT,
        LAST_ENCODABLE_FIXED_REPEAT_COUNT,
        "repeat_count",
    )
    return OP_FIXED_REPEAT + repeat_count - FIRST_ENCODABLE_REPEAT_COUNT


def decode_fixed_repeat_count(bytecode):
    _check_range(
        bytecode,
        OP_FIXED_REPEAT,
        OP_FIXED_REPEAT + FIXED_REPEAT_COUNT - 1,
        "fixed_repeat_bytecode",
    )
    return bytecode - OP_FIXED_REPEAT + FIRST_ENCODABLE_REPEAT_COUNT


def encode_variable_repeat_count(repeat_count):
    # Stored value starts at zero so the varint space is not wasted.
    _check_range(repeat_count, FIRST_ENCODABLE_VARIABLE_REPEAT_COUNT, None, "repeat_count")
    return repeat_count - FIRST_ENCODABLE_VARIABLE_REPEAT_COUNT


def decode_variable_repeat_count(value):
    _check_range(value, 0, None, "variable_repeat_value")
    return value + FIRST_ENCODABLE_VARIABLE_REPEAT_COUNT


def is_fixed_raw_data_size(size_in_tagged: int) -> bool:
    return (
        FIRST_ENCODABLE_FIXED_RAW_DATA_SIZE
        <= size_in_tagged
        <= LAST_ENCODABLE_FIXED_RAW_DATA_SIZE
    )


def is_fixed_repeat_count(repeat_count: int) -> bool:
    return FIRST_ENCODABLE_REPEAT_COUNT <= repeat_count <= LAST_ENCODABLE_FIXED_REPEAT_COUNT


__all__ = [
    "FIRST_ENCODABLE_FIXED_RAW_DATA_SIZE",
    "LAST_ENCODABLE_FIXED_RAW_DATA_SIZE",
    "FIRST_ENCODABLE_REPEAT_COUNT",
    "LAST_ENCODABLE_FIXED_REPEAT_COUNT",
    "FIRST_ENCODABLE_VARIABLE_REPEAT_COUNT",
    "encode_fixed_raw_data_size",
    "decode_fixed_raw_data_size",
    "encode_fixed_repeat_count",
    "decode_fixed_repeat_count",
    "encode_variable_repeat_count",
    "decode_variable_repeat_count",
    "is_fixed_raw_data_size",
    "is_fixed_repeat_count",
]
