import jax.numpy as jnp
import numpy as np
import pytest

from snap_core.errors import BytecodeTableError, OutOfRangeParameterError, UnknownBytecodeError
from snap_format import bytecodes as bc
from snap_format.bytecodes import BytecodeKind
from snap_format.table import (
    BYTECODE_TABLE,
    classify_bytecodes,
    decode_bytecode,
    is_reserved,
    verify_partition,
)

pytestmark = pytest.mark.format

RESERVED_BYTES = (
    [0x06, 0x07, 0x0E, 0x0F]
    + list(range(0x2B, 0x40))
    + list(range(0x98, 0x100))
)


def test_table_partitions_every_byte():
    verify_partition()
    kinds = np.asarray(BYTECODE_TABLE.kind)
    assert kinds.shape == (256,)
    assert set(np.nonzero(kinds == int(BytecodeKind.RESERVED))[0].tolist()) == set(
        RESERVED_BYTES
    )


@pytest.mark.parametrize("code", RESERVED_BYTES)
def test_reserved_bytes_are_fatal(code):
    assert is_reserved(code)
    with pytest.raises(UnknownBytecodeError, match=f"0x{code:02x} at 17"):
        decode_bytecode(code, position=17)


@pytest.mark.parametrize(
    "code, kind, param",
    [
        (0x00, BytecodeKind.NEW_OBJECT, 0),
        (0x05, BytecodeKind.NEW_OBJECT, 5),
        (0x08, BytecodeKind.BACKREF, 0),
        (0x0D, BytecodeKind.BACKREF, 5),
        (0x10, BytecodeKind.STARTUP_OBJECT_CACHE, -1),
        (0x14, BytecodeKind.NOP, -1),
        (0x17, BytecodeKind.ALIGNMENT_PREFIX, 1),
        (0x19, BytecodeKind.ALIGNMENT_PREFIX, 3),
        (0x1A, BytecodeKind.SYNCHRONIZE, -1),
        (0x2A, BytecodeKind.NEW_META_MAP, -1),
        (0x40, BytecodeKind.ROOT_ARRAY_CONSTANTS, 0),
        (0x5F, BytecodeKind.ROOT_ARRAY_CONSTANTS, 31),
        (0x60, BytecodeKind.FIXED_RAW_DATA, 1),
        (0x7F, BytecodeKind.FIXED_RAW_DATA, 32),
        (0x80, BytecodeKind.FIXED_REPEAT, 2),
        (0x8F, BytecodeKind.FIXED_REPEAT, 17),
        (0x90, BytecodeKind.HOT_OBJECT, 0),
        (0x97, BytecodeKind.HOT_OBJECT, 7),
    ],
)
def test_decode_recovers_kind_and_param(code, kind, param):
    decoded = decode_bytecode(code)
    assert decoded.kind == kind
    assert decoded.param == param


def test_single_purpose_codes_are_distinct():
    assert len(set(bc.SINGLE_PURPOSE)) == len(bc.SINGLE_PURPOSE)
    for code, kind in bc.SINGLE_PURPOSE.items():
        assert decode_bytecode(code).kind == kind


def test_space_merged_bytecodes():
    assert bc.bytecode_with_space(bc.OP_NEW_OBJECT, 2) == 0x02
    assert bc.bytecode_with_space(bc.OP_BACKREF, 4) == 0x0C
    with pytest.raises(OutOfRangeParameterError):
        bc.bytecode_with_space(bc.OP_NEW_OBJECT, 6)
    with pytest.raises(BytecodeTableError):
        bc.bytecode_with_space(bc.OP_NOP, 0)


def test_param_helpers_round_trip_and_reject():
    for slot in range(bc.HOT_OBJECT_COUNT):
        code = bc.hot_object_bytecode(slot)
        assert bc.decode_with_param(bc.OP_HOT_OBJECT, 0, 8, code, name="hot") == slot
    assert bc.root_constant_bytecode(31) == 0x5F
    assert bc.alignment_prefix_bytecode(2) == 0x18
    with pytest.raises(OutOfRangeParameterError):
        bc.hot_object_bytecode(8)
    with pytest.raises(OutOfRangeParameterError):
        bc.root_constant_bytecode(32)
    with pytest.raises(OutOfRangeParameterError):
        bc.alignment_prefix_bytecode(0)
    with pytest.raises(OutOfRangeParameterError):
        bc.decode_with_param(bc.OP_HOT_OBJECT, 0, 8, 0x98, name="hot")


def test_classify_matches_host_decode():
    kinds, params = classify_bytecodes(jnp.arange(256, dtype=jnp.int32))
    kinds = np.asarray(kinds)
    params = np.asarray(params)
    for code in range(256):
        if code in RESERVED_BYTES:
            assert kinds[code] == int(BytecodeKind.RESERVED)
            continue
        decoded = decode_bytecode(code)
        assert kinds[code] == int(decoded.kind)
        assert params[code] == decoded.param
