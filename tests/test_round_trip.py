import pytest

import snapshot_vm as sv
from tests import harness

pytestmark = pytest.mark.codec

OLD = sv.SnapshotSpace.OLD


def test_minimal_object_exact_bytes():
    meta, plain = harness.make_maps()
    a = harness.obj(plain, label="a")
    data = harness.encode(harness.root_set(a))
    assert data.payload == bytes.fromhex("020404042a041a1a") + b"\x14" * 8
    assert data.reservations == ((0,), (0,), (1,), (0,), (2,), ())
    assert data.root_shape == ((int(sv.SyncTag.STRONG_ROOT_LIST), 1),)
    restored, deserializer = harness.decode(data)
    (a2,) = restored.root_list()
    assert a2.map.map is a2.map.map.map
    assert a2.space == OLD
    assert len(deserializer.allocated) == 3


def test_unpadded_stream_has_no_nops():
    _, plain = harness.make_maps()
    data = harness.encode(harness.root_set(harness.obj(plain)), pad=False)
    assert data.payload == bytes.fromhex("020404042a041a1a")


def test_second_reference_uses_hot_slot():
    _, plain = harness.make_maps()
    b = harness.obj(plain, label="b")
    a = harness.obj(plain, b, b, label="a")
    data = harness.encode(harness.root_set(a), pad=False)
    # meta=hot0, plain=hot1, a=hot2, b=hot3
    assert data.payload == bytes.fromhex("020c04042a04020491931a1a")
    restored, _ = harness.decode(data)
    (a2,) = restored.root_list()
    assert a2.slots[0] is a2.slots[1]
    assert a2.slots[0].map is a2.map


def test_repeat_of_addressable_object():
    _, plain = harness.make_maps()
    b = harness.obj(plain, label="b")
    a = harness.obj(plain, b, b, b, label="a")
    data = harness.encode(harness.root_set(b, a), pad=False)
    assert data.payload == bytes.fromhex("020404042a04" "02109181921a1a")
    restored, _ = harness.decode(data)
    b2, a2 = restored.root_list()
    assert a2.slots == [b2, b2, b2]


def test_round_trip_preserves_sharing():
    meta, plain = harness.make_maps()
    shared = harness.obj(plain, sv.Smi(7), label="shared")
    left = harness.obj(plain, shared, sv.Smi(-3), label="left")
    right = harness.obj(plain, sv.Smi(2**40), shared, label="right")
    top = harness.obj(plain, left, right, shared, sv.WeakRef(left), sv.CLEARED_WEAK)
    rs = harness.root_set(top, sv.Smi(11), shared)
    restored, _, _ = harness.round_trip(rs)
    mapping = harness.assert_roots_isomorphic(rs, restored)
    top2, smi, shared2 = restored.root_list()
    assert smi == sv.Smi(11)
    assert mapping[id(shared)] is shared2
    assert top2.slots[0].slots[0] is shared2
    assert top2.slots[3].target is top2.slots[0]
    assert top2.slots[4] is sv.CLEARED_WEAK


def test_three_object_cycle():
    _, plain = harness.make_maps()
    a = harness.obj(plain, None, label="A")
    b = harness.obj(plain, None, label="B")
    c = harness.obj(plain, a, label="C")
    a.slots[0] = b
    b.slots[0] = c
    tables = sv.SnapshotTables(attached_references=(plain,))
    restored, deserializer, _ = harness.round_trip(harness.root_set(a), tables=tables)
    (a2,) = restored.root_list()
    b2 = a2.slots[0]
    c2 = b2.slots[0]
    assert c2.slots[0] is a2
    assert len(deserializer.allocated) == 3
    assert deserializer.heap.object_count() == 3
    assert a2.map is plain


def test_backreference_after_hot_eviction():
    _, plain = harness.make_maps()
    x = harness.obj(plain, label="x")
    fillers = [harness.obj(plain, label=f"f{i}") for i in range(9)]
    holder = harness.obj(plain, x, *fillers, x, label="holder")
    data = harness.encode(harness.root_set(holder), pad=False)
    # holder is OLD ordinal 0, x is OLD ordinal 1.
    assert bytes([0x0A, 1 << 2]) in data.payload
    restored, _ = harness.decode(data)
    (holder2,) = restored.root_list()
    assert holder2.slots[0] is holder2.slots[-1]
    assert len({id(s) for s in holder2.slots}) == 10


def test_root_array_references():
    _, plain = harness.make_maps()
    a = harness.obj(plain, label="a")
    fillers = [harness.obj(plain) for _ in range(8)]
    c = harness.obj(plain, *fillers, a, label="c")
    data = harness.encode(harness.root_set(a, c), pad=False)
    assert data.payload.endswith(bytes([0x40, 0x1A, 0x1A]))
    restored, _ = harness.decode(data)
    a2, c2 = restored.root_list()
    assert c2.slots[-1] is a2

    smis = [sv.Smi(i) for i in range(32)]
    c = harness.obj(plain, *fillers, a, label="c")
    data = harness.encode(harness.root_set(*smis, a, c), pad=False)
    assert data.payload.endswith(bytes([0x11, 32 << 2, 0x1A, 0x1A]))
    restored, _ = harness.decode(data)
    roots = restored.root_list()
    assert roots[:32] == smis
    assert roots[33].slots[-1] is roots[32]


@pytest.mark.parametrize(
    "count, head",
    [(1, bytes([0x60])), (32, bytes([0x7F])), (33, bytes([0x1F, 0x21, 0x04]))],
)
def test_smi_runs_pick_fixed_or_variable_raw_data(count, head):
    _, plain = harness.make_maps()
    smis = [sv.Smi(i + 1) for i in range(count)]
    a = harness.obj(plain, *smis)
    data = harness.encode(harness.root_set(a), pad=False)
    # body starts after the a header, plain map and meta map bytes.
    body = data.payload[6:]
    assert body.startswith(head)
    restored, _ = harness.decode(data)
    assert restored.root_list()[0].slots == smis


@pytest.mark.parametrize(
    "count, head",
    [(2, bytes([0x80])), (17, bytes([0x8F])), (18, bytes([0x1B, 0x00]))],
)
def test_repeat_counts_pick_fixed_or_variable(count, head):
    _, plain = harness.make_maps()
    b = harness.obj(plain, label="b")
    a = harness.obj(plain, *([b] * count), label="a")
    data = harness.encode(harness.root_set(b, a), pad=False)
    assert head + bytes([0x92]) in data.payload
    restored, _ = harness.decode(data)
    b2, a2 = restored.root_list()
    assert a2.slots == [b2] * count


def test_alignment_and_any_old_space():
    _, plain = harness.make_maps()
    aligned = harness.obj(plain, alignment=sv.Alignment.DOUBLE_ALIGNED, label="aligned")
    any_old = harness.obj(plain, space=sv.ANY_OLD_SPACE, label="any_old")
    data = harness.encode(harness.root_set(aligned, any_old), pad=False)
    assert data.payload[:2] == bytes([0x17, 0x02])
    restored, _ = harness.decode(data)
    aligned2, any_old2 = restored.root_list()
    assert aligned2.alignment == sv.Alignment.DOUBLE_ALIGNED
    assert any_old2.space == OLD


def test_code_object_with_internal_reference():
    _, plain = harness.make_maps()
    instructions = bytes(range(9))
    code = harness.obj(
        plain,
        sv.InternalReference(4),
        space=sv.SnapshotSpace.CODE,
        instructions=instructions,
    )
    restored, _, data = harness.round_trip(harness.root_set(code))
    (code2,) = restored.root_list()
    assert code2.instructions == instructions
    assert code2.slots == [sv.InternalReference(4)]
    assert code2.size_in_tagged() == 4
    assert data.reservations[sv.SnapshotSpace.CODE] == (4,)


def test_large_object_space_reservation():
    _, plain = harness.make_maps()
    big = harness.obj(plain, *[sv.Smi(0)] * 40, space=sv.SnapshotSpace.LARGE_OBJECT)
    restored, _, data = harness.round_trip(harness.root_set(big))
    assert data.reservations[sv.SnapshotSpace.LARGE_OBJECT] == (41,)
    assert restored.root_list()[0].address == (-1, 0)


def test_multiple_sections_round_trip():
    _, plain = harness.make_maps()
    a = harness.obj(plain, label="a")
    rs = sv.RootSet()
    rs.add(sv.SyncTag.STRONG_ROOT_LIST, [a])
    rs.add(sv.SyncTag.SMI_ROOT_LIST, [sv.Smi(1), sv.Smi(2)])
    rs.add(sv.SyncTag.HANDLE_SCOPE, [a])
    restored, _, data = harness.round_trip(rs)
    assert len(harness.sync_positions(data.payload)) == 4
    roots = restored.root_list()
    assert roots[0] is roots[3]
    assert roots[1:3] == [sv.Smi(1), sv.Smi(2)]


def test_sessions_are_single_use():
    _, plain = harness.make_maps()
    serializer = sv.Serializer()
    data = serializer.serialize(harness.root_set(harness.obj(plain)))
    with pytest.raises(RuntimeError, match="single-use"):
        serializer.serialize(harness.root_set())
    deserializer = sv.Deserializer(data)
    deserializer.deserialize()
    with pytest.raises(RuntimeError, match="single-use"):
        deserializer.deserialize()


def test_facade_round_trip_uses_reserved_heap():
    _, plain = harness.make_maps()
    rs = harness.root_set(harness.obj(plain, sv.Smi(1)))
    restored, heap, data = sv.round_trip(rs)
    assert heap.chunk_usage()[OLD] == data.reservations[OLD]
    assert not heap.pinned
    harness.assert_roots_isomorphic(rs, restored)
