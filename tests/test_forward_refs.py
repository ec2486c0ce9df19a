import pytest

import snapshot_vm as sv
from snap_heap.objects import UNFILLED
from tests import harness

pytestmark = pytest.mark.codec

# a -> map m -> meta map, with m.slots == [a]: a is referenced while pending.
BACK_POINTER = bytes.fromhex("0204" "0408" "2a04" "2800" "2900" "1a1a")


def _decode_raw(payload, nroots=1):
    rs = sv.RootSet.from_shape(((int(sv.SyncTag.STRONG_ROOT_LIST), nroots),))
    heap = sv.Heap()
    deserializer = sv.Deserializer(payload, heap=heap)
    return deserializer, heap, rs


def _map_with_back_pointer(weak=False):
    meta = sv.make_meta_map()
    m = sv.make_map(meta, None, label="m")
    a = harness.obj(m, label="a")
    m.slots[0] = sv.WeakRef(a) if weak else a
    return a, m


def test_back_pointer_from_map_uses_forward_reference():
    a, _ = _map_with_back_pointer()
    data = harness.encode(harness.root_set(a), pad=False)
    assert data.payload == BACK_POINTER
    assert data.reservations[sv.SnapshotSpace.MAP] == (3,)
    restored, _ = harness.decode(data)
    (a2,) = restored.root_list()
    assert a2.map.slots[0] is a2


def test_weak_forward_reference():
    a, _ = _map_with_back_pointer(weak=True)
    data = harness.encode(harness.root_set(a), pad=False)
    assert bytes.fromhex("262800") in data.payload
    restored, _ = harness.decode(data)
    (a2,) = restored.root_list()
    assert a2.map.slots[0] == sv.WeakRef(a2)


def test_one_reservation_per_pending_object():
    meta = sv.make_meta_map()
    m = sv.make_map(meta, None, None, label="m")
    a = harness.obj(m, label="a")
    m.slots[:] = [a, a]
    data = harness.encode(harness.root_set(a), pad=False)
    # Two registrations of reservation 0, resolved once.
    assert bytes.fromhex("28002800") in data.payload
    assert data.payload.count(bytes.fromhex("2900")) == 1
    restored, _ = harness.decode(data)
    (a2,) = restored.root_list()
    assert a2.map.slots == [a2, a2]


def test_unresolved_at_end_of_stream_rolls_back():
    payload = BACK_POINTER.replace(bytes.fromhex("2900"), b"")
    deserializer, heap, rs = _decode_raw(payload)
    with pytest.raises(sv.UnresolvedForwardReferenceError, match=r"pending=\[0\]"):
        deserializer.deserialize(rs)
    assert heap.object_count() == 0
    assert rs.root_list() == [UNFILLED]
    assert not heap.pinned


def test_resolution_without_registration():
    payload = bytes.fromhex("0204" "0404" "2a04" "2900" "1a1a")
    deserializer, heap, rs = _decode_raw(payload)
    with pytest.raises(sv.ForwardReferenceResolutionError, match="without a matching"):
        deserializer.deserialize(rs)
    assert heap.object_count() == 0


def test_double_resolution_rejected():
    payload = BACK_POINTER.replace(bytes.fromhex("2900"), bytes.fromhex("29002900"))
    deserializer, _, rs = _decode_raw(payload)
    with pytest.raises(sv.ForwardReferenceResolutionError, match="resolved twice"):
        deserializer.deserialize(rs)


def test_registration_must_use_next_id():
    payload = BACK_POINTER.replace(bytes.fromhex("2800"), bytes.fromhex("2804"))
    deserializer, _, rs = _decode_raw(payload)
    with pytest.raises(sv.ForwardReferenceResolutionError, match="skips ahead"):
        deserializer.deserialize(rs)


def test_registration_outside_an_object_is_corrupt():
    deserializer, _, rs = _decode_raw(bytes.fromhex("2800" "1a1a"))
    with pytest.raises(sv.SnapshotCorruptError, match="root slot"):
        deserializer.deserialize(rs)


def test_map_chain_cycle_is_unencodable():
    m1 = sv.HeapObject(space=sv.SnapshotSpace.MAP, label="m1")
    m2 = sv.HeapObject(space=sv.SnapshotSpace.MAP, map=m1, label="m2")
    m1.map = m2
    a = harness.obj(m1, label="a")
    with pytest.raises(sv.UnencodableGraphError, match="map chain"):
        harness.encode(harness.root_set(a))


def test_meta_map_outside_map_space_is_unencodable():
    meta = sv.HeapObject(space=sv.SnapshotSpace.OLD, label="meta")
    meta.map = meta
    with pytest.raises(sv.UnencodableGraphError, match="map space"):
        harness.encode(harness.root_set(harness.obj(meta)))


def test_object_without_map_is_unencodable():
    with pytest.raises(sv.UnencodableGraphError, match="no map"):
        harness.encode(harness.root_set(sv.HeapObject(label="orphan")))
