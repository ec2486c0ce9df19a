from collections import deque

import pytest

import snapshot_vm as sv
from snap_core import config
from snap_metrics import metrics
from snap_metrics.metrics import bytecode_histogram, codec_metrics_get, codec_metrics_reset
from tests import harness


def _shared_child_graph():
    _, plain = harness.make_maps()
    b = harness.obj(plain, label="b")
    return harness.root_set(harness.obj(plain, b, b, label="a"))


@pytest.mark.codec
def test_counters_track_both_directions(codec_metrics):
    data = harness.encode(_shared_child_graph())
    got = codec_metrics_get()
    assert got["serialized_objects"] == 4
    assert got["hot_hits"] == 2
    assert got["sync_markers"] == 2
    assert got["bytecodes"] == 0

    codec_metrics_reset()
    harness.decode(data)
    got = codec_metrics_get()
    assert got["deserialized_objects"] == 4
    assert got["hot_hits"] == 2
    assert got["bytecodes"] == 8
    assert bytecode_histogram() == {
        "NEW_OBJECT": 3,
        "NEW_META_MAP": 1,
        "HOT_OBJECT": 2,
        "SYNCHRONIZE": 2,
    }


@pytest.mark.codec
def test_bytecode_trace_keeps_only_recent_codes(codec_metrics, monkeypatch):
    assert metrics._bytecodes.maxlen == metrics.BYTECODE_TRACE_LIMIT
    monkeypatch.setattr(metrics, "_bytecodes", deque(maxlen=4))
    harness.decode(harness.encode(_shared_child_graph()))
    assert codec_metrics_get()["bytecodes"] == 8
    assert bytecode_histogram() == {"HOT_OBJECT": 2, "SYNCHRONIZE": 2}


@pytest.mark.codec
def test_forward_and_deferred_counters(codec_metrics):
    meta = sv.make_meta_map()
    m = sv.make_map(meta, None)
    a = harness.obj(m, label="a")
    m.slots[0] = a
    harness.encode(harness.root_set(a))
    assert codec_metrics_get()["forward_refs"] == 1

    codec_metrics_reset()
    _, plain = harness.make_maps()
    leaf = harness.obj(plain)
    top = harness.obj(plain, harness.obj(plain, leaf))
    harness.encode(harness.root_set(top), max_depth=2)
    assert codec_metrics_get()["deferred_objects"] == 1


def test_counters_disabled_by_default(monkeypatch):
    monkeypatch.delenv("SNAPSHOT_METRICS", raising=False)
    harness.round_trip(_shared_child_graph())
    assert set(codec_metrics_get().values()) == {0}


@pytest.mark.format
def test_histogram_of_explicit_codes():
    assert bytecode_histogram([0x00, 0x05, 0x90, 0x06]) == {
        "NEW_OBJECT": 2,
        "HOT_OBJECT": 1,
        "RESERVED": 1,
    }
    assert bytecode_histogram([]) == {}


def test_serializer_config_defaults_and_overrides(monkeypatch):
    monkeypatch.delenv("SNAPSHOT_CHUNK_SIZE", raising=False)
    monkeypatch.delenv("SNAPSHOT_MAX_DEPTH", raising=False)
    resolved = config.resolve_serializer_config()
    assert resolved.chunk_size == config.DEFAULT_CHUNK_SIZE == 4096
    assert resolved.max_depth == config.DEFAULT_MAX_DEPTH == 32
    assert resolved.pad
    monkeypatch.setenv("SNAPSHOT_CHUNK_SIZE", " 16 ")
    assert config.resolve_serializer_config().chunk_size == 16
    assert config.resolve_serializer_config(sv.SerializerConfig(chunk_size=8)).chunk_size == 8


@pytest.mark.parametrize("value", ["abc", "0", "-4", "1.5"])
def test_bad_env_values_are_rejected(monkeypatch, value):
    monkeypatch.setenv("SNAPSHOT_CHUNK_SIZE", value)
    with pytest.raises(sv.SnapshotConfigError, match="SNAPSHOT_CHUNK_SIZE"):
        sv.Serializer()
    with pytest.raises(ValueError):
        config.resolve_serializer_config()


def test_bad_explicit_values_are_rejected():
    with pytest.raises(sv.SnapshotConfigError, match="max_depth"):
        config.resolve_serializer_config(sv.SerializerConfig(max_depth=0))
    with pytest.raises(sv.SnapshotConfigError, match="chunk_size"):
        config.resolve_serializer_config(sv.SerializerConfig(chunk_size=-1))
    with pytest.raises(sv.SnapshotConfigError, match="max_object_size"):
        config.resolve_deserializer_config(sv.DeserializerConfig(max_object_size=0))


def test_verify_follows_guard_switches(monkeypatch):
    assert config.resolve_deserializer_config().verify
    monkeypatch.delenv("SNAPSHOT_MAX_OBJECT_SIZE", raising=False)
    assert config.resolve_deserializer_config().max_object_size == 1 << 20
    monkeypatch.delenv("SNAPSHOT_TEST_GUARDS", raising=False)
    monkeypatch.delenv("SNAPSHOT_GUARDS", raising=False)
    assert not config.resolve_deserializer_config().verify
    monkeypatch.setenv("SNAPSHOT_GUARDS", "on")
    assert config.guards_enabled()
    assert not config.resolve_deserializer_config(sv.DeserializerConfig(verify=False)).verify
