"""Tests for snapshot reconciliation and record parsing."""

from __future__ import annotations

import pytest
from conftest import make_record, wire

from clashboard.core.reconciler import index_snapshot, parse_record, reconcile
from clashboard.types import LedgerEntry


class TestParseRecord:
    def test_wire_names(self):
        r = parse_record(wire("abc", upload=10, download=20))
        assert r.id == "abc"
        assert r.upload_total == 10
        assert r.download_total == 20
        assert r.chains == ("DIRECT",)
        assert r.rule == "Match"
        assert r.metadata["host"] == "abc.example.com"

    def test_total_names_accepted(self):
        r = parse_record({"id": "x", "uploadTotal": 5, "downloadTotal": 7})
        assert (r.upload_total, r.download_total) == (5, 7)

    def test_missing_counters_default_to_zero(self):
        r = parse_record({"id": "x", "upload": "lots", "download": None})
        assert (r.upload_total, r.download_total) == (0, 0)

    def test_bool_counter_is_not_an_int(self):
        r = parse_record({"id": "x", "upload": True})
        assert r.upload_total == 0

    def test_missing_id(self):
        assert parse_record({"upload": 1}) is None

    def test_empty_or_non_string_id(self):
        assert parse_record({"id": ""}) is None
        assert parse_record({"id": 42}) is None
        assert parse_record({"id": None}) is None

    def test_non_mapping(self):
        assert parse_record("not a record") is None
        assert parse_record(None) is None

    def test_garbage_metadata_and_chains(self):
        r = parse_record({"id": "x", "metadata": [1, 2], "chains": "DIRECT"})
        assert r.metadata == {}
        assert r.chains == ()

    def test_metadata_is_read_only(self):
        raw = wire("x")
        r = parse_record(raw)
        with pytest.raises(TypeError):
            r.metadata["host"] = "evil.example.com"
        raw["metadata"]["host"] = "changed.example.com"
        assert r.metadata["host"] == "x.example.com"

    def test_record_and_entry_hashable(self):
        a = parse_record(wire("x", 1, 2))
        b = parse_record(wire("x", 1, 2))
        assert a == b
        assert hash(a) == hash(b)
        assert len({LedgerEntry(record=a), LedgerEntry(record=b)}) == 1
        assert a.to_dict()["metadata"] == wire("x")["metadata"]


class TestIndexSnapshot:
    def test_last_duplicate_wins(self):
        idx = index_snapshot([make_record("a", 1), make_record("a", 2)])
        assert list(idx) == ["a"]
        assert idx["a"].upload_total == 2

    def test_malformed_dropped(self):
        idx = index_snapshot([{"upload": 1}, wire("ok"), {"id": ""}])
        assert list(idx) == ["ok"]


class TestReconcile:
    def test_first_sight_has_zero_speed(self):
        nxt = reconcile({}, [make_record("1", 100, 50)], retain=False)
        e = nxt["1"]
        assert (e.upload_speed, e.download_speed, e.completed) == (0, 0, False)
        assert e.upload_total == 100

    def test_delta_between_consecutive_snapshots(self):
        first = reconcile({}, [make_record("1", 100, 50)], retain=False)
        second = reconcile(first, [make_record("1", 150, 80)], retain=False)
        assert second["1"].upload_speed == 50
        assert second["1"].download_speed == 30
        assert second["1"].upload_total == 150

    def test_identical_snapshot_gives_zero_speed(self):
        snap = [make_record("1", 100, 50), make_record("2", 7, 9)]
        first = reconcile({}, snap, retain=False)
        first = reconcile(first, [make_record("1", 120, 60), make_record("2", 8, 9)], retain=False)
        again = reconcile(first, [make_record("1", 120, 60), make_record("2", 8, 9)], retain=False)
        assert all(e.upload_speed == 0 and e.download_speed == 0 for e in again.values())

    def test_negative_delta_passes_through(self):
        first = reconcile({}, [make_record("1", 500, 500)], retain=False)
        second = reconcile(first, [make_record("1", 100, 600)], retain=False)
        assert second["1"].upload_speed == -400
        assert second["1"].download_speed == 100

    def test_disappeared_dropped_without_retention(self):
        first = reconcile({}, [make_record("1"), make_record("2")], retain=False)
        second = reconcile(first, [make_record("2")], retain=False)
        assert set(second) == {"2"}

    def test_disappeared_kept_as_completed_with_retention(self):
        first = reconcile({}, [make_record("1", 10, 10)], retain=False)
        first = reconcile(first, [make_record("1", 30, 40)], retain=False)
        assert first["1"].upload_speed == 20

        second = reconcile(first, [], retain=True)
        e = second["1"]
        assert e.completed is True
        assert (e.upload_speed, e.download_speed) == (0, 0)
        assert e.upload_total == 30

    def test_completed_entry_stable_while_absent(self):
        first = reconcile({}, [make_record("1", 10, 10)], retain=True)
        closed = reconcile(first, [], retain=True)
        still = reconcile(closed, [make_record("2")], retain=True)
        assert still["1"] == closed["1"]
        assert still["1"] is closed["1"]

    def test_completed_dropped_if_retention_off_at_next_snapshot(self):
        first = reconcile({}, [make_record("1")], retain=True)
        closed = reconcile(first, [], retain=True)
        assert reconcile(closed, [], retain=False) == {}

    def test_reappearing_id_is_fresh(self):
        first = reconcile({}, [make_record("1", 1000, 1000)], retain=True)
        closed = reconcile(first, [], retain=True)
        back = reconcile(closed, [make_record("1", 5, 6)], retain=True)
        e = back["1"]
        assert e.completed is False
        assert (e.upload_speed, e.download_speed) == (0, 0)
        assert e.upload_total == 5

        later = reconcile(back, [make_record("1", 15, 26)], retain=True)
        assert (later["1"].upload_speed, later["1"].download_speed) == (10, 20)

    def test_previous_not_mutated(self):
        first = reconcile({}, [make_record("1", 1, 1)], retain=True)
        before = dict(first)
        second = reconcile(first, [], retain=True)
        assert first == before
        assert first["1"].completed is False
        assert second is not first

    def test_order_independent(self):
        base = reconcile({}, [make_record("a", 1), make_record("b", 2), make_record("c", 3)], retain=False)
        snap = [make_record("a", 10), make_record("b", 20), make_record("c", 30)]
        forward = reconcile(base, snap, retain=False)
        backward = reconcile(base, list(reversed(snap)), retain=False)
        assert forward == backward

    def test_accepts_raw_dicts(self):
        first = reconcile({}, [wire("w", 100, 200)], retain=False)
        second = reconcile(first, [wire("w", 160, 260), {"rule": "no id"}], retain=False)
        assert set(second) == {"w"}
        assert second["w"].upload_speed == 60

    def test_duplicate_ids_last_wins_for_delta(self):
        first = reconcile({}, [make_record("1", 100)], retain=False)
        second = reconcile(first, [make_record("1", 999), make_record("1", 130)], retain=False)
        assert second["1"].upload_speed == 30

    def test_entries_are_values(self):
        nxt = reconcile({}, [make_record("1")], retain=False)
        assert isinstance(nxt["1"], LedgerEntry)
