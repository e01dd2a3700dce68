"""Tests for trigger state stores."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from workspace_triggers.models import ResourceState, SeenSet, TriggerState
from workspace_triggers.state import InMemoryStateStore, JsonFileStateStore, StateStoreError

T1 = "2026-03-01T10:00:00.000Z"
T2 = "2026-03-01T10:05:00.000Z"


def sample_state() -> TriggerState:
    return TriggerState(
        resources={
            "me": ResourceState(cursor=T2, seen=SeenSet([("m2", T2), ("m1", T2)])),
        }
    )


class TestInMemoryStateStore:
    """Tests for the in-memory store."""

    def test_load_unknown_trigger_is_empty(self) -> None:
        store = InMemoryStateStore()

        assert store.load("missing") == TriggerState()
        assert store.load_failures("missing") == {}

    def test_save_and_load(self) -> None:
        store = InMemoryStateStore()

        store.save("invoices", sample_state())

        assert store.load("invoices") == sample_state()
        assert store.list_triggers() == ["invoices"]

    def test_large_seen_set_survives_reload(self) -> None:
        entries = [(f"m{index}", T1) for index in range(1200)]
        state = TriggerState(resources={"me": ResourceState(cursor=T1, seen=SeenSet(entries, max_size=1500))})
        store = InMemoryStateStore()

        store.save("invoices", state)

        assert store.load("invoices").resource("me").seen.items() == entries

    def test_reset(self) -> None:
        store = InMemoryStateStore()
        store.save("invoices", sample_state())
        store.save_failures("invoices", {"me": 2})

        store.reset("invoices")

        assert store.load("invoices") == TriggerState()
        assert store.load_failures("invoices") == {}


class TestJsonFileStateStore:
    """Tests for JSON file persistence."""

    def test_round_trip(self, tmp_path: Path) -> None:
        """Test that a save/load cycle restores cursors and seen order."""
        store = JsonFileStateStore(tmp_path / "state")

        store.save("invoices", sample_state())
        loaded = JsonFileStateStore(tmp_path / "state").load("invoices")

        assert loaded == sample_state()
        assert loaded.resource("me").seen.items() == [("m2", T2), ("m1", T2)]

    def test_document_layout(self, tmp_path: Path) -> None:
        """Test the persisted JSON layout."""
        store = JsonFileStateStore(tmp_path)

        store.save("invoices", sample_state())
        store.save_failures("invoices", {"me": 1})

        document = json.loads((tmp_path / "invoices.json").read_text())
        assert document["trigger_id"] == "invoices"
        assert document["resources"] == {"me": {"cursor": T2, "seen": [["m2", T2], ["m1", T2]]}}
        assert document["failures"] == {"me": 1}
        assert document["updated_at"].endswith("Z")

    def test_failures_do_not_clobber_state(self, tmp_path: Path) -> None:
        store = JsonFileStateStore(tmp_path)
        store.save("invoices", sample_state())

        store.save_failures("invoices", {"me": 3})

        assert store.load("invoices") == sample_state()
        assert store.load_failures("invoices") == {"me": 3}

    def test_unsafe_trigger_id_is_sanitized(self, tmp_path: Path) -> None:
        store = JsonFileStateStore(tmp_path)

        store.save("../escape/me", TriggerState())

        assert store.path_for("../escape/me").parent == tmp_path
        assert store.list_triggers() == ["../escape/me"]

    def test_similar_trigger_ids_keep_separate_state(self, tmp_path: Path) -> None:
        store = JsonFileStateStore(tmp_path)

        store.save("team/inbox", sample_state())

        assert store.path_for("team/inbox") != store.path_for("team_inbox")
        assert store.load("team_inbox") == TriggerState()
        assert store.load("team/inbox") == sample_state()

    def test_large_seen_set_survives_reload(self, tmp_path: Path) -> None:
        """Test that a seen set above the default bound is not truncated on load."""
        entries = [(f"m{index}", T2) for index in range(1200)]
        state = TriggerState(resources={"me": ResourceState(cursor=T2, seen=SeenSet(entries, max_size=2000))})
        store = JsonFileStateStore(tmp_path)

        store.save("invoices", state)
        loaded = store.load("invoices")

        assert len(loaded.resource("me").seen) == 1200
        assert loaded.resource("me").seen.items() == entries

    def test_corrupt_file_raises(self, tmp_path: Path) -> None:
        (tmp_path / "broken.json").write_text("{not json")
        store = JsonFileStateStore(tmp_path)

        with pytest.raises(StateStoreError, match="Failed to read"):
            store.load("broken")

    def test_failed_write_keeps_previous_state(self, tmp_path: Path) -> None:
        """Test that an interrupted save leaves the old document in place."""
        store = JsonFileStateStore(tmp_path)
        store.save("invoices", sample_state())

        with patch("workspace_triggers.state.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StateStoreError, match="disk full"):
                store.save("invoices", TriggerState())

        assert store.load("invoices") == sample_state()
        assert list(tmp_path.glob("*.tmp")) == []

    def test_reset_removes_file(self, tmp_path: Path) -> None:
        store = JsonFileStateStore(tmp_path)
        store.save("invoices", sample_state())

        store.reset("invoices")

        assert not (tmp_path / "invoices.json").exists()
        assert store.load("invoices") == TriggerState()
