"""
Tests for the Position Lifecycle State Machine.

These tests verify:
- Record persistence in SQLite
- Valid and invalid lifecycle transitions
- Recovery of live positions on startup
"""
from decimal import Decimal
from pathlib import Path

import pytest

from delta_neutral.models.common import PositionStatus
from delta_neutral.models.position import (
    PositionActionInfo,
    PositionInfo,
    PositionRecord,
    TargetCollateralRatioRange,
)
from delta_neutral.state.state_machine import PositionStateMachine, StateStore


def make_record(position_id="pos-1", status=PositionStatus.ACTIVE, cdp_idx=3):
    return PositionRecord(
        position_id=position_id,
        holder=f"position:{position_id}",
        status=status,
        position_info=PositionInfo(mirror_asset="mAAPL", cdp_idx=cdp_idx),
        target_range=TargetCollateralRatioRange(min=Decimal("1.8"), max=Decimal("2.2")),
        open_info=PositionActionInfo(height=10, time_seconds=1_700_000_000, uusd_amount=1_000_000_000),
        fee_baseline_uusd=1_000_000_000,
    )


class TestStateStore:
    """Tests for StateStore SQLite persistence."""

    def test_init_creates_database(self, temp_db):
        """Test that initialization creates the database and tables."""
        StateStore(db_path=temp_db)
        assert Path(temp_db).exists()

    def test_save_and_get_position(self, temp_db):
        """Test saving and retrieving a record round-trips every field."""
        store = StateStore(db_path=temp_db)
        record = make_record()
        record.metadata["note"] = "first"

        store.save_position(record)
        loaded = store.get_position("pos-1")

        assert loaded is not None
        assert loaded.status == PositionStatus.ACTIVE
        assert loaded.cdp_idx == 3
        assert loaded.mirror_asset == "mAAPL"
        assert loaded.target_range == record.target_range
        assert loaded.open_info == record.open_info
        assert loaded.close_info is None
        assert loaded.fee_baseline_uusd == 1_000_000_000
        assert loaded.metadata == {"note": "first"}

    def test_update_existing_position(self, temp_db):
        """Test that saving replaces an existing record."""
        store = StateStore(db_path=temp_db)
        record = make_record()
        store.save_position(record)

        record.status = PositionStatus.CLOSED
        record.close_info = PositionActionInfo(height=20, time_seconds=1_700_000_600, uusd_amount=990)
        store.save_position(record)

        loaded = store.get_position("pos-1")
        assert loaded.status == PositionStatus.CLOSED
        assert loaded.is_closed
        assert loaded.close_info.uusd_amount == 990

    def test_get_position_nonexistent(self, temp_db):
        """Test getting a record that doesn't exist."""
        store = StateStore(db_path=temp_db)
        assert store.get_position("missing") is None

    def test_get_positions_by_status(self, temp_db):
        """Test filtering by status, ordered by id."""
        store = StateStore(db_path=temp_db)
        store.save_position(make_record("pos-b"))
        store.save_position(make_record("pos-a"))
        store.save_position(make_record("pos-c", status=PositionStatus.CLOSED))

        active = store.get_positions_by_status(PositionStatus.ACTIVE)
        assert [record.position_id for record in active] == ["pos-a", "pos-b"]

    def test_delete_position(self, temp_db):
        """Test deleting a record."""
        store = StateStore(db_path=temp_db)
        store.save_position(make_record())
        store.delete_position("pos-1")
        assert store.get_position("pos-1") is None


class TestPositionStateMachine:
    """Tests for PositionStateMachine transitions."""

    @pytest.fixture
    def state_machine(self):
        return PositionStateMachine()

    def test_valid_transitions(self, state_machine):
        """Test the lifecycle edges."""
        assert state_machine.can_transition(PositionStatus.NEW, PositionStatus.ACTIVE)
        assert state_machine.can_transition(PositionStatus.NEW, PositionStatus.OPEN_PENDING)
        assert state_machine.can_transition(PositionStatus.OPEN_PENDING, PositionStatus.ACTIVE)
        assert state_machine.can_transition(PositionStatus.ACTIVE, PositionStatus.PREEMPTIVELY_CLOSED)
        assert state_machine.can_transition(PositionStatus.ACTIVE, PositionStatus.CLOSED)
        assert state_machine.can_transition(PositionStatus.PREEMPTIVELY_CLOSED, PositionStatus.CLOSED)

    def test_invalid_transitions(self, state_machine):
        """Test that skipped or backwards edges are rejected."""
        assert not state_machine.can_transition(PositionStatus.NEW, PositionStatus.CLOSED)
        assert not state_machine.can_transition(PositionStatus.ACTIVE, PositionStatus.OPEN_PENDING)
        assert not state_machine.can_transition(PositionStatus.PREEMPTIVELY_CLOSED, PositionStatus.ACTIVE)

    def test_closed_is_terminal(self, state_machine):
        for status in PositionStatus:
            assert not state_machine.can_transition(PositionStatus.CLOSED, status)

    def test_transition_updates_record(self, state_machine):
        record = make_record(status=PositionStatus.NEW)
        state_machine.transition(record, PositionStatus.ACTIVE)
        assert record.status == PositionStatus.ACTIVE

    def test_transition_rejects_invalid(self, state_machine):
        record = make_record(status=PositionStatus.CLOSED)
        with pytest.raises(ValueError, match="Invalid transition"):
            state_machine.transition(record, PositionStatus.ACTIVE)
        assert record.status == PositionStatus.CLOSED

    def test_recover_on_startup(self, state_machine, temp_db):
        """Test that pending and active positions are returned for a sweep."""
        store = StateStore(db_path=temp_db)
        store.save_position(make_record("pos-1", status=PositionStatus.ACTIVE))
        store.save_position(make_record("pos-2", status=PositionStatus.OPEN_PENDING, cdp_idx=None))
        store.save_position(make_record("pos-3", status=PositionStatus.CLOSED))
        store.save_position(make_record("pos-4", status=PositionStatus.PREEMPTIVELY_CLOSED))

        recovered = state_machine.recover_on_startup(store)
        assert sorted(record.position_id for record in recovered) == ["pos-1", "pos-2"]

    def test_recover_returns_empty_when_none_live(self, state_machine, temp_db):
        store = StateStore(db_path=temp_db)
        assert state_machine.recover_on_startup(store) == []


class TestPositionRecord:
    """Tests for PositionRecord serialization."""

    def test_to_dict(self):
        data = make_record().to_dict()
        assert data["status"] == "active"
        assert data["position_info"] == {"mirror_asset": "mAAPL", "cdp_idx": 3}
        assert data["target_range"] == {"min": "1.800000000000000000", "max": "2.200000000000000000"}

    def test_from_dict_round_trip(self):
        record = make_record(status=PositionStatus.OPEN_PENDING, cdp_idx=None)
        restored = PositionRecord.from_dict(record.to_dict())
        assert restored.status == PositionStatus.OPEN_PENDING
        assert restored.cdp_idx is None
        assert restored.holder == "position:pos-1"
