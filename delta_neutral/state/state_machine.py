"""
Position Lifecycle State Machine.

NEW → OPEN_PENDING → ACTIVE → PREEMPTIVELY_CLOSED → CLOSED
 ↓         ↓            ↓                              ↑
 └──→ ACTIVE     PREEMPTIVELY_CLOSED / CLOSED ──────────┘

OPEN_PENDING: funds parked in the lending market awaiting a fresh price
ACTIVE: CDP open, rebalanced in place by RebalanceAndReinvest
PREEMPTIVELY_CLOSED: CDP liquidated or wound down; funds held as aUST
CLOSED: terminal, close snapshot recorded

Position records persist in SQLite so a keeper can sweep them after a
restart. Records are written only when an invocation commits.
"""
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from delta_neutral.models.common import PositionStatus
from delta_neutral.models.position import PositionRecord
from delta_neutral.utils.logger import get_logger

logger = get_logger(__name__)


class StateStore:
    """SQLite-based persistence of position records."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database. If None, uses default location.
        """
        if db_path is None:
            base_dir = Path(__file__).parent.parent.parent
            db_path = str(base_dir / "positions.db")

        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS positions (
                    position_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    record TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            # Keeper sweeps query by status
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_status
                ON positions(status)
            """)

            conn.commit()

        logger.debug(f"State store initialized: {self.db_path}")

    def save_position(self, record: PositionRecord) -> None:
        """Insert or replace a position record."""
        updated_at = datetime.utcnow().isoformat()

        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO positions
                (position_id, status, record, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (record.position_id, record.status.value, json.dumps(record.to_dict()), updated_at)
            )
            conn.commit()

        logger.debug(f"Saved position: {record.position_id} -> {record.status.value}")

    def get_position(self, position_id: str) -> Optional[PositionRecord]:
        """
        Get a position record by ID.

        Returns:
            PositionRecord if found, None otherwise
        """
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT record FROM positions WHERE position_id = ?",
                (position_id,)
            ).fetchone()

            if row is None:
                return None

            return PositionRecord.from_dict(json.loads(row[0]))

    def get_positions_by_status(self, status: PositionStatus) -> List[PositionRecord]:
        """Get all positions in a lifecycle state."""
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT record FROM positions WHERE status = ? ORDER BY position_id",
                (status.value,)
            ).fetchall()

            return [PositionRecord.from_dict(json.loads(row[0])) for row in rows]

    def delete_position(self, position_id: str) -> None:
        """Delete a position record."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "DELETE FROM positions WHERE position_id = ?",
                (position_id,)
            )
            conn.commit()

        logger.debug(f"Deleted position: {position_id}")


class PositionStateMachine:
    """
    Validates and applies lifecycle transitions on a PositionRecord.

    Valid transitions:
    - NEW → OPEN_PENDING | ACTIVE
    - OPEN_PENDING → ACTIVE | PREEMPTIVELY_CLOSED | CLOSED
    - ACTIVE → PREEMPTIVELY_CLOSED | CLOSED
    - PREEMPTIVELY_CLOSED → CLOSED
    """

    VALID_TRANSITIONS = {
        PositionStatus.NEW: {PositionStatus.OPEN_PENDING, PositionStatus.ACTIVE},
        PositionStatus.OPEN_PENDING: {
            PositionStatus.ACTIVE,
            PositionStatus.PREEMPTIVELY_CLOSED,
            PositionStatus.CLOSED,
        },
        PositionStatus.ACTIVE: {PositionStatus.PREEMPTIVELY_CLOSED, PositionStatus.CLOSED},
        PositionStatus.PREEMPTIVELY_CLOSED: {PositionStatus.CLOSED},
        PositionStatus.CLOSED: set(),  # Terminal state
    }

    def can_transition(self, current: PositionStatus, target: PositionStatus) -> bool:
        if current not in self.VALID_TRANSITIONS:
            return False
        return target in self.VALID_TRANSITIONS[current]

    def transition(self, record: PositionRecord, target: PositionStatus) -> PositionRecord:
        """
        Move a record to a new lifecycle state in place.

        Raises:
            ValueError: If transition is not valid
        """
        current = record.status
        if not self.can_transition(current, target):
            raise ValueError(
                f"Invalid transition: {current.value} → {target.value}"
            )

        record.status = target
        logger.info(f"State transition: {record.position_id}: {current.value} → {target.value}")
        return record

    def recover_on_startup(self, store: StateStore) -> List[PositionRecord]:
        """Positions a keeper should look at after a restart."""
        pending = []
        for status in (PositionStatus.OPEN_PENDING, PositionStatus.ACTIVE):
            pending.extend(store.get_positions_by_status(status))

        if pending:
            logger.info(f"Found {len(pending)} live positions on startup")
            for record in pending:
                logger.info(f"  - {record.position_id}: {record.status.value}")

        return pending
