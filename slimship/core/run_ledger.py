"""Append-only, hash-chained Run Ledger backed by SQLite.

Every stage transition of every run lands here as one row. Each run has
its own chain: an entry stores the hash of the run's previous entry, so
editing or removing a row is detected by ``verify_chain``. The monitor and
the ``runs`` / ``compare`` commands only ever read from this table.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

from slimship.core.hasher import compute_entry_hash
from slimship.models.ledger import LedgerEntry

_FIELDS = (
    "entry_id",
    "run_id",
    "stage_id",
    "state_transition",
    "timestamp_utc",
    "input_hash",
    "output_hash",
    "artifact_references",
    "pipeline_version",
    "toolchain_image",
    "base_image",
    "detail",
    "previous_entry_hash",
    "entry_hash",
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS run_ledger (
    seq                   INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    run_id                TEXT NOT NULL,
    stage_id              TEXT NOT NULL,
    state_transition      TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    input_hash            TEXT NOT NULL DEFAULT '',
    output_hash           TEXT NOT NULL DEFAULT '',
    artifact_references   TEXT NOT NULL DEFAULT '[]',
    pipeline_version      TEXT NOT NULL,
    toolchain_image       TEXT NOT NULL DEFAULT '',
    base_image            TEXT NOT NULL DEFAULT '',
    detail                TEXT NOT NULL DEFAULT '',
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
CREATE INDEX IF NOT EXISTS idx_ledger_run ON run_ledger(run_id, seq);
CREATE INDEX IF NOT EXISTS idx_ledger_stage ON run_ledger(run_id, stage_id, seq);
"""


class LedgerIntegrityError(RuntimeError):
    """Raised when a run's hash chain does not verify."""


class RunLedger:
    """Append-only, hash-chained Run Ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created, along with its parent
        directory, if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal *entry* onto the end of its run's chain and persist it.

        The returned copy carries ``previous_entry_hash`` and ``entry_hash``.
        There is no other write path.
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? "
                "ORDER BY seq DESC LIMIT 1",
                (entry.run_id,),
            ).fetchone()
            linked = entry.model_copy(
                update={"previous_entry_hash": row["entry_hash"] if row else ""}
            )
            sealed = linked.model_copy(
                update={"entry_hash": compute_entry_hash(linked.model_dump(mode="json"))}
            )

            params = sealed.model_dump(mode="json")
            params["artifact_references"] = json.dumps(params["artifact_references"])
            conn.execute(
                f"INSERT INTO run_ledger ({', '.join(_FIELDS)}) "
                f"VALUES ({', '.join(':' + f for f in _FIELDS)})",
                params,
            )
            conn.commit()
        return sealed

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """All entries of a run, oldest first."""
        return self._select("run_id = ?", (run_id,))

    def get_stage_history(self, run_id: str, stage_id: str) -> list[LedgerEntry]:
        """All entries of one stage within a run, oldest first."""
        return self._select("run_id = ? AND stage_id = ?", (run_id, stage_id))

    def get_all_run_ids(self) -> list[str]:
        """Every run id in the ledger, most recently started first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id FROM run_ledger GROUP BY run_id ORDER BY MIN(seq) DESC"
            ).fetchall()
        return [row["run_id"] for row in rows]

    def _select(self, where: str, params: tuple[Any, ...]) -> list[LedgerEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {', '.join(_FIELDS)} FROM run_ledger "
                f"WHERE {where} ORDER BY seq ASC",
                params,
            ).fetchall()
        return [_entry_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Walk a run's chain from its first entry.

        Returns True when every link and every entry hash checks out.
        Raises LedgerIntegrityError at the first mismatch.
        """
        expected_previous = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != expected_previous:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: links to "
                    f"{entry.previous_entry_hash!r}, expected {expected_previous!r}"
                )
            recomputed = compute_entry_hash(entry.model_dump(mode="json"))
            if recomputed != entry.entry_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: stored hash "
                    f"{entry.entry_hash!r}, recomputed {recomputed!r}"
                )
            expected_previous = entry.entry_hash
        return True


def _entry_from_row(row: sqlite3.Row) -> LedgerEntry:
    data = dict(row)
    data["artifact_references"] = json.loads(data["artifact_references"])
    return LedgerEntry.model_validate(data)
