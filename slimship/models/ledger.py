"""Run Ledger entry model — append-only, hash-chained.

The ledger is the record of every run:
- Append-only (no UPDATE, no DELETE)
- Hash-chained (each entry links to the previous via SHA-256)
- One entry per stage state transition
- Version-pinned (every entry records the toolchain and base images)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only Run Ledger.

    The monitor is a projection of these entries.
    """

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    stage_id: str
    state_transition: str  # "from_state->to_state", e.g. "not_started->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""
    output_hash: str = ""
    artifact_references: list[str] = []  # content-addressed keys
    pipeline_version: str = "0.1.0"
    toolchain_image: str = ""
    base_image: str = ""
    detail: str = ""  # error summary when entering FAILED or BLOCKED
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry
