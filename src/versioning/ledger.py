# src/versioning/ledger.py — v1
"""Version ledger — snapshots, latest pointer and promotion history.

Versions are allocated from a single counter per ledger (latest version
plus one), not per stage. Re-creating a snapshot under an existing key
replaces that entry with a higher version. Promotion only moves the
latest pointer; cascade deletion removes entries and recomputes it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from reportflow.config.stages import MANUAL_EDIT_PREFIX, SYNTHETIC_PREFIXES
from reportflow.core.errors import NoConceptError, NotFoundError, ValidationError
from reportflow.pipeline.stage_graph import stage_slot

logger = logging.getLogger(__name__)

DEFAULT_PROMOTE_REASON = "Promoted to latest"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Snapshot(BaseModel):
    """Immutable versioned copy of the draft content."""

    model_config = ConfigDict(frozen=True)

    content: str
    version: int = Field(ge=1)
    timestamp: datetime
    source: str


class LatestPointer(BaseModel):
    """The (key, version) pair identifying the active draft."""

    model_config = ConfigDict(frozen=True)

    pointer: str
    version: int = Field(ge=1)


class HistoryEntry(BaseModel):
    """One row of the create/promote audit log."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    version: int
    timestamp: datetime
    action: Literal["create", "promote"]
    reason: str | None = None


class VersionLedger(BaseModel):
    """Per-document snapshot store with a movable latest pointer."""

    snapshots: dict[str, Snapshot] = Field(default_factory=dict)
    latest: LatestPointer | None = None
    history: list[HistoryEntry] = Field(default_factory=list)

    # === CLOCK ===

    def _next_timestamp(self) -> datetime:
        """Wall-clock now, never earlier than the last history row."""
        now = _utcnow()
        if self.history and self.history[-1].timestamp > now:
            return self.history[-1].timestamp
        return now

    # === MUTATIONS ===

    def create_snapshot(
        self,
        stage_id: str,
        content: str,
        source: str | None = None,
        reason: str | None = None,
    ) -> Snapshot:
        """Store content under stage_id with the next version and log a create row."""
        if not stage_id:
            raise ValidationError("Snapshot key must not be empty")
        if not isinstance(content, str):
            raise ValidationError(
                f"Snapshot content must be text, got {type(content).__name__}",
                stage_id=stage_id,
            )
        version = (self.latest.version if self.latest else 0) + 1
        # A promote can leave latest below the highest stored version.
        if self.snapshots:
            version = max(version, max(s.version for s in self.snapshots.values()) + 1)
        timestamp = self._next_timestamp()
        snapshot = Snapshot(
            content=content,
            version=version,
            timestamp=timestamp,
            source=source or stage_id,
        )
        self.snapshots[stage_id] = snapshot
        self.history.append(
            HistoryEntry(
                stage_id=stage_id,
                version=version,
                timestamp=timestamp,
                action="create",
                reason=reason,
            )
        )
        logger.debug("Snapshot %s created at v%d", stage_id, version)
        return snapshot

    def advance_latest(self, stage_id: str, version: int) -> LatestPointer:
        """Point latest at an existing snapshot with a matching version."""
        snapshot = self.snapshots.get(stage_id)
        if snapshot is None:
            raise NotFoundError(f"No snapshot for '{stage_id}'", stage_id=stage_id)
        if snapshot.version != version:
            raise ValidationError(
                f"Snapshot '{stage_id}' is at v{snapshot.version}, not v{version}",
                stage_id=stage_id,
            )
        self.latest = LatestPointer(pointer=stage_id, version=version)
        return self.latest

    def promote(self, stage_id: str, reason: str | None = None) -> LatestPointer:
        """Repoint latest to an earlier snapshot and append a promote row.

        Raises:
            NotFoundError: stage_id was never recorded or its snapshot is gone.
        """
        recorded = any(entry.stage_id == stage_id for entry in self.history)
        snapshot = self.snapshots.get(stage_id)
        if not recorded or snapshot is None:
            raise NotFoundError(
                f"No version recorded for stage '{stage_id}'", stage_id=stage_id
            )
        self.latest = LatestPointer(pointer=stage_id, version=snapshot.version)
        self.history.append(
            HistoryEntry(
                stage_id=stage_id,
                version=snapshot.version,
                timestamp=self._next_timestamp(),
                action="promote",
                reason=reason or DEFAULT_PROMOTE_REASON,
            )
        )
        logger.info("Promoted %s (v%d) to latest", stage_id, snapshot.version)
        return self.latest

    def cascade_delete(self, stage_id: str, stage_order: Sequence[str]) -> list[str]:
        """Remove stage_id and every snapshot at or after it in stage_order.

        Returns the snapshot keys that were removed. Earlier stages are
        never touched. When the latest pointer is removed it is recomputed
        from the newest surviving history row, falling back to a backward
        scan of the order from the deleted position.
        """
        slot = stage_slot(stage_id, stage_order)
        doomed = {stage_id}
        if slot is not None:
            for key in self.snapshots:
                key_slot = stage_slot(key, stage_order)
                if key_slot is not None and key_slot >= slot:
                    doomed.add(key)

        removed = [key for key in self.snapshots if key in doomed]
        for key in removed:
            del self.snapshots[key]
        self.history = [entry for entry in self.history if entry.stage_id not in doomed]

        if self.latest is None or self.latest.pointer in doomed:
            self.latest = self._recompute_latest(stage_order, slot)

        if removed:
            logger.info("Cascade delete from %s removed %s", stage_id, removed)
        return removed

    def _recompute_latest(
        self, stage_order: Sequence[str], deleted_slot: int | None
    ) -> LatestPointer | None:
        ranked = sorted(
            enumerate(self.history),
            key=lambda item: (item[1].timestamp, item[0]),
            reverse=True,
        )
        for _, entry in ranked:
            snapshot = self.snapshots.get(entry.stage_id)
            if snapshot is not None:
                return LatestPointer(pointer=entry.stage_id, version=snapshot.version)

        start = len(stage_order) if deleted_slot is None else deleted_slot
        for key in reversed(list(stage_order)[:start]):
            snapshot = self.snapshots.get(key)
            if snapshot is not None:
                logger.warning("Latest recomputed from stage order, history has no match")
                return LatestPointer(pointer=key, version=snapshot.version)
        return None

    # === SYNTHETIC KEYS ===

    def next_synthetic_key(self, prefix: str) -> str:
        """Next free key such as manual_edit_3, one past the highest suffix in use."""
        if prefix not in SYNTHETIC_PREFIXES:
            raise ValidationError(f"Unknown synthetic key prefix '{prefix}'")
        highest = 0
        seen = set(self.snapshots) | {entry.stage_id for entry in self.history}
        for key in seen:
            head, _, tail = key.rpartition("_")
            if head == prefix and tail.isdigit():
                highest = max(highest, int(tail))
        return f"{prefix}_{highest + 1}"

    def record_manual_edit(self, content: str) -> str:
        """Store user-edited content as a new latest snapshot; return its key."""
        if self.latest is None:
            raise NoConceptError("No concept to edit")
        key = self.next_synthetic_key(MANUAL_EDIT_PREFIX)
        snapshot = self.create_snapshot(key, content, source="manual_edit")
        self.advance_latest(key, snapshot.version)
        return key

    # === QUERIES ===

    def resolve_latest_content(self) -> str | None:
        snapshot = self.latest_snapshot()
        return snapshot.content if snapshot else None

    def latest_snapshot(self) -> Snapshot | None:
        if self.latest is None:
            return None
        return self.snapshots.get(self.latest.pointer)
