"""Pydantic models for the reconciliation engine.

Defines the core data contracts used across the sync modules:

- ``RecordState``: How a JPD record relates to its GitHub issue.
- ``SyncAction``: What the engine does about it.
- ``SourceRecord``: A JPD idea, read-only for the pass.
- ``DestinationRecord``: A GitHub issue as seen at fetch time.
- ``SyncResult``: Outcome of reconciling one record.
- ``SyncReport``: Aggregate results for a full pass.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel

from .state import SyncStateBlock, decode_state

SUBTASK_LINK_TYPE = "Subtask"


class RecordState(str, Enum):
    """Classification of a record pair at the start of its reconciliation."""

    UNSYNCED = "unsynced"
    SYNCED_UNCHANGED = "synced_unchanged"
    SYNCED_CHANGED_UPSTREAM = "synced_changed_upstream"
    SYNCED_CHANGED_DOWNSTREAM = "synced_changed_downstream"
    ORPHAN_DOWNSTREAM = "orphan_downstream"
    EXCLUDED = "excluded"


class SyncAction(str, Enum):
    """Possible operations for a record pair."""

    CREATE = "create"
    UPDATE_DOWNSTREAM = "update_downstream"
    UPDATE_UPSTREAM = "update_upstream"
    SKIP = "skip"


ACTION_FOR_STATE: dict[RecordState, SyncAction] = {
    RecordState.UNSYNCED: SyncAction.CREATE,
    RecordState.SYNCED_UNCHANGED: SyncAction.SKIP,
    RecordState.SYNCED_CHANGED_UPSTREAM: SyncAction.UPDATE_DOWNSTREAM,
    RecordState.SYNCED_CHANGED_DOWNSTREAM: SyncAction.UPDATE_UPSTREAM,
    RecordState.ORPHAN_DOWNSTREAM: SyncAction.SKIP,
    RecordState.EXCLUDED: SyncAction.SKIP,
}


class SourceRecord(BaseModel):
    """A JPD issue as returned by the search API.

    Attributes:
        key: Issue key, e.g. ``"MTT-12"``.
        fields: Raw ``fields`` bag.
        updated: Upstream last-modified timestamp (ISO 8601).
        status: Workflow status name.
        parent_key: Key of the parent idea, if any.
        child_keys: Keys of subtasks, in upstream order.
        raw: The full issue dict handed to transforms.
    """

    key: str
    fields: dict[str, Any] = {}
    updated: str | None = None
    status: str | None = None
    parent_key: str | None = None
    child_keys: list[str] = []
    raw: dict[str, Any] = {}

    model_config = {"frozen": True}

    @classmethod
    def from_jpd(cls, issue: dict[str, Any]) -> SourceRecord:
        """Build a record from a raw JPD issue dict.

        The parent comes from ``fields.parent`` or an outward ``Subtask``
        link; children from ``fields.subtasks`` and inward ``Subtask``
        links.
        """
        fields = issue.get("fields") or {}
        status = (fields.get("status") or {}).get("name")

        parent_key = (fields.get("parent") or {}).get("key")
        child_keys: list[str] = [
            s["key"] for s in fields.get("subtasks") or [] if s.get("key")
        ]

        for link in fields.get("issuelinks") or []:
            if (link.get("type") or {}).get("name") != SUBTASK_LINK_TYPE:
                continue
            inward = (link.get("inwardIssue") or {}).get("key")
            outward = (link.get("outwardIssue") or {}).get("key")
            if inward and inward not in child_keys:
                child_keys.append(inward)
            if outward and parent_key is None:
                parent_key = outward

        return cls(
            key=issue["key"],
            fields=fields,
            updated=fields.get("updated") or issue.get("updated"),
            status=status,
            parent_key=parent_key,
            child_keys=child_keys,
            raw=issue,
        )


class DestinationRecord(BaseModel):
    """A GitHub issue.

    Attributes:
        number: Issue number.  Negative numbers are placeholders issued
            for would-be creations during a dry run.
        title: Issue title.
        body: Markdown body, including any hidden state block.
        state: ``open`` or ``closed``.
        labels: Label names.
        updated_at: GitHub's last-modified timestamp.
    """

    number: int
    title: str = ""
    body: str = ""
    state: Literal["open", "closed"] = "open"
    labels: list[str] = []
    updated_at: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_github(cls, issue: dict[str, Any]) -> DestinationRecord:
        """Build a record from a GitHub REST issue payload."""
        labels = [
            label if isinstance(label, str) else label.get("name", "")
            for label in issue.get("labels") or []
        ]
        return cls(
            number=issue["number"],
            title=issue.get("title") or "",
            body=issue.get("body") or "",
            state=issue.get("state") or "open",
            labels=[name for name in labels if name],
            updated_at=issue.get("updated_at"),
        )

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"

    @property
    def sync_state(self) -> SyncStateBlock | None:
        """The decoded state block, or ``None`` for unmanaged issues."""
        return decode_state(self.body)


class SyncResult(BaseModel):
    """Outcome of reconciling one record.

    Attributes:
        key: JPD key.
        issue_number: GitHub issue number involved, if any.
        state: Classification of the pair.
        action: Action that was (or, in a dry run, would be) taken.
        success: Whether the action completed.
        error: Error message when ``success`` is false.
        detail: Free-form note, e.g. why a hierarchy link was flattened.
    """

    key: str
    issue_number: int | None = None
    state: RecordState
    action: SyncAction
    success: bool = True
    error: str | None = None
    detail: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one reconciliation pass.

    Attributes:
        dry_run: Whether mutating calls were suppressed.
        direction: Sync direction used for the pass.
        results: Individual record results.
        comments_synced: Number of comments mirrored (or that would be).
        warnings: Degradations worth surfacing (depth limit, cycles).
        started_at: ISO 8601 timestamp when the pass started.
        completed_at: ISO 8601 timestamp when the pass completed.
    """

    dry_run: bool = False
    direction: str = "jpd-to-github"
    results: list[SyncResult] = []
    comments_synced: int = 0
    warnings: list[str] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def _with_action(self, action: SyncAction) -> list[SyncResult]:
        return [r for r in self.results if r.action == action and r.success]

    @property
    def created(self) -> list[SyncResult]:
        """Results where action is CREATE."""
        return self._with_action(SyncAction.CREATE)

    @property
    def updated_downstream(self) -> list[SyncResult]:
        """Results where action is UPDATE_DOWNSTREAM."""
        return self._with_action(SyncAction.UPDATE_DOWNSTREAM)

    @property
    def updated_upstream(self) -> list[SyncResult]:
        """Results where action is UPDATE_UPSTREAM."""
        return self._with_action(SyncAction.UPDATE_UPSTREAM)

    @property
    def skipped(self) -> list[SyncResult]:
        """Successful SKIP results, orphans excluded."""
        return [
            r
            for r in self._with_action(SyncAction.SKIP)
            if r.state != RecordState.ORPHAN_DOWNSTREAM
        ]

    @property
    def orphans(self) -> list[SyncResult]:
        """Issues whose JPD key no longer resolves."""
        return [
            r for r in self.results if r.state == RecordState.ORPHAN_DOWNSTREAM
        ]

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    def summary(self) -> str:
        """Format a short human-readable summary of the pass."""
        lines = [
            f"Sync report ({self.direction})"
            + (" (dry run)" if self.dry_run else ""),
            f"  Created:            {len(self.created)}",
            f"  Updated (GitHub):   {len(self.updated_downstream)}",
            f"  Updated (JPD):      {len(self.updated_upstream)}",
            f"  Skipped:            {len(self.skipped)}",
            f"  Orphans:            {len(self.orphans)}",
            f"  Errors:             {len(self.errors)}",
            f"  Comments:           {self.comments_synced}",
            f"  Total:              {len(self.results)}",
        ]
        return "\n".join(lines)
