"""Reconciliation pass from JPD ideas to GitHub issues.

The ``SyncEngine`` ties together the transformer, the state codec, the
hierarchy projector and the API gateway into one pass.  It:

1. Verifies both sets of credentials and any configured JPD field
   definitions (fatal, before anything is written).
2. Fetches the upstream candidate set by JQL.
3. Finds every managed GitHub issue by searching for the state marker and
   builds the correspondence map (``jpd_id`` to issue) from their bodies.
4. Orders records parents first so parents exist before their children.
5. For each record: transform, hash, classify, commit, then run the
   hierarchy post-step against the record's resolved parent.
6. Reports issues whose upstream idea no longer exists (orphans).
7. Optionally mirrors comments.

Error handling is per-record: a single record failure does not abort the
pass.  Dry runs go through exactly the same steps; the gateway suppresses
the writes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from ..config_schema import UnifiedConfig
from ..core.gateway import ApiGateway
from ..errors import FatalSyncError, MissingFieldError
from ..transform import TransformerEngine
from .comments import CommentSyncer
from .fields import validate_fields
from .hierarchy import (
    HierarchyProjector,
    merge_checklist,
    parse_parent_reference,
    render_checklist,
    render_parent_section,
)
from .models import (
    ACTION_FOR_STATE,
    DestinationRecord,
    RecordState,
    SourceRecord,
    SyncAction,
    SyncReport,
    SyncResult,
)
from .state import MARKER, content_hash, encode_state

logger = logging.getLogger(__name__)


def order_parents_first(records: list[SourceRecord]) -> list[SourceRecord]:
    """Sort *records* so that every parent precedes its children.

    Only parents inside the same batch count.  The sort is stable, and a
    parent cycle cannot loop: each walk stops at a revisited key.
    """
    by_key = {record.key: record for record in records}

    def _depth(record: SourceRecord) -> int:
        seen = {record.key}
        depth = 0
        current = record.parent_key
        while current in by_key and current not in seen:
            seen.add(current)
            depth += 1
            current = by_key[current].parent_key
        return depth

    return sorted(records, key=_depth)


def build_correspondence(
    issues: list[DestinationRecord],
) -> tuple[dict[str, DestinationRecord], list[str]]:
    """Map ``jpd_id`` to issue from the state blocks of *issues*.

    Issues without a readable state block are not ours and are ignored.
    When two issues claim the same key the lowest number wins.

    Returns:
        The map and a list of warnings about duplicates.
    """
    mapping: dict[str, DestinationRecord] = {}
    warnings: list[str] = []
    for issue in sorted(issues, key=lambda i: (i.number < 0, abs(i.number))):
        block = issue.sync_state
        if block is None:
            continue
        kept = mapping.get(block.jpd_id)
        if kept is not None:
            message = (
                f"Issues #{kept.number} and #{issue.number} both track "
                f"{block.jpd_id}; using #{kept.number}"
            )
            logger.warning(message)
            warnings.append(message)
            continue
        mapping[block.jpd_id] = issue
    return mapping, warnings


class SyncEngine:
    """Run reconciliation passes for one JPD query and one repository.

    Args:
        gateway: API gateway; its ``dry_run`` flag is set per pass.
        config: Validated unified configuration.
        transformer: Field transformer; built from defaults when omitted.
        jpd_base_url: Site URL, used for browse links in bodies.
    """

    def __init__(
        self,
        gateway: ApiGateway,
        config: UnifiedConfig,
        transformer: TransformerEngine | None = None,
        jpd_base_url: str = "",
    ) -> None:
        self.gateway = gateway
        self.config = config
        self.transformer = transformer or TransformerEngine()
        self.jpd_base_url = jpd_base_url.rstrip("/")
        self.projector = HierarchyProjector(
            gateway,
            max_depth=config.hierarchy.max_depth,
            section_title=config.hierarchy.section_title,
            parent_title=config.hierarchy.parent_title,
        )
        self.comments = CommentSyncer(gateway, self.jpd_base_url)
        self.correspondence: dict[str, DestinationRecord] = {}

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(self, dry_run: bool = False) -> SyncReport:
        """Execute one full reconciliation pass.

        Args:
            dry_run: If ``True``, classify and plan everything but issue
                no mutating call.

        Returns:
            A ``SyncReport`` summarising what was (or would be) done.

        Raises:
            FatalSyncError: Credentials were rejected, a tracker was
                unreachable or a configured JPD field failed its check;
                raised before any write.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        self.gateway.begin_pass(dry_run)
        self.projector.warnings = []
        results: list[SyncResult] = []

        self.gateway.verify_credentials()
        validate_fields(self.gateway, self.config.fields)

        sync = self.config.sync
        raw_records = self.gateway.search_source(
            sync.jql, sync.fields, sync.max_results
        )
        records = order_parents_first(
            [SourceRecord.from_jpd(raw) for raw in raw_records]
        )
        issues = [
            DestinationRecord.from_github(raw)
            for raw in self.gateway.search_destination(MARKER)
        ]
        self.correspondence, warnings = build_correspondence(issues)
        logger.info(
            "%s%d JPD record(s), %d managed GitHub issue(s)",
            "[DRY RUN] " if dry_run else "",
            len(records),
            len(self.correspondence),
        )

        for record in records:
            try:
                results.append(self._sync_record(record))
            except FatalSyncError:
                raise
            except Exception as exc:
                logger.error("Error syncing %s: %s", record.key, exc)
                existing = self.correspondence.get(record.key)
                results.append(
                    SyncResult(
                        key=record.key,
                        issue_number=existing.number if existing else None,
                        state=(
                            RecordState.UNSYNCED
                            if existing is None
                            else RecordState.SYNCED_UNCHANGED
                        ),
                        action=SyncAction.SKIP,
                        success=False,
                        error=str(exc),
                    )
                )

        fetched_keys = {record.key for record in records}
        if sync.detect_orphans:
            results.extend(self._detect_orphans(fetched_keys))

        comments_synced = 0
        if self.config.bidirectional and sync.comments:
            comments_synced = self._sync_comments(records, results)

        return SyncReport(
            dry_run=dry_run,
            direction=sync.direction,
            results=results,
            comments_synced=comments_synced,
            warnings=warnings + self.projector.warnings,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Per-record reconciliation
    # ------------------------------------------------------------------

    def _sync_record(self, record: SourceRecord) -> SyncResult:
        existing = self.correspondence.get(record.key)

        exclusion = self._exclusion_reason(record)
        if exclusion is not None:
            logger.debug("Skipping %s: %s", record.key, exclusion)
            return SyncResult(
                key=record.key,
                issue_number=existing.number if existing else None,
                state=RecordState.EXCLUDED,
                action=SyncAction.SKIP,
                detail=exclusion,
            )

        payload = self.transformer.apply(self.config.mappings, record.raw)
        title = payload.get("title")
        if not isinstance(title, str) or not title.strip():
            raise MissingFieldError("No title mapped", record_key=record.key)

        desired_state = self._desired_state(record)
        parent_number = self._resolve_parent(record, existing)
        sync_hash = content_hash(
            {
                **payload,
                "labels": sorted(payload["labels"]),
                "state": desired_state,
                "parent_key": record.parent_key,
                "parent_issue": parent_number,
                "level": self.hierarchy_level(record.status),
            }
        )

        state = self.classify(existing, sync_hash, desired_state)
        action = ACTION_FOR_STATE[state]
        detail = None
        if not self._direction_allows(action):
            detail = (
                f"{action.value} disabled by direction "
                f"{self.config.sync.direction}"
            )
            action = SyncAction.SKIP

        logger.debug("%s: %s -> %s", record.key, state.value, action.value)

        match action:
            case SyncAction.CREATE:
                dest = self._create(
                    record, payload, sync_hash, parent_number, desired_state
                )
            case SyncAction.UPDATE_DOWNSTREAM:
                dest = self._update(
                    record,
                    existing,
                    payload,
                    sync_hash,
                    parent_number,
                    desired_state,
                )
            case SyncAction.UPDATE_UPSTREAM:
                dest = existing
                applied, detail = self._update_upstream(record, existing)
                if not applied:
                    action = SyncAction.SKIP
            case _:
                dest = existing

        if dest is not None and parent_number is not None:
            self.projector.ensure_child_in_parent_list(
                parent_number, dest.number, dest.title, dest.is_closed
            )

        return SyncResult(
            key=record.key,
            issue_number=dest.number if dest else None,
            state=state,
            action=action,
            detail=detail,
        )

    def classify(
        self,
        existing: DestinationRecord | None,
        sync_hash: str,
        desired_state: str | None,
    ) -> RecordState:
        """Classify a record pair.

        Timestamps are never consulted: content drift shows up as a hash
        mismatch.  With equal hashes the upstream status has not moved
        since our last write, so a differing open/closed state was changed
        downstream.
        """
        if existing is None:
            return RecordState.UNSYNCED
        block = existing.sync_state
        if block is None or block.sync_hash != sync_hash:
            return RecordState.SYNCED_CHANGED_UPSTREAM
        if (
            self.config.bidirectional
            and desired_state is not None
            and existing.state != desired_state
        ):
            return RecordState.SYNCED_CHANGED_DOWNSTREAM
        return RecordState.SYNCED_UNCHANGED

    def _direction_allows(self, action: SyncAction) -> bool:
        match action:
            case SyncAction.CREATE | SyncAction.UPDATE_DOWNSTREAM:
                return self.config.sync.direction != "github-to-jpd"
            case SyncAction.UPDATE_UPSTREAM:
                return self.config.sync.direction != "jpd-to-github"
            case _:
                return True

    def _exclusion_reason(self, record: SourceRecord) -> str | None:
        status = self.config.status_for(record.status)
        if status is not None and not status.sync:
            return f"status '{record.status}' is not synced"
        if (
            self.config.hierarchy.require_level
            and self.hierarchy_level(record.status) is None
        ):
            return f"status '{record.status}' has no hierarchy level"
        return None

    def hierarchy_level(self, status: str | None) -> str | None:
        """``epic``, ``story`` or ``task`` for a status, else ``None``."""
        hierarchy = self.config.hierarchy
        if status is None:
            return None
        if status in hierarchy.epic_statuses:
            return "epic"
        if status in hierarchy.story_statuses:
            return "story"
        if status in hierarchy.task_statuses:
            return "task"
        return None

    def _desired_state(self, record: SourceRecord) -> str | None:
        status = self.config.status_for(record.status)
        return status.github_state if status is not None else None

    def _resolve_parent(
        self, record: SourceRecord, existing: DestinationRecord | None
    ) -> int | None:
        """Issue number to nest under, or ``None`` to stay flat.

        An issue already pointing at the parent stays linked; a new link
        is only formed when the projector's depth and cycle checks allow.
        """
        if not self.config.hierarchy.enabled or not record.parent_key:
            return None
        parent = self.correspondence.get(record.parent_key)
        if parent is None:
            logger.debug(
                "%s: parent %s has no GitHub issue yet",
                record.key,
                record.parent_key,
            )
            return None
        title = self.config.hierarchy.parent_title
        if (
            existing is not None
            and parse_parent_reference(existing.body, title) == parent.number
        ):
            return parent.number
        child_number = existing.number if existing is not None else None
        if not self.projector.can_nest_under(parent.number, child_number):
            return None
        return parent.number

    # ------------------------------------------------------------------
    # Body composition
    # ------------------------------------------------------------------

    def browse_url(self, key: str) -> str | None:
        if not self.jpd_base_url:
            return None
        return f"{self.jpd_base_url}/browse/{key}"

    def _linked_children(
        self, record: SourceRecord, number: int | None
    ) -> list[DestinationRecord]:
        if number is None:
            return []
        title = self.config.hierarchy.parent_title
        children = []
        for key in record.child_keys:
            child = self.correspondence.get(key)
            if child is None:
                continue
            if parse_parent_reference(child.body, title) == number:
                children.append(child)
        return children

    def compose_body(
        self,
        record: SourceRecord,
        payload: dict[str, Any],
        sync_hash: str,
        parent_number: int | None,
        number: int | None = None,
        previous_body: str | None = None,
    ) -> str:
        """Build the full issue body: mapped text, relationship sections,
        then the state block.

        Checklist lines (and their checkbox state) from *previous_body*
        are carried forward.
        """
        hierarchy = self.config.hierarchy
        parts = [str(payload.get("body") or "").strip()]

        if parent_number is not None:
            parts.append(
                render_parent_section(
                    parent_number,
                    record.parent_key,
                    self.browse_url(record.parent_key),
                    hierarchy.parent_title,
                )
            )

        children = self._linked_children(record, number)
        parts.append(
            render_checklist(
                [(c.number, c.title, c.is_closed) for c in children],
                hierarchy.section_title,
            )
        )

        body = "\n\n".join(part for part in parts if part)
        if previous_body is not None:
            body = merge_checklist(
                previous_body,
                body,
                {c.number: c.is_closed for c in children},
                hierarchy.section_title,
            )

        return encode_state(
            body,
            jpd_id=record.key,
            jpd_updated=record.updated or "",
            sync_hash=sync_hash,
            parent_jpd_id=record.parent_key,
            original_link=self.browse_url(record.key),
        )

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _create(
        self,
        record: SourceRecord,
        payload: dict[str, Any],
        sync_hash: str,
        parent_number: int | None,
        desired_state: str | None,
    ) -> DestinationRecord:
        body = self.compose_body(record, payload, sync_hash, parent_number)
        issue = self.gateway.create_destination(
            payload["title"], body, payload["labels"]
        )
        if desired_state == "closed":
            issue = self.gateway.update_destination(
                issue["number"], state="closed"
            )

        dest = DestinationRecord.from_github(issue)
        self.correspondence[record.key] = dest
        logger.info("Created #%s for %s", dest.number, record.key)
        return dest

    def _update(
        self,
        record: SourceRecord,
        existing: DestinationRecord,
        payload: dict[str, Any],
        sync_hash: str,
        parent_number: int | None,
        desired_state: str | None,
    ) -> DestinationRecord:
        # A post-step earlier in this pass may have rewritten the body.
        latest = self.gateway.known_destination(existing.number)
        body = self.compose_body(
            record,
            payload,
            sync_hash,
            parent_number,
            number=existing.number,
            previous_body=latest.get("body") if latest else existing.body,
        )
        fields: dict[str, Any] = {
            "title": payload["title"],
            "body": body,
            "labels": payload["labels"],
        }
        if desired_state is not None and desired_state != existing.state:
            fields["state"] = desired_state

        issue = self.gateway.update_destination(existing.number, **fields)
        dest = DestinationRecord.from_github(issue)
        self.correspondence[record.key] = dest
        logger.info("Updated #%s from %s", dest.number, record.key)
        return dest

    def reverse_status(self, github_state: str) -> str | None:
        """The single JPD status mapped to *github_state*, if unambiguous."""
        candidates = [
            name
            for name, status in self.config.statuses.items()
            if status.github_state == github_state and status.sync
        ]
        return candidates[0] if len(candidates) == 1 else None

    def _update_upstream(
        self, record: SourceRecord, existing: DestinationRecord
    ) -> tuple[bool, str]:
        target = self.reverse_status(existing.state)
        if target is None:
            message = (
                f"no unambiguous JPD status for GitHub state '{existing.state}'"
            )
            logger.info("%s: %s; leaving status unchanged", record.key, message)
            return False, message
        if not self.gateway.transition_source(record.key, target):
            raise RuntimeError(
                f"No transition from '{record.status}' to '{target}' "
                f"on {record.key}"
            )
        logger.info(
            "Moved %s to '%s' after #%s was %s",
            record.key,
            target,
            existing.number,
            "closed" if existing.is_closed else "reopened",
        )
        return True, f"status set to '{target}'"

    # ------------------------------------------------------------------
    # Orphans and comments
    # ------------------------------------------------------------------

    def _detect_orphans(self, fetched_keys: set[str]) -> list[SyncResult]:
        """Report managed issues whose JPD idea no longer exists.

        Keys that merely fell out of the query window still resolve and
        are left alone.  Orphans are never modified.
        """
        results: list[SyncResult] = []
        for key, issue in sorted(self.correspondence.items()):
            if key in fetched_keys:
                continue
            try:
                if self.gateway.get_source(key) is not None:
                    continue
            except FatalSyncError:
                raise
            except Exception as exc:
                logger.error(
                    "Error checking %s for orphan status: %s", key, exc
                )
                results.append(
                    SyncResult(
                        key=key,
                        issue_number=issue.number,
                        state=RecordState.SYNCED_UNCHANGED,
                        action=SyncAction.SKIP,
                        success=False,
                        error=str(exc),
                    )
                )
                continue
            logger.warning(
                "Issue #%s tracks %s, which no longer exists in JPD",
                issue.number,
                key,
            )
            results.append(
                SyncResult(
                    key=key,
                    issue_number=issue.number,
                    state=RecordState.ORPHAN_DOWNSTREAM,
                    action=SyncAction.SKIP,
                )
            )
        return results

    def _sync_comments(
        self, records: list[SourceRecord], results: list[SyncResult]
    ) -> int:
        failed = {r.key for r in results if not r.success}
        total = 0
        for record in records:
            dest = self.correspondence.get(record.key)
            if dest is None or record.key in failed:
                continue
            try:
                total += self.comments.sync(record.key, dest.number)
            except FatalSyncError:
                raise
            except Exception as exc:
                logger.error(
                    "Error syncing comments for %s: %s", record.key, exc
                )
                results.append(
                    SyncResult(
                        key=record.key,
                        issue_number=dest.number,
                        state=RecordState.SYNCED_UNCHANGED,
                        action=SyncAction.SKIP,
                        success=False,
                        error=f"comment sync failed: {exc}",
                    )
                )
        return total
