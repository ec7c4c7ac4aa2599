"""The single I/O seam between the sync logic and the two trackers.

``ApiGateway`` wraps a ``JpdClient`` and a ``GitHubClient``:

* every call goes through :func:`~jpd_github_sync.core.rate_limit.with_retry`;
* credential checks are cached in a ``ConnectionCache``;
* issues written during the pass are kept in a ``PassCache`` overlay and
  served back to reads and searches, since GitHub's search index lags
  writes by several seconds;
* in dry-run mode every mutating call is logged and simulated against the
  overlay instead of being sent, so callers run the exact same code path.

The gateway knows nothing about sync state blocks or hierarchy.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

import requests

from ..config_schema import RateLimitConfig
from ..errors import CredentialError, FatalSyncError, RateLimitExhaustedError
from .async_utils import gather_limited
from .cache import ConnectionCache, PassCache
from .github_client import GitHubClient
from .jpd_client import JpdClient
from .rate_limit import status_code_of, with_retry

T = TypeVar("T")
logger = logging.getLogger(__name__)

DRY_RUN_PREFIX = "[DRY RUN]"


class ApiGateway:
    """Retrying, caching, dry-run aware access to both trackers.

    Args:
        jpd: Upstream client.
        github: Downstream client.
        dry_run: Suppress mutating calls.
        retry: Backoff settings for ``with_retry``.
        connection_cache: Remembers recent successful credential checks.
        pass_cache: Per-pass label cache and write overlay.
        max_parallel_requests: Bound for concurrent label checks.
        credentials: Per-service credential dicts used as connection
            cache keys (``{"jpd": {...}, "github": {...}}``).
        sleep: Wait function handed to ``with_retry``.
    """

    def __init__(
        self,
        jpd: JpdClient,
        github: GitHubClient,
        *,
        dry_run: bool = False,
        retry: RateLimitConfig | None = None,
        connection_cache: ConnectionCache | None = None,
        pass_cache: PassCache | None = None,
        max_parallel_requests: int = 5,
        credentials: dict[str, dict[str, str]] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.jpd = jpd
        self.github = github
        self.dry_run = dry_run
        self.retry = retry or RateLimitConfig()
        self.connection_cache = connection_cache or ConnectionCache(
            ttl=self.retry.connection_cache_ttl
        )
        self.pass_cache = pass_cache or PassCache()
        self.max_parallel_requests = max_parallel_requests
        self.credentials = credentials or {}
        self._sleep = sleep
        self.mutations = 0
        self.planned: list[str] = []

    def begin_pass(self, dry_run: bool | None = None) -> None:
        """Start a new pass with a fresh ``PassCache`` and counters."""
        if dry_run is not None:
            self.dry_run = dry_run
        self.pass_cache = PassCache()
        self.mutations = 0
        self.planned = []

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        def _on_retry(attempt: int, delay: float, error: BaseException) -> None:
            logger.warning(
                "%s failed (%s), retrying in %.1fs (attempt %d/%d)",
                getattr(func, "__name__", "request"),
                error,
                delay,
                attempt,
                self.retry.max_retries,
            )

        return with_retry(
            lambda: func(*args, **kwargs),
            max_retries=self.retry.max_retries,
            initial_delay=self.retry.initial_delay,
            backoff_multiplier=self.retry.backoff_multiplier,
            max_delay=self.retry.max_delay,
            on_retry=_on_retry,
            sleep=self._sleep,
        )

    def _mutate(
        self,
        description: str,
        func: Callable[..., T],
        *args: Any,
        **kwargs: Any,
    ) -> T | None:
        """Run a mutating call, or log it and return ``None`` in a dry run."""
        if self.dry_run:
            logger.info("%s Would %s", DRY_RUN_PREFIX, description)
            self.planned.append(description)
            return None
        self.mutations += 1
        return self._call(func, *args, **kwargs)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def verify_credentials(self) -> None:
        """Check both trackers accept our credentials.

        Runs in dry-run mode too; it is read-only.

        Raises:
            CredentialError: A tracker rejected the credentials (401/403).
            FatalSyncError: A tracker could not be reached at all.
        """
        for service, client in (("jpd", self.jpd), ("github", self.github)):
            creds = self.credentials.get(service, {})
            if creds and self.connection_cache.is_valid(service, creds):
                logger.debug("Using cached %s connection check", service)
                continue
            try:
                self._call(client.validate_connection)
            except requests.HTTPError as exc:
                if status_code_of(exc) in (401, 403):
                    raise CredentialError(
                        service, "credentials rejected"
                    ) from exc
                raise FatalSyncError(
                    f"{service}: connection check failed: {exc}"
                ) from exc
            except (requests.RequestException, RateLimitExhaustedError) as exc:
                raise FatalSyncError(
                    f"{service}: cannot connect: {exc}"
                ) from exc
            if creds:
                self.connection_cache.mark_success(service, creds)
            logger.debug("%s connection verified", service)

    # ------------------------------------------------------------------
    # Upstream (JPD)
    # ------------------------------------------------------------------

    def search_source(
        self, jql: str, fields: list[str] | None = None, max_results: int = 50
    ) -> list[dict]:
        return self._call(self.jpd.search_issues, jql, fields, max_results)

    def get_source(self, key: str) -> dict | None:
        return self._call(
            self.jpd.get_issue, key, ["summary", "status", "updated"]
        )

    def source_fields(self) -> list[dict]:
        """Field metadata of the JPD site; a failed read aborts the pass."""
        try:
            return self._call(self.jpd.list_fields)
        except (requests.RequestException, RateLimitExhaustedError) as exc:
            raise FatalSyncError(
                f"jpd: cannot read field metadata: {exc}"
            ) from exc

    def transition_source(self, key: str, status_name: str) -> bool:
        result = self._mutate(
            f"transition {key} to '{status_name}'",
            self.jpd.transition_issue,
            key,
            status_name,
        )
        return True if self.dry_run else bool(result)

    def source_comments(self, key: str) -> list[dict]:
        return self._call(self.jpd.get_comments, key)

    def add_source_comment(self, key: str, text: str) -> None:
        self._mutate(f"comment on {key}", self.jpd.add_comment, key, text)

    # ------------------------------------------------------------------
    # Downstream (GitHub)
    # ------------------------------------------------------------------

    def search_destination(self, text: str) -> list[dict]:
        """Search issues containing *text*, overlaid with this pass's writes."""
        fetched = self._call(self.github.search_issues, text)
        by_number: dict[int, dict] = {int(i["number"]): i for i in fetched}
        for number, issue in self.pass_cache.issues.items():
            if number in by_number or text in (issue.get("body") or ""):
                by_number[number] = issue
        order = sorted(by_number, key=lambda n: (n < 0, abs(n)))
        return [by_number[n] for n in order]

    def known_destination(self, number: int) -> dict | None:
        """The issue as last read or written this pass, without a request."""
        return self.pass_cache.get_issue(number)

    def get_destination(self, number: int) -> dict | None:
        cached = self.pass_cache.get_issue(number)
        if cached is not None:
            return cached
        if number < 0:
            return None
        issue = self._call(self.github.get_issue, number)
        if issue is not None:
            self.pass_cache.remember_issue(issue)
        return issue

    def create_destination(
        self, title: str, body: str, labels: list[str] | None = None
    ) -> dict:
        """Create an issue and return its payload.

        In a dry run the returned payload carries a negative placeholder
        number that later reads and updates in this pass understand.
        """
        labels = list(labels or [])
        self.ensure_labels(labels)
        created = self._mutate(
            f"create issue '{title}'",
            self.github.create_issue,
            title,
            body,
            labels,
        )
        if created is None:
            created = {
                "number": self.pass_cache.allocate_placeholder(),
                "title": title,
                "body": body,
                "state": "open",
                "labels": [{"name": name} for name in labels],
                "updated_at": _now(),
            }
        self.pass_cache.remember_issue(created)
        return created

    def update_destination(self, number: int, **fields: Any) -> dict:
        """Patch an issue with ``title``, ``body``, ``state`` or ``labels``."""
        if fields.get("labels"):
            self.ensure_labels(fields["labels"])
        updated = self._mutate(
            f"update issue #{number} ({', '.join(sorted(fields))})",
            self.github.update_issue,
            number,
            **fields,
        )
        if updated is None:
            updated = self.get_destination(number) or {"number": number}
            updated.update(fields)
            if "labels" in fields:
                updated["labels"] = [{"name": name} for name in fields["labels"]]
            updated["updated_at"] = _now()
        self.pass_cache.remember_issue(updated)
        return updated

    def destination_comments(self, number: int) -> list[dict]:
        if number < 0:
            return []
        return self._call(self.github.list_comments, number)

    def add_destination_comment(self, number: int, body: str) -> None:
        self._mutate(
            f"comment on issue #{number}", self.github.add_comment, number, body
        )

    def ensure_labels(self, labels: list[str]) -> None:
        """Make sure every label exists, creating missing ones.

        Existence checks for labels not seen this pass run concurrently.
        """
        unknown: list[str] = []
        for name in labels:
            if self.pass_cache.label_known(name) is None and name not in unknown:
                unknown.append(name)
        if not unknown:
            return

        found = gather_limited(
            [
                lambda name=name: self._call(self.github.get_label, name)
                for name in unknown
            ],
            self.max_parallel_requests,
        )
        for name, label in zip(unknown, found):
            if label is None:
                self._mutate(
                    f"create label '{name}'", self.github.create_label, name
                )
            self.pass_cache.remember_label(name)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
