"""Short-lived caches used by the API gateway.

* ``ConnectionCache`` remembers that a credential set passed a connection
  check recently, so repeated runs do not spend rate limit on
  ``/myself`` and ``/repos/...`` calls.  It can persist to a small JSON
  file written atomically (temp file + ``os.replace()``).
* ``PassCache`` lives for one reconciliation pass: label existence and
  the bodies of issues written during the pass, which the search index
  does not reflect yet.

Neither cache is a module-level singleton; callers construct and pass
them explicitly.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_CONNECTION_TTL = 300.0


class ConnectionCache:
    """Remember successful credential checks for a limited time.

    Credentials are only ever stored as a SHA-256 digest.

    Args:
        ttl: Seconds a successful check stays valid.
        path: Optional JSON file to persist entries across runs.
        clock: Time source, replaceable in tests.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_CONNECTION_TTL,
        path: Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl = ttl
        self._path = path
        self._clock = clock
        self._entries: dict[str, dict[str, Any]] = self._load()

    @staticmethod
    def hash_credentials(credentials: dict[str, str]) -> str:
        """Digest of *credentials*, independent of key order."""
        canonical = json.dumps(credentials, sort_keys=True)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def is_valid(self, service: str, credentials: dict[str, str]) -> bool:
        """Whether *credentials* for *service* passed a check within the TTL."""
        entry = self._entries.get(service)
        if not entry:
            return False
        if self._clock() - entry.get("timestamp", 0) > self.ttl:
            return False
        return entry.get("credentials_hash") == self.hash_credentials(
            credentials
        )

    def mark_success(self, service: str, credentials: dict[str, str]) -> None:
        self._entries[service] = {
            "timestamp": self._clock(),
            "credentials_hash": self.hash_credentials(credentials),
        }
        self._save()

    def clear(self, service: str | None = None) -> None:
        """Forget *service*, or every service when ``None``."""
        if service is None:
            self._entries.clear()
        else:
            self._entries.pop(service, None)
        self._save()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> dict[str, dict[str, Any]]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.debug("Ignoring unreadable connection cache %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self._path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._entries, fh, indent=2)
            os.replace(tmp_path, self._path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise


@dataclass
class PassCache:
    """State shared by the gateway and projector for one pass.

    Attributes:
        labels: Label name (lower-cased) to existence, as checked or
            created this pass.
        issues: Issue number to the latest known payload, read or
            written this pass (or, in a dry run, would have been written).
    """

    labels: dict[str, bool] = field(default_factory=dict)
    issues: dict[int, dict[str, Any]] = field(default_factory=dict)
    _next_placeholder: int = -1

    def remember_issue(self, issue: dict[str, Any]) -> None:
        self.issues[int(issue["number"])] = dict(issue)

    def get_issue(self, number: int) -> dict[str, Any] | None:
        issue = self.issues.get(number)
        return dict(issue) if issue is not None else None

    def allocate_placeholder(self) -> int:
        """Next synthetic (negative) issue number for a dry-run creation."""
        number = self._next_placeholder
        self._next_placeholder -= 1
        return number

    def label_known(self, name: str) -> bool | None:
        return self.labels.get(name.lower())

    def remember_label(self, name: str, exists: bool = True) -> None:
        self.labels[name.lower()] = exists
