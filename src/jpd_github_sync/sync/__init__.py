"""JPD to GitHub reconciliation.

Public API for keeping GitHub issues in agreement with Jira Product
Discovery ideas.

Architecture
------------
There is no database.  Every managed GitHub issue carries a hidden state
block naming its JPD key and a hash of the mapped content; each pass
rebuilds the key-to-issue correspondence by searching for that block and
compares hashes to decide what to do.  Parent/child links are projected
into markdown checklists inside parent bodies.

Modules:

- ``engine``     -- ``SyncEngine``: orchestrates a full pass.
- ``state``      -- encode/decode the state block, content hashing.
- ``hierarchy``  -- ``HierarchyProjector``: checklist projection and
  depth-limited parent walks.
- ``comments``   -- ``CommentSyncer``: attributed comment mirroring.
- ``fields``     -- pre-flight check of configured JPD field definitions.
- ``models``     -- ``RecordState``, ``SyncAction``, ``SourceRecord``,
  ``DestinationRecord``, ``SyncResult``, ``SyncReport``.
- ``reporter``   -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from jpd_github_sync.core import ApiGateway, GitHubClient, JpdClient
    from jpd_github_sync.sync import SyncEngine, format_sync_report

    gateway = ApiGateway(JpdClient(config), GitHubClient(config))
    engine = SyncEngine(gateway, unified, jpd_base_url=config.jpd_base_url)

    # Dry-run first to preview changes
    preview = engine.run(dry_run=True)
    print(format_dry_run_preview(preview))

    report = engine.run()
    print(format_sync_report(report))
"""

from .engine import SyncEngine
from .hierarchy import HierarchyProjector
from .models import (
    DestinationRecord,
    RecordState,
    SourceRecord,
    SyncAction,
    SyncReport,
    SyncResult,
)
from .reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)
from .state import SyncStateBlock, content_hash, decode_state, encode_state

__all__ = [
    "DestinationRecord",
    "HierarchyProjector",
    "RecordState",
    "SourceRecord",
    "SyncAction",
    "SyncEngine",
    "SyncReport",
    "SyncResult",
    "SyncStateBlock",
    "content_hash",
    "decode_state",
    "encode_state",
    "format_dry_run_preview",
    "format_sync_report",
    "report_to_json",
]
