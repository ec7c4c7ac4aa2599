"""Live end-to-end checks against real JPD and GitHub (gated by ``--run-live``).

Only dry runs are issued, so nothing is written to either tracker.
"""

from __future__ import annotations

import os

import pytest

from jpd_github_sync.config import load_config
from jpd_github_sync.config_schema import build_config
from jpd_github_sync.core import ApiGateway, GitHubClient, JpdClient
from jpd_github_sync.sync import SyncEngine


@pytest.mark.live
class TestLiveDryRun:
    """Dry-run pass over the configured query and repository.

    Requires the usual credential env vars plus ``JPD_SYNC_LIVE_JQL``.
    """

    @pytest.fixture
    def live_engine(self):
        jql = os.environ.get("JPD_SYNC_LIVE_JQL", "")
        if not jql:
            pytest.skip("JPD_SYNC_LIVE_JQL not set")

        config = load_config()
        unified = build_config({"sync": {"jql": jql, "max_results": 20}})
        gateway = ApiGateway(
            JpdClient(config),
            GitHubClient(config),
            retry=unified.rate_limit,
            max_parallel_requests=config.max_parallel_requests,
        )
        return SyncEngine(gateway, unified, jpd_base_url=config.jpd_base_url)

    def test_dry_run_makes_no_writes(self, live_engine):
        report = live_engine.run(dry_run=True)

        assert report.dry_run is True
        assert live_engine.gateway.mutations == 0
        assert len(report.results) >= len(report.created)

    def test_two_dry_runs_plan_the_same(self, live_engine):
        first = live_engine.run(dry_run=True)
        second = live_engine.run(dry_run=True)

        def plan(report):
            return sorted((r.key, r.action.value) for r in report.results)

        assert plan(first) == plan(second)
