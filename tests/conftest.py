"""Shared pytest fixtures for jpd-github-sync tests.

``FakeJpdClient`` and ``FakeGitHubClient`` keep both trackers in memory
and count every mutating call, so tests can assert idempotence ("the
second pass made zero writes") without a network.
"""

from __future__ import annotations

import copy
from typing import Any

import pytest
import requests
from dotenv import load_dotenv

from jpd_github_sync.config import Config
from jpd_github_sync.config_schema import build_config
from jpd_github_sync.core.cache import ConnectionCache
from jpd_github_sync.core.gateway import ApiGateway
from jpd_github_sync.sync.engine import SyncEngine

load_dotenv()

JPD_BASE_URL = "https://acme.atlassian.net"


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require live JPD and GitHub credentials",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring live JPD and GitHub access"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def http_error(
    status: int, text: str = "", headers: dict[str, str] | None = None
) -> requests.HTTPError:
    """Build a ``requests.HTTPError`` carrying a response with *status*."""
    response = requests.Response()
    response.status_code = status
    response._content = text.encode("utf-8")
    response.headers.update(headers or {})
    return requests.HTTPError(f"{status} Error", response=response)


def jpd_issue(
    key: str,
    summary: str,
    status: str = "Backlog",
    parent: str | None = None,
    subtasks: tuple[str, ...] = (),
    description: str = "",
    updated: str = "2026-01-05T10:00:00.000+0000",
    **extra_fields: Any,
) -> dict[str, Any]:
    """Build a raw JPD issue dict as the search API returns it."""
    fields: dict[str, Any] = {
        "summary": summary,
        "status": {"name": status},
        "description": description,
        "updated": updated,
        "subtasks": [{"key": k} for k in subtasks],
    }
    if parent:
        fields["parent"] = {"key": parent}
    fields.update(extra_fields)
    return {"key": key, "fields": fields}


class FakeJpdClient:
    """In-memory stand-in for ``JpdClient``."""

    def __init__(self, issues: list[dict] | None = None) -> None:
        self.issues: dict[str, dict] = {i["key"]: i for i in issues or []}
        self.comments: dict[str, list[dict]] = {}
        self.fields: list[dict] = []
        self.mutations: list[tuple] = []
        self.reject_credentials = False
        self.hidden_from_search: set[str] = set()
        self.search_calls = 0
        self.field_calls = 0
        self._comment_id = 10000

    def add(self, issue: dict) -> None:
        self.issues[issue["key"]] = issue

    def validate_connection(self) -> dict:
        if self.reject_credentials:
            raise http_error(401, "Unauthorized")
        return {"accountId": "abc"}

    def search_issues(
        self, jql: str, fields: list[str] | None = None, max_results: int = 50
    ) -> list[dict]:
        self.search_calls += 1
        return [
            copy.deepcopy(issue)
            for key, issue in self.issues.items()
            if key not in self.hidden_from_search
        ][:max_results]

    def get_issue(self, key: str, fields: list[str] | None = None) -> dict | None:
        issue = self.issues.get(key)
        return copy.deepcopy(issue) if issue is not None else None

    def transition_issue(self, key: str, status_name: str) -> bool:
        self.mutations.append(("transition_issue", key, status_name))
        self.issues[key]["fields"]["status"] = {"name": status_name}
        return True

    def list_fields(self) -> list[dict]:
        self.field_calls += 1
        return copy.deepcopy(self.fields)

    def get_comments(self, key: str) -> list[dict]:
        return copy.deepcopy(self.comments.get(key, []))

    def add_comment(self, key: str, text: str) -> dict:
        self.mutations.append(("add_comment", key, text))
        self._comment_id += 1
        comment = {
            "id": str(self._comment_id),
            "author": {"displayName": "Sync Bot", "accountId": "bot"},
            "body": text,
            "created": "2026-01-06T00:00:00.000+0000",
        }
        self.comments.setdefault(key, []).append(comment)
        return comment


class FakeGitHubClient:
    """In-memory stand-in for ``GitHubClient``.

    Attributes:
        hidden_from_search: Issue numbers the search index has not caught
            up with yet.
    """

    def __init__(self, issues: list[dict] | None = None) -> None:
        self.issues: dict[int, dict] = {}
        self.labels: set[str] = set()
        self.comments: dict[int, list[dict]] = {}
        self.mutations: list[tuple] = []
        self.hidden_from_search: set[int] = set()
        self.reject_credentials = False
        self._next_number = 1
        for issue in issues or []:
            self.add(issue)

    def add(self, issue: dict) -> dict:
        issue = {
            "state": "open",
            "labels": [],
            "updated_at": "2026-01-01T00:00:00Z",
            **issue,
        }
        self.issues[issue["number"]] = issue
        self._next_number = max(self._next_number, issue["number"] + 1)
        return issue

    def validate_connection(self) -> dict:
        if self.reject_credentials:
            raise http_error(401, "Bad credentials")
        return {"full_name": "acme/roadmap"}

    def search_issues(self, text: str) -> list[dict]:
        return [
            copy.deepcopy(issue)
            for number, issue in sorted(self.issues.items())
            if text in (issue.get("body") or "")
            and number not in self.hidden_from_search
        ]

    def get_issue(self, number: int) -> dict | None:
        issue = self.issues.get(number)
        return copy.deepcopy(issue) if issue is not None else None

    def create_issue(
        self, title: str, body: str, labels: list[str] | None = None
    ) -> dict:
        self.mutations.append(("create_issue", title))
        issue = self.add(
            {
                "number": self._next_number,
                "title": title,
                "body": body,
                "labels": [{"name": n} for n in labels or []],
            }
        )
        return copy.deepcopy(issue)

    def update_issue(self, number: int, **fields: Any) -> dict:
        self.mutations.append(("update_issue", number, tuple(sorted(fields))))
        issue = self.issues[number]
        for name, value in fields.items():
            if name == "labels":
                issue["labels"] = [{"name": n} for n in value]
            else:
                issue[name] = value
        issue["updated_at"] = "2026-01-02T00:00:00Z"
        return copy.deepcopy(issue)

    def get_label(self, name: str) -> dict | None:
        return {"name": name} if name in self.labels else None

    def create_label(self, name: str, color: str = "ededed") -> dict:
        self.mutations.append(("create_label", name))
        self.labels.add(name)
        return {"name": name, "color": color}

    def list_comments(self, number: int) -> list[dict]:
        return copy.deepcopy(self.comments.get(number, []))

    def add_comment(self, number: int, body: str) -> dict:
        self.mutations.append(("add_comment", number))
        comment = {
            "id": 900 + len(self.mutations),
            "user": {"login": "sync-bot", "html_url": "https://github.com/sync-bot"},
            "body": body,
            "created_at": "2026-01-06T00:00:00Z",
        }
        self.comments.setdefault(number, []).append(comment)
        return comment


def make_gateway(jpd: FakeJpdClient, github: FakeGitHubClient, **kwargs) -> ApiGateway:
    """Gateway over the fakes with no sleeping and no on-disk cache."""
    kwargs.setdefault("connection_cache", ConnectionCache())
    kwargs.setdefault("sleep", lambda seconds: None)
    return ApiGateway(jpd, github, **kwargs)  # type: ignore[arg-type]


DEFAULT_MAPPINGS = [
    {"jpd": "fields.summary", "github": "title", "required": True},
    {"github": "body", "template": "{{fields.description}}"},
]


def make_engine(
    jpd: FakeJpdClient,
    github: FakeGitHubClient,
    **raw_config: Any,
) -> SyncEngine:
    """SyncEngine over the fakes; *raw_config* is merged into the YAML dict."""
    raw: dict[str, Any] = {"mappings": DEFAULT_MAPPINGS}
    raw.update(raw_config)
    return SyncEngine(
        make_gateway(jpd, github),
        build_config(raw),
        jpd_base_url=JPD_BASE_URL,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_config():
    """Create a Config instance for client tests."""
    return Config(
        jpd_base_url=JPD_BASE_URL,
        jpd_email="bot@acme.test",
        jpd_api_token="jpd-token",
        github_token="gh-token",
        github_owner="acme",
        github_repo="roadmap",
    )


@pytest.fixture
def fake_jpd():
    return FakeJpdClient()


@pytest.fixture
def fake_github():
    return FakeGitHubClient()
