import threading
from typing import Any
from urllib.parse import quote

import requests

from ..config import Config

SEARCH_PAGE_SIZE = 100
COMMENT_PAGE_SIZE = 100
DEFAULT_LABEL_COLOR = "ededed"


class GitHubClient:
    """Thin REST client for the issues of one GitHub repository."""

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.api_url = config.github_api_url.rstrip("/")
        self.owner = config.github_owner
        self.repo = config.github_repo

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {self.config.github_token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )
        return session

    def _request(self, method: str, path: str, **kwargs) -> Any:
        response = self._get_session().request(
            method,
            f"{self.api_url}{path}",
            timeout=(10, 60),
            **kwargs,
        )
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    def validate_connection(self) -> dict:
        """
        Fetch the repository; raises on a bad token or unknown repository.
        """
        return self._request("GET", self.repo_path)

    def search_issues(self, text: str) -> list[dict]:
        """
        Return every issue in the repository whose content contains *text*.

        Uses the search API, which is eventually consistent: issues
        written in the last few seconds may be missing.
        """
        query = f'repo:{self.owner}/{self.repo} is:issue "{text}"'
        issues: list[dict] = []
        page = 1
        while True:
            data = self._request(
                "GET",
                "/search/issues",
                params={"q": query, "per_page": SEARCH_PAGE_SIZE, "page": page},
            )
            items = data.get("items") or []
            issues.extend(items)
            if len(items) < SEARCH_PAGE_SIZE or len(issues) >= data.get(
                "total_count", 0
            ):
                return issues
            page += 1

    def get_issue(self, number: int) -> dict | None:
        """
        Get one issue, or ``None`` if it does not exist (404).
        """
        try:
            return self._request("GET", f"{self.repo_path}/issues/{number}")
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                return None
            raise

    def create_issue(
        self,
        title: str,
        body: str,
        labels: list[str] | None = None,
    ) -> dict:
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = labels
        return self._request("POST", f"{self.repo_path}/issues", json=payload)

    def update_issue(self, number: int, **fields: Any) -> dict:
        """
        Patch *number* with any of ``title``, ``body``, ``state``, ``labels``.
        """
        return self._request(
            "PATCH", f"{self.repo_path}/issues/{number}", json=fields
        )

    def get_label(self, name: str) -> dict | None:
        try:
            return self._request(
                "GET", f"{self.repo_path}/labels/{quote(name, safe='')}"
            )
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                return None
            raise

    def create_label(self, name: str, color: str = DEFAULT_LABEL_COLOR) -> dict:
        return self._request(
            "POST",
            f"{self.repo_path}/labels",
            json={"name": name, "color": color},
        )

    def list_comments(self, number: int) -> list[dict]:
        """
        Return every comment on *number*, oldest first, across all pages.
        """
        comments: list[dict] = []
        page = 1
        while True:
            items = self._request(
                "GET",
                f"{self.repo_path}/issues/{number}/comments",
                params={"per_page": COMMENT_PAGE_SIZE, "page": page},
            ) or []
            comments.extend(items)
            if len(items) < COMMENT_PAGE_SIZE:
                return comments
            page += 1

    def add_comment(self, number: int, body: str) -> dict:
        return self._request(
            "POST",
            f"{self.repo_path}/issues/{number}/comments",
            json={"body": body},
        )
