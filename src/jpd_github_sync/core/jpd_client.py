import threading
from typing import Any
from urllib.parse import quote

import requests

from ..config import Config

SEARCH_PAGE_SIZE = 50
COMMENT_PAGE_SIZE = 100


class JpdClient:
    """Thin REST client for Jira Product Discovery (Jira Cloud API v3).

    Returns decoded JSON; HTTP failures surface as ``requests.HTTPError``
    so the gateway's retry wrapper can classify them.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = config.jpd_base_url.rstrip("/")

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.auth = (self.config.jpd_email, self.config.jpd_api_token)
        session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )
        return session

    def _request(self, method: str, path: str, **kwargs) -> Any:
        response = self._get_session().request(
            method,
            f"{self.base_url}{path}",
            timeout=(10, 60),
            **kwargs,
        )
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    def validate_connection(self) -> dict:
        """
        Fetch the authenticated account; raises on rejected credentials.
        """
        return self._request("GET", "/rest/api/3/myself")

    def search_issues(
        self,
        jql: str,
        fields: list[str] | None = None,
        max_results: int = 50,
    ) -> list[dict]:
        """
        Run *jql* and return up to *max_results* issues.

        Pages with ``nextPageToken`` through ``POST /rest/api/3/search/jql``,
        never asking for more than 50 issues per page.
        """
        issues: list[dict] = []
        next_page_token: str | None = None
        while len(issues) < max_results:
            payload: dict[str, Any] = {
                "jql": jql,
                "fields": fields or ["*all"],
                "maxResults": min(max_results - len(issues), SEARCH_PAGE_SIZE),
            }
            if next_page_token:
                payload["nextPageToken"] = next_page_token

            data = self._request("POST", "/rest/api/3/search/jql", json=payload)
            issues.extend(data.get("issues") or [])
            next_page_token = data.get("nextPageToken")
            if not next_page_token:
                break
        return issues[:max_results]

    def get_issue(
        self, key: str, fields: list[str] | None = None
    ) -> dict | None:
        """
        Get one issue by key, or ``None`` if it does not exist (404).
        """
        try:
            return self._request(
                "GET",
                f"/rest/api/3/issue/{quote(key)}",
                params={"fields": ",".join(fields or ["*all"])},
            )
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                return None
            raise

    def update_issue(self, key: str, fields: dict[str, Any]) -> None:
        self._request(
            "PUT", f"/rest/api/3/issue/{quote(key)}", json={"fields": fields}
        )

    def list_fields(self) -> list[dict]:
        """
        Return metadata (id, name, schema) for every field on the site.
        """
        return self._request("GET", "/rest/api/3/field") or []

    def get_transitions(self, key: str) -> list[dict]:
        data = self._request("GET", f"/rest/api/3/issue/{quote(key)}/transitions")
        return data.get("transitions") or []

    def transition_issue(self, key: str, status_name: str) -> bool:
        """
        Move *key* to the status called *status_name*.

        Returns:
            False when no available transition leads to that status.
        """
        target = status_name.lower()
        for transition in self.get_transitions(key):
            to_name = ((transition.get("to") or {}).get("name") or "").lower()
            if target in (to_name, (transition.get("name") or "").lower()):
                self._request(
                    "POST",
                    f"/rest/api/3/issue/{quote(key)}/transitions",
                    json={"transition": {"id": transition["id"]}},
                )
                return True
        return False

    def get_comments(self, key: str) -> list[dict]:
        """
        Return every comment on *key*, paging with ``startAt``.
        """
        comments: list[dict] = []
        while True:
            data = self._request(
                "GET",
                f"/rest/api/3/issue/{quote(key)}/comment",
                params={
                    "startAt": len(comments),
                    "maxResults": COMMENT_PAGE_SIZE,
                },
            )
            page = data.get("comments") or []
            comments.extend(page)
            if not page or len(comments) >= data.get("total", 0):
                return comments

    def add_comment(self, key: str, text: str) -> dict:
        """
        Add a plain-text comment, wrapped in a minimal ADF document.
        """
        paragraphs = [
            {"type": "paragraph", "content": [{"type": "text", "text": chunk}]}
            for chunk in text.split("\n\n")
            if chunk.strip()
        ]
        body = {"type": "doc", "version": 1, "content": paragraphs}
        return self._request(
            "POST",
            f"/rest/api/3/issue/{quote(key)}/comment",
            json={"body": body},
        )
