"""Unified configuration schema for jpd_github_sync.

Defines Pydantic models for the YAML config structure: connection
sections for both trackers, the sync pass itself, field mappings, the JPD
fields they depend on, status mappings, hierarchy behaviour, retry tuning
and logging.

Usage:
    from jpd_github_sync.config_loader import load_hierarchical_config
    from jpd_github_sync.config_schema import build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import ConfigError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Connection sections
# ---------------------------------------------------------------------------


class JpdConnectionConfig(BaseModel):
    """Jira Product Discovery connection settings.

    All fields are optional so env vars and CLI args can supply them.
    """

    base_url: str | None = Field(
        default=None, description="Atlassian site URL"
    )
    email: str | None = Field(default=None, description="Account email")
    api_token: str | None = Field(default=None, description="API token")

    model_config = {"frozen": True}


class GitHubConnectionConfig(BaseModel):
    """GitHub repository and token settings."""

    token: str | None = Field(default=None, description="GitHub token")
    owner: str | None = Field(
        default=None, description="Repository owner"
    )
    repo: str | None = Field(default=None, description="Repository name")
    api_url: str = Field(
        default="https://api.github.com", description="REST API root"
    )
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Concurrent label checks against GitHub (1-100)",
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Sync behaviour
# ---------------------------------------------------------------------------


class SyncSettings(BaseModel):
    """Settings for one reconciliation pass.

    Attributes:
        direction: Which way data flows.  ``bidirectional`` additionally
            pushes downstream status changes and comments upstream.
        jql: Query selecting the upstream candidate set.
        fields: Upstream fields requested for every record.
        max_results: Cap on upstream records fetched per pass.
        detect_orphans: Look up upstream keys that dropped out of the
            candidate set to report orphaned downstream issues.
        comments: Mirror comments in both directions (bidirectional only).
    """

    direction: Literal["jpd-to-github", "github-to-jpd", "bidirectional"] = (
        "jpd-to-github"
    )
    jql: str = "updated > -1d"
    fields: list[str] = Field(default_factory=lambda: ["*all"])
    max_results: int = Field(default=500, ge=1, le=10000)
    detect_orphans: bool = True
    comments: bool = False

    model_config = {"frozen": True}


class FieldMapping(BaseModel):
    """How one GitHub issue attribute is derived from a JPD record.

    Resolution order: ``transform_function`` > ``template`` > ``mapping``
    (lookup table) > ``transform`` (legacy template) > direct ``jpd`` path.
    """

    jpd: str | list[str] | None = None
    github: str
    template: str | None = None
    transform: str | None = None
    transform_function: str | None = None
    mapping: dict[str, str] | None = None
    required: bool = False

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _has_source(self) -> "FieldMapping":
        if not any(
            (self.jpd, self.template, self.transform, self.transform_function)
        ):
            raise ValueError(
                f"mapping for '{self.github}' needs one of jpd, template, "
                "transform or transform_function"
            )
        return self


FieldType = Literal[
    "string",
    "text",
    "number",
    "select",
    "multiselect",
    "user",
    "date",
    "datetime",
    "url",
    "array",
]


class FieldDefinition(BaseModel):
    """A JPD field the mappings depend on, checked before every pass.

    Attributes:
        id: Field id as used in record paths, e.g. ``customfield_14377``.
        name: Display name, used in error messages.
        type: Expected value type.
        required: A missing required field aborts the pass; a missing
            optional one is only logged.
    """

    id: str
    name: str | None = None
    type: FieldType
    required: bool = True

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        return f"{self.name} ({self.id})" if self.name else self.id


class StatusMapping(BaseModel):
    """Per-status behaviour keyed by the JPD status name."""

    github_state: Literal["open", "closed"] | None = None
    sync: bool = True

    model_config = {"frozen": True}


class HierarchyConfig(BaseModel):
    """Parent/child projection settings.

    Attributes:
        enabled: Track parent/child relationships at all.
        max_depth: Nesting ceiling of the downstream tracker.
        section_title: Header written above the child checklist.
        parent_title: Header written above the parent reference.
        epic_statuses / story_statuses / task_statuses: Status names that
            place a record on a hierarchy level.
        require_level: Skip records whose status maps to no level.
    """

    enabled: bool = True
    max_depth: int = Field(default=8, ge=1, le=64)
    section_title: str = "📋 Subtasks"
    parent_title: str = "🔗 Parent"
    epic_statuses: list[str] = Field(default_factory=lambda: ["Epic Design"])
    story_statuses: list[str] = Field(
        default_factory=lambda: [
            "Backlog",
            "Ready",
            "In Progress",
            "In Review",
        ]
    )
    task_statuses: list[str] = Field(default_factory=list)
    require_level: bool = False

    model_config = {"frozen": True}

    @field_validator("section_title", "parent_title")
    @classmethod
    def _single_line_title(cls, value: str) -> str:
        value = value.strip()
        if not value or "\n" in value:
            raise ValueError("must be a single non-empty line")
        return value


class RateLimitConfig(BaseModel):
    """Retry and caching knobs for the API gateway."""

    max_retries: int = Field(default=3, ge=0, le=20)
    initial_delay: float = Field(default=2.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=30.0, ge=0)
    connection_cache_ttl: float = Field(default=300.0, ge=0)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = "text"

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


def _default_mappings() -> list[FieldMapping]:
    return [FieldMapping(jpd="fields.summary", github="title", required=True)]


class UnifiedConfig(BaseModel):
    """Top-level configuration.

    Every section has defaults, so ``UnifiedConfig()`` is valid and syncs
    idea summaries to issue titles.
    """

    jpd: JpdConnectionConfig = Field(default_factory=JpdConnectionConfig)
    github: GitHubConnectionConfig = Field(
        default_factory=GitHubConnectionConfig
    )
    sync: SyncSettings = Field(default_factory=SyncSettings)
    mappings: list[FieldMapping] = Field(default_factory=_default_mappings)
    fields: list[FieldDefinition] = Field(default_factory=list)
    statuses: dict[str, StatusMapping] = Field(default_factory=dict)
    hierarchy: HierarchyConfig = Field(default_factory=HierarchyConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    @property
    def bidirectional(self) -> bool:
        return self.sync.direction == "bidirectional"

    def status_for(self, status_name: str | None) -> StatusMapping | None:
        """Return the mapping configured for *status_name*, if any."""
        if status_name is None:
            return None
        return self.statuses.get(status_name)


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw merged YAML dict.

    Handles missing sections gracefully -- anything absent gets defaults.

    Raises:
        ConfigError: If the data does not validate.
    """
    if not raw_data:
        return UnifiedConfig()

    try:
        return UnifiedConfig(**raw_data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
