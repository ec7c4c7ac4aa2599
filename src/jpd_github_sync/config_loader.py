"""
Hierarchical configuration loader for jpd_github_sync.

Provides convention-based config file discovery, YAML !include support,
env var interpolation, and hierarchical merge with "project wins" semantics.

Usage:
    from jpd_github_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".jpd_sync"
CONFIG_ENV_VAR = "JPD_SYNC_CONFIG"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` patterns with env values.

    * ``${VAR}`` becomes the variable's value, or ``""`` when unset.
    * ``${VAR:-default}`` uses *default* when VAR is unset or empty.
    * A lone ``${`` without a closing brace is left as is.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    """Interpolate env vars in every string of a nested dict/list."""
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support (dedicated SafeLoader subclass)
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader with an ``!include`` tag.

    Mapping files grow long; ``mappings: !include mappings.yml`` keeps the
    main file readable.  A private subclass leaves ``yaml.SafeLoader``
    untouched for other users in the process.
    """


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Handle ``!include path/to/file.yml`` directives."""
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    include_stack: list[Path] = getattr(loader, "_include_stack", [])
    if target in include_stack:
        chain = " -> ".join(str(p) for p in [*include_stack, target])
        raise ConfigError(f"Circular include detected: {chain}")

    if not target.exists():
        raise ConfigError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )

    return _load_yaml_with_includes(target, _include_stack=[*include_stack, target])


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Parse *path* with ``ConfigLoader``."""
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. ``JPD_SYNC_CONFIG`` env var (explicit single path)
        2. ``.jpd_sync/config.yml`` in CWD (project-level)
        3. ``.jpd_sync/config.yaml`` in CWD (alternate extension)
        4. ``~/.config/jpd_sync/config.yml`` (XDG global)

    Only paths that exist on disk are returned.
    """
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    cwd = Path.cwd()
    candidates.append(cwd / CONFIG_DIR_NAME / "config.yml")
    candidates.append(cwd / CONFIG_DIR_NAME / "config.yaml")
    candidates.append(Path.home() / ".config" / "jpd_sync" / "config.yml")

    return [p for p in candidates if p.exists()]


# ---------------------------------------------------------------------------
# 3a. Config bootstrapping
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# jpd-github-sync configuration
#
# Credentials are best kept in the environment (or a .env file):
#   JPD_BASE_URL, JPD_EMAIL, JPD_API_KEY
#   GITHUB_TOKEN, GITHUB_OWNER, GITHUB_REPO
#
# jpd:
#   base_url: ${JPD_BASE_URL}
#   email: ${JPD_EMAIL}
#
# github:
#   owner: acme
#   repo: roadmap
#   max_parallel_requests: 5
#
# sync:
#   direction: jpd-to-github       # or bidirectional
#   jql: project = MTT AND updated > -7d
#   detect_orphans: true
#   comments: false
#
# mappings:
#   - jpd: fields.summary
#     github: title
#     required: true
#   - github: body
#     template: "{{fields.description}}"
#   - jpd: fields.customfield_10001
#     github: labels
#     mapping:
#       High: "priority:high"
#       Low: "priority:low"
#   - github: labels
#     transform_function: transforms/derive_labels.py
#
# fields:                          # checked before every pass
#   - id: customfield_10001
#     name: Priority
#     type: select
#     required: true
#
# statuses:
#   Done:
#     github_state: closed
#   Archived:
#     sync: false
#
# hierarchy:
#   enabled: true
#   max_depth: 8
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def resolve_config_path() -> Path:
    """Return the config file that is (or would be) in effect.

    The highest-precedence existing file wins; with none on disk the
    project-level default ``CWD / .jpd_sync / config.yml`` is returned.
    Nothing is created here -- see ``ensure_config()``.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / CONFIG_DIR_NAME / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Write a commented starter config unless one already exists.

    Args:
        target: Explicit path to create. Defaults to
            ``resolve_config_path()``.

    Returns:
        Path to the config file (existing or newly created).
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# 4. Loading and hierarchical merge
# ---------------------------------------------------------------------------


def _read_mapping(path: Path) -> dict[str, Any]:
    try:
        data = _load_yaml_with_includes(path)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse config file {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Config file {path} must contain a mapping, "
            f"got {type(data).__name__}"
        )
    return data


def load_config_file(path: Path) -> dict[str, Any]:
    """Load one explicit config file (the CLI ``--config`` path).

    Raises:
        ConfigError: If the file is missing, unparsable, or not a mapping.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    logger.debug("Loading config: %s", path)
    return _interpolate_recursive(_read_mapping(path))


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge all discovered config files.

    Merge strategy ("project wins"):
        Files are loaded from lowest precedence to highest.  Each file's
        top-level keys **replace** (not deep-merge) those from earlier files.

    After merging, env var interpolation is applied to all string values.

    Returns an empty dict when no config files exist (zero-config).

    Raises:
        ConfigError: If a discovered file cannot be parsed.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        merged.update(_read_mapping(path))

    return _interpolate_recursive(merged)


def connection_fallbacks(raw: dict[str, Any]) -> dict[str, Any]:
    """Flatten the ``jpd`` and ``github`` sections for ``load_config()``."""
    fallbacks: dict[str, Any] = {}
    for section in ("jpd", "github"):
        values = raw.get(section) or {}
        if isinstance(values, dict):
            fallbacks.update(
                {k: v for k, v in values.items() if v not in (None, "")}
            )
    return fallbacks
