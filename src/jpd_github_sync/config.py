"""Connection configuration for JPD and GitHub.

Reads connection settings from CLI args, environment variables, .env
files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    JPD_BASE_URL: Atlassian site URL, e.g. https://acme.atlassian.net (required)
    JPD_EMAIL: Atlassian account email (required)
    JPD_API_KEY: Atlassian API token (required)
    GITHUB_TOKEN: GitHub personal access token (required)
    GITHUB_OWNER: Repository owner (required)
    GITHUB_REPO: Repository name (required)
    JPD_SYNC_DEBUG: Enable debug logging (optional, default: false)
    JPD_SYNC_MAX_PARALLEL_REQUESTS: Max concurrent GitHub label checks
        (optional, default: 5)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_GITHUB_API_URL = "https://api.github.com"


@dataclass
class Config:
    jpd_base_url: str
    jpd_email: str
    jpd_api_token: str
    github_token: str
    github_owner: str
    github_repo: str
    github_api_url: str = DEFAULT_GITHUB_API_URL
    debug: bool = False
    max_parallel_requests: int = 5

    def jpd_credentials(self) -> dict[str, str]:
        return {
            "base_url": self.jpd_base_url,
            "email": self.jpd_email,
            "api_token": self.jpd_api_token,
        }

    def github_credentials(self) -> dict[str, str]:
        return {
            "api_url": self.github_api_url,
            "token": self.github_token,
            "owner": self.github_owner,
            "repo": self.github_repo,
        }


def _validate_url(name: str, value: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid {name} '{value}': must start with http:// or https://"
        )
    if not urlparse(value).hostname:
        raise ValueError(
            f"Invalid {name} '{value}': URL must include a hostname"
        )
    return value.removesuffix("/")


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a URL is malformed or a credential is empty.
    """
    config.jpd_base_url = _validate_url("JPD URL", config.jpd_base_url)
    config.github_api_url = _validate_url(
        "GitHub API URL", config.github_api_url
    )

    required = (
        ("jpd_email", "JPD_EMAIL"),
        ("jpd_api_token", "JPD_API_KEY"),
        ("github_token", "GITHUB_TOKEN"),
        ("github_owner", "GITHUB_OWNER"),
        ("github_repo", "GITHUB_REPO"),
    )
    for attr, env_name in required:
        if not getattr(config, attr).strip():
            raise ValueError(
                f"{env_name} cannot be empty. Set the {env_name} environment variable."
            )


def _pick(
    cli_value: str | None, env_name: str, fallbacks: dict, key: str
) -> str | None:
    value = cli_value or os.getenv(env_name) or fallbacks.get(key)
    return value.strip() if isinstance(value, str) else value


def load_config(
    jpd_url: str | None = None,
    github_owner: str | None = None,
    github_repo: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    Secrets (API token, GitHub token) have no CLI argument so they never
    show up in shell history or process listings.

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        jpd_url: Override the Atlassian site URL.
        github_owner: Override the repository owner.
        github_repo: Override the repository name.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Dict merged from the YAML ``jpd`` and ``github``
            sections (keys ``base_url``, ``email``, ``api_token``,
            ``token``, ``owner``, ``repo``, ``api_url``,
            ``max_parallel_requests``).

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a required setting is missing after checking all
            sources, or a value is malformed.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > error ---

    resolved: dict[str, str] = {}
    for attr, cli_value, env_name, key in (
        ("jpd_base_url", jpd_url, "JPD_BASE_URL", "base_url"),
        ("jpd_email", None, "JPD_EMAIL", "email"),
        ("jpd_api_token", None, "JPD_API_KEY", "api_token"),
        ("github_token", None, "GITHUB_TOKEN", "token"),
        ("github_owner", github_owner, "GITHUB_OWNER", "owner"),
        ("github_repo", github_repo, "GITHUB_REPO", "repo"),
    ):
        value = _pick(cli_value, env_name, fb, key)
        if not value:
            raise ValueError(
                f"{env_name} not found. Set the {env_name} environment "
                f"variable or add '{key}' to config.yml."
            )
        resolved[attr] = value

    api_url = fb.get("api_url") or DEFAULT_GITHUB_API_URL

    # --- Boolean fields: CLI > env > YAML > default ---

    if debug:
        final_debug = True
    else:
        env_debug = os.getenv("JPD_SYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug.lower() in ("true", "1", "yes", "on")
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    max_parallel_raw = os.getenv("JPD_SYNC_MAX_PARALLEL_REQUESTS")
    if max_parallel_raw is not None:
        try:
            final_max_parallel = int(max_parallel_raw)
        except ValueError:
            raise ValueError(
                f"Invalid JPD_SYNC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': must be a number between 1 and 100"
            ) from None
        if not (1 <= final_max_parallel <= 100):
            raise ValueError(
                f"Invalid JPD_SYNC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': must be a number between 1 and 100"
            )
    elif "max_parallel_requests" in fb:
        final_max_parallel = int(fb["max_parallel_requests"])
    else:
        final_max_parallel = 5

    config = Config(
        **resolved,
        github_api_url=api_url,
        debug=final_debug,
        max_parallel_requests=final_max_parallel,
    )

    validate_config(config)

    return config
