"""HTTP clients, retry handling and caching shared by the sync engine."""

from .cache import ConnectionCache, PassCache
from .gateway import ApiGateway
from .github_client import GitHubClient
from .jpd_client import JpdClient
from .rate_limit import is_rate_limit_error, with_retry

__all__ = [
    "ApiGateway",
    "ConnectionCache",
    "GitHubClient",
    "JpdClient",
    "PassCache",
    "is_rate_limit_error",
    "with_retry",
]
