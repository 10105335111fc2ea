"""Remote storage for the state file (GitHub contents API)."""

from .github_client import (
    GitHubContentsClient,
    RemoteAuthError,
    RemoteBlob,
    RemoteConflictError,
    RemoteNetworkError,
    RemoteNotFoundError,
    RemoteStateError,
)

__all__ = [
    "GitHubContentsClient",
    "RemoteAuthError",
    "RemoteBlob",
    "RemoteConflictError",
    "RemoteNetworkError",
    "RemoteNotFoundError",
    "RemoteStateError",
]
