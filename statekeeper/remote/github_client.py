"""GitHub contents API client for the remote copy of the state file."""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

RAW_MEDIA_TYPE = "application/vnd.github.raw"


class RemoteStateError(RuntimeError):
    """Base error for remote state operations."""


class RemoteNotFoundError(RemoteStateError):
    """The file does not exist in the repository (or the repo is not visible)."""


class RemoteAuthError(RemoteStateError):
    """The token was rejected or lacks access."""


class RemoteNetworkError(RemoteStateError):
    """Transport failure, timeout, server error or unreadable response."""


class RemoteConflictError(RemoteStateError):
    """The sha supplied on write no longer matches the remote file."""


@dataclass
class RemoteBlob:
    """A file fetched from the repository."""

    content: bytes
    sha: str


class GitHubContentsClient:
    """Fetches and writes one file through the GitHub contents API.

    GET returns ``{"content": <base64>, "sha": <blob sha>}``; PUT takes
    ``{"message", "content", "sha"}`` where ``sha`` must be the current blob
    sha when updating and is omitted when creating. No retries are made here.
    """

    def __init__(
        self,
        repo: str,
        path: str,
        token: str,
        *,
        branch: str | None = None,
        api_base: str = "https://api.github.com",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the client.

        Args:
            repo: Repository as "owner/name".
            path: Path of the file inside the repository.
            token: Token sent as ``Authorization: token <token>``.
            branch: Branch to read from and commit to (default branch if None).
            api_base: API root URL.
            timeout: Request timeout in seconds.
            client: Pre-built HTTP client (mainly for tests). Not closed by close().
        """
        if not repo or not token:
            raise ValueError("repo and token are required")
        self.repo = repo
        self.path = path.lstrip("/")
        self.branch = branch
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._token = token
        self._owns_client = client is None
        self._client = client

    @property
    def url(self) -> str:
        return f"{self.api_base}/repos/{self.repo}/contents/{quote(self.path)}"

    def _headers(self, accept: str = "application/vnd.github+json") -> dict[str, str]:
        return {
            "Authorization": f"token {self._token}",
            "Accept": accept,
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubContentsClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _request(self, method: str, accept: str | None = None, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        headers = self._headers(accept) if accept else self._headers()
        try:
            return await client.request(method, self.url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteNetworkError(f"{method} {self.path}: request timed out") from e
        except httpx.TransportError as e:
            raise RemoteNetworkError(f"{method} {self.path}: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, what: str) -> None:
        status = response.status_code
        if status in (200, 201):
            return
        if status in (401, 403):
            raise RemoteAuthError(f"{what}: HTTP {status} ({_message(response)})")
        if status == 404:
            raise RemoteNotFoundError(f"{what}: not found")
        if status in (409, 422):
            raise RemoteConflictError(f"{what}: HTTP {status} ({_message(response)})")
        raise RemoteNetworkError(f"{what}: HTTP {status} ({_message(response)})")

    async def fetch(self) -> RemoteBlob:
        """Download the file.

        Returns:
            RemoteBlob with decoded content and the current blob sha.

        Raises:
            RemoteNotFoundError, RemoteAuthError, RemoteNetworkError.
        """
        params = {"ref": self.branch} if self.branch else None
        what = f"fetch {self.repo}/{self.path}"
        response = await self._request("GET", params=params)
        self._raise_for_status(response, what)

        try:
            data = response.json()
            sha = data["sha"]
            encoding = data.get("encoding", "base64")
            if encoding == "base64":
                # GitHub wraps the base64 payload at 60 columns
                content = base64.b64decode("".join(data["content"].split()))
        except (ValueError, KeyError, TypeError, AttributeError, binascii.Error) as e:
            raise RemoteNetworkError(f"{what}: malformed response") from e

        if encoding != "base64":
            # Files over 1 MB come back with encoding "none" and no content
            logger.debug(f"{self.repo}/{self.path} has encoding {encoding!r}, downloading raw")
            response = await self._request("GET", accept=RAW_MEDIA_TYPE, params=params)
            self._raise_for_status(response, what)
            content = response.content

        logger.debug(f"Fetched {len(content)} bytes from {self.repo}/{self.path} (sha={sha})")
        return RemoteBlob(content=content, sha=sha)

    async def write(self, content: bytes, sha: str | None, message: str) -> str:
        """Create or update the file.

        Args:
            content: New file content.
            sha: Current blob sha; empty or None creates the file.
            message: Commit message.

        Returns:
            The new blob sha.

        Raises:
            RemoteConflictError, RemoteAuthError, RemoteNetworkError.
        """
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
        }
        if sha:
            payload["sha"] = sha
        if self.branch:
            payload["branch"] = self.branch

        response = await self._request("PUT", json=payload)
        what = f"write {self.repo}/{self.path}"
        if response.status_code == 404:
            # PUT answers 404 when the repo is missing or the token cannot see it
            raise RemoteAuthError(f"{what}: repository not found or not accessible")
        self._raise_for_status(response, what)

        try:
            new_sha = response.json()["content"]["sha"]
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteNetworkError(f"{what}: malformed response") from e

        logger.debug(f"Wrote {len(content)} bytes to {self.repo}/{self.path} (sha={new_sha})")
        return new_sha


def _message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.text[:200]
