"""Shared fixtures: an in-memory stand-in for the GitHub contents API."""

import base64
import hashlib
import json

import httpx
import pytest

from statekeeper.remote import GitHubContentsClient


def _blob_sha(content: bytes) -> str:
    return hashlib.sha1(b"blob %d\0" % len(content) + content).hexdigest()


class FakeGitHub:
    """Serves GET/PUT on /repos/{repo}/contents/{path} from a dict."""

    def __init__(self):
        self.files: dict[str, tuple[bytes, str]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_status: int | None = None
        self.fail_methods: set[str] = {"GET", "PUT"}
        # Files above this size are served like the real API serves files over 1 MB
        self.inline_limit = 1024 * 1024
        self.fail_raw_status: int | None = None

    def seed(self, path: str, content: bytes) -> str:
        sha = _blob_sha(content)
        self.files[path] = (content, sha)
        return sha

    def content_of(self, path: str) -> bytes | None:
        entry = self.files.get(path)
        return entry[0] if entry else None

    def count(self, method: str) -> int:
        return sum(1 for r in self.requests if r.method == method)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None and request.method in self.fail_methods:
            return httpx.Response(self.fail_status, json={"message": "Simulated failure"})

        path = request.url.path.split("/contents/", 1)[1]

        if request.method == "GET":
            if path not in self.files:
                return httpx.Response(404, json={"message": "Not Found"})
            content, sha = self.files[path]
            if request.headers.get("Accept") == "application/vnd.github.raw":
                if self.fail_raw_status is not None:
                    return httpx.Response(self.fail_raw_status, json={"message": "Simulated failure"})
                return httpx.Response(200, content=content)
            if len(content) > self.inline_limit:
                return httpx.Response(
                    200,
                    json={"type": "file", "encoding": "none", "path": path, "content": "", "sha": sha},
                )
            return httpx.Response(
                200,
                json={
                    "type": "file",
                    "encoding": "base64",
                    "path": path,
                    # Line-wrapped like the real API
                    "content": base64.encodebytes(content).decode("ascii"),
                    "sha": sha,
                },
            )

        if request.method == "PUT":
            body = json.loads(request.content)
            current = self.files.get(path)
            sha = body.get("sha")
            if current is not None and not sha:
                return httpx.Response(422, json={"message": "\"sha\" wasn't supplied."})
            if current is not None and sha != current[1]:
                return httpx.Response(409, json={"message": f"{path} does not match {sha}"})
            content = base64.b64decode(body["content"])
            new_sha = self.seed(path, content)
            return httpx.Response(
                200 if current is not None else 201,
                json={"content": {"path": path, "sha": new_sha}, "commit": {"message": body["message"]}},
            )

        return httpx.Response(405, json={"message": "Method Not Allowed"})


@pytest.fixture
def fake_github():
    """Create an empty fake repository."""
    return FakeGitHub()


@pytest.fixture
def make_client(fake_github):
    """Factory for clients talking to the fake repository."""

    def _make(path: str = "maindb.json", **kwargs) -> GitHubContentsClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(fake_github.handler))
        return GitHubContentsClient("owner/repo", path, "test-token", client=http, **kwargs)

    return _make
