"""
Pytest configuration and fixtures for the test suite.

Google is faked at the HTTP layer with ``httpx.MockTransport``; the OS
secret store is replaced by an in-memory keyring backend. The OAuth
loopback listener is real: the browser stub visits it over 127.0.0.1.
"""
import asyncio
import json
import os
import sys
from typing import Any, Callable, Dict, List, Optional, Set
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import pytest_asyncio
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from streamsnap_app.config import Settings  # noqa: E402
from streamsnap_app.services import AccountServices  # noqa: E402
from streamsnap_library.credential_vault import CredentialVault  # noqa: E402


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "asyncio: mark test as an async test")


# =============================================================================
# KEYRING
# =============================================================================


class InMemoryKeyring(KeyringBackend):
    """Keyring backend holding secrets in a dict; can be told to fail."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.store: Dict[tuple, str] = {}
        self.fail_writes = False
        self.fail_reads = False
        self.fail_deletes = False

    def set_password(self, service, username, password):
        if self.fail_writes:
            raise KeyringError("keyring locked")
        self.store[(service, username)] = password

    def get_password(self, service, username):
        if self.fail_reads:
            raise KeyringError("keyring locked")
        return self.store.get((service, username))

    def delete_password(self, service, username):
        if self.fail_deletes:
            raise KeyringError("keyring locked")
        if (service, username) not in self.store:
            raise PasswordDeleteError("not found")
        del self.store[(service, username)]


# =============================================================================
# FAKE GOOGLE
# =============================================================================


class FakeGoogle:
    """
    Minimal stand-in for the Google token, Drive and YouTube endpoints.

    Tests tweak the public attributes to shape responses and inspect
    ``requests`` afterwards.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.exchange_status = 200
        self.exchange_response: Dict[str, Any] = {
            "access_token": "access-initial",
            "refresh_token": "refresh-initial",
            "expires_in": 3600,
        }
        self.refresh_status = 200
        self.refresh_calls = 0
        self.refresh_includes_refresh_token = False
        self.rejected_tokens: Set[str] = set()
        self.drive_email = "alice@example.com"
        self.user_email = "alice@example.com"
        self.folders: List[Dict[str, Any]] = []
        self.permission_status = 200
        self.playlist_item_status = 200
        self.channels: List[Dict[str, Any]] = [
            {
                "id": "UC-alice",
                "snippet": {
                    "title": "Alice Clips",
                    "thumbnails": {"default": {"url": "https://yt.example/alice.jpg"}},
                },
            }
        ]
        self.playlists: List[Dict[str, Any]] = []
        self.upload_chunks: List[bytes] = []
        self.upload_received = bytearray()
        self.lose_first_chunk = False
        self.upload_file_id = "file-123"
        # Raw bodies replacing the JSON normally served
        self.about_body: Optional[bytes] = None
        self.channel_bodies: List[bytes] = []
        # Called when a Drive upload completes, before the response goes out
        self.after_upload: Optional[Callable[[], Any]] = None

    # -- helpers --------------------------------------------------------------

    def calls(self, method: str, path_fragment: str) -> List[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and path_fragment in r.url.path
        ]

    @staticmethod
    def _json(status: int, payload: Any, headers: Optional[Dict[str, str]] = None):
        return httpx.Response(status, json=payload, headers=headers)

    def _bearer(self, request: httpx.Request) -> Optional[str]:
        auth = request.headers.get("Authorization", "")
        return auth[len("Bearer "):] if auth.startswith("Bearer ") else None

    # -- transport handler ----------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = request.url

        if url.host == "oauth2.googleapis.com" and url.path == "/token":
            return self._token(request)

        if self._bearer(request) in self.rejected_tokens:
            return self._json(401, {"error": {"code": 401, "message": "Invalid Credentials"}})

        path = url.path
        if path == "/oauth2/v1/userinfo":
            return self._json(200, {"email": self.user_email, "name": "Alice"})
        if path == "/drive/v3/about":
            if self.about_body is not None:
                return httpx.Response(200, content=self.about_body)
            return self._json(
                200,
                {
                    "user": {
                        "emailAddress": self.drive_email,
                        "displayName": "Alice Example",
                        "photoLink": "https://lh3.example/alice.png",
                    }
                },
            )
        if path == "/drive/v3/files" and request.method == "GET":
            return self._list_files(request)
        if path == "/drive/v3/files" and request.method == "POST":
            body = json.loads(request.content)
            return self._json(
                200,
                {"id": "folder-new", "name": body["name"], "webViewLink": "https://drive/folder-new"},
            )
        if path.startswith("/drive/v3/files/") and path.endswith("/permissions"):
            return self._json(self.permission_status, {"id": "perm-1"})
        if path == "/upload/drive/v3/files":
            if self.after_upload is not None:
                self.after_upload()
            return self._json(200, {"id": self.upload_file_id, "name": "clip.webm"})
        if path == "/upload/youtube/v3/videos":
            return self._youtube_upload(request)
        if path == "/youtube/v3/channels":
            if self.channel_bodies:
                return httpx.Response(200, content=self.channel_bodies.pop(0))
            return self._json(200, {"items": self.channels})
        if path == "/youtube/v3/playlists":
            return self._json(200, {"items": self.playlists})
        if path == "/youtube/v3/playlistItems":
            return self._json(self.playlist_item_status, {"id": "pli-1"})

        return self._json(404, {"error": "not faked"})

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        if form.get("grant_type") == "authorization_code":
            return self._json(self.exchange_status, self.exchange_response)

        self.refresh_calls += 1
        if self.refresh_status != 200:
            return self._json(self.refresh_status, {"error": "invalid_grant"})
        payload = {"access_token": f"access-refreshed-{self.refresh_calls}", "expires_in": 3600}
        if self.refresh_includes_refresh_token:
            payload["refresh_token"] = f"refresh-rotated-{self.refresh_calls}"
        return self._json(200, payload)

    def _list_files(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        page_size = int(params.get("pageSize", "40"))
        start = int(params.get("pageToken") or 0)
        page = self.folders[start:start + page_size]
        payload: Dict[str, Any] = {"files": page}
        if start + page_size < len(self.folders):
            payload["nextPageToken"] = str(start + page_size)
        return self._json(200, payload)

    def _youtube_upload(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(
                200,
                headers={"Location": "https://www.googleapis.com/upload/youtube/v3/videos?upload_id=session-1"},
            )
        self.upload_chunks.append(request.content)
        content_range = request.headers.get("Content-Range")
        if not content_range:
            self.upload_received.extend(request.content)
            return self._json(200, {"id": "video-123"})

        span, total = content_range.split(" ")[1].split("/")
        start = int(span.split("-")[0])
        if self.lose_first_chunk:
            # Acknowledged without keeping anything, so no Range header
            self.lose_first_chunk = False
            return httpx.Response(308)
        if start == len(self.upload_received):
            self.upload_received.extend(request.content)
        if len(self.upload_received) < int(total):
            return httpx.Response(
                308, headers={"Range": f"bytes=0-{len(self.upload_received) - 1}"}
            )
        return self._json(200, {"id": "video-123"})


# =============================================================================
# BROWSER STUB
# =============================================================================


class BrowserStub:
    """
    Plays the user's browser: visits the loopback redirect with chosen params.

    ``params`` overrides the callback query (``state`` defaults to the one
    in the authorization URL). ``stray_paths`` are requested first.
    """

    def __init__(self, params: Optional[Dict[str, str]] = None, visit: bool = True):
        self.params = params
        self.visit = visit
        self.stray_paths: List[str] = []
        self.urls: List[str] = []
        self.statuses: List[int] = []
        self.tasks: List[asyncio.Task] = []

    def __call__(self, url: str) -> None:
        self.urls.append(url)
        if self.visit:
            self.tasks.append(asyncio.get_running_loop().create_task(self._visit(url)))

    async def _visit(self, url: str) -> None:
        query = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
        redirect_uri = query["redirect_uri"]
        params = {"code": "auth-code", "state": query["state"]}
        if self.params is not None:
            params = {"state": query["state"], **self.params}
        base = redirect_uri.rsplit("/", 1)[0]
        async with httpx.AsyncClient(trust_env=False) as client:
            for stray in self.stray_paths:
                response = await client.get(base + stray)
                self.statuses.append(response.status_code)
            response = await client.get(redirect_uri, params=params)
            self.statuses.append(response.status_code)

    def last_query(self) -> Dict[str, str]:
        return {k: v[0] for k, v in parse_qs(urlparse(self.urls[-1]).query).items()}


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def fake_google():
    return FakeGoogle()


@pytest_asyncio.fixture
async def http_client(fake_google):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_google.handler))
    yield client
    await client.aclose()


@pytest.fixture
def keyring_backend():
    return InMemoryKeyring()


@pytest.fixture
def vault(tmp_path, keyring_backend):
    return CredentialVault(tmp_path / "vault", backend=keyring_backend)


@pytest.fixture
def browser():
    return BrowserStub()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        client_id="test-client-id",
        client_secret="test-client-secret",
        data_dir=tmp_path,
        oauth_timeout=5.0,
        refresh_interval=600,
    )


@pytest_asyncio.fixture
async def services(settings, http_client, keyring_backend, browser):
    svc = AccountServices(
        settings,
        http_client=http_client,
        keyring_backend=keyring_backend,
        open_browser=browser,
        show_prompt=False,
    )
    yield svc
    await svc.aclose()
