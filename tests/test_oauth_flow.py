"""
Tests for the PKCE authorization flow and its loopback listener.
"""

import asyncio
import base64
import hashlib
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from streamsnap_library.error_handler import AuthTimeout, OAuthDenied, TokenExchangeFailed
from streamsnap_library.providers import DriveOAuth, YouTubeOAuth, generate_pkce_pair

from conftest import BrowserStub


def make_oauth(http_client, browser, timeout=5.0, cls=DriveOAuth):
    return cls(
        "client-id",
        "client-secret",
        http_client,
        timeout=timeout,
        open_browser=browser,
        show_prompt=False,
    )


async def assert_listener_closed(redirect_uri):
    async with httpx.AsyncClient(trust_env=False) as client:
        with pytest.raises(httpx.ConnectError):
            await client.get(redirect_uri, timeout=2.0)


class TestPkce:
    def test_verifier_is_unpadded_base64url_of_32_bytes(self):
        pair = generate_pkce_pair()
        assert len(pair["code_verifier"]) == 43
        assert "=" not in pair["code_verifier"]

    def test_challenge_is_s256_of_verifier(self):
        pair = generate_pkce_pair()
        digest = hashlib.sha256(pair["code_verifier"].encode()).digest()
        expected = base64.urlsafe_b64encode(digest).decode().rstrip("=")
        assert pair["code_challenge"] == expected


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_successful_flow_exchanges_code(self, http_client, fake_google, browser):
        oauth = make_oauth(http_client, browser)
        bundle = await oauth.authorize()
        await asyncio.gather(*browser.tasks)

        assert bundle.access_token == "access-initial"
        assert bundle.refresh_token == "refresh-initial"
        assert browser.statuses == [200]

        query = browser.last_query()
        assert query["response_type"] == "code"
        assert query["access_type"] == "offline"
        assert query["prompt"] == "consent"
        assert query["code_challenge_method"] == "S256"
        redirect = urlparse(query["redirect_uri"])
        assert redirect.hostname == "127.0.0.1"
        assert redirect.path == "/oauth2callback"
        assert "drive.file" in query["scope"]

        form = parse_qs(fake_google.calls("POST", "/token")[0].content.decode())
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["auth-code"]
        assert form["redirect_uri"] == [query["redirect_uri"]]
        verifier = form["code_verifier"][0]
        challenge = base64.urlsafe_b64encode(
            hashlib.sha256(verifier.encode()).digest()
        ).decode().rstrip("=")
        assert challenge == query["code_challenge"]

        await assert_listener_closed(query["redirect_uri"])

    @pytest.mark.asyncio
    async def test_youtube_flow_requests_youtube_scopes(self, http_client, browser):
        oauth = make_oauth(http_client, browser, cls=YouTubeOAuth)
        await oauth.authorize()
        await asyncio.gather(*browser.tasks)
        assert "youtube.upload" in browser.last_query()["scope"]

    @pytest.mark.asyncio
    async def test_other_paths_get_404_and_do_not_end_wait(self, http_client):
        browser = BrowserStub()
        browser.stray_paths = ["/favicon.ico"]
        oauth = make_oauth(http_client, browser)

        bundle = await oauth.authorize()
        await asyncio.gather(*browser.tasks)

        assert browser.statuses == [404, 200]
        assert bundle.access_token == "access-initial"

    @pytest.mark.asyncio
    async def test_timeout_closes_listener(self, http_client):
        browser = BrowserStub(visit=False)
        oauth = make_oauth(http_client, browser, timeout=0.2)

        with pytest.raises(AuthTimeout):
            await oauth.authorize()

        await assert_listener_closed(browser.last_query()["redirect_uri"])

    @pytest.mark.asyncio
    async def test_error_param_is_denied(self, http_client, fake_google):
        browser = BrowserStub(params={"error": "access_denied"})
        oauth = make_oauth(http_client, browser)

        with pytest.raises(OAuthDenied) as exc_info:
            await oauth.authorize()
        await asyncio.gather(*browser.tasks)

        assert exc_info.value.error == "access_denied"
        assert browser.statuses == [200]
        assert fake_google.calls("POST", "/token") == []
        await assert_listener_closed(browser.last_query()["redirect_uri"])

    @pytest.mark.asyncio
    async def test_foreign_state_is_rejected(self, http_client):
        browser = BrowserStub(params={"code": "auth-code", "state": "forged"})
        oauth = make_oauth(http_client, browser)

        with pytest.raises(OAuthDenied) as exc_info:
            await oauth.authorize()
        await asyncio.gather(*browser.tasks)
        assert exc_info.value.error == "state_mismatch"

    @pytest.mark.asyncio
    async def test_callback_without_code(self, http_client):
        browser = BrowserStub(params={})
        oauth = make_oauth(http_client, browser)

        with pytest.raises(OAuthDenied) as exc_info:
            await oauth.authorize()
        await asyncio.gather(*browser.tasks)
        assert exc_info.value.error == "no_code"

    @pytest.mark.asyncio
    async def test_exchange_rejection(self, http_client, fake_google, browser):
        fake_google.exchange_status = 400
        fake_google.exchange_response = {"error": "invalid_grant"}
        oauth = make_oauth(http_client, browser)

        with pytest.raises(TokenExchangeFailed) as exc_info:
            await oauth.authorize()
        await asyncio.gather(*browser.tasks)

        assert exc_info.value.status == 400
        assert "invalid_grant" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_concurrent_flows_use_distinct_ports(self, http_client):
        first, second = BrowserStub(), BrowserStub()
        await asyncio.gather(
            make_oauth(http_client, first).authorize(),
            make_oauth(http_client, second).authorize(),
        )
        await asyncio.gather(*first.tasks, *second.tasks)
        assert first.last_query()["redirect_uri"] != second.last_query()["redirect_uri"]
