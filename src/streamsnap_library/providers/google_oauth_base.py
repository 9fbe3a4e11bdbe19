# src/streamsnap_library/providers/google_oauth_base.py

import base64
import hashlib
import secrets
import webbrowser
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode, urlparse, parse_qs

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.text import Text
from rich.markup import escape as rich_escape

from ..constants import (
    GOOGLE_AUTH_URI,
    GOOGLE_TOKEN_URI,
    GOOGLE_USER_INFO_URI,
    OAUTH_CALLBACK_PATH,
    OAUTH_DEFAULT_TIMEOUT_SECONDS,
)
from ..error_handler import (
    AuthTimeout,
    OAuthDenied,
    TokenExchangeFailed,
    json_object_from_response,
    provider_error_from_response,
    provider_error_from_transport,
)
from ..models import TokenBundle
from ..utils.headless_detection import is_headless_environment

lib_logger = logging.getLogger("streamsnap_library")

console = Console()

CONFIRMATION_PAGE = (
    b"<html><body style=\"font-family: sans-serif; text-align: center; padding-top: 50px;\">"
    b"<h1>Authorization complete</h1>"
    b"<p>You can close this window and return to StreamSnap.</p>"
    b"</body></html>"
)


def generate_pkce_pair() -> Dict[str, str]:
    """
    Build a PKCE verifier/challenge pair.

    The verifier is 32 random bytes, base64url without padding; the challenge
    is the S256 digest of the verifier, encoded the same way.
    """
    code_verifier = (
        base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("utf-8").rstrip("=")
    )
    code_challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(code_verifier.encode("utf-8")).digest())
        .decode("utf-8")
        .rstrip("=")
    )
    return {"code_verifier": code_verifier, "code_challenge": code_challenge}


class GoogleOAuthBase:
    """
    Base class for the Google OAuth2 authorization-code + PKCE flow.

    One ``authorize()`` call binds a loopback listener on an OS-assigned port,
    sends the user to the consent page, waits for exactly one callback and
    exchanges the code for a TokenBundle. Nothing is persisted here; the
    registries decide where the bundle goes.

    Subclasses must override:
        - OAUTH_SCOPES: List of OAuth scopes
        - PROVIDER_NAME: Label used in logs and the console prompt
    """

    # Subclasses MUST override these
    OAUTH_SCOPES: List[str] = None
    PROVIDER_NAME: str = None

    # Subclasses MAY override these
    AUTH_URI: str = GOOGLE_AUTH_URI
    TOKEN_URI: str = GOOGLE_TOKEN_URI
    USER_INFO_URI: str = GOOGLE_USER_INFO_URI
    CALLBACK_HOST: str = "127.0.0.1"
    CALLBACK_PATH: str = OAUTH_CALLBACK_PATH

    def __init__(
        self,
        client_id: str,
        client_secret: Optional[str],
        http_client: httpx.AsyncClient,
        timeout: float = OAUTH_DEFAULT_TIMEOUT_SECONDS,
        open_browser: Optional[Callable[[str], Any]] = None,
        show_prompt: bool = True,
    ):
        if self.OAUTH_SCOPES is None:
            raise NotImplementedError(f"{type(self).__name__} must set OAUTH_SCOPES")
        if self.PROVIDER_NAME is None:
            raise NotImplementedError(f"{type(self).__name__} must set PROVIDER_NAME")

        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._http = http_client
        self._open_browser = open_browser
        self._show_prompt = show_prompt

    def build_authorization_url(
        self, redirect_uri: str, code_challenge: str, state: str
    ) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.OAUTH_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "state": state,
        }
        return f"{self.AUTH_URI}?{urlencode(params)}"

    async def authorize(self) -> TokenBundle:
        """
        Run the interactive browser flow and return a fresh TokenBundle.

        Raises:
            AuthTimeout: No callback arrived within ``timeout`` seconds
            OAuthDenied: The callback carried an error, a foreign state or no code
            TokenExchangeFailed: The token endpoint rejected the code
        """
        pkce = generate_pkce_pair()
        state = secrets.token_urlsafe(16)
        code_future = asyncio.get_running_loop().create_future()
        server = None

        async def handle_callback(reader, writer):
            try:
                request_line_bytes = await reader.readline()
                if not request_line_bytes:
                    return
                parts = request_line_bytes.decode("utf-8", "replace").strip().split(" ")
                target = parts[1] if len(parts) > 1 else "/"
                while True:
                    line = await reader.readline()
                    if not line or line in (b"\r\n", b"\n"):
                        break

                parsed = urlparse(target)
                if parsed.path != self.CALLBACK_PATH:
                    # Favicon and stray requests must not end the wait
                    writer.write(
                        b"HTTP/1.1 404 Not Found\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"
                    )
                    await writer.drain()
                    return

                self._resolve_callback(code_future, parse_qs(parsed.query), state)
                writer.write(
                    b"HTTP/1.1 200 OK\r\nContent-Type: text/html; charset=utf-8\r\n"
                    + f"Content-Length: {len(CONFIRMATION_PAGE)}\r\n".encode()
                    + b"Connection: close\r\n\r\n"
                    + CONFIRMATION_PAGE
                )
                await writer.drain()
            except (ConnectionError, UnicodeError) as e:
                lib_logger.error(f"Error in OAuth callback handler: {e}")
            finally:
                writer.close()

        try:
            server = await asyncio.start_server(handle_callback, self.CALLBACK_HOST, 0)
            port = server.sockets[0].getsockname()[1]
            redirect_uri = f"http://{self.CALLBACK_HOST}:{port}{self.CALLBACK_PATH}"
            auth_url = self.build_authorization_url(
                redirect_uri, pkce["code_challenge"], state
            )
            lib_logger.info(
                f"{self.PROVIDER_NAME} OAuth listener waiting on port {port}"
            )

            self._present_authorization_url(auth_url)

            try:
                auth_code = await asyncio.wait_for(code_future, timeout=self.timeout)
            except asyncio.TimeoutError:
                raise AuthTimeout(
                    f"{self.PROVIDER_NAME} authorization timed out after {self.timeout:g}s"
                )
        finally:
            if server:
                server.close()
                await server.wait_closed()

        return await self.exchange_code(auth_code, pkce["code_verifier"], redirect_uri)

    @staticmethod
    def _resolve_callback(
        code_future: asyncio.Future, query: Dict[str, List[str]], state: str
    ) -> None:
        if code_future.done():
            return
        if "error" in query:
            code_future.set_exception(OAuthDenied(query["error"][0]))
        elif query.get("state", [None])[0] != state:
            code_future.set_exception(OAuthDenied("state_mismatch"))
        elif "code" in query:
            code_future.set_result(query["code"][0])
        else:
            code_future.set_exception(OAuthDenied("no_code"))

    def _present_authorization_url(self, auth_url: str) -> None:
        is_headless = self._open_browser is None and is_headless_environment()

        if self._show_prompt:
            if is_headless:
                auth_panel_text = Text.from_markup(
                    "Running in headless environment (no GUI detected).\n"
                    "Please open the URL below in a browser on another machine to authorize:\n"
                )
            else:
                auth_panel_text = Text.from_markup(
                    "1. Your browser will now open to sign in and authorize StreamSnap.\n"
                    "2. If it doesn't open automatically, please open the URL below manually."
                )
            console.print(
                Panel(
                    auth_panel_text,
                    title=f"{self.PROVIDER_NAME} sign-in",
                    style="bold blue",
                )
            )
            # OAuth URLs contain characters rich could read as markup
            console.print(
                f"[bold]URL:[/bold] [link={auth_url}]{rich_escape(auth_url)}[/link]\n"
            )

        if is_headless:
            return

        opener = self._open_browser or webbrowser.open
        try:
            opener(auth_url)
            lib_logger.info("Browser opened successfully for OAuth flow")
        except (OSError, webbrowser.Error) as e:
            lib_logger.warning(
                f"Failed to open browser automatically: {e}. Please open the URL manually."
            )

    async def exchange_code(
        self, code: str, code_verifier: str, redirect_uri: str
    ) -> TokenBundle:
        lib_logger.info(
            f"Exchanging {self.PROVIDER_NAME} authorization code for tokens..."
        )
        data = {
            "code": code.strip(),
            "client_id": self.client_id,
            "code_verifier": code_verifier,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret

        try:
            response = await self._http.post(self.TOKEN_URI, data=data)
        except httpx.HTTPError as e:
            raise TokenExchangeFailed(None, str(e))

        if not response.is_success:
            raise TokenExchangeFailed(response.status_code, response.text)

        try:
            bundle = TokenBundle.from_token_response(response.json())
        except ValueError as e:
            raise TokenExchangeFailed(response.status_code, str(e))

        lib_logger.info(f"{self.PROVIDER_NAME} OAuth completed successfully.")
        return bundle

    async def get_user_info(self, access_token: str) -> Dict[str, Any]:
        """Fetch the Google profile (email, name, picture) for a fresh token."""
        try:
            response = await self._http.get(
                self.USER_INFO_URI,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            raise provider_error_from_transport(e)
        if not response.is_success:
            raise provider_error_from_response(response)
        return json_object_from_response(response)
