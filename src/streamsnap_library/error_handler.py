# src/streamsnap_library/error_handler.py

import logging
from typing import Any, Dict, Optional

import httpx

lib_logger = logging.getLogger("streamsnap_library")


class StreamSnapError(Exception):
    """
    Base class for every failure the account core reports to its callers.

    Each subclass carries a stable ``code`` that the application boundary
    returns as the ``error`` field of a ``{"success": False}`` result, while
    ``str(exc)`` holds the human-readable detail.
    """

    code: str = "StreamSnapError"

    def __init__(self, message: str = ""):
        self.message = message or self.code
        super().__init__(self.message)


class AuthTimeout(StreamSnapError):
    """The user did not complete the browser authorization in time."""

    code = "AuthTimeout"


class OAuthDenied(StreamSnapError):
    """The provider redirected back with an ``error`` parameter."""

    code = "OAuthDenied"

    def __init__(self, error: str, message: str = ""):
        self.error = error
        super().__init__(message or f"OAuth error: {error}")


class TokenExchangeFailed(StreamSnapError):
    """The authorization code could not be exchanged for tokens."""

    code = "TokenExchangeFailed"

    def __init__(self, status: Optional[int], body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"Token exchange failed: {status} - {body}")


class NotAuthenticated(StreamSnapError):
    """No usable access token exists for the account."""

    code = "NotAuthenticated"


class AccountNotFound(StreamSnapError):
    code = "AccountNotFound"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class DuplicateAccount(StreamSnapError):
    """Raised by the Drive registry when the resolved email is already linked."""

    code = "DuplicateAccount"

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Account with email {identity} is already added")


class RefreshFailed(StreamSnapError):
    """
    A refresh-token exchange did not produce a new access token.

    Attributes:
        status: HTTP status from the token endpoint, or None for transport errors
        body: Response body (or transport error text)
    """

    code = "RefreshFailed"

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(message)


class ProviderApiError(StreamSnapError):
    """
    A Drive or YouTube REST call failed after authentication was settled.

    ``status`` is None when the request never produced a response.
    """

    code = "ProviderApiError"

    def __init__(self, status: Optional[int], body: str = "", message: str = ""):
        self.status = status
        self.body = body
        super().__init__(message or f"Provider API error: {status} - {body}")


class VaultUnavailable(StreamSnapError):
    """Neither the OS secret store nor the encrypted file store accepted the call."""

    code = "VaultUnavailable"


class NoChannel(StreamSnapError):
    """The authorized Google account has no YouTube channel yet."""

    code = "NoChannel"


def mask_secret(value: Optional[str]) -> str:
    """
    Mask a token or vault key for safe display in logs.

    Shows the last 6 characters of long values, nothing of short ones.
    """
    if not value:
        return "<none>"
    if len(value) > 6:
        return f"...{value[-6:]}"
    return "***"


def is_auth_failure(response: httpx.Response) -> bool:
    """401 and 403 are both treated as a token-validity miss."""
    return response.status_code in (401, 403)


def provider_error_from_response(response: httpx.Response) -> ProviderApiError:
    try:
        body = response.text
    except httpx.ResponseNotRead:
        body = ""
    return ProviderApiError(response.status_code, body)


def provider_error_from_transport(exc: httpx.HTTPError) -> ProviderApiError:
    return ProviderApiError(
        None, str(exc), message=f"Network error talking to provider: {exc}"
    )


def json_object_from_response(response: httpx.Response) -> Dict[str, Any]:
    """
    Decode a success body that must be a JSON object.

    Raises:
        ProviderApiError: The body is not JSON, or is JSON but not an object
    """
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        raise ProviderApiError(
            response.status_code, response.text, "Provider returned invalid JSON"
        )
    return payload


def error_code(exc: BaseException) -> str:
    """Stable error name for the application boundary."""
    if isinstance(exc, StreamSnapError):
        return exc.code
    return type(exc).__name__
