"""
Google OAuth refresh-token grant for recruiter mailboxes.

Recruiters connect Gmail in the scheduling app, which stores the refresh
token. The poller only ever exchanges that refresh token for a short-lived
access token.
"""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx

from interview_inbox.config import settings
from interview_inbox.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

REQUEST_TIMEOUT = 10  # seconds
MAX_ATTEMPTS = 3
BACKOFF_FACTOR = 2  # waits 2s, then 4s
RETRY_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

GMAIL_READ_SCOPES = ("gmail.readonly", "gmail.modify", "mail.google.com")

# Google error code -> operator-facing message
GOOGLE_ERROR_MESSAGES = {
    "invalid_grant": "Refresh token expired or revoked. The recruiter must reconnect Gmail.",
    "invalid_client": "Google OAuth client configuration error.",
    "unauthorized_client": "Google OAuth client not authorized for the refresh grant.",
    "invalid_request": "Invalid token refresh request.",
}


class GoogleOAuthError(Exception):
    """Refresh grant failed. error_code carries Google's `error` field when there was one."""

    def __init__(
        self, message: str, error_code: str | None = None, response_data: dict | None = None
    ):
        super().__init__(message)
        self.error_code = error_code
        self.response_data = response_data or {}


@dataclass(slots=True)
class RefreshedToken:
    access_token: str
    refresh_token: str
    expires_in: int | None = None
    expires_at: datetime | None = None
    scope: str = ""

    @classmethod
    def from_payload(cls, payload: dict, refresh_token: str) -> "RefreshedToken":
        expires_in = payload.get("expires_in")
        return cls(
            access_token=payload.get("access_token") or "",
            # Google usually omits the refresh token on a refresh grant
            refresh_token=payload.get("refresh_token") or refresh_token,
            expires_in=int(expires_in) if expires_in else None,
            expires_at=(
                datetime.now(UTC) + timedelta(seconds=int(expires_in)) if expires_in else None
            ),
            scope=payload.get("scope", ""),
        )

    def has_gmail_read_access(self) -> bool:
        return any(scope in self.scope for scope in GMAIL_READ_SCOPES)


class GoogleOAuthService:
    """Exchanges stored refresh tokens at Google's token endpoint."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_url: str = GOOGLE_TOKEN_URL,
    ):
        self.client_id = client_id or settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_CLIENT_SECRET
        self.token_url = token_url

        if not self.client_id:
            raise GoogleOAuthError("GOOGLE_CLIENT_ID not configured")
        if not self.client_secret:
            raise GoogleOAuthError("GOOGLE_CLIENT_SECRET not configured")

    async def refresh_access_token(self, refresh_token: str) -> RefreshedToken:
        """
        Exchange a refresh token for a new access token.

        Raises:
            GoogleOAuthError: On network failure after retries, an error response,
                or a success response without an access token
        """
        form = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self._post_form(form)
        except httpx.RequestError as e:
            logger.error("Token refresh network failure", error=str(e), error_type=type(e).__name__)
            raise GoogleOAuthError(f"Network error during token refresh: {e}") from e

        payload = self._parse_payload(response)

        if not response.is_success:
            error_code = payload.get("error", "unknown_error")
            logger.error(
                "Token refresh rejected by Google",
                status_code=response.status_code,
                error_code=error_code,
                error_description=payload.get("error_description"),
            )
            raise GoogleOAuthError(
                GOOGLE_ERROR_MESSAGES.get(
                    error_code, f"Google token refresh failed ({error_code})."
                ),
                error_code=error_code,
                response_data=payload,
            )

        token = RefreshedToken.from_payload(payload, refresh_token)
        if not token.access_token:
            logger.error("Token refresh response had no access_token", keys=sorted(payload))
            raise GoogleOAuthError("Invalid token response from Google")

        if not token.has_gmail_read_access():
            # Scope is informational here; Gmail itself answers 403 if it is really missing
            logger.warning("Refreshed token does not list a Gmail read scope", scope=token.scope)

        return token

    async def _post_form(self, form: dict) -> httpx.Response:
        """POST to the token endpoint, backing off on network errors and transient statuses."""
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            for attempt in range(1, MAX_ATTEMPTS + 1):
                last_attempt = attempt == MAX_ATTEMPTS
                try:
                    response = await client.post(self.token_url, data=form)
                except httpx.RequestError as e:
                    if last_attempt:
                        raise
                    reason = f"{type(e).__name__}: {e}"
                else:
                    if response.status_code not in RETRY_STATUS_CODES or last_attempt:
                        return response
                    reason = f"HTTP {response.status_code}"

                wait_time = BACKOFF_FACTOR**attempt
                logger.warning(
                    "Token refresh attempt failed, backing off",
                    attempt=attempt,
                    wait_time=wait_time,
                    reason=reason,
                )
                await asyncio.sleep(wait_time)

        raise GoogleOAuthError("Token refresh retries exhausted")

    @staticmethod
    def _parse_payload(response: httpx.Response) -> dict:
        try:
            payload = response.json()
        except ValueError:
            if response.is_success:
                raise GoogleOAuthError("Failed to parse Google token response") from None
            raise GoogleOAuthError(
                f"Google OAuth service error (HTTP {response.status_code})"
            ) from None
        return payload if isinstance(payload, dict) else {}
