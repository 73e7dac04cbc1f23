from urllib.parse import parse_qs

import httpx
import pytest

from interview_inbox.services.google_oauth_service import (
    GOOGLE_TOKEN_URL,
    GoogleOAuthError,
    GoogleOAuthService,
)


def _service():
    return GoogleOAuthService(client_id="client-id", client_secret="client-secret")


@pytest.mark.asyncio
async def test_refresh_posts_refresh_grant(httpx_mock):
    httpx_mock.add_response(
        method="POST",
        url=GOOGLE_TOKEN_URL,
        json={
            "access_token": "ya29.new",
            "expires_in": 3599,
            "token_type": "Bearer",
            "scope": "https://www.googleapis.com/auth/gmail.readonly",
        },
    )

    token = await _service().refresh_access_token("1//stored")

    assert token.access_token == "ya29.new"
    assert token.refresh_token == "1//stored"
    assert token.expires_at is not None
    assert token.has_gmail_read_access()

    [request] = httpx_mock.get_requests()
    form = parse_qs(request.content.decode("utf-8"))
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["1//stored"]
    assert form["client_id"] == ["client-id"]


@pytest.mark.asyncio
async def test_revoked_refresh_token_maps_to_invalid_grant(httpx_mock):
    httpx_mock.add_response(
        method="POST",
        url=GOOGLE_TOKEN_URL,
        status_code=400,
        json={"error": "invalid_grant", "error_description": "Token has been expired or revoked."},
    )

    with pytest.raises(GoogleOAuthError) as exc_info:
        await _service().refresh_access_token("1//revoked")

    assert exc_info.value.error_code == "invalid_grant"
    assert "reconnect" in str(exc_info.value)


@pytest.mark.asyncio
async def test_transient_status_is_retried(httpx_mock, monkeypatch):
    async def no_sleep(_):
        return None

    monkeypatch.setattr("interview_inbox.services.google_oauth_service.asyncio.sleep", no_sleep)
    httpx_mock.add_response(method="POST", url=GOOGLE_TOKEN_URL, status_code=503, text="busy")
    httpx_mock.add_response(
        method="POST",
        url=GOOGLE_TOKEN_URL,
        json={"access_token": "ya29.after-retry", "expires_in": 3599, "token_type": "Bearer"},
    )

    token = await _service().refresh_access_token("1//stored")

    assert token.access_token == "ya29.after-retry"
    assert len(httpx_mock.get_requests()) == 2


@pytest.mark.asyncio
async def test_response_without_access_token_is_rejected(httpx_mock):
    httpx_mock.add_response(method="POST", url=GOOGLE_TOKEN_URL, json={"token_type": "Bearer"})

    with pytest.raises(GoogleOAuthError):
        await _service().refresh_access_token("1//stored")


def test_missing_client_config_is_rejected(monkeypatch):
    monkeypatch.setattr("interview_inbox.config.settings.GOOGLE_CLIENT_ID", None)

    with pytest.raises(GoogleOAuthError):
        GoogleOAuthService(client_id=None, client_secret="secret")


@pytest.mark.asyncio
async def test_network_error_is_wrapped(httpx_mock, monkeypatch):
    async def no_sleep(_):
        return None

    monkeypatch.setattr("interview_inbox.services.google_oauth_service.asyncio.sleep", no_sleep)
    httpx_mock.add_exception(httpx.ConnectError("connection refused"), is_reusable=True)

    with pytest.raises(GoogleOAuthError):
        await _service().refresh_access_token("1//stored")
