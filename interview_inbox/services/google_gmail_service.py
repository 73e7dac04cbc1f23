"""
Google Gmail API client used by the interview poller.
Search for messages from workflow participants and fetch full message content.
Low-level Gmail API client
/services/google_gmail_service.py
"""

import asyncio
import time

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from interview_inbox.infrastructure.observability.logging import get_logger
from interview_inbox.models.domain.gmail_domain import AccessCredential, RawMessage

logger = get_logger(__name__)

# Google Gmail API configuration
GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_USER_ID = "me"

DEFAULT_MAX_RESULTS = 50

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2


class MailboxError(Exception):
    """Transport or API failure talking to Gmail. Always retryable on a later tick."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}
        self.recoverable = True


def build_search_query(
    participant_addresses: list[str], after_epoch_seconds: int | None = None
) -> str:
    """
    Build the Gmail search filter for a workflow.

    >>> build_search_query(["cand@x.com", "int@x.com"])
    '(from:cand@x.com OR from:int@x.com)'
    """
    addresses = [addr.strip() for addr in participant_addresses if addr and addr.strip()]
    if not addresses:
        raise ValueError("At least one participant address is required")

    query = "(" + " OR ".join(f"from:{addr}" for addr in addresses) + ")"
    if after_epoch_seconds is not None:
        query += f" after:{after_epoch_seconds}"
    return query


class GoogleGmailService:
    """
    Mailbox Client over the Gmail REST API.

    Uses a requests session with a urllib3 retry adapter for 429/5xx;
    blocking calls run in a worker thread so the poller's event loop keeps
    serving other workflows.
    """

    def __init__(self, session: requests.Session | None = None, lookback_minutes: int | None = None):
        self._session = session or self._create_session()
        self._lookback_minutes = lookback_minutes

    def _create_session(self) -> requests.Session:
        session = requests.Session()

        retry_strategy = Retry(
            total=MAX_RETRIES,
            backoff_factor=BACKOFF_FACTOR,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )

        session.mount("https://", HTTPAdapter(max_retries=retry_strategy))
        return session

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    def _handle_api_response(self, response: requests.Response, operation: str) -> dict:
        """
        Handle and validate Gmail API response.

        Raises:
            MailboxError: If response contains errors
        """
        if response.ok:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse Gmail API {operation} response", error=str(e))
                raise MailboxError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            logger.error(
                f"Gmail API {operation} failed with non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise MailboxError(
                f"Gmail API error (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        error_code = str(error_info.get("code", response.status_code))
        error_message = error_info.get("message", "Unknown Gmail API error")

        logger.error(
            f"Gmail API {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )

        raise MailboxError(
            self._map_gmail_error(error_code, error_message),
            error_code=error_code,
            status_code=response.status_code,
            response_data=error_data,
        )

    def _map_gmail_error(self, error_code: str, error_message: str) -> str:
        error_mappings = {
            "401": "Gmail authorization expired.",
            "403": "Gmail access denied. Check granted scopes.",
            "404": "Email message not found.",
            "429": "Gmail rate limit exceeded.",
            "500": "Gmail service temporarily unavailable.",
        }
        return error_mappings.get(error_code, f"Gmail error: {error_message}")

    async def _get(self, url: str, access_token: str, params: dict, operation: str) -> dict:
        try:
            response = await asyncio.to_thread(
                self._session.get,
                url,
                headers=self._get_auth_headers(access_token),
                params=params,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.error(f"Gmail API {operation} transport error", error=str(e))
            raise MailboxError(f"Gmail {operation} failed: {e}") from e

        return self._handle_api_response(response, operation)

    async def search(
        self,
        credential: AccessCredential,
        participant_addresses: list[str],
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[str]:
        """
        Search for message ids sent by any of the participant addresses.

        Args:
            credential: Live access credential for the mailbox owner
            participant_addresses: Candidate and interviewer addresses
            max_results: Result cap per call

        Returns:
            list[str]: Message ids, empty when nothing matches

        Raises:
            MailboxError: If the search request fails
        """
        after = None
        if self._lookback_minutes:
            after = int(time.time()) - self._lookback_minutes * 60

        query = build_search_query(participant_addresses, after)
        url = f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/messages"
        params = {"q": query, "maxResults": max_results}

        logger.debug("Searching Gmail messages", query=query, max_results=max_results)

        data = await self._get(url, credential.access_token, params, "search")
        message_ids = [msg["id"] for msg in data.get("messages", []) if msg.get("id")]

        logger.info(
            "Gmail search completed",
            owner_id=credential.owner_id,
            message_count=len(message_ids),
            result_size_estimate=data.get("resultSizeEstimate", 0),
        )
        return message_ids

    async def fetch(self, credential: AccessCredential, message_id: str) -> RawMessage:
        """
        Get a message with headers and body parts.

        Raises:
            MailboxError: If getting the message fails
        """
        url = f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/messages/{message_id}"
        data = await self._get(url, credential.access_token, {"format": "full"}, "fetch")
        return RawMessage(data)

    def close(self) -> None:
        self._session.close()
