"""
AI Dispatch Client: hands one conversation to the external analysis endpoint.

Every attempt is logged to ai_analysis_requests before the call. There is no
retry inside a dispatch; a failed conversation stays pending and the next tick
tries again.
"""

import httpx

from interview_inbox.config import settings
from interview_inbox.db.helpers import DatabaseError
from interview_inbox.infrastructure.observability.logging import get_logger
from interview_inbox.repositories.ai_request_repository import AIRequestRepository

logger = get_logger(__name__)


class AIDispatchService:
    """Fire-and-confirm client for the AI analysis endpoint."""

    def __init__(
        self,
        request_repository: AIRequestRepository,
        endpoint_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._requests = request_repository
        self._endpoint_url = endpoint_url or settings.AI_ANALYSIS_URL
        self._client = client or httpx.AsyncClient(
            timeout=timeout or settings.AI_DISPATCH_TIMEOUT_SECONDS
        )

    async def dispatch(self, conversation_id: str, workflow_id: str, message_id: str) -> bool:
        """
        Trigger AI analysis for a conversation.

        Returns:
            bool: True only when the endpoint confirmed success
        """
        log = logger.bind(
            conversation_id=conversation_id, workflow_id=workflow_id, message_id=message_id
        )

        try:
            ai_request = await self._requests.append(conversation_id, workflow_id, message_id)
        except DatabaseError as e:
            log.error("Failed to record AI analysis request", error=str(e))
            return False

        payload = {
            "conversationId": conversation_id,
            "interviewId": workflow_id,
            "messageId": message_id,
        }

        try:
            response = await self._client.post(self._endpoint_url, json=payload)
        except httpx.HTTPError as e:
            log.warning(
                "AI dispatch transport error",
                ai_request_id=ai_request.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if not response.is_success:
            log.warning(
                "AI dispatch rejected",
                ai_request_id=ai_request.id,
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            return False

        try:
            body = response.json()
        except ValueError:
            body = None

        # The endpoint may answer 2xx with {"success": false}
        if isinstance(body, dict) and body.get("success") is False:
            log.warning(
                "AI dispatch reported failure",
                ai_request_id=ai_request.id,
                error=body.get("error"),
            )
            return False

        log.info(
            "AI dispatch confirmed",
            ai_request_id=ai_request.id,
            next_step=body.get("nextStep") if isinstance(body, dict) else None,
        )
        return True

    async def close(self) -> None:
        await self._client.aclose()
