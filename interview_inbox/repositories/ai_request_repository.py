from interview_inbox.db.helpers import fetch_one
from interview_inbox.models.domain.conversation_domain import (
    AI_REQUEST_STATUS_PENDING,
    AIAnalysisRequest,
)


class AIRequestRepository:
    """Append-only log of AI dispatch attempts."""

    async def append(
        self, conversation_id: str, workflow_id: str, message_id: str
    ) -> AIAnalysisRequest:
        row = await fetch_one(
            """
            INSERT INTO ai_analysis_requests (
                conversation_id, workflow_id, message_id, status, created_at
            ) VALUES (%s, %s, %s, %s, NOW())
            RETURNING id, conversation_id, workflow_id, message_id, status, created_at
            """,
            (conversation_id, workflow_id, message_id, AI_REQUEST_STATUS_PENDING),
        )
        return AIAnalysisRequest.from_row(row)
