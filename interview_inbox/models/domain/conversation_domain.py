# interview_inbox/models/domain/conversation_domain.py
"""
Conversation domain models and the per-message processing state machine.

A conversation record is the unit of idempotency: one record per provider
message id. Its processing state moves unseen -> pending -> processed and
never backwards: the store only inserts pending rows and only flips them to
processed. NEXT_ACTION maps a looked-up state to what the poller does next.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class ProcessingState(str, Enum):
    UNSEEN = "unseen"  # no record stored
    PENDING = "pending"  # record stored, AI dispatch not confirmed
    PROCESSED = "processed"  # AI dispatch confirmed, terminal


class ConversationAction(str, Enum):
    INGEST = "ingest"
    RETRY_DISPATCH = "retry_dispatch"
    SKIP = "skip"


NEXT_ACTION: dict[ProcessingState, ConversationAction] = {
    ProcessingState.UNSEEN: ConversationAction.INGEST,
    ProcessingState.PENDING: ConversationAction.RETRY_DISPATCH,
    ProcessingState.PROCESSED: ConversationAction.SKIP,
}

AI_REQUEST_STATUS_PENDING = "pending"


@dataclass(slots=True)
class NewConversation:
    """Fields needed to create a conversation record for a first-seen message."""

    workflow_id: str
    message_id: str
    to_address: str
    from_address: str
    subject: str
    content: str


@dataclass(slots=True)
class ConversationRecord:
    """Represents a conversations row."""

    id: str
    workflow_id: str
    message_id: str
    to_address: str
    from_address: str
    subject: str
    content: str
    process_state: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ConversationRecord":
        return cls(
            id=str(row["id"]),
            workflow_id=str(row["workflow_id"]),
            message_id=row["message_id"],
            to_address=row.get("to_address") or "",
            from_address=row.get("from_address") or "",
            subject=row.get("subject") or "",
            content=row.get("content") or "",
            process_state=bool(row.get("process_state")),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @property
    def state(self) -> ProcessingState:
        return ProcessingState.PROCESSED if self.process_state else ProcessingState.PENDING


def state_of(record: ConversationRecord | None) -> ProcessingState:
    """Processing state for a lookup result; a missing record is unseen."""
    if record is None:
        return ProcessingState.UNSEEN
    return record.state


def next_action(record: ConversationRecord | None) -> ConversationAction:
    return NEXT_ACTION[state_of(record)]


@dataclass(slots=True)
class AIAnalysisRequest:
    """Append-only audit row written before each dispatch attempt."""

    id: str
    conversation_id: str
    workflow_id: str
    message_id: str
    status: str
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AIAnalysisRequest":
        return cls(
            id=str(row["id"]),
            conversation_id=str(row["conversation_id"]),
            workflow_id=str(row["workflow_id"]),
            message_id=row["message_id"],
            status=row.get("status") or AI_REQUEST_STATUS_PENDING,
            created_at=row.get("created_at"),
        )
