"""
Conversation Store: one conversations row per provider message id.

All mutation goes through create() and mark_processed(), each idempotent on
its own; the unique index on message_id makes create() atomic across
concurrent ticks.
"""

from interview_inbox.db.helpers import (
    DatabaseError,
    execute_query,
    fetch_all,
    fetch_one,
    with_db_retry,
)
from interview_inbox.infrastructure.observability.logging import get_logger
from interview_inbox.models.domain.conversation_domain import ConversationRecord, NewConversation

logger = get_logger(__name__)

CONVERSATION_COLUMNS = """
    id, workflow_id, message_id, to_address, from_address, subject, content,
    process_state, created_at, updated_at
"""


class ConversationStoreError(Exception):
    """Custom exception for conversation store operations."""

    def __init__(self, message: str, message_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.message_id = message_id
        self.recoverable = recoverable


class ConversationInvariantError(ConversationStoreError):
    """More than one record exists for a single provider message id."""

    def __init__(self, message: str, message_id: str | None = None):
        super().__init__(message, message_id=message_id, recoverable=False)


class ConversationRepository:
    """Postgres-backed conversation store."""

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def find_by_message_id(self, message_id: str) -> ConversationRecord | None:
        """
        Look up the record for a provider message id.

        Returns:
            ConversationRecord | None: The record, or None when the message is unseen

        Raises:
            ConversationInvariantError: If more than one record matches
        """
        rows = await fetch_all(
            f"""
            SELECT {CONVERSATION_COLUMNS}
            FROM conversations
            WHERE message_id = %s
            LIMIT 2
            """,
            (message_id,),
        )

        if len(rows) > 1:
            logger.error("Duplicate conversation records", message_id=message_id)
            raise ConversationInvariantError(
                f"Message {message_id} maps to more than one conversation", message_id=message_id
            )

        return ConversationRecord.from_row(rows[0]) if rows else None

    async def create(self, fields: NewConversation) -> ConversationRecord:
        """
        Create a pending record for a first-seen message.

        If another writer created the record first, the existing record is
        returned unchanged so the caller can act on its actual state.
        """
        try:
            row = await fetch_one(
                f"""
                INSERT INTO conversations (
                    workflow_id, message_id, to_address, from_address,
                    subject, content, process_state, created_at, updated_at
                ) VALUES (
                    %s, %s, %s, %s, %s, %s, FALSE, NOW(), NOW()
                )
                ON CONFLICT (message_id) DO NOTHING
                RETURNING {CONVERSATION_COLUMNS}
                """,
                (
                    fields.workflow_id,
                    fields.message_id,
                    fields.to_address,
                    fields.from_address,
                    fields.subject,
                    fields.content,
                ),
            )
        except DatabaseError as e:
            raise ConversationStoreError(
                f"Failed to create conversation: {e}", message_id=fields.message_id
            ) from e

        if row:
            record = ConversationRecord.from_row(row)
            logger.info(
                "Conversation created",
                conversation_id=record.id,
                workflow_id=record.workflow_id,
                message_id=record.message_id,
            )
            return record

        existing = await self.find_by_message_id(fields.message_id)
        if existing is None:
            raise ConversationStoreError(
                "Insert conflicted but no record found", message_id=fields.message_id
            )

        logger.info(
            "Conversation already created by a concurrent run",
            conversation_id=existing.id,
            message_id=fields.message_id,
            state=existing.state.value,
        )
        return existing

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def mark_processed(self, conversation_id: str) -> None:
        """Mark a conversation processed. Calling it again is a no-op."""
        affected = await execute_query(
            """
            UPDATE conversations
            SET process_state = TRUE, updated_at = NOW()
            WHERE id = %s
            """,
            (conversation_id,),
        )

        if affected == 0:
            raise ConversationStoreError(f"Conversation {conversation_id} not found")

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_pending_for_workflow(self, workflow_id: str) -> list[ConversationRecord]:
        rows = await fetch_all(
            f"""
            SELECT {CONVERSATION_COLUMNS}
            FROM conversations
            WHERE workflow_id = %s
              AND process_state = FALSE
            ORDER BY created_at
            """,
            (workflow_id,),
        )
        return [ConversationRecord.from_row(row) for row in rows]
