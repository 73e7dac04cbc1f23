import base64
import uuid

import pytest
from cryptography.fernet import Fernet

from interview_inbox.models.domain.conversation_domain import ConversationRecord, NewConversation
from interview_inbox.models.domain.gmail_domain import AccessCredential, RawMessage
from interview_inbox.models.domain.interview_domain import InterviewWorkflow
from interview_inbox.repositories.conversation_repository import ConversationInvariantError
from interview_inbox.services.credential_resolver import CredentialNotFoundError
from interview_inbox.services.google_gmail_service import MailboxError


def encode_body(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_gmail_payload(
    message_id: str,
    sender: str = "Jane Candidate <jane@example.com>",
    to: str = "recruiter@example.com",
    subject: str = "Interview availability",
    body: str = "Tuesday at 10am works for me.",
) -> dict:
    return {
        "id": message_id,
        "threadId": f"thread-{message_id}",
        "labelIds": ["INBOX"],
        "payload": {
            "headers": [
                {"name": "From", "value": sender},
                {"name": "To", "value": to},
                {"name": "Subject", "value": subject},
            ],
            "body": {"data": encode_body(body)},
        },
    }


def make_workflow(
    workflow_id: str = "wf-1",
    owner_id: str | None = "recruiter-1",
    status: str | None = "email_to_candidate",
) -> InterviewWorkflow:
    return InterviewWorkflow(
        id=workflow_id,
        owner_id=owner_id,
        candidate_email=f"candidate-{workflow_id}@example.com",
        interviewer_email=f"interviewer-{workflow_id}@example.com",
        status=status,
    )


class FakeWorkflowRepository:
    def __init__(self, workflows: list[InterviewWorkflow] | None = None, error: Exception | None = None):
        self.workflows = workflows or []
        self.error = error
        self.calls = 0

    async def list_active(self) -> list[InterviewWorkflow]:
        self.calls += 1
        if self.error:
            raise self.error
        return [wf for wf in self.workflows if wf.is_eligible()]


class FakeCredentialResolver:
    def __init__(self, missing_owners: set[str] | None = None):
        self.missing_owners = missing_owners or set()
        self.calls: list[str] = []

    async def resolve(self, owner_id: str) -> AccessCredential:
        self.calls.append(owner_id)
        if owner_id in self.missing_owners:
            raise CredentialNotFoundError("No mailbox credential stored", owner_id=owner_id)
        return AccessCredential(owner_id=owner_id, access_token=f"token-{owner_id}")


class FakeMailbox:
    """Per-owner inboxes keyed by owner id -> {message_id: gmail payload}."""

    def __init__(self):
        self.inboxes: dict[str, dict[str, dict]] = {}
        self.search_calls: list[tuple[str, list[str], int]] = []
        self.fetch_calls: list[str] = []
        self.failing_fetch_ids: set[str] = set()
        self.search_error: Exception | None = None

    def deliver(self, owner_id: str, payload: dict) -> None:
        self.inboxes.setdefault(owner_id, {})[payload["id"]] = payload

    async def search(self, credential, participant_addresses, max_results=50) -> list[str]:
        self.search_calls.append((credential.owner_id, list(participant_addresses), max_results))
        if self.search_error:
            raise self.search_error
        return list(self.inboxes.get(credential.owner_id, {}))[:max_results]

    async def fetch(self, credential, message_id) -> RawMessage:
        self.fetch_calls.append(message_id)
        if message_id in self.failing_fetch_ids:
            raise MailboxError("Gmail service temporarily unavailable.", status_code=503)
        return RawMessage(self.inboxes[credential.owner_id][message_id])

    def close(self) -> None:
        pass


class InMemoryConversationStore:
    def __init__(self):
        self.records: list[ConversationRecord] = []
        self.mark_processed_calls: list[str] = []

    async def find_by_message_id(self, message_id: str) -> ConversationRecord | None:
        matches = [r for r in self.records if r.message_id == message_id]
        if len(matches) > 1:
            raise ConversationInvariantError("duplicate", message_id=message_id)
        return matches[0] if matches else None

    async def create(self, fields: NewConversation) -> ConversationRecord:
        existing = await self.find_by_message_id(fields.message_id)
        if existing:
            return existing
        record = ConversationRecord(
            id=str(uuid.uuid4()),
            workflow_id=fields.workflow_id,
            message_id=fields.message_id,
            to_address=fields.to_address,
            from_address=fields.from_address,
            subject=fields.subject,
            content=fields.content,
            process_state=False,
        )
        self.records.append(record)
        return record

    async def mark_processed(self, conversation_id: str) -> None:
        self.mark_processed_calls.append(conversation_id)
        for record in self.records:
            if record.id == conversation_id:
                record.process_state = True

    async def list_pending_for_workflow(self, workflow_id: str) -> list[ConversationRecord]:
        return [r for r in self.records if r.workflow_id == workflow_id and not r.process_state]

    def for_message(self, message_id: str) -> list[ConversationRecord]:
        return [r for r in self.records if r.message_id == message_id]


class FakeDispatcher:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.calls: list[tuple[str, str, str]] = []

    async def dispatch(self, conversation_id: str, workflow_id: str, message_id: str) -> bool:
        self.calls.append((conversation_id, workflow_id, message_id))
        return self.succeed

    async def close(self) -> None:
        pass


@pytest.fixture
def conversation_store():
    return InMemoryConversationStore()


@pytest.fixture
def fake_mailbox():
    return FakeMailbox()


@pytest.fixture
def encryption_key(monkeypatch):
    key = Fernet.generate_key().decode("utf-8")
    monkeypatch.setattr("interview_inbox.config.settings.ENCRYPTION_KEY", key)
    return key
