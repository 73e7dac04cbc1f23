"""
Interview Poller Job.

Every tick lists the interview workflows that are not completed, pulls new
mail from each recruiter's Gmail, records each message once as a conversation
and hands it to AI analysis. Failures stay local to the workflow or message
they happened in; anything left pending is picked up again on the next tick.
"""

import asyncio
import time
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from interview_inbox.config import settings
from interview_inbox.infrastructure.observability.logging import (
    bind_job_context,
    clear_job_context,
    get_logger,
    log_tick_summary,
)
from interview_inbox.models.domain.conversation_domain import (
    ConversationAction,
    ConversationRecord,
    NewConversation,
    next_action,
)
from interview_inbox.models.domain.gmail_domain import AccessCredential
from interview_inbox.models.domain.interview_domain import InterviewWorkflow
from interview_inbox.repositories.ai_request_repository import AIRequestRepository
from interview_inbox.repositories.conversation_repository import (
    ConversationInvariantError,
    ConversationRepository,
)
from interview_inbox.repositories.interview_repository import InterviewRepository
from interview_inbox.services.ai_dispatch_service import AIDispatchService
from interview_inbox.services.content_normalizer import (
    extract_address,
    extract_new_content,
    extract_workflow_id_from_subject,
    tag_subject,
)
from interview_inbox.services.credential_resolver import CredentialError, CredentialResolver
from interview_inbox.services.google_gmail_service import GoogleGmailService, MailboxError
from interview_inbox.services.google_oauth_service import GoogleOAuthService
from interview_inbox.services.infrastructure.encryption_service import validate_encryption_config

logger = get_logger(__name__)

JOB_NAME = "interview_poller"


class InterviewPollerJobError(Exception):
    """Tick-level failure (e.g. workflows could not be listed). Retried by the scheduler."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class PollerTickMetrics:
    """Counters for one tick, logged at the end and exposed via job status."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.tick_id: str | None = None
        self.start_time = datetime.now(UTC)
        self.workflows_found = 0
        self.workflows_processed = 0
        self.workflows_skipped = 0
        self.workflows_failed = 0
        self.messages_found = 0
        self.messages_already_processed = 0
        self.messages_foreign = 0
        self.conversations_created = 0
        self.dispatch_succeeded = 0
        self.dispatch_failed = 0
        self.message_errors = 0
        self.invariant_violations = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_workflow_skipped(self, workflow_id: str, reason: str, error: str | None = None):
        self.workflows_skipped += 1
        self._append_error(workflow_id=workflow_id, reason=reason, error=error)

    def record_workflow_failure(self, workflow_id: str, stage: str, error: str):
        self.workflows_failed += 1
        self._append_error(workflow_id=workflow_id, reason=stage, error=error)

    def record_message_error(self, workflow_id: str, message_id: str, error: str):
        self.message_errors += 1
        self._append_error(workflow_id=workflow_id, message_id=message_id, error=error)

    def _append_error(self, **fields):
        fields["timestamp"] = datetime.now(UTC).isoformat()
        self.errors.append({k: v for k, v in fields.items() if v is not None})

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": JOB_NAME,
            "tick_id": self.tick_id,
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "workflows_found": self.workflows_found,
            "workflows_processed": self.workflows_processed,
            "workflows_skipped": self.workflows_skipped,
            "workflows_failed": self.workflows_failed,
            "messages_found": self.messages_found,
            "messages_already_processed": self.messages_already_processed,
            "messages_foreign": self.messages_foreign,
            "conversations_created": self.conversations_created,
            "dispatch_succeeded": self.dispatch_succeeded,
            "dispatch_failed": self.dispatch_failed,
            "message_errors": self.message_errors,
            "invariant_violations": self.invariant_violations,
            "errors_count": len(self.errors),
        }


class InterviewPollerJob:
    """
    Orchestrates one polling tick over all eligible interview workflows.

    Collaborators are passed in so tests can substitute fakes:
    workflows (list_active), credentials (resolve), mailbox (search/fetch),
    conversations (find_by_message_id/create/mark_processed/list_pending_for_workflow)
    and dispatcher (dispatch).
    """

    def __init__(
        self,
        workflows: InterviewRepository,
        credentials: CredentialResolver,
        mailbox: GoogleGmailService,
        conversations: ConversationRepository,
        dispatcher: AIDispatchService,
        *,
        max_results: int | None = None,
        max_concurrent_workflows: int | None = None,
        sweep_pending: bool = False,
    ):
        self._workflows = workflows
        self._credentials = credentials
        self._mailbox = mailbox
        self._conversations = conversations
        self._dispatcher = dispatcher
        self._max_results = max_results or settings.MAIL_SEARCH_MAX_RESULTS
        self._max_concurrent = max_concurrent_workflows or settings.POLLER_MAX_CONCURRENT_WORKFLOWS
        self._sweep_pending = sweep_pending
        self._message_locks: dict[str, asyncio.Lock] = {}

        self.is_running = False
        self.last_run_time: datetime | None = None
        self.metrics = PollerTickMetrics()

    async def run_once(self) -> dict:
        """
        Run a single tick.

        Returns:
            dict: Tick metrics, or {"skipped": True, ...} if a tick is already running

        Raises:
            InterviewPollerJobError: If the workflow list cannot be loaded
        """
        if self.is_running:
            logger.warning("Interview poller already running, skipping this tick")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.metrics.reset()
            self.metrics.tick_id = uuid.uuid4().hex[:12]
            self._message_locks = {}
            bind_job_context(job=JOB_NAME, tick_id=self.metrics.tick_id)

            logger.info("Starting interview poller tick", max_results=self._max_results)

            workflows = await self._list_workflows()
            self.metrics.workflows_found = len(workflows)

            if not workflows:
                logger.debug("No active interviews found")
                self.metrics.finalize()
                self.last_run_time = datetime.now(UTC)
                return self.metrics.to_dict()

            logger.info("Found active interviews", workflow_count=len(workflows))

            semaphore = asyncio.Semaphore(self._max_concurrent)
            await asyncio.gather(
                *(self._process_workflow_with_semaphore(semaphore, wf) for wf in workflows)
            )

            self.metrics.finalize()
            self.last_run_time = datetime.now(UTC)

            metrics = self.metrics.to_dict()
            log_tick_summary(metrics)
            return metrics

        finally:
            self.is_running = False
            clear_job_context()

    async def _list_workflows(self) -> list[InterviewWorkflow]:
        try:
            return await self._workflows.list_active()
        except Exception as e:
            logger.error(
                "Failed to list active interviews", error=str(e), error_type=type(e).__name__
            )
            raise InterviewPollerJobError(
                f"Failed to list active interviews: {e}", operation="list_workflows"
            ) from e

    async def _process_workflow_with_semaphore(
        self, semaphore: asyncio.Semaphore, workflow: InterviewWorkflow
    ) -> None:
        async with semaphore:
            try:
                await self._process_workflow(workflow)
            except Exception as e:
                logger.error(
                    "Unexpected error processing interview",
                    workflow_id=workflow.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self.metrics.record_workflow_failure(workflow.id, "unexpected", str(e))

    async def _process_workflow(self, workflow: InterviewWorkflow) -> None:
        log = logger.bind(workflow_id=workflow.id, owner_id=workflow.owner_id)

        if not workflow.owner_id:
            log.warning("Interview has no owning recruiter, skipping")
            self.metrics.record_workflow_skipped(workflow.id, "missing_owner")
            return

        if not workflow.participant_addresses:
            log.warning("Interview has no participant addresses, skipping")
            self.metrics.record_workflow_skipped(workflow.id, "missing_participants")
            return

        try:
            credential = await self._credentials.resolve(workflow.owner_id)
        except CredentialError as e:
            log.warning(
                "Mailbox credential unavailable, skipping interview",
                error=str(e),
                error_type=type(e).__name__,
                recoverable=e.recoverable,
            )
            self.metrics.record_workflow_skipped(workflow.id, "credential", str(e))
            return

        try:
            message_ids = await self._mailbox.search(
                credential, workflow.participant_addresses, self._max_results
            )
        except MailboxError as e:
            log.error("Mailbox search failed", error=str(e), status_code=e.status_code)
            self.metrics.record_workflow_failure(workflow.id, "search", str(e))
            return

        self.metrics.messages_found += len(message_ids)
        log.info("Found messages for interview", message_count=len(message_ids))

        for message_id in message_ids:
            await self._process_message_isolated(workflow, credential, message_id)

        if self._sweep_pending:
            await self._retry_unlisted_pending(workflow, set(message_ids))

        self.metrics.workflows_processed += 1

    async def _process_message_isolated(
        self, workflow: InterviewWorkflow, credential: AccessCredential, message_id: str
    ) -> None:
        try:
            await self._process_message(workflow, credential, message_id)
        except ConversationInvariantError as e:
            logger.error(
                "Conversation invariant violated",
                workflow_id=workflow.id,
                message_id=message_id,
                error=str(e),
                invariant_violation=True,
            )
            self.metrics.invariant_violations += 1
            self.metrics.record_message_error(workflow.id, message_id, str(e))
        except Exception as e:
            logger.error(
                "Error processing message",
                workflow_id=workflow.id,
                message_id=message_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self.metrics.record_message_error(workflow.id, message_id, str(e))

    def _message_lock(self, message_id: str) -> asyncio.Lock:
        return self._message_locks.setdefault(message_id, asyncio.Lock())

    async def _process_message(
        self, workflow: InterviewWorkflow, credential: AccessCredential, message_id: str
    ) -> None:
        # Lookup + create must not interleave for the same message id
        async with self._message_lock(message_id):
            record = await self._conversations.find_by_message_id(message_id)
            action = next_action(record)

            if action is ConversationAction.INGEST:
                record = await self._ingest(workflow, credential, message_id)
                if record is None:
                    return
                action = next_action(record)

            if action is ConversationAction.SKIP:
                logger.debug(
                    "Message already processed, skipping",
                    workflow_id=workflow.id,
                    message_id=message_id,
                )
                self.metrics.messages_already_processed += 1
                return

            await self._dispatch_and_mark(record)

    async def _ingest(
        self, workflow: InterviewWorkflow, credential: AccessCredential, message_id: str
    ) -> ConversationRecord | None:
        """Fetch, normalize and record a first-seen message. None when it belongs elsewhere."""
        message = await self._mailbox.fetch(credential, message_id)

        subject = message.subject
        tagged_workflow_id = extract_workflow_id_from_subject(subject)
        if tagged_workflow_id and tagged_workflow_id != workflow.id:
            logger.info(
                "Message tagged for another interview, skipping",
                workflow_id=workflow.id,
                message_id=message_id,
                tagged_workflow_id=tagged_workflow_id,
            )
            self.metrics.messages_foreign += 1
            return None

        record = await self._conversations.create(
            NewConversation(
                workflow_id=workflow.id,
                message_id=message_id,
                to_address=message.recipient,
                from_address=extract_address(message.sender),
                subject=tag_subject(subject, workflow.id),
                content=extract_new_content(message.body),
            )
        )
        self.metrics.conversations_created += 1
        return record

    async def _dispatch_and_mark(self, record: ConversationRecord) -> None:
        confirmed = await self._dispatcher.dispatch(record.id, record.workflow_id, record.message_id)

        if not confirmed:
            logger.warning(
                "AI dispatch failed, conversation left pending",
                conversation_id=record.id,
                workflow_id=record.workflow_id,
                message_id=record.message_id,
            )
            self.metrics.dispatch_failed += 1
            return

        await self._conversations.mark_processed(record.id)
        self.metrics.dispatch_succeeded += 1

    async def _retry_unlisted_pending(self, workflow: InterviewWorkflow, seen: set[str]) -> None:
        """Re-dispatch pending records the time-bounded search no longer returns."""
        try:
            pending = await self._conversations.list_pending_for_workflow(workflow.id)
        except Exception as e:
            logger.error("Failed to list pending conversations", workflow_id=workflow.id, error=str(e))
            return

        for record in pending:
            if record.message_id in seen:
                continue
            try:
                async with self._message_lock(record.message_id):
                    # Another workflow may have finished it while we waited on the lock
                    current = await self._conversations.find_by_message_id(record.message_id)
                    if next_action(current) is not ConversationAction.RETRY_DISPATCH:
                        logger.debug(
                            "Pending conversation settled elsewhere, skipping",
                            workflow_id=workflow.id,
                            message_id=record.message_id,
                        )
                        self.metrics.messages_already_processed += 1
                        continue
                    await self._dispatch_and_mark(current)
            except ConversationInvariantError as e:
                logger.error(
                    "Conversation invariant violated",
                    workflow_id=workflow.id,
                    message_id=record.message_id,
                    error=str(e),
                    invariant_violation=True,
                )
                self.metrics.invariant_violations += 1
                self.metrics.record_message_error(workflow.id, record.message_id, str(e))
            except Exception as e:
                logger.error(
                    "Error retrying pending conversation",
                    workflow_id=workflow.id,
                    message_id=record.message_id,
                    error=str(e),
                )
                self.metrics.record_message_error(workflow.id, record.message_id, str(e))

    def get_job_status(self) -> dict:
        return {
            "job_name": JOB_NAME,
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "configuration": settings.poller_config(),
            "last_run_metrics": self.metrics.to_dict() if self.last_run_time else None,
        }

    def health_check(self) -> dict:
        """
        Health check for the poller.

        Unhealthy when the last completed tick is older than twice the interval.
        """
        now = datetime.now(UTC)
        overdue_threshold = timedelta(minutes=settings.POLL_INTERVAL_MINUTES * 2)
        is_overdue = self.last_run_time is not None and (now - self.last_run_time) > overdue_threshold

        health_status = {
            "healthy": not is_overdue,
            "service": "interview_poller_job",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "is_overdue": is_overdue,
        }

        if is_overdue:
            health_status["warning"] = (
                f"Job overdue by {(now - self.last_run_time).total_seconds() / 60:.1f} minutes"
            )

        return health_status

    async def close(self) -> None:
        self._mailbox.close()
        await self._dispatcher.close()


def create_interview_poller_job() -> InterviewPollerJob:
    """
    Wire the poller with its production collaborators. Requires an open db_pool.

    Raises:
        InterviewPollerJobError: If stored tokens cannot be decrypted with the configured key
    """
    if not validate_encryption_config():
        raise InterviewPollerJobError(
            "Encryption service not properly configured", operation="startup", recoverable=False
        )

    return InterviewPollerJob(
        workflows=InterviewRepository(),
        credentials=CredentialResolver(GoogleOAuthService()),
        mailbox=GoogleGmailService(lookback_minutes=settings.MAIL_SEARCH_LOOKBACK_MINUTES),
        conversations=ConversationRepository(),
        dispatcher=AIDispatchService(AIRequestRepository()),
        max_results=settings.MAIL_SEARCH_MAX_RESULTS,
        max_concurrent_workflows=settings.POLLER_MAX_CONCURRENT_WORKFLOWS,
        sweep_pending=settings.MAIL_SEARCH_LOOKBACK_MINUTES is not None,
    )


async def run_tick_with_retries(
    job: InterviewPollerJob,
    retries: int | None = None,
    base_delay: float | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """
    Run one tick, retrying the invocation on tick-level failures.

    A tick that exceeds the timeout is abandoned, not retried: its pending
    conversations resume on the next scheduled tick.

    Raises:
        InterviewPollerJobError: If every attempt failed
    """
    retries = settings.POLL_INVOCATION_RETRIES if retries is None else retries
    base_delay = settings.POLL_RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay
    timeout = settings.POLL_TICK_TIMEOUT_SECONDS if timeout is None else timeout

    for attempt in range(retries + 1):
        try:
            return await asyncio.wait_for(job.run_once(), timeout=timeout)

        except TimeoutError:
            logger.warning("Interview poller tick timed out, abandoning in-flight work", timeout=timeout)
            return {"timed_out": True, "timeout_seconds": timeout}

        except InterviewPollerJobError as e:
            if attempt == retries:
                raise

            delay = base_delay * (2**attempt)
            logger.warning(
                "Interview poller tick failed, retrying",
                attempt=attempt + 1,
                max_retries=retries,
                delay=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)

    raise InterviewPollerJobError("Interview poller retries exhausted", operation="run_tick")


async def run_interview_poller_once(job: InterviewPollerJob | None = None) -> dict:
    """Run a single tick with invocation retries (cron-style entry point)."""
    owned = job is None
    job = job or create_interview_poller_job()
    try:
        return await run_tick_with_retries(job)
    finally:
        if owned:
            await job.close()


async def start_interview_poller_scheduler(job: InterviewPollerJob | None = None) -> None:
    """
    Run the poller on a fixed interval until cancelled.

    Intended for a dedicated worker process (see jobs/worker.py) or the API
    lifespan when RUN_POLLER_IN_API is set.
    """
    owned = job is None
    job = job or create_interview_poller_job()
    interval_seconds = settings.POLL_INTERVAL_MINUTES * 60

    logger.info("Starting interview poller scheduler", **settings.poller_config())

    try:
        while True:
            started = time.monotonic()
            try:
                await run_tick_with_retries(job)
            except InterviewPollerJobError as e:
                logger.error(
                    "Interview poller tick failed after retries",
                    error=str(e),
                    operation=e.operation,
                )

            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, interval_seconds - elapsed))
    finally:
        if owned:
            await job.close()
