"""
Read-only access to interview workflows for the poller.
"""

from interview_inbox.db.helpers import fetch_all, with_db_retry
from interview_inbox.infrastructure.observability.logging import get_logger
from interview_inbox.models.domain.interview_domain import (
    COMPLETED_STATUS,
    InterviewWorkflow,
    is_eligible_status,
)

logger = get_logger(__name__)


class InterviewRepository:
    """Lists workflows eligible for mailbox polling."""

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_active(self) -> list[InterviewWorkflow]:
        # "status IS NOT NULL" keeps the same semantics as an inequality filter
        # on stores that skip documents missing the field.
        rows = await fetch_all(
            """
            SELECT id, created_by, candidate_email, interviewer_email, status, created_at
            FROM interviews
            WHERE status IS NOT NULL
              AND status <> %s
            ORDER BY created_at
            """,
            (COMPLETED_STATUS,),
        )

        workflows = [InterviewWorkflow.from_row(row) for row in rows]
        # Post-filter so eligibility never depends on the query alone
        eligible = [wf for wf in workflows if is_eligible_status(wf.status)]

        if len(eligible) != len(workflows):
            logger.warning(
                "Dropped ineligible workflows returned by query",
                dropped=len(workflows) - len(eligible),
            )

        return eligible
