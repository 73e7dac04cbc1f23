# interview_inbox/models/domain/interview_domain.py
"""
Interview workflow domain model.

Workflows are created and advanced by the scheduling app; the poller only
reads the owner, the two participant addresses and the status.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

COMPLETED_STATUS = "completed"


def is_eligible_status(status: str | None) -> bool:
    """A workflow is polled iff its status is present and not completed."""
    return status is not None and status != COMPLETED_STATUS


@dataclass(slots=True)
class InterviewWorkflow:
    """Represents an interviews row."""

    id: str
    owner_id: str | None
    candidate_email: str
    interviewer_email: str
    status: str | None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "InterviewWorkflow":
        return cls(
            id=str(row["id"]),
            owner_id=row.get("created_by"),
            candidate_email=row.get("candidate_email") or "",
            interviewer_email=row.get("interviewer_email") or "",
            status=row.get("status"),
            created_at=row.get("created_at"),
        )

    @property
    def participant_addresses(self) -> list[str]:
        return [addr for addr in (self.candidate_email, self.interviewer_email) if addr]

    def is_eligible(self) -> bool:
        return is_eligible_status(self.status)
