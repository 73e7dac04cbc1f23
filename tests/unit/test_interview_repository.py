from unittest.mock import AsyncMock

import pytest

from interview_inbox.repositories.interview_repository import InterviewRepository


def _interview_row(workflow_id, status):
    return {
        "id": workflow_id,
        "created_by": "recruiter-1",
        "candidate_email": "cand@example.com",
        "interviewer_email": "int@example.com",
        "status": status,
        "created_at": None,
    }


@pytest.mark.asyncio
async def test_list_active_excludes_completed_in_query(monkeypatch):
    fetch_all = AsyncMock(return_value=[_interview_row("wf-1", "email_to_candidate")])
    monkeypatch.setattr("interview_inbox.repositories.interview_repository.fetch_all", fetch_all)

    workflows = await InterviewRepository().list_active()

    assert [wf.id for wf in workflows] == ["wf-1"]
    query, params = fetch_all.await_args.args
    assert "status IS NOT NULL" in query
    assert params == ("completed",)


@pytest.mark.asyncio
async def test_list_active_drops_ineligible_rows(monkeypatch):
    monkeypatch.setattr(
        "interview_inbox.repositories.interview_repository.fetch_all",
        AsyncMock(
            return_value=[
                _interview_row("wf-1", "scheduled"),
                _interview_row("wf-2", "completed"),
                _interview_row("wf-3", None),
            ]
        ),
    )

    workflows = await InterviewRepository().list_active()

    assert [wf.id for wf in workflows] == ["wf-1"]
    assert workflows[0].owner_id == "recruiter-1"
