import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from interview_inbox.db.helpers import DatabaseError
from interview_inbox.services.ai_dispatch_service import AIDispatchService

AI_URL = "https://ai.example.com/process-email"


@pytest.fixture
def request_repository():
    repository = MagicMock()
    repository.append = AsyncMock(return_value=MagicMock(id="req-1"))
    return repository


@pytest.mark.asyncio
async def test_dispatch_confirmed(httpx_mock, request_repository):
    httpx_mock.add_response(
        method="POST", url=AI_URL, json={"success": True, "nextStep": "confirm_slot"}
    )
    service = AIDispatchService(request_repository, endpoint_url=AI_URL)

    assert await service.dispatch("conv-1", "wf-1", "msg-1") is True
    await service.close()

    request_repository.append.assert_awaited_once_with("conv-1", "wf-1", "msg-1")
    [request] = httpx_mock.get_requests()
    assert json.loads(request.content) == {
        "conversationId": "conv-1",
        "interviewId": "wf-1",
        "messageId": "msg-1",
    }


@pytest.mark.asyncio
async def test_dispatch_non_json_success_body_is_confirmed(httpx_mock, request_repository):
    httpx_mock.add_response(method="POST", url=AI_URL, text="OK")
    service = AIDispatchService(request_repository, endpoint_url=AI_URL)

    assert await service.dispatch("conv-1", "wf-1", "msg-1") is True
    await service.close()


@pytest.mark.asyncio
async def test_dispatch_server_error_is_failure(httpx_mock, request_repository):
    httpx_mock.add_response(method="POST", url=AI_URL, status_code=500, text="boom")
    service = AIDispatchService(request_repository, endpoint_url=AI_URL)

    assert await service.dispatch("conv-1", "wf-1", "msg-1") is False
    await service.close()


@pytest.mark.asyncio
async def test_dispatch_reported_failure_in_body(httpx_mock, request_repository):
    httpx_mock.add_response(
        method="POST", url=AI_URL, json={"success": False, "error": "model overloaded"}
    )
    service = AIDispatchService(request_repository, endpoint_url=AI_URL)

    assert await service.dispatch("conv-1", "wf-1", "msg-1") is False
    await service.close()


@pytest.mark.asyncio
async def test_dispatch_transport_error_is_failure(httpx_mock, request_repository):
    httpx_mock.add_exception(httpx.ReadTimeout("timed out"))
    service = AIDispatchService(request_repository, endpoint_url=AI_URL)

    assert await service.dispatch("conv-1", "wf-1", "msg-1") is False
    await service.close()


@pytest.mark.asyncio
async def test_dispatch_not_sent_when_audit_row_fails(httpx_mock, request_repository):
    request_repository.append.side_effect = DatabaseError("Query failed", operation="fetch_one")
    service = AIDispatchService(request_repository, endpoint_url=AI_URL)

    assert await service.dispatch("conv-1", "wf-1", "msg-1") is False
    await service.close()

    assert httpx_mock.get_requests() == []
