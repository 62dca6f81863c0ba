"""
Execution endpoints: run requests, live streams and run control.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from src.healing_dashboard.config.status_messages import describe_execution
from src.healing_dashboard.core.config import settings
from src.healing_dashboard.core.models.execution_models import (
    ExecutionMode,
    ExecutionRecord,
    ExecutionRequest,
    TestKey,
)
from src.healing_dashboard.services.execution_store import ExecutionNotFoundError
from src.healing_dashboard.services.stream_multiplexer import Subscription
from src.healing_dashboard.services.tracking_service import get_tracking_service

logger = logging.getLogger(__name__)

router = APIRouter()


class RunTestCaseRequest(BaseModel):
    product: str = Field(..., min_length=1)
    testClass: str = Field(..., min_length=1)
    testId: str = Field(..., min_length=1)
    testTitle: Optional[str] = None
    mode: Literal["headless", "headed"] = "headless"
    browser: Optional[str] = None

    def to_execution_request(self) -> ExecutionRequest:
        browser = (self.browser or settings.DEFAULT_BROWSER).lower()
        if browser not in ("chromium", "firefox", "webkit"):
            raise HTTPException(status_code=400, detail=f"Unsupported browser: {self.browser}")
        return ExecutionRequest(
            test_key=TestKey(self.product, self.testClass, self.testId),
            mode=ExecutionMode(self.mode),
            browser=browser,
            test_title=self.testTitle,
        )


class BulkRunRequest(BaseModel):
    testCases: List[RunTestCaseRequest]


def _record_response(record: ExecutionRecord) -> dict:
    return {**record.to_dict(), "statusText": describe_execution(record)}


def _require_execution(execution_id: str) -> ExecutionRecord:
    try:
        return get_tracking_service().get_execution(execution_id)
    except ExecutionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


async def stream_subscription(subscription: Subscription):
    """Frame a subscription as a ``text/event-stream`` body."""
    try:
        async for event in subscription:
            yield f"data: {json.dumps(event.to_dict())}\n\n"
    finally:
        subscription.unsubscribe()


@router.get('/api/health')
async def health_check():
    service = get_tracking_service()
    return {
        "status": "ok",
        "executions": len(service.list_executions()),
        "healingAttempts": service.counters()["totalRuns"],
        "timestamp": datetime.now().isoformat()
    }


@router.post('/api/automation/run-test-case')
async def run_test_case(request: RunTestCaseRequest):
    """
    Start one test case in the background and return its execution id.
    Progress is available from /api/executions/{id}/stream.
    """
    execution_request = request.to_execution_request()
    try:
        execution_id = get_tracking_service().start(execution_request)
    except Exception as e:
        logger.error(f"❌ Failed to start test case {execution_request.test_key}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to start test case: {str(e)}")

    logging.info(f"🎭 Running individual test case: {execution_request.test_key} in {request.mode} mode, executionId: {execution_id}")
    return {"executionId": execution_id, "testKey": str(execution_request.test_key)}


@router.post('/api/automation/run-test-case-streaming')
async def run_test_case_streaming(request: RunTestCaseRequest):
    """
    Start one test case and stream its events back on the same response.
    The subscription is opened before the runner starts, so nothing is missed.
    """
    execution_request = request.to_execution_request()
    service = get_tracking_service()
    try:
        record = service.accept(execution_request)
        subscription = service.multiplexer.subscribe(record.execution_id)
        service.launch(record.execution_id)
    except Exception as e:
        logger.error(f"❌ Failed to start streaming test case {execution_request.test_key}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to start test case: {str(e)}")

    logging.info(f"🎭 Streaming test case: {execution_request.test_key}, executionId: {record.execution_id}")
    return StreamingResponse(
        stream_subscription(subscription),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Execution-Id": record.execution_id}
    )


@router.post('/api/automation/run-bulk')
async def run_bulk(request: BulkRunRequest):
    """Start several independent executions."""
    if not request.testCases:
        raise HTTPException(status_code=400, detail="No test cases provided")

    execution_requests = [case.to_execution_request() for case in request.testCases]
    try:
        execution_ids = get_tracking_service().start_bulk(execution_requests)
    except Exception as e:
        logger.error(f"❌ Failed to start bulk run: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to start bulk run: {str(e)}")

    logging.info(f"🚀 Started bulk run of {len(execution_ids)} test case(s)")
    return {
        "executions": [
            {"executionId": execution_id, "testKey": str(r.test_key)}
            for execution_id, r in zip(execution_ids, execution_requests)
        ]
    }


@router.get('/api/executions')
async def list_executions():
    records = get_tracking_service().list_executions()
    return {"executions": [_record_response(r) for r in reversed(records)]}


@router.get('/api/executions/{execution_id}')
async def get_execution(execution_id: str):
    return _record_response(_require_execution(execution_id))


@router.get('/api/executions/{execution_id}/stream')
async def stream_execution(execution_id: str, request: Request):
    """Subscribe to a running execution. Only events from now on are sent."""
    _require_execution(execution_id)
    subscription = get_tracking_service().multiplexer.subscribe(execution_id)

    async def event_generator():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await subscription.get(timeout=1.0)
                except asyncio.TimeoutError:
                    yield {
                        "event": "heartbeat",
                        "data": json.dumps({"timestamp": datetime.now().isoformat()})
                    }
                    continue
                if event is None:
                    break
                yield {"data": json.dumps(event.to_dict())}
        finally:
            subscription.unsubscribe()

    return EventSourceResponse(event_generator())


@router.post('/api/executions/{execution_id}/stop')
async def stop_execution(execution_id: str):
    _require_execution(execution_id)
    try:
        record = await get_tracking_service().stop(execution_id)
    except Exception as e:
        logger.error(f"❌ Failed to stop execution {execution_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to stop execution: {str(e)}")
    return _record_response(record)


@router.post('/api/executions/{execution_id}/force-complete')
async def force_complete_execution(execution_id: str):
    """Manual fallback for a stream that never delivered its final event."""
    _require_execution(execution_id)
    record = get_tracking_service().force_complete(execution_id)
    return _record_response(record)
