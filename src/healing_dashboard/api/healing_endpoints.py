"""
Healing API endpoints for the dashboard.

This module provides the healing notification intake, the heal-locator
pipeline, the dashboard query, tracking configuration, and the SSE and
WebSocket push channels for live healing progress.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from src.healing_dashboard.config.status_messages import describe_healing
from src.healing_dashboard.core.config_loader import ConfigurationError, get_tracking_config, save_tracking_config
from src.healing_dashboard.core.models.execution_models import TrackingConfiguration
from src.healing_dashboard.core.models.healing_models import HealingEvent, now_ms
from src.healing_dashboard.services.repair_proposer import HealingPipeline
from src.healing_dashboard.services.stream_multiplexer import DASHBOARD_CHANNEL, ChannelNotFoundError
from src.healing_dashboard.services.tracking_service import get_tracking_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["healing"])

# Global healing pipeline instance
_healing_pipeline: Optional[HealingPipeline] = None


# Pydantic models for API requests
class HealingEventPayload(BaseModel):
    type: Literal["locatorFix"] = "locatorFix"
    locatorKey: str = Field(..., min_length=1)
    oldLocator: str = Field(..., min_length=1)
    newLocator: Optional[str] = None
    status: Literal["detected", "analyzing", "healing", "fixed", "failed", "error"]
    healingSessionId: Optional[str] = None
    error: Optional[str] = None
    time: Optional[int] = None
    currentStep: Optional[int] = None
    reason: Optional[str] = None


class HealLocatorRequest(BaseModel):
    locatorKey: str = "unknown"
    failedLocator: Optional[str] = None
    pageHtml: Optional[str] = None


class TrackingConfigUpdate(BaseModel):
    watchdog_timeout: Optional[float] = Field(None, gt=0, le=600)
    execution_timeout: Optional[int] = Field(None, ge=1, le=3600)
    stop_grace_period: Optional[float] = Field(None, ge=0, le=60)
    expected_exit_codes: Optional[List[int]] = None
    stop_mode: Optional[Literal["kill_process_group", "terminate"]] = None


def get_healing_pipeline() -> HealingPipeline:
    """Get or create the global healing pipeline instance."""
    global _healing_pipeline

    if _healing_pipeline is None:
        _healing_pipeline = HealingPipeline(
            sink=lambda event: get_tracking_service().ingest_healing_event(event)
        )
        logger.info(f"🚀 Healing pipeline initialized against {_healing_pipeline.client.url}")

    return _healing_pipeline


def _record_response(record) -> dict:
    service = get_tracking_service()
    return {
        **record.to_dict(),
        "statusText": describe_healing(record),
        "active": record.execution_id in service.reconciler.active
    }


@router.post("/api/healing/events")
async def ingest_healing_event(payload: HealingEventPayload):
    """Reconcile one healing notification into the dashboard state."""
    try:
        event = HealingEvent.from_dict(payload.dict())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    service = get_tracking_service()
    record, changed = service.ingest_healing_event(event)
    return {
        "executionId": record.execution_id,
        "changed": changed,
        "record": _record_response(record),
        "counters": service.counters()
    }


@router.post("/api/heal-locator")
async def heal_locator(request: HealLocatorRequest):
    """Ask the repair proposer for a replacement locator, reporting each stage."""
    if not request.failedLocator or not request.pageHtml:
        raise HTTPException(status_code=400, detail="failedLocator and pageHtml are required")

    try:
        return await get_healing_pipeline().heal(request.locatorKey, request.failedLocator, request.pageHtml)
    except Exception as e:
        logger.error(f"❌ HEALING API: Failed to heal {request.failedLocator}: {e}")
        return JSONResponse(status_code=500, content={
            "error": "Failed to heal locator",
            "newLocator": "body",
            "reason": "Healing service error, using safe fallback"
        })


@router.get("/api/healing/records")
async def list_healing_records(active_only: bool = False):
    service = get_tracking_service()
    records = list(reversed(service.reconciler.records))
    if active_only:
        records = [r for r in records if r.execution_id in service.reconciler.active]
    return {"records": [_record_response(r) for r in records], "counters": service.counters()}


@router.get("/api/healing/records/{execution_id}")
async def get_healing_record(execution_id: str):
    record = get_tracking_service().get_healing_record(execution_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Healing attempt {execution_id} not found")
    return _record_response(record)


@router.get("/api/healing/progress/{execution_id}")
async def stream_healing_progress(execution_id: str, request: Request):
    """Server-Sent Events stream for one healing attempt."""
    service = get_tracking_service()
    record = service.get_healing_record(execution_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Healing attempt {execution_id} not found")
    try:
        subscription = service.multiplexer.subscribe(execution_id)
    except ChannelNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    async def event_generator():
        try:
            # Send current status first; the channel itself has no backlog
            yield {"event": "status", "data": json.dumps(_record_response(record))}

            while True:
                if await request.is_disconnected():
                    break
                try:
                    update = await subscription.get(timeout=1.0)
                except asyncio.TimeoutError:
                    yield {
                        "event": "heartbeat",
                        "data": json.dumps({"timestamp": datetime.now().isoformat()})
                    }
                    continue
                if update is None:
                    break
                yield {"event": "progress", "data": json.dumps(update.to_dict())}
        except Exception as e:
            logger.error(f"Error in progress stream for healing attempt {execution_id}: {e}")
            yield {"event": "error", "data": json.dumps({"error": str(e)})}
        finally:
            subscription.unsubscribe()

    return EventSourceResponse(event_generator())


@router.get("/api/dashboard")
async def get_dashboard():
    """Counters plus newest-first execution and healing records."""
    return get_tracking_service().dashboard_snapshot()


@router.get("/api/tracking/config")
async def get_tracking_configuration():
    try:
        return get_tracking_config().to_dict()
    except ConfigurationError as e:
        logger.error(f"Failed to get tracking configuration: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to get tracking configuration: {str(e)}")


@router.post("/api/tracking/config")
async def update_tracking_configuration(config_update: TrackingConfigUpdate):
    """Update tracking configuration settings."""
    try:
        config_dict = get_tracking_config().to_dict()
        config_dict.update({k: v for k, v in config_update.dict(exclude_unset=True).items() if v is not None})
        updated_config = TrackingConfiguration(**config_dict)
        save_tracking_config(updated_config)
    except ConfigurationError as e:
        logger.error(f"Failed to update tracking configuration: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    get_tracking_service().update_config(updated_config)
    logger.info("⚙️ Tracking configuration updated")
    return {"status": "success", "configuration": updated_config.to_dict()}


@router.websocket("/ws")
async def dashboard_websocket(websocket: WebSocket):
    """
    WebSocket endpoint for live healing updates.

    Message Types:
    - init: sent once on connect with the current records and counters
    - locatorFix: a reconciled healing record with fresh counters
    - pong: reply to a client {"type": "ping"}
    """
    await websocket.accept()
    service = get_tracking_service()
    subscription = service.multiplexer.subscribe(DASHBOARD_CHANNEL)

    async def forward_updates():
        async for update in subscription:
            await websocket.send_json(update.to_dict())

    sender = None
    try:
        await websocket.send_json({
            "type": "init",
            "time": now_ms(),
            "events": [r.to_dict() for r in reversed(service.reconciler.records)],
            "counters": service.counters()
        })
        sender = asyncio.create_task(forward_updates())

        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong", "time": now_ms()})

    except WebSocketDisconnect:
        logger.info("🔌 Dashboard WebSocket disconnected")
    finally:
        if sender is not None:
            sender.cancel()
        subscription.unsubscribe()
