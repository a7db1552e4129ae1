"""
Arrival event endpoints - the inbound side of the dispatcher.

A single event goes through DispatchArrivalCommand on the command bus; an S3
notification may carry several records, each dispatched independently.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from feed_dispatch.core.cqrs.command_bus import CommandBus
from feed_dispatch.core.exceptions import InvalidEventError, TemplateNotFoundError, TemplateRenderError
from feed_dispatch.dependencies import get_command_bus, get_dispatcher
from feed_dispatch.domains.dispatch.commands import DispatchArrivalCommand
from feed_dispatch.domains.dispatch.dispatcher import JobDispatcher
from feed_dispatch.domains.dispatch.s3_notifications import parse_s3_notification
from feed_dispatch.models import ArrivalEvent

router = APIRouter(prefix="/api/events", tags=["events"])


class DispatchResponse(BaseModel):
    job_id: str


class RecordResult(BaseModel):
    source_location: str
    object_key: str
    job_id: Optional[str] = None
    error: Optional[str] = None


class NotificationResponse(BaseModel):
    dispatched: int
    rejected: int
    results: List[RecordResult]


@router.post("", response_model=DispatchResponse, status_code=status.HTTP_201_CREATED)
async def submit_event(
    event: ArrivalEvent, command_bus: CommandBus = Depends(get_command_bus)
) -> DispatchResponse:
    """Dispatch one arrival event and return the new job id."""
    try:
        job_id = await command_bus.execute(DispatchArrivalCommand(event=event))
    except InvalidEventError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except (TemplateRenderError, TemplateNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return DispatchResponse(job_id=job_id)


@router.post("/s3", response_model=NotificationResponse)
async def submit_s3_notification(
    payload: Dict[str, Any], dispatcher: JobDispatcher = Depends(get_dispatcher)
) -> NotificationResponse:
    """
    Dispatch every ObjectCreated record of an S3 bucket notification.

    Rejected records are reported per record; the request itself succeeds.
    """
    events = parse_s3_notification(payload)
    try:
        outcomes = await dispatcher.dispatch_many(events)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    results = [
        RecordResult(
            source_location=outcome.event.source_location,
            object_key=outcome.event.object_key,
            job_id=outcome.job_id,
            error=str(outcome.error) if outcome.error else None,
        )
        for outcome in outcomes
    ]
    dispatched = sum(1 for outcome in outcomes if outcome.succeeded)

    logging.info(
        f"API: S3 notification with {len(events)} record(s), "
        f"{dispatched} dispatched, {len(outcomes) - dispatched} rejected"
    )
    return NotificationResponse(
        dispatched=dispatched, rejected=len(outcomes) - dispatched, results=results
    )
