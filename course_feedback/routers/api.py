"""JSON endpoints for the feedback flow.

Errors are raised as FeedbackError subclasses and rendered by the handler
registered in main as `{"detail": {"code", "message", "details"}}`.
"""

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Request, status
from sqlmodel import Session

from course_feedback.database import get_session
from course_feedback.deps import get_identity_provider, get_metadata_collector
from course_feedback.schemas import ResponseIn
from course_feedback.services.identity import AnonymousIdentityProvider
from course_feedback.services.metadata import MetadataCollector
from course_feedback.services.session_directory import resolve_session
from course_feedback.services.statistics import refresh_session_stats_task
from course_feedback.services.submission import (
    build_response_metadata,
    has_responded,
    submit_response,
    update_response,
)

router = APIRouter()


async def _collect_metadata(request: Request, payload: ResponseIn, collector: MetadataCollector) -> dict:
    client = await collector.collect(
        user_agent=request.headers.get("user-agent"),
        headers=request.headers,
        client_host=request.client.host if request.client else None,
        client_hints=payload.client_hints,
    )
    return build_response_metadata(client, started_at=payload.started_at)


@router.get("/sessions/{code}")
def api_get_session(
    code: str,
    session: Session = Depends(get_session),
    identity: AnonymousIdentityProvider = Depends(get_identity_provider),
):
    descriptor = resolve_session(session, code)
    anonymous_id = identity.get_or_create()
    return {
        "session": descriptor.model_dump(mode="json"),
        "already_submitted": has_responded(session, descriptor.id, anonymous_id),
    }


@router.post("/sessions/{code}/responses", status_code=status.HTTP_201_CREATED)
async def api_submit_response(
    code: str,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: ResponseIn = Body(...),
    session: Session = Depends(get_session),
    identity: AnonymousIdentityProvider = Depends(get_identity_provider),
    collector: MetadataCollector = Depends(get_metadata_collector),
):
    descriptor = resolve_session(session, code)
    anonymous_id = identity.get_or_create()
    metadata = await _collect_metadata(request, payload, collector)

    bind = session.get_bind()
    ack = submit_response(
        session,
        descriptor.id,
        anonymous_id,
        payload.response_data,
        metadata,
        schedule_refresh=lambda sid: background_tasks.add_task(refresh_session_stats_task, bind, sid),
    )
    return ack.model_dump(mode="json")


@router.put("/sessions/{code}/responses")
async def api_update_response(
    code: str,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: ResponseIn = Body(...),
    session: Session = Depends(get_session),
    identity: AnonymousIdentityProvider = Depends(get_identity_provider),
    collector: MetadataCollector = Depends(get_metadata_collector),
):
    descriptor = resolve_session(session, code)
    anonymous_id = identity.get_or_create()
    metadata = await _collect_metadata(request, payload, collector)

    bind = session.get_bind()
    ack = update_response(
        session,
        descriptor.id,
        anonymous_id,
        payload.response_data,
        metadata,
        schedule_refresh=lambda sid: background_tasks.add_task(refresh_session_stats_task, bind, sid),
    )
    return ack.model_dump(mode="json")
