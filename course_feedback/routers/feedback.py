"""Participant-facing HTML flow: access code entry, feedback form, thank-you page."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Form, Request, status
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlmodel import Session

from course_feedback.config import settings
from course_feedback.database import get_session
from course_feedback.deps import get_identity_provider, get_metadata_collector
from course_feedback.exceptions import (
    AccessError,
    AlreadySubmittedError,
    SubmissionSessionNotFoundError,
    SubmitError,
)
from course_feedback.schemas import SessionDescriptor
from course_feedback.services.identity import AnonymousIdentityProvider
from course_feedback.services.metadata import (
    CLIENT_IP_HINT_KEY,
    FINGERPRINT_HINT_KEYS,
    IP_RESPONSE_KEYS,
    MetadataCollector,
)
from course_feedback.services.session_directory import resolve_session
from course_feedback.services.statistics import refresh_session_stats_task
from course_feedback.services.submission import (
    build_response_metadata,
    has_responded,
    submit_response,
)
from course_feedback.utils import normalize_access_code, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))

ANSWER_FIELD_PREFIX = "answer_"
HINT_FIELD_PREFIX = "hint_"


def rating_label(rating: int, scale: int = 5) -> str:
    """Word shown next to a star rating."""
    if not rating:
        return "Not rated"
    percentage = rating * 100 / scale
    if percentage <= 20:
        return "Poor"
    if percentage <= 40:
        return "Fair"
    if percentage <= 60:
        return "Good"
    if percentage <= 80:
        return "Very Good"
    return "Excellent"


templates.env.globals["rating_label"] = rating_label


def _access_page(request: Request, error: Optional[str] = None, code: str = "", status_code: int = 200):
    return templates.TemplateResponse(
        request,
        "feedback/access.html",
        {"error": error, "access_code": code},
        status_code=status_code,
    )


def _form_page(
    request: Request,
    descriptor: SessionDescriptor,
    answers: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
    error_question_ids=(),
    started_at: Optional[str] = None,
    status_code: int = 200,
):
    return templates.TemplateResponse(
        request,
        "feedback/form.html",
        {
            "session": descriptor,
            "answers": answers or {},
            "error": error,
            "error_question_ids": list(error_question_ids),
            "started_at": started_at or utcnow().isoformat(),
            "hint_keys": FINGERPRINT_HINT_KEYS + (CLIENT_IP_HINT_KEY,),
            "ip_lookup_services": settings.IP_LOOKUP_SERVICES,
            "ip_response_keys": IP_RESPONSE_KEYS,
        },
        status_code=status_code,
    )


def _already_submitted_page(request: Request, descriptor: SessionDescriptor, status_code: int = 200):
    return templates.TemplateResponse(
        request,
        "feedback/already_submitted.html",
        {"session": descriptor},
        status_code=status_code,
    )


def _parse_started_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@router.get("/feedback")
def access_form(request: Request, code: str = ""):
    """Access code entry screen."""
    return _access_page(request, code=normalize_access_code(code))


@router.post("/feedback")
def access_submit(
    request: Request,
    access_code: str = Form(""),
    session: Session = Depends(get_session),
):
    code = normalize_access_code(access_code)
    if not code:
        return _access_page(
            request,
            error="Please enter your session access key",
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    try:
        resolve_session(session, code)
    except AccessError as e:
        return _access_page(request, error=e.message, code=code, status_code=e.status_code)
    return RedirectResponse(url=f"/feedback/{code}", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/feedback/{code}")
def feedback_form(
    code: str,
    request: Request,
    session: Session = Depends(get_session),
    identity: AnonymousIdentityProvider = Depends(get_identity_provider),
):
    """Show the evaluation form, or the already-submitted notice."""
    try:
        descriptor = resolve_session(session, code)
    except AccessError as e:
        return _access_page(
            request, error=e.message, code=normalize_access_code(code), status_code=e.status_code
        )

    anonymous_id = identity.get_or_create()
    if has_responded(session, descriptor.id, anonymous_id):
        return _already_submitted_page(request, descriptor)

    return _form_page(request, descriptor)


@router.post("/feedback/{code}")
async def feedback_submit(
    code: str,
    request: Request,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    identity: AnonymousIdentityProvider = Depends(get_identity_provider),
    collector: MetadataCollector = Depends(get_metadata_collector),
):
    try:
        descriptor = resolve_session(session, code)
    except AccessError as e:
        return _access_page(
            request, error=e.message, code=normalize_access_code(code), status_code=e.status_code
        )

    form = await request.form()
    answers = {
        q.id: form.get(ANSWER_FIELD_PREFIX + q.id)
        for q in descriptor.questions
        if form.get(ANSWER_FIELD_PREFIX + q.id) is not None
    }
    client_hints = {
        key: str(form.get(HINT_FIELD_PREFIX + key))
        for key in FINGERPRINT_HINT_KEYS + (CLIENT_IP_HINT_KEY,)
        if form.get(HINT_FIELD_PREFIX + key)
    }
    started_at_raw = form.get("started_at")

    anonymous_id = identity.get_or_create()
    client = await collector.collect(
        user_agent=request.headers.get("user-agent"),
        headers=request.headers,
        client_host=request.client.host if request.client else None,
        client_hints=client_hints,
    )
    metadata = build_response_metadata(client, started_at=_parse_started_at(started_at_raw))

    bind = session.get_bind()
    try:
        submit_response(
            session,
            descriptor.id,
            anonymous_id,
            answers,
            metadata,
            schedule_refresh=lambda sid: background_tasks.add_task(
                refresh_session_stats_task, bind, sid
            ),
        )
    except AlreadySubmittedError:
        return _already_submitted_page(request, descriptor, status_code=status.HTTP_409_CONFLICT)
    except SubmissionSessionNotFoundError as e:
        return _access_page(request, error=e.message, status_code=e.status_code)
    except SubmitError as e:
        return _form_page(
            request,
            descriptor,
            answers=answers,
            error=e.message,
            error_question_ids=e.details.get("missing_question_ids")
            or e.details.get("invalid_question_ids")
            or [],
            started_at=started_at_raw,
            status_code=e.status_code,
        )

    return templates.TemplateResponse(
        request, "feedback/thank_you.html", {"session": descriptor}
    )
