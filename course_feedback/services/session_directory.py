"""Resolve access codes to sessions and enforce the session gating policy."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlmodel import Session, select

from course_feedback.exceptions import (
    LateEntryNotAllowedError,
    SessionEndedError,
    SessionNotFoundError,
    SessionNotStartedError,
    SessionUnavailableError,
)
from course_feedback.models import Course, EvaluationSession, User
from course_feedback.schemas import Question, SessionDescriptor, SessionSettings
from course_feedback.utils import as_naive_utc, normalize_access_code, utcnow

logger = logging.getLogger(__name__)


def parse_questions(raw_questions: Optional[List[Dict[str, Any]]]) -> List[Question]:
    """Parse a session's question block, ordered by priority.

    Ties keep their stored order; questions without a priority go last.
    Malformed entries are logged and skipped.
    """
    questions = []
    for raw in raw_questions or []:
        try:
            questions.append(Question.model_validate(raw))
        except ValidationError as e:
            logger.error("Skipping malformed question %r: %s", raw, e)
    return sorted(questions, key=lambda q: (q.priority is None, q.priority or 0))


def unanswerable_required_ids(raw_questions: Optional[List[Dict[str, Any]]]) -> List[str]:
    """IDs of required questions that parse_questions would skip.

    They never reach the form, so a response can never be complete.
    """
    unanswerable = []
    for raw in raw_questions or []:
        if not isinstance(raw, dict) or not raw.get("required"):
            continue
        try:
            Question.model_validate(raw)
        except ValidationError:
            unanswerable.append(str(raw.get("id", "?")))
    return unanswerable


def parse_settings(raw_settings: Optional[Dict[str, Any]]) -> SessionSettings:
    """Missing fields fall back to the SessionSettings defaults."""
    known = {k: v for k, v in (raw_settings or {}).items() if v is not None}
    return SessionSettings.model_validate(known)


def find_session_by_code(session: Session, access_code: str) -> Optional[EvaluationSession]:
    code = normalize_access_code(access_code)
    if not code:
        return None
    stmt = select(EvaluationSession).where(EvaluationSession.access_code == code)
    return session.exec(stmt).first()


def check_session_access(
    evaluation: EvaluationSession,
    settings: SessionSettings,
    now: Optional[datetime] = None,
) -> None:
    """Apply the gating state machine; raise an AccessError when entry is refused."""
    status = evaluation.status
    if status == "pending":
        raise SessionNotStartedError()
    if status == "completed":
        raise SessionEndedError()
    if status != "active":
        # expired, cancelled, or anything the lifecycle side invents later
        raise SessionUnavailableError()

    if not settings.allow_late_entry and evaluation.end_time is not None:
        now = as_naive_utc(now) if now is not None else utcnow()
        if now > as_naive_utc(evaluation.end_time):
            raise LateEntryNotAllowedError()


def build_descriptor(
    session: Session,
    evaluation: EvaluationSession,
    settings: SessionSettings,
) -> SessionDescriptor:
    course = session.get(Course, evaluation.course_id) if evaluation.course_id else None
    teacher_id = evaluation.teacher_id or (course.teacher_id if course else None)
    teacher = session.get(User, teacher_id) if teacher_id else None

    return SessionDescriptor(
        id=evaluation.id,
        access_code=evaluation.access_code,
        course_code=course.course_code if course else "",
        course_title=course.course_title if course else "",
        teacher_name=teacher.name if teacher else "",
        section=evaluation.section or "",
        room_number=evaluation.room_number,
        session_date=evaluation.session_date,
        start_time=evaluation.start_time,
        end_time=evaluation.end_time,
        duration_minutes=evaluation.duration_minutes or 0,
        status=evaluation.status,
        questions=parse_questions(evaluation.questions),
        settings=settings,
    )


def resolve_session(
    session: Session,
    access_code: str,
    now: Optional[datetime] = None,
) -> SessionDescriptor:
    """Redeem an access code.

    Args:
        session: Database session
        access_code: Code as typed by the participant (any case, surrounding
            whitespace ignored)
        now: Clock override, naive UTC or aware

    Returns:
        SessionDescriptor for an open session

    Raises:
        SessionNotFoundError: No session uses this code
        SessionNotStartedError, SessionEndedError, SessionUnavailableError,
        LateEntryNotAllowedError: The session exists but is not open
    """
    evaluation = find_session_by_code(session, access_code)
    if evaluation is None:
        raise SessionNotFoundError()

    settings = parse_settings(evaluation.settings)
    check_session_access(evaluation, settings, now=now)
    return build_descriptor(session, evaluation, settings)
