"""Duplicate guard and response submission pipeline."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from course_feedback.exceptions import (
    AlreadySubmittedError,
    IncompleteResponseError,
    InvalidAnswerError,
    ResponseNotFoundError,
    SubmissionSessionNotFoundError,
    SubmissionStorageError,
    UnanswerableQuestionsError,
)
from course_feedback.logging_config import mask_anonymous_id
from course_feedback.models import EvaluationSession, FeedbackResponse
from course_feedback.schemas import ClientMetadata, Question, SubmissionAck
from course_feedback.services.session_directory import (
    parse_questions,
    unanswerable_required_ids,
)
from course_feedback.services.statistics import refresh_session_stats_task
from course_feedback.utils import as_naive_utc, sanitize_answer_text, utcnow

logger = logging.getLogger(__name__)

YES_NO_VALUES = ("yes", "no")

# Called with the session id once a response has been stored
RefreshScheduler = Callable[[int], None]


def find_response(
    session: Session, session_id: int, anonymous_id: str
) -> Optional[FeedbackResponse]:
    stmt = select(FeedbackResponse).where(
        (FeedbackResponse.session_id == session_id)
        & (FeedbackResponse.student_anonymous_id == anonymous_id)
    )
    return session.exec(stmt).first()


def has_responded(session: Session, session_id: int, anonymous_id: str) -> bool:
    """True if this anonymous ID already answered this session.

    Only the anonymous ID counts. IP and fingerprint are ignored so that
    several students behind one classroom network can all take part.
    """
    return find_response(session, session_id, anonymous_id) is not None


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _coerce_answer(question: Question, value: Any) -> Any:
    """Return the stored form of an answer or raise ValueError."""
    if question.type == "rating":
        if isinstance(value, bool):
            raise ValueError("boolean is not a rating")
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError("rating must be a whole number")
            value = int(value)
        elif isinstance(value, str):
            value = int(value.strip())
        if not isinstance(value, int):
            raise ValueError("rating must be a number")
        if not 1 <= value <= question.scale:
            raise ValueError("rating out of range")
        return value

    if question.type == "yes_no":
        if isinstance(value, bool):
            return "yes" if value else "no"
        answer = str(value).strip().lower()
        if answer not in YES_NO_VALUES:
            raise ValueError("expected yes or no")
        return answer

    if question.type == "multiple_choice":
        answer = str(value).strip()
        if answer not in (question.options or []):
            raise ValueError("not one of the options")
        return answer

    # text
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise ValueError("text answer must be a string")
    return sanitize_answer_text(str(value))


def validate_response_data(
    questions: List[Question], response_data: Dict[str, Any]
) -> Dict[str, Any]:
    """Check completeness and answer shapes; return the data to store.

    Required questions must have a non-empty answer. Blank optional answers
    and answers to unknown question IDs are left out of the result.

    Raises:
        IncompleteResponseError: Required questions are unanswered
        InvalidAnswerError: An answer does not fit its question type
    """
    response_data = response_data or {}
    cleaned: Dict[str, Any] = {}
    missing: List[str] = []
    invalid: List[str] = []

    for question in questions:
        raw = response_data.get(question.id)
        if _is_blank(raw):
            if question.required:
                missing.append(question.id)
            continue
        try:
            value = _coerce_answer(question, raw)
        except ValueError:
            invalid.append(question.id)
            continue
        if _is_blank(value):
            # free text that was nothing but markup
            if question.required:
                missing.append(question.id)
            continue
        cleaned[question.id] = value

    if missing:
        raise IncompleteResponseError(missing)
    if invalid:
        raise InvalidAnswerError(invalid)
    return cleaned


def build_response_metadata(
    client: ClientMetadata,
    started_at: Optional[datetime] = None,
    submitted_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Assemble the metadata block stored with a response."""
    submitted_at = submitted_at or utcnow()
    metadata: Dict[str, Any] = {
        "ip_address": client.ip_address,
        "user_agent": client.user_agent,
        "browser_fingerprint": client.browser_fingerprint,
        "device_type": client.device_type,
    }
    started_at = as_naive_utc(started_at)
    if started_at is not None and started_at <= submitted_at:
        metadata["start_time"] = started_at.isoformat()
        metadata["completion_time_seconds"] = int(
            round((submitted_at - started_at).total_seconds())
        )
    else:
        metadata["start_time"] = submitted_at.isoformat()
    return metadata


def _form_questions(evaluation: EvaluationSession) -> List[Question]:
    unanswerable = unanswerable_required_ids(evaluation.questions)
    if unanswerable:
        logger.error(
            "Session %s has malformed required questions %s; refusing submission",
            evaluation.id,
            unanswerable,
        )
        raise UnanswerableQuestionsError(unanswerable)
    return parse_questions(evaluation.questions)


def _schedule_refresh(
    session: Session, session_id: int, schedule: Optional[RefreshScheduler]
) -> None:
    if schedule is not None:
        schedule(session_id)
    else:
        refresh_session_stats_task(session.get_bind(), session_id)


def submit_response(
    session: Session,
    session_id: int,
    anonymous_id: str,
    response_data: Dict[str, Any],
    metadata: Dict[str, Any],
    schedule_refresh: Optional[RefreshScheduler] = None,
) -> SubmissionAck:
    """Record a participant's response, at most once per session.

    The pre-insert duplicate check gives an early, friendly answer; the unique
    constraint on (session_id, student_anonymous_id) is what actually decides
    when two submissions race.

    Args:
        session: Database session
        session_id: Target evaluation session
        anonymous_id: The participant's anonymous ID
        response_data: Question ID -> answer
        metadata: Collection metadata (see build_response_metadata)
        schedule_refresh: Callback that queues the stats refresh; when omitted
            the refresh runs inline after the commit

    Returns:
        SubmissionAck for the stored row

    Raises:
        SubmissionSessionNotFoundError, AlreadySubmittedError,
        UnanswerableQuestionsError, IncompleteResponseError, InvalidAnswerError,
        SubmissionStorageError
    """
    evaluation = session.get(EvaluationSession, session_id)
    if evaluation is None:
        raise SubmissionSessionNotFoundError()

    if has_responded(session, session_id, anonymous_id):
        raise AlreadySubmittedError()

    cleaned = validate_response_data(_form_questions(evaluation), response_data)

    response = FeedbackResponse(
        session_id=evaluation.id,
        university_id=evaluation.university_id,
        faculty_id=evaluation.faculty_id,
        department_id=evaluation.department_id,
        course_id=evaluation.course_id,
        teacher_id=evaluation.teacher_id,
        student_anonymous_id=anonymous_id,
        response_data=cleaned,
        response_metadata=metadata or {},
        status="submitted",
    )
    try:
        session.add(response)
        session.commit()
    except IntegrityError as e:
        session.rollback()
        # The only unique key on the table is the participant pair; confirm
        # before reporting a duplicate so other violations stay generic.
        if has_responded(session, session_id, anonymous_id):
            logger.info(
                "Duplicate submission rejected by constraint: session=%s participant=%s",
                session_id,
                mask_anonymous_id(anonymous_id),
            )
            raise AlreadySubmittedError() from e
        logger.error("Integrity error storing response for session %s: %s", session_id, e)
        raise SubmissionStorageError() from e
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Error submitting response for session %s", session_id)
        raise SubmissionStorageError() from e

    session.refresh(response)
    logger.info(
        "Response %s stored: session=%s participant=%s",
        response.id,
        session_id,
        mask_anonymous_id(anonymous_id),
    )
    _schedule_refresh(session, session_id, schedule_refresh)

    return SubmissionAck(
        response_id=response.id,
        session_id=session_id,
        submitted_at=response.submission_time,
    )


def update_response(
    session: Session,
    session_id: int,
    anonymous_id: str,
    response_data: Dict[str, Any],
    metadata: Dict[str, Any],
    schedule_refresh: Optional[RefreshScheduler] = None,
) -> SubmissionAck:
    """Overwrite the answers and metadata of an existing response.

    Never inserts, so the one-response-per-participant rule still holds.
    """
    evaluation = session.get(EvaluationSession, session_id)
    if evaluation is None:
        raise SubmissionSessionNotFoundError()

    response = find_response(session, session_id, anonymous_id)
    if response is None:
        raise ResponseNotFoundError()

    response.response_data = validate_response_data(
        _form_questions(evaluation), response_data
    )
    response.response_metadata = metadata or {}
    response.submission_time = utcnow()
    try:
        session.add(response)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Error updating response for session %s", session_id)
        raise SubmissionStorageError() from e

    session.refresh(response)
    _schedule_refresh(session, session_id, schedule_refresh)

    return SubmissionAck(
        response_id=response.id,
        session_id=session_id,
        submitted_at=response.submission_time,
    )
