"""Session statistics refresh.

Stats are derived, advisory values: recomputing them is idempotent and
concurrent refreshes are last-writer-wins.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from course_feedback.models import EvaluationSession, FeedbackResponse
from course_feedback.services.session_directory import parse_questions

logger = logging.getLogger(__name__)


def _is_answered(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def compute_session_stats(
    evaluation: EvaluationSession, responses: List[FeedbackResponse]
) -> Dict[str, Any]:
    """Aggregate counters for a session.

    - total_responses: number of responses
    - target_responses: expected_students of the session (0 when unknown)
    - completion_rate: percentage of responses answering every question
    - average_time: mean completion_time_seconds over responses that have it
    """
    question_ids = [q.id for q in parse_questions(evaluation.questions)]
    total = len(responses)

    complete = 0
    durations = []
    for response in responses:
        data = response.response_data or {}
        if all(_is_answered(data.get(qid)) for qid in question_ids):
            complete += 1
        seconds = (response.response_metadata or {}).get("completion_time_seconds")
        if isinstance(seconds, (int, float)) and not isinstance(seconds, bool) and seconds >= 0:
            durations.append(seconds)

    return {
        "total_responses": total,
        "target_responses": evaluation.expected_students or 0,
        "completion_rate": round(complete * 100 / total, 1) if total else 0,
        "average_time": round(sum(durations) / len(durations), 1) if durations else 0,
    }


def refresh_session_stats(session: Session, session_id: int) -> Dict[str, Any]:
    """Recompute and store a session's stats block. Returns the new stats."""
    evaluation = session.get(EvaluationSession, session_id)
    if evaluation is None:
        logger.warning("Stats refresh skipped: session %s no longer exists", session_id)
        return {}

    responses = session.exec(
        select(FeedbackResponse).where(FeedbackResponse.session_id == session_id)
    ).all()
    stats = compute_session_stats(evaluation, list(responses))

    evaluation.stats = stats
    session.add(evaluation)
    session.commit()
    return stats


def refresh_session_stats_task(bind: Engine, session_id: int) -> None:
    """Background entry point: runs in its own database session, never raises."""
    try:
        with Session(bind) as session:
            stats = refresh_session_stats(session, session_id)
        logger.debug("Refreshed stats for session %s: %s", session_id, stats)
    except Exception:
        logger.exception("Error updating session stats for session %s", session_id)
