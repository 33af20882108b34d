"""Session statistics refresh."""

import logging

from course_feedback.models import EvaluationSession, FeedbackResponse
from course_feedback.services.statistics import (
    compute_session_stats,
    refresh_session_stats,
    refresh_session_stats_task,
)


def _add_response(session, evaluation, participant, data, seconds=None):
    metadata = {"ip_address": "unknown"}
    if seconds is not None:
        metadata["completion_time_seconds"] = seconds
    response = FeedbackResponse(
        session_id=evaluation.id,
        student_anonymous_id=participant,
        response_data=data,
        response_metadata=metadata,
    )
    session.add(response)
    session.commit()
    return response


def test_empty_session_stats(demo_session):
    stats = compute_session_stats(demo_session, [])
    assert stats == {
        "total_responses": 0,
        "target_responses": 4,
        "completion_rate": 0,
        "average_time": 0,
    }


def test_refresh_counts_and_averages(session, demo_session):
    _add_response(session, demo_session, "student_a_000001", {"q1": 5, "q2": 4, "q3": "Good"}, 60)
    _add_response(session, demo_session, "student_b_000002", {"q1": 3, "q2": 3}, 120)
    _add_response(session, demo_session, "student_c_000003", {"q1": 1, "q2": 2})

    stats = refresh_session_stats(session, demo_session.id)

    assert stats["total_responses"] == 3
    assert stats["target_responses"] == 4
    # one of three answered every question, optional text included
    assert stats["completion_rate"] == 33.3
    assert stats["average_time"] == 90.0

    session.expire_all()
    assert session.get(EvaluationSession, demo_session.id).stats == stats


def test_refresh_is_idempotent(session, demo_session):
    _add_response(session, demo_session, "student_a_000001", {"q1": 5, "q2": 4}, 30)
    first = refresh_session_stats(session, demo_session.id)
    second = refresh_session_stats(session, demo_session.id)
    assert first == second


def test_refresh_of_missing_session_is_a_no_op(session):
    assert refresh_session_stats(session, 424242) == {}


def test_background_task_logs_and_swallows_failures(engine, caplog, monkeypatch):
    from course_feedback.services import statistics

    def broken(session, session_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(statistics, "refresh_session_stats", broken)

    with caplog.at_level(logging.ERROR, logger="course_feedback.services.statistics"):
        refresh_session_stats_task(engine, 1)

    assert "Error updating session stats for session 1" in caplog.text


def test_background_task_writes_stats(engine, session, demo_session):
    _add_response(session, demo_session, "student_a_000001", {"q1": 5, "q2": 4, "q3": "ok"}, 45)

    refresh_session_stats_task(engine, demo_session.id)

    session.expire_all()
    stats = session.get(EvaluationSession, demo_session.id).stats
    assert stats["total_responses"] == 1
    assert stats["completion_rate"] == 100.0
    assert stats["average_time"] == 45.0
