"""At most one response per participant, even when submissions race."""

import threading
from datetime import timedelta

import pytest
from sqlmodel import Session, SQLModel, create_engine, select

from course_feedback.exceptions import AlreadySubmittedError
from course_feedback.models import Course, EvaluationSession, FeedbackResponse, User
from course_feedback.services.statistics import refresh_session_stats
from course_feedback.services.submission import submit_response
from course_feedback.utils import utcnow

QUESTIONS = [
    {"id": "q1", "text": "Clarity", "type": "rating", "required": True, "priority": 1},
    {"id": "q2", "text": "Pace", "type": "rating", "required": True, "priority": 2},
]

WORKERS = 8
PARTICIPANT = "student_lx2k9a_race01"


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite so that each thread gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def race_session_id(file_engine):
    now = utcnow()
    with Session(file_engine) as session:
        teacher = User(name="Race Teacher", email="race@example.com")
        session.add(teacher)
        session.commit()
        session.refresh(teacher)

        course = Course(course_code="RACE1", course_title="Racing", teacher_id=teacher.id)
        session.add(course)
        session.commit()
        session.refresh(course)

        evaluation = EvaluationSession(
            access_code="RACE0001",
            course_id=course.id,
            teacher_id=teacher.id,
            start_time=now - timedelta(minutes=5),
            end_time=now + timedelta(minutes=55),
            expected_students=WORKERS,
            status="active",
            questions=QUESTIONS,
            settings={"allow_late_entry": True},
        )
        session.add(evaluation)
        session.commit()
        session.refresh(evaluation)
        return evaluation.id


def test_parallel_submissions_store_exactly_one(file_engine, race_session_id):
    barrier = threading.Barrier(WORKERS)
    lock = threading.Lock()
    outcomes = []

    def worker(n):
        barrier.wait()
        with Session(file_engine) as session:
            try:
                submit_response(
                    session,
                    race_session_id,
                    PARTICIPANT,
                    {"q1": (n % 5) + 1, "q2": 3},
                    {"ip_address": "unknown"},
                    schedule_refresh=lambda sid: None,
                )
                result = "ok"
            except AlreadySubmittedError:
                result = "duplicate"
            except Exception as e:  # surfaced through the assertion below
                result = repr(e)
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(outcomes) == ["duplicate"] * (WORKERS - 1) + ["ok"]

    with Session(file_engine) as session:
        rows = session.exec(
            select(FeedbackResponse).where(FeedbackResponse.session_id == race_session_id)
        ).all()
        assert len(rows) == 1

        stats = refresh_session_stats(session, race_session_id)
        assert stats["total_responses"] == 1
        assert stats["target_responses"] == WORKERS
