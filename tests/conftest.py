import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, create_engine, text


def _ensure_app_on_path():
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


_ensure_app_on_path()

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

from sqlalchemy.pool import StaticPool

from course_feedback.models import Course, EvaluationSession, User
from course_feedback.utils import utcnow

test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # all connections share the same in-memory database
)


@pytest.fixture(scope="session")
def engine():
    """Provide test engine as a fixture."""
    return test_engine


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield

    # FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM feedbackresponse"))
        session.exec(text("DELETE FROM evaluationsession"))
        session.exec(text("DELETE FROM course"))
        session.exec(text('DELETE FROM "user"'))
        session.commit()


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from fastapi.testclient import TestClient

from course_feedback.database import get_session
from course_feedback.deps import get_metadata_collector
from course_feedback.main import app
from course_feedback.services.metadata import MetadataCollector


@pytest.fixture
def client():
    """TestClient bound to the in-memory database, with no outbound IP lookups."""

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_metadata_collector] = lambda: MetadataCollector(lookup_services=[])

    # Not used as a context manager: startup (file database, demo seed) stays off
    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


# ============================================================================
# ENTITY FIXTURES
# ============================================================================

RATING_QUESTIONS = [
    {"id": "q1", "text": "Instructor clarity", "type": "rating", "category": "instructor",
     "scale": 5, "required": True, "priority": 1},
    {"id": "q2", "text": "Content usefulness", "type": "rating", "category": "content",
     "scale": 5, "required": True, "priority": 2},
    {"id": "q3", "text": "Other comments", "type": "text", "category": "overall",
     "required": False, "priority": 3},
]


@pytest.fixture
def teacher():
    with Session(test_engine) as session:
        user = User(name="Dr. Jane Teacher", email="jane@example.com", role="teacher")
        session.add(user)
        session.commit()
        session.refresh(user)
        return user


@pytest.fixture
def course(teacher):
    with Session(test_engine) as session:
        c = Course(course_code="CS101", course_title="Intro to Computing", teacher_id=teacher.id)
        session.add(c)
        session.commit()
        session.refresh(c)
        return c


@pytest.fixture
def make_session(course, teacher):
    """Factory for evaluation sessions; keyword arguments override the defaults."""

    def _make(**overrides) -> EvaluationSession:
        now = utcnow()
        values = dict(
            access_code="DEMO123A",
            course_id=course.id,
            teacher_id=teacher.id,
            university_id=1,
            faculty_id=2,
            department_id=3,
            section="A",
            room_number="B-204",
            session_date=now.date(),
            start_time=now - timedelta(minutes=30),
            end_time=now + timedelta(minutes=30),
            duration_minutes=60,
            expected_students=4,
            status="active",
            questions=[dict(q) for q in RATING_QUESTIONS],
            settings={
                "allow_late_entry": True,
                "require_completion": True,
                "anonymous_responses": True,
                "show_results": False,
            },
        )
        values.update(overrides)
        with Session(test_engine) as session:
            evaluation = EvaluationSession(**values)
            session.add(evaluation)
            session.commit()
            session.refresh(evaluation)
            return evaluation

    return _make


@pytest.fixture
def demo_session(make_session):
    """Active DEMO123A session: two required ratings, one optional text question."""
    return make_session()
