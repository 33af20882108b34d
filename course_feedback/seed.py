"""Demo data so the participant flow can be tried without the staff side.

Run directly with `python -m course_feedback.seed`, or let the app seed on
startup when SEED_DEMO_DATA is set.
"""

import logging
from datetime import timedelta

from sqlmodel import Session, select

from course_feedback.models import Course, EvaluationSession, User
from course_feedback.utils import utcnow

logger = logging.getLogger(__name__)

DEMO_ACCESS_CODE = "DEMO123A"

DEMO_QUESTIONS = [
    {
        "id": "q1",
        "text": "How clearly did the instructor explain the material?",
        "type": "rating",
        "category": "instructor",
        "scale": 5,
        "required": True,
        "priority": 1,
    },
    {
        "id": "q2",
        "text": "How useful was today's content for the course?",
        "type": "rating",
        "category": "content",
        "scale": 5,
        "required": True,
        "priority": 2,
    },
    {
        "id": "q3",
        "text": "Anything else you would like to share?",
        "type": "text",
        "category": "overall",
        "required": False,
        "priority": 3,
    },
]


def seed_demo_data(session: Session) -> EvaluationSession:
    """Create the DEMO123A session (and its teacher and course) if missing."""
    existing = session.exec(
        select(EvaluationSession).where(EvaluationSession.access_code == DEMO_ACCESS_CODE)
    ).first()
    if existing:
        return existing

    teacher = session.exec(select(User).where(User.email == "demo.teacher@example.com")).first()
    if not teacher:
        teacher = User(name="Demo Teacher", email="demo.teacher@example.com", role="teacher")
        session.add(teacher)
        session.commit()
        session.refresh(teacher)

    course = session.exec(select(Course).where(Course.course_code == "DEMO101")).first()
    if not course:
        course = Course(
            course_code="DEMO101",
            course_title="Introduction to Course Feedback",
            teacher_id=teacher.id,
        )
        session.add(course)
        session.commit()
        session.refresh(course)

    now = utcnow()
    demo = EvaluationSession(
        access_code=DEMO_ACCESS_CODE,
        course_id=course.id,
        teacher_id=teacher.id,
        section="A",
        room_number="101",
        session_date=now.date(),
        start_time=now,
        end_time=now + timedelta(hours=2),
        duration_minutes=120,
        expected_students=30,
        status="active",
        questions=DEMO_QUESTIONS,
        settings={
            "allow_late_entry": True,
            "require_completion": True,
            "anonymous_responses": True,
            "show_results": False,
        },
    )
    session.add(demo)
    session.commit()
    session.refresh(demo)
    logger.info("Seeded demo session %s", DEMO_ACCESS_CODE)
    return demo


if __name__ == "__main__":
    from course_feedback.database import create_db_and_tables, engine
    from course_feedback.logging_config import setup_logging

    setup_logging()
    create_db_and_tables()
    with Session(engine) as session:
        seed_demo_data(session)
