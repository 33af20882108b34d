"""SQLModel models for the course feedback system."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from course_feedback.utils import utcnow

SESSION_STATUSES = ("pending", "active", "completed", "expired", "cancelled")


class User(SQLModel, table=True):
    """Staff account; only teachers are read here, for display names."""

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str
    role: str = Field(default="teacher")  # super_admin, university_admin, ..., teacher
    created_at: datetime = Field(default_factory=utcnow)


class Course(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("course_code", name="uq_course_code"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    course_code: str
    course_title: str
    teacher_id: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow)


class EvaluationSession(SQLModel, table=True):
    """A scheduled evaluation window that participants join with an access code.

    Questions, settings and stats are embedded JSON blocks. Rows are created and
    status-transitioned by the teacher-facing side; this package only reads them
    and refreshes `stats`.
    """

    __table_args__ = (UniqueConstraint("access_code", name="uq_session_access_code"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    access_code: str = Field(index=True, max_length=8)  # stored uppercase

    course_id: Optional[int] = Field(default=None, foreign_key="course.id")
    teacher_id: Optional[int] = Field(default=None, foreign_key="user.id")
    university_id: Optional[int] = None
    faculty_id: Optional[int] = None
    department_id: Optional[int] = None

    section: str = ""
    room_number: Optional[str] = None
    session_date: Optional[date] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: int = 0
    expected_students: int = 0

    status: str = Field(default="pending")  # see SESSION_STATUSES

    questions: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    settings: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    stats: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow)


class FeedbackResponse(SQLModel, table=True):
    """One anonymous participant's submission for one session.

    The unique constraint on (session_id, student_anonymous_id) is what makes a
    second submission from the same browser fail, even under concurrent writes.
    """

    __table_args__ = (
        UniqueConstraint(
            "session_id", "student_anonymous_id", name="uq_response_session_participant"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="evaluationsession.id", index=True)

    # Copied from the session at submission time for query convenience
    university_id: Optional[int] = None
    faculty_id: Optional[int] = None
    department_id: Optional[int] = None
    course_id: Optional[int] = None
    teacher_id: Optional[int] = None

    student_anonymous_id: str = Field(index=True)
    response_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    # ip_address, user_agent, browser_fingerprint, device_type, start_time,
    # completion_time_seconds
    response_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    status: str = Field(default="submitted")
    submission_time: datetime = Field(default_factory=utcnow)
