"""Pydantic schemas shared by the services and the routers."""

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

QuestionType = Literal["rating", "text", "multiple_choice", "yes_no"]
QuestionCategory = Literal["instructor", "content", "delivery", "assessment", "overall"]

DEFAULT_RATING_SCALE = 5


class Question(BaseModel):
    """One item of a session's form, parsed from the session's JSON block."""

    id: str
    text: str
    type: QuestionType
    category: QuestionCategory = "overall"
    required: bool = False
    priority: Optional[int] = None
    scale: int = DEFAULT_RATING_SCALE
    options: Optional[List[str]] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("scale", mode="before")
    @classmethod
    def _default_scale(cls, v: Any) -> Any:
        return DEFAULT_RATING_SCALE if v is None else v

    @model_validator(mode="after")
    def _check_type_parameters(self) -> "Question":
        if self.type == "rating" and self.scale < 2:
            raise ValueError("rating questions need a scale of at least 2")
        if self.type == "multiple_choice" and not self.options:
            raise ValueError("multiple_choice questions need at least one option")
        return self


class SessionSettings(BaseModel):
    allow_late_entry: bool = False
    require_completion: bool = True
    anonymous_responses: bool = True
    show_results: bool = False


class SessionDescriptor(BaseModel):
    """What a participant gets after redeeming an access code."""

    id: int
    access_code: str
    course_code: str = ""
    course_title: str = ""
    teacher_name: str = ""
    section: str = ""
    room_number: Optional[str] = None
    session_date: Optional[date] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: int = 0
    status: str
    questions: List[Question] = Field(default_factory=list)
    settings: SessionSettings = Field(default_factory=SessionSettings)


class ClientMetadata(BaseModel):
    """Best-effort signals recorded with a response. Never used to gate access."""

    ip_address: str = "unknown"
    user_agent: str = ""
    browser_fingerprint: Optional[str] = None
    device_type: str = "desktop"


class SubmissionAck(BaseModel):
    response_id: int
    session_id: int
    submitted_at: datetime


class ResponseIn(BaseModel):
    """JSON body for submitting or updating a response."""

    response_data: Dict[str, Any]
    started_at: Optional[datetime] = None
    # navigator-style properties gathered by the browser (screen, timezone, canvas, ...)
    client_hints: Dict[str, str] = Field(default_factory=dict)
