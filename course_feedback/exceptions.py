"""
Exceptions for the feedback access and submission flow.

Every error carries a plain-language message that is safe to show to an
anonymous participant and a stable code for API clients. Routers map them
1:1 to user-visible messages; storage details never leave the service layer.

Usage:
    from course_feedback.exceptions import AccessError

    try:
        descriptor = resolve_session(session, code)
    except AccessError as e:
        return render_access_page(error=e.message)
"""

from typing import Any, Dict, List, Optional


class FeedbackError(Exception):
    """Base exception for all feedback errors"""

    status_code = 400

    def __init__(
        self,
        message: str,
        code: str = "FEEDBACK_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# ============================================
# Access errors (session resolution)
# ============================================

class AccessError(FeedbackError):
    """The access code cannot be redeemed right now"""

    status_code = 403


class SessionNotFoundError(AccessError):
    status_code = 404

    def __init__(self):
        super().__init__(
            "Session not found. Please check your access key.",
            code="SESSION_NOT_FOUND",
        )


class SessionNotStartedError(AccessError):
    def __init__(self):
        super().__init__(
            "This session has not started yet. Please wait for your teacher to start the session.",
            code="SESSION_NOT_STARTED",
        )


class SessionEndedError(AccessError):
    def __init__(self):
        super().__init__("This session has already ended.", code="SESSION_ENDED")


class SessionUnavailableError(AccessError):
    def __init__(self):
        super().__init__("This session is no longer available.", code="SESSION_UNAVAILABLE")


class LateEntryNotAllowedError(AccessError):
    def __init__(self):
        super().__init__(
            "This session has ended and late entry is not allowed.",
            code="LATE_ENTRY_NOT_ALLOWED",
        )


# ============================================
# Submission errors
# ============================================

class SubmitError(FeedbackError):
    """A response could not be recorded"""


class SubmissionSessionNotFoundError(SubmitError):
    status_code = 404

    def __init__(self):
        super().__init__(
            "This feedback session could not be found. Please check your access key.",
            code="SESSION_NOT_FOUND",
        )


class AlreadySubmittedError(SubmitError):
    status_code = 409

    def __init__(self):
        super().__init__(
            "You have already submitted a response for this session.",
            code="ALREADY_SUBMITTED",
        )


class IncompleteResponseError(SubmitError):
    status_code = 422

    def __init__(self, missing_question_ids: List[str]):
        self.missing_question_ids = list(missing_question_ids)
        count = len(self.missing_question_ids)
        super().__init__(
            f"Please answer all required questions ({count} remaining).",
            code="INCOMPLETE_RESPONSE",
            details={"missing_question_ids": self.missing_question_ids},
        )


class InvalidAnswerError(SubmitError):
    status_code = 422

    def __init__(self, invalid_question_ids: List[str]):
        self.invalid_question_ids = list(invalid_question_ids)
        super().__init__(
            "Some answers are not valid for their question. Please review them and try again.",
            code="INVALID_ANSWER",
            details={"invalid_question_ids": self.invalid_question_ids},
        )


class UnanswerableQuestionsError(SubmitError):
    """A required question is malformed, so no response can be complete"""

    status_code = 409

    def __init__(self, question_ids: List[str]):
        self.question_ids = list(question_ids)
        super().__init__(
            "This feedback form cannot be submitted right now. Please let your teacher know.",
            code="FORM_UNANSWERABLE",
            details={"unanswerable_question_ids": self.question_ids},
        )


class ResponseNotFoundError(SubmitError):
    status_code = 404

    def __init__(self):
        super().__init__(
            "No earlier response was found for this session.",
            code="RESPONSE_NOT_FOUND",
        )


class SubmissionStorageError(SubmitError):
    """The write failed for a reason other than a duplicate; safe to retry"""

    status_code = 503

    def __init__(self):
        super().__init__(
            "We could not save your feedback. Please try again.",
            code="STORAGE_FAILURE",
        )
