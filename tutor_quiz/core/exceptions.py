"""Errors raised by the quiz engine.

Each error knows the HTTP status it maps to, the status string reported to
clients and whether the client should be sent back to the quiz listing.
"""
from typing import Optional


class QuizEngineError(Exception):
    status_code = 400
    status = "error"
    redirect = False
    default_detail = "Quiz request failed"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class QuizNotFound(QuizEngineError):
    status_code = 404
    status = "notFound"
    redirect = True
    default_detail = "Quiz not found"


class AttemptNotFound(QuizEngineError):
    status_code = 404
    status = "notStarted"
    redirect = True
    default_detail = "Quiz not started"


class AccessDenied(QuizEngineError):
    status_code = 403
    status = "denied"
    redirect = True
    default_detail = "No access to this quiz"


class AttemptAlreadyCompleted(QuizEngineError):
    status_code = 409
    status = "alreadyCompleted"
    redirect = True
    default_detail = "Quiz already completed"


class AttemptNotInProgress(QuizEngineError):
    status_code = 409
    status = "notInProgress"
    redirect = True
    default_detail = "Quiz is not in progress"


class AttemptExpired(QuizEngineError):
    status_code = 409
    status = "expired"
    redirect = True
    default_detail = "Quiz time has expired"

    def __init__(self, score: int, total_questions: int, detail: Optional[str] = None):
        self.score = score
        self.total_questions = total_questions
        super().__init__(detail)


class ReviewUnavailable(QuizEngineError):
    status_code = 403
    status = "reviewUnavailable"
    redirect = True
    default_detail = "Answers are not available for this quiz"


class InvalidAnswer(QuizEngineError):
    status_code = 400
    status = "invalidAnswer"
    default_detail = "Invalid answer"


class PersistenceError(QuizEngineError):
    status_code = 500
    status = "failed"
    default_detail = "Failed to save quiz results"
