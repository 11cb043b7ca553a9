"""Custom exception classes."""

from typing import Any, Dict, List, Optional


class ExamGeneratorException(Exception):
    """Base exception for the application."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional error details
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundException(ExamGeneratorException):
    """Referenced job, exam, attempt or question does not exist."""

    pass


class EmptyResultException(ExamGeneratorException):
    """Retrieval found no matching content for an otherwise valid request."""

    pass


class UpstreamCallException(ExamGeneratorException):
    """A generative model, vector store or database call failed."""

    pass


class ValidationException(ExamGeneratorException):
    """Input or model output failed structural validation."""

    pass


class ConsistencyException(ExamGeneratorException):
    """An internal invariant was violated."""

    pass


class JobStateException(ConsistencyException):
    """Illegal transition requested on a generation job."""

    pass


class GenerationException(ExamGeneratorException):
    """Question synthesis failed (upstream error or invalid payload)."""

    pass


class UsageLimitException(ExamGeneratorException):
    """The user's plan does not allow the requested generation."""

    pass


class AuthenticationException(ExamGeneratorException):
    """Missing or invalid credentials."""

    pass


class ScoringIncompleteException(ExamGeneratorException):
    """Some answers could not be graded; the aggregate score was not written."""

    def __init__(
        self,
        message: str,
        failed_question_ids: List[str],
        details: Optional[Dict[str, Any]] = None,
    ):
        self.failed_question_ids = failed_question_ids
        details = dict(details or {})
        details["failed_question_ids"] = failed_question_ids
        super().__init__(message, details)
