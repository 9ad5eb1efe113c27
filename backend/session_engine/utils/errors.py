"""Typed, recoverable engine errors.

Each error carries a stable ``kind`` for programmatic handling, a
human-readable message suitable for display, and the HTTP status the
request layer maps it to.
"""
from enum import Enum
from typing import Any, Dict, Optional

class ErrorKind(Enum):
    """Stable error kinds."""
    WINDOW_CLOSED = 'WindowClosed'
    ALREADY_SUBMITTED = 'AlreadySubmitted'
    ATTEMPTS_EXHAUSTED = 'AttemptsExhausted'
    CONSTRAINT_VIOLATION = 'ConstraintViolation'
    NOT_ELIGIBLE = 'NotEligible'
    CONFLICTING_UPDATE = 'ConflictingUpdate'
    INVALID_GRADE = 'InvalidGrade'
    INVALID_TRANSITION = 'InvalidTransition'
    VALIDATION = 'ValidationError'

class EngineError(Exception):
    """Base class for every engine error."""

    kind = ErrorKind.VALIDATION
    status_code = 400
    default_message = 'Request could not be processed'

    def __init__(self, message: str = None, status_code: int = None,
                 details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'kind': self.kind.value,
            'message': self.message
        }
        if self.details:
            result['details'] = self.details
        return result

class WindowClosed(EngineError):
    kind = ErrorKind.WINDOW_CLOSED
    status_code = 400
    default_message = 'Submission window is closed'

class AlreadySubmitted(EngineError):
    kind = ErrorKind.ALREADY_SUBMITTED
    status_code = 409
    default_message = 'Already submitted'

class AttemptsExhausted(EngineError):
    kind = ErrorKind.ATTEMPTS_EXHAUSTED
    status_code = 400
    default_message = 'No attempts remaining'

class ConstraintViolation(EngineError):
    kind = ErrorKind.CONSTRAINT_VIOLATION
    status_code = 400
    default_message = 'Submission constraints not satisfied'

class NotEligible(EngineError):
    kind = ErrorKind.NOT_ELIGIBLE
    status_code = 404
    default_message = 'Not found'

class ConflictingUpdate(EngineError):
    kind = ErrorKind.CONFLICTING_UPDATE
    status_code = 409
    default_message = 'Record was modified concurrently, please retry'

class InvalidGrade(EngineError):
    kind = ErrorKind.INVALID_GRADE
    status_code = 400
    default_message = 'Invalid marks'

class InvalidTransition(EngineError):
    kind = ErrorKind.INVALID_TRANSITION
    status_code = 409
    default_message = 'Operation not allowed in the current state'

class ValidationError(EngineError):
    """Malformed request payload."""
    kind = ErrorKind.VALIDATION
    status_code = 400
    default_message = 'Invalid request'
