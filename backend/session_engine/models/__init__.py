"""Models package with all models."""
from .base import BaseModel
from .attendance_session import AttendanceSession, SessionState, SessionType
from .attendance import AttendanceRecord, AttendanceStatus, RecordModification
from .exam import Exam, ExamStatus, ExamType, Question, QuestionType
from .attempt import Attempt, Answer, Violation, ViolationType
from .assignment import Assignment, Submission, SubmissionReview, SubmissionStatus
from .enrollment import Enrollment

__all__ = [
    'BaseModel',
    'AttendanceSession', 'SessionState', 'SessionType',
    'AttendanceRecord', 'AttendanceStatus', 'RecordModification',
    'Exam', 'ExamStatus', 'ExamType', 'Question', 'QuestionType',
    'Attempt', 'Answer', 'Violation', 'ViolationType',
    'Assignment', 'Submission', 'SubmissionReview', 'SubmissionStatus',
    'Enrollment'
]
