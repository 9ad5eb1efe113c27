"""Window value type and the state predicates derived from it."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple
from session_engine.models.attendance_session import AttendanceSession, SessionState
from session_engine.models.exam import Exam, ExamStatus
from session_engine.utils.errors import InvalidTransition, ValidationError

@dataclass(frozen=True)
class SessionWindow:
    """Open/close instants plus the late threshold of a bounded session."""

    open_time: datetime
    close_time: datetime
    start_time: Optional[datetime] = None
    late_threshold: timedelta = timedelta(0)

    def __post_init__(self):
        if self.open_time is None or self.close_time is None:
            raise ValidationError("Window requires both open and close times")
        if self.close_time <= self.open_time:
            raise ValidationError("Window close time must be after open time")

    @property
    def reference_start(self) -> datetime:
        return self.start_time or self.open_time

    @property
    def late_after(self) -> datetime:
        return self.reference_start + self.late_threshold

    def contains(self, now: datetime) -> bool:
        return self.open_time <= now <= self.close_time

    def has_ended(self, now: datetime) -> bool:
        return now > self.close_time

    def is_late(self, now: datetime) -> bool:
        """Late strictly after start + threshold; the boundary itself is on time."""
        return now > self.late_after

    @classmethod
    def for_session(cls, session: AttendanceSession) -> 'SessionWindow':
        return cls(
            open_time=session.open_time,
            close_time=session.close_time,
            start_time=session.start_time,
            late_threshold=timedelta(minutes=session.late_threshold_minutes or 0)
        )

    @classmethod
    def for_exam(cls, exam: Exam) -> 'SessionWindow':
        return cls(open_time=exam.start_time, close_time=exam.end_time, start_time=exam.start_time)

def attendance_acceptance(session: AttendanceSession, now: datetime) -> Tuple[bool, Optional[str]]:
    """Closedness is evaluated from the clock as well as the stored state."""
    window = SessionWindow.for_session(session)

    if not window.contains(now):
        return False, 'Attendance window is closed'

    if session.state != SessionState.OPEN:
        return False, 'Session is closed'

    return True, None

def attendance_is_closed(session: AttendanceSession, now: datetime) -> bool:
    return session.state == SessionState.CLOSED or now > session.close_time

def exam_is_active(exam: Exam, now: datetime) -> bool:
    """Both the explicit ongoing flag and the clock must agree."""
    return exam.status == ExamStatus.ONGOING and SessionWindow.for_exam(exam).contains(now)

EXAM_TRANSITIONS = {
    ExamStatus.SCHEDULED: {ExamStatus.ONGOING, ExamStatus.CANCELLED},
    ExamStatus.ONGOING: {ExamStatus.COMPLETED, ExamStatus.CANCELLED},
    ExamStatus.COMPLETED: set(),
    ExamStatus.CANCELLED: set(),
}

def check_exam_transition(current: ExamStatus, target: ExamStatus) -> None:
    if target not in EXAM_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot move exam from {current.value} to {target.value}"
        )
