"""Attendance session: a time-bounded container for attendance records."""
import enum
from datetime import timedelta
from session_engine import db
from session_engine.models.base import BaseModel

class SessionState(enum.Enum):
    """Attendance session states."""
    OPEN = 'open'
    CLOSED = 'closed'

class SessionType(enum.Enum):
    LECTURE = 'lecture'
    LAB = 'lab'
    TUTORIAL = 'tutorial'
    EXAM = 'exam'
    OTHER = 'other'

class AttendanceSession(BaseModel):
    """Session for tracking attendance within a window."""

    __tablename__ = 'attendance_sessions'

    # Ownership (external references)
    course_id = db.Column(db.Integer, nullable=False, index=True)
    lesson_id = db.Column(db.Integer, nullable=True)
    owner_id = db.Column(db.Integer, nullable=False, index=True)

    title = db.Column(db.String(255), nullable=True)
    session_date = db.Column(db.DateTime, nullable=False, index=True)
    session_type = db.Column(db.Enum(SessionType), nullable=False, default=SessionType.LECTURE)

    # Window
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    open_time = db.Column(db.DateTime, nullable=False)
    close_time = db.Column(db.DateTime, nullable=False)
    late_threshold_minutes = db.Column(db.Integer, nullable=False, default=15)

    # Constraints
    location_required = db.Column(db.Boolean, nullable=False, default=False)
    location_latitude = db.Column(db.Float, nullable=True)
    location_longitude = db.Column(db.Float, nullable=True)
    location_radius_meters = db.Column(db.Float, nullable=True)
    ip_whitelist = db.Column(db.JSON, nullable=False, default=list)
    require_unique_device = db.Column(db.Boolean, nullable=False, default=False)
    allow_remark = db.Column(db.Boolean, nullable=False, default=True)

    # State
    state = db.Column(db.Enum(SessionState), nullable=False, default=SessionState.OPEN)
    closed_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Stats (written by StatisticsService only)
    total_expected = db.Column(db.Integer, nullable=False, default=0)
    present_count = db.Column(db.Integer, nullable=False, default=0)
    absent_count = db.Column(db.Integer, nullable=False, default=0)
    late_count = db.Column(db.Integer, nullable=False, default=0)
    excused_count = db.Column(db.Integer, nullable=False, default=0)
    attendance_percentage = db.Column(db.Integer, nullable=False, default=0)

    @property
    def late_after(self):
        """Instant after which a mark counts as late."""
        return self.start_time + timedelta(minutes=self.late_threshold_minutes or 0)

    @property
    def has_geofence(self) -> bool:
        return bool(
            self.location_required
            and self.location_latitude is not None
            and self.location_longitude is not None
            and self.location_radius_meters is not None
        )

    def statistics(self) -> dict:
        return {
            'total_expected': self.total_expected,
            'present_count': self.present_count,
            'absent_count': self.absent_count,
            'late_count': self.late_count,
            'excused_count': self.excused_count,
            'attendance_percentage': self.attendance_percentage
        }

    def to_dict(self, exclude: list = None) -> dict:
        """Convert to dictionary."""
        data = super().to_dict(exclude=exclude)
        data['allowed_location'] = {
            'latitude': self.location_latitude,
            'longitude': self.location_longitude,
            'radius': self.location_radius_meters
        } if self.location_required else None
        data['statistics'] = self.statistics()
        return data

    def __repr__(self):
        return f'<AttendanceSession {self.id} course={self.course_id} {self.state.value}>'
