"""Attendance record with append-only modification history."""
import enum
from session_engine import db
from session_engine.models.base import BaseModel, _now

class AttendanceStatus(enum.Enum):
    """Attendance outcomes."""
    PRESENT = 'present'
    ABSENT = 'absent'
    LATE = 'late'
    EXCUSED = 'excused'

class AttendanceRecord(BaseModel):
    """One participant's outcome within an attendance session."""

    __tablename__ = 'attendance_records'
    __table_args__ = (
        db.UniqueConstraint('session_id', 'participant_id', name='uq_record_session_participant'),
    )

    session_id = db.Column(db.Integer, db.ForeignKey('attendance_sessions.id'), nullable=False, index=True)
    participant_id = db.Column(db.Integer, nullable=False, index=True)
    status = db.Column(db.Enum(AttendanceStatus), nullable=False)
    submitted_at = db.Column(db.DateTime, nullable=False, default=_now)
    submitted_by = db.Column(db.Integer, nullable=False)

    # Device fingerprint
    device_ip = db.Column(db.String(64), nullable=True, index=True)
    user_agent = db.Column(db.String(512), nullable=True)
    device_type = db.Column(db.String(20), nullable=True)  # mobile, desktop
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    remarks = db.Column(db.Text, nullable=False, default='')
    is_modified = db.Column(db.Boolean, nullable=False, default=False)

    # Optimistic concurrency token
    version = db.Column(db.Integer, nullable=False)

    history = db.relationship(
        'RecordModification',
        backref='record',
        lazy='select',
        order_by='RecordModification.id'
    )

    __mapper_args__ = {'version_id_col': version}

    @property
    def is_proxy(self) -> bool:
        """Marked by someone other than the participant."""
        return self.submitted_by != self.participant_id

    def to_dict(self, exclude: list = None) -> dict:
        data = super().to_dict(exclude=exclude)
        data['device_info'] = {
            'ip': self.device_ip,
            'user_agent': self.user_agent,
            'device_type': self.device_type,
            'location': {'latitude': self.latitude, 'longitude': self.longitude}
            if self.latitude is not None and self.longitude is not None else None
        }
        data['modification_history'] = [entry.to_dict() for entry in self.history]
        return data

    def __repr__(self):
        return f'<AttendanceRecord {self.session_id}-{self.participant_id}>'

class RecordModification(BaseModel):
    """Append-only correction log entry."""

    __tablename__ = 'record_modifications'

    record_id = db.Column(db.Integer, db.ForeignKey('attendance_records.id'), nullable=False, index=True)
    previous_status = db.Column(db.Enum(AttendanceStatus), nullable=False)
    new_status = db.Column(db.Enum(AttendanceStatus), nullable=False)
    modified_by = db.Column(db.Integer, nullable=False)
    modified_at = db.Column(db.DateTime, nullable=False, default=_now)
    reason = db.Column(db.Text, nullable=False, default='Manual modification')

    def to_dict(self, exclude: list = None) -> dict:
        return super().to_dict(exclude=(exclude or []) + ['created_at', 'updated_at'])
