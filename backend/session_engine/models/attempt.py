"""Exam attempt, answers and proctoring violations."""
import enum
from session_engine import db
from session_engine.models.base import BaseModel, _now

class ViolationType(enum.Enum):
    TAB_SWITCH = 'tab-switch'
    COPY_PASTE = 'copy-paste'
    FULLSCREEN_EXIT = 'fullscreen-exit'
    TIMEOUT = 'timeout'

class Attempt(BaseModel):
    """One try at an exam; immutable after submission except grading fields."""

    __tablename__ = 'exam_attempts'
    __table_args__ = (
        db.UniqueConstraint('exam_id', 'participant_id', 'attempt_number', name='uq_attempt_number'),
        db.Index('ix_attempt_submitted_graded', 'is_submitted', 'is_graded'),
    )

    exam_id = db.Column(db.Integer, db.ForeignKey('exams.id'), nullable=False, index=True)
    participant_id = db.Column(db.Integer, nullable=False, index=True)
    course_id = db.Column(db.Integer, nullable=False)

    attempt_number = db.Column(db.Integer, nullable=False)
    started_at = db.Column(db.DateTime, nullable=False, default=_now)
    submitted_at = db.Column(db.DateTime, nullable=True)
    time_spent_seconds = db.Column(db.Integer, nullable=False, default=0)

    # Scoring
    total_marks = db.Column(db.Float, nullable=False, default=0)
    marks_obtained = db.Column(db.Float, nullable=False, default=0)
    percentage = db.Column(db.Float, nullable=False, default=0)
    passed = db.Column(db.Boolean, nullable=False, default=False)

    # Status
    is_submitted = db.Column(db.Boolean, nullable=False, default=False)
    is_graded = db.Column(db.Boolean, nullable=False, default=False)
    graded_by = db.Column(db.Integer, nullable=True)
    graded_at = db.Column(db.DateTime, nullable=True)
    feedback = db.Column(db.Text, nullable=False, default='')

    # Tracking
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    tab_switches = db.Column(db.Integer, nullable=False, default=0)

    version = db.Column(db.Integer, nullable=False)

    answers = db.relationship('Answer', backref='attempt', lazy='select',
                              order_by='Answer.id', cascade='all, delete-orphan')
    violations = db.relationship('Violation', backref='attempt', lazy='select',
                                 order_by='Violation.id', cascade='all, delete-orphan')

    __mapper_args__ = {'version_id_col': version}

    def to_dict(self, exclude: list = None, include_answers: bool = True) -> dict:
        data = super().to_dict(exclude=exclude)
        if include_answers:
            data['answers'] = [answer.to_dict() for answer in self.answers]
        data['violations'] = [violation.to_dict() for violation in self.violations]
        return data

    def result_summary(self) -> dict:
        return {
            'marks_obtained': self.marks_obtained,
            'total_marks': self.total_marks,
            'percentage': self.percentage,
            'passed': self.passed
        }

    def __repr__(self):
        return f'<Attempt exam={self.exam_id} participant={self.participant_id} #{self.attempt_number}>'

class Answer(BaseModel):
    """Participant response; marks stay null until scored."""

    __tablename__ = 'attempt_answers'

    attempt_id = db.Column(db.Integer, db.ForeignKey('exam_attempts.id'), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey('questions.id'), nullable=False)
    selected_option = db.Column(db.Text, nullable=True)
    text_answer = db.Column(db.Text, nullable=False, default='')
    is_correct = db.Column(db.Boolean, nullable=True)
    marks_obtained = db.Column(db.Float, nullable=True)

    def to_dict(self, exclude: list = None) -> dict:
        return super().to_dict(exclude=(exclude or []) + ['created_at', 'updated_at'])

class Violation(BaseModel):
    """Advisory integrity event logged against an attempt."""

    __tablename__ = 'attempt_violations'

    attempt_id = db.Column(db.Integer, db.ForeignKey('exam_attempts.id'), nullable=False, index=True)
    violation_type = db.Column(db.Enum(ViolationType), nullable=False)
    detail = db.Column(db.Text, nullable=False, default='')
    occurred_at = db.Column(db.DateTime, nullable=False, default=_now)

    def to_dict(self, exclude: list = None) -> dict:
        return {
            'type': self.violation_type.value,
            'detail': self.detail,
            'occurred_at': self.occurred_at.isoformat()
        }
