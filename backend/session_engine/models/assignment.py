"""Assignment and submission models."""
import enum
import math
from session_engine import db
from session_engine.models.base import BaseModel, _now

class SubmissionStatus(enum.Enum):
    SUBMITTED = 'submitted'
    GRADED = 'graded'

def default_passing_marks(total_marks) -> int:
    """40% of the total, rounded up."""
    return math.ceil(round((total_marks or 0) * 0.4, 6))

def _default_passing_marks(context):
    return default_passing_marks(context.get_current_parameters().get('total_marks'))

class Assignment(BaseModel):
    """Assignment with deadline and late-submission policy."""

    __tablename__ = 'assignments'

    course_id = db.Column(db.Integer, nullable=False, index=True)
    owner_id = db.Column(db.Integer, nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')

    # Grading
    total_marks = db.Column(db.Float, nullable=False)
    passing_marks = db.Column(db.Float, nullable=False, default=_default_passing_marks)

    # Dates
    due_date = db.Column(db.DateTime, nullable=False)
    late_submission_allowed = db.Column(db.Boolean, nullable=False, default=False)
    late_submission_deadline = db.Column(db.DateTime, nullable=True)
    late_penalty_percent = db.Column(db.Float, nullable=False, default=10)

    # Resubmission policy
    allow_resubmission = db.Column(db.Boolean, nullable=False, default=False)
    max_resubmissions = db.Column(db.Integer, nullable=False, default=1)

    # Statistics
    total_submissions = db.Column(db.Integer, nullable=False, default=0)
    graded_submissions = db.Column(db.Integer, nullable=False, default=0)
    average_score = db.Column(db.Float, nullable=False, default=0)

    def __repr__(self):
        return f'<Assignment {self.title}>'

class Submission(BaseModel):
    """A participant's submission for an assignment."""

    __tablename__ = 'submissions'
    __table_args__ = (
        db.UniqueConstraint('assignment_id', 'participant_id', 'attempt_number',
                            name='uq_submission_attempt'),
    )

    assignment_id = db.Column(db.Integer, db.ForeignKey('assignments.id'), nullable=False, index=True)
    participant_id = db.Column(db.Integer, nullable=False, index=True)
    text_content = db.Column(db.Text, nullable=False, default='')
    submitted_at = db.Column(db.DateTime, nullable=False, default=_now)
    is_late = db.Column(db.Boolean, nullable=False, default=False)
    attempt_number = db.Column(db.Integer, nullable=False, default=1)

    # Grading
    status = db.Column(db.Enum(SubmissionStatus), nullable=False, default=SubmissionStatus.SUBMITTED)
    marks_obtained = db.Column(db.Float, nullable=True)
    feedback = db.Column(db.Text, nullable=False, default='')
    graded_by = db.Column(db.Integer, nullable=True)
    graded_at = db.Column(db.DateTime, nullable=True)

    # Penalties/Bonuses, frozen at grading time
    late_penalty_applied = db.Column(db.Float, nullable=False, default=0)
    bonus_points = db.Column(db.Float, nullable=False, default=0)
    final_marks = db.Column(db.Float, nullable=True)
    graded_total_marks = db.Column(db.Float, nullable=True)

    version = db.Column(db.Integer, nullable=False)

    reviews = db.relationship('SubmissionReview', backref='submission', lazy='select',
                              order_by='SubmissionReview.id')

    __mapper_args__ = {'version_id_col': version}

    def to_dict(self, exclude: list = None) -> dict:
        data = super().to_dict(exclude=exclude)
        data['review_history'] = [review.to_dict() for review in self.reviews]
        return data

class SubmissionReview(BaseModel):
    """Append-only grading history."""

    __tablename__ = 'submission_reviews'

    submission_id = db.Column(db.Integer, db.ForeignKey('submissions.id'), nullable=False, index=True)
    reviewed_by = db.Column(db.Integer, nullable=False)
    reviewed_at = db.Column(db.DateTime, nullable=False, default=_now)
    comments = db.Column(db.Text, nullable=False, default='')
    marks_given = db.Column(db.Float, nullable=False)

    def to_dict(self, exclude: list = None) -> dict:
        return super().to_dict(exclude=(exclude or []) + ['created_at', 'updated_at'])
