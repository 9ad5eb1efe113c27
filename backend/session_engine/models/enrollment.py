"""Local mirror of course enrollments owned by the catalog service."""
from session_engine import db
from session_engine.models.base import BaseModel

class Enrollment(BaseModel):
    """Participant enrolled in a course."""

    __tablename__ = 'enrollments'
    __table_args__ = (
        db.UniqueConstraint('course_id', 'participant_id', name='uq_enrollment'),
    )

    course_id = db.Column(db.Integer, nullable=False, index=True)
    participant_id = db.Column(db.Integer, nullable=False, index=True)

    def __repr__(self):
        return f'<Enrollment {self.course_id}-{self.participant_id}>'
