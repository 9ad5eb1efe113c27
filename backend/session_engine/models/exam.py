"""Exam and question models."""
import enum
from session_engine import db
from session_engine.models.base import BaseModel

class ExamStatus(enum.Enum):
    """Exam lifecycle states."""
    SCHEDULED = 'scheduled'
    ONGOING = 'ongoing'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

class ExamType(enum.Enum):
    QUIZ = 'quiz'
    MIDTERM = 'midterm'
    FINAL = 'final'
    ASSIGNMENT = 'assignment'

class QuestionType(enum.Enum):
    SINGLE_CHOICE = 'single-choice'
    TRUE_FALSE = 'true-false'
    SHORT_ANSWER = 'short-answer'
    ESSAY = 'essay'

OBJECTIVE_TYPES = (QuestionType.SINGLE_CHOICE, QuestionType.TRUE_FALSE)
SUBJECTIVE_TYPES = (QuestionType.SHORT_ANSWER, QuestionType.ESSAY)

class Exam(BaseModel):
    """Timed exam owned by an instructor."""

    __tablename__ = 'exams'

    course_id = db.Column(db.Integer, nullable=False, index=True)
    owner_id = db.Column(db.Integer, nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    exam_type = db.Column(db.Enum(ExamType), nullable=False, default=ExamType.QUIZ)

    duration_minutes = db.Column(db.Integer, nullable=False)
    total_marks = db.Column(db.Float, nullable=False)
    passing_marks = db.Column(db.Float, nullable=False)

    # Schedule
    scheduled_at = db.Column(db.DateTime, nullable=False)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.Enum(ExamStatus), nullable=False, default=ExamStatus.SCHEDULED, index=True)

    # Settings
    max_attempts = db.Column(db.Integer, nullable=False, default=1)
    show_results_immediately = db.Column(db.Boolean, nullable=False, default=False)

    # Proctoring
    require_camera = db.Column(db.Boolean, nullable=False, default=False)
    require_full_screen = db.Column(db.Boolean, nullable=False, default=False)
    prevent_tab_switch = db.Column(db.Boolean, nullable=False, default=False)

    # Statistics
    total_attempts = db.Column(db.Integer, nullable=False, default=0)
    average_score = db.Column(db.Float, nullable=False, default=0)
    highest_score = db.Column(db.Float, nullable=False, default=0)
    lowest_score = db.Column(db.Float, nullable=True)

    questions = db.relationship(
        'Question',
        backref='exam',
        lazy='select',
        order_by='Question.order',
        cascade='all, delete-orphan'
    )

    def question_map(self) -> dict:
        return {question.id: question for question in self.questions}

    def to_dict(self, exclude: list = None, hide_answers: bool = False) -> dict:
        data = super().to_dict(exclude=exclude)
        data['questions'] = [q.to_dict(hide_answer=hide_answers) for q in self.questions]
        return data

    def __repr__(self):
        return f'<Exam {self.title}>'

class Question(BaseModel):
    """Exam question; objective types carry a correct option."""

    __tablename__ = 'questions'

    exam_id = db.Column(db.Integer, db.ForeignKey('exams.id'), nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    question_type = db.Column(db.Enum(QuestionType), nullable=False)
    options = db.Column(db.JSON, nullable=False, default=list)  # [{text, is_correct}]
    correct_answer = db.Column(db.Text, nullable=True)
    marks = db.Column(db.Float, nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)

    @property
    def is_objective(self) -> bool:
        return self.question_type in OBJECTIVE_TYPES

    @property
    def correct_option_text(self):
        for option in self.options or []:
            if option.get('is_correct'):
                return option.get('text')
        return self.correct_answer

    def to_dict(self, exclude: list = None, hide_answer: bool = False) -> dict:
        data = {
            'id': self.id,
            'text': self.text,
            'question_type': self.question_type.value,
            'marks': self.marks,
            'order': self.order,
            'options': [{'text': o.get('text')} for o in self.options or []]
            if hide_answer else list(self.options or [])
        }
        if not hide_answer:
            data['correct_answer'] = self.correct_answer
        return data
