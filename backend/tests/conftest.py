"""Shared fixtures: app, client, frozen clock, identities and sample data."""
from datetime import datetime, timedelta
import pytest
from flask_jwt_extended import create_access_token
from session_engine import create_app, db
from session_engine.services.enrollment_service import EnrollmentDirectory
from session_engine.services.notification_service import NotificationDispatcher
from session_engine.services.session_service import ExamLifecycleService, SessionService
from session_engine.services.session_window import SessionWindow
from session_engine.utils import clock

# Monday 09:00, the reference session start in most tests
T0 = datetime(2026, 3, 2, 9, 0, 0)

COURSE_ID = 101
TEACHER_ID = 1
STUDENT_IDS = [11, 12, 13, 14, 15, 16, 17, 18]

class RecordingDispatcher(NotificationDispatcher):
    """Keeps every notification in memory."""

    def __init__(self):
        self.sent = []

    def dispatch(self, notification):
        self.sent.append(notification)

class FailingDispatcher(NotificationDispatcher):
    def dispatch(self, notification):
        raise ConnectionError("notification service unavailable")

class FrozenClock:
    """Callable replacement for ``clock.utcnow``."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

@pytest.fixture
def dispatcher():
    return RecordingDispatcher()

@pytest.fixture
def app(dispatcher):
    """Create test app."""
    app = create_app('testing', notification_dispatcher=dispatcher)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()

@pytest.fixture
def file_app(tmp_path, dispatcher):
    """App on a file-backed SQLite database, for tests that use threads."""
    app = create_app('testing', notification_dispatcher=dispatcher, test_config={
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'engine.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}}
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()

@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()

@pytest.fixture
def frozen_clock(monkeypatch):
    frozen = FrozenClock(T0)
    monkeypatch.setattr(clock, 'utcnow', frozen)
    return frozen

@pytest.fixture
def enrolled(app):
    EnrollmentDirectory.enroll(COURSE_ID, STUDENT_IDS)
    return STUDENT_IDS

def make_headers(user_id: int, role: str) -> dict:
    token = create_access_token(identity=str(user_id), additional_claims={'role': role})
    return {'Authorization': f'Bearer {token}'}

@pytest.fixture
def teacher_headers(app):
    return make_headers(TEACHER_ID, 'teacher')

@pytest.fixture
def student_headers(app):
    return make_headers(STUDENT_IDS[0], 'student')

def open_session(course_id=COURSE_ID, start=T0, minutes=60, threshold=15,
                 open_before=timedelta(0), **constraints):
    """Create an open attendance session starting at ``start``."""
    window = SessionWindow(
        open_time=start - open_before,
        close_time=start + timedelta(minutes=minutes),
        start_time=start,
        late_threshold=timedelta(minutes=threshold)
    )
    return SessionService.create_session(
        course_id=course_id,
        owner_id=TEACHER_ID,
        window=window,
        constraints=constraints,
        title='Week 1 lecture'
    )

def exam_payload(start=T0, minutes=60, **overrides):
    """Exam with one 10-mark single-choice question and one 5-mark essay."""
    payload = {
        'title': 'Midterm',
        'exam_type': 'midterm',
        'start_time': start.isoformat(),
        'end_time': (start + timedelta(minutes=minutes)).isoformat(),
        'passing_marks': 8,
        'questions': [
            {
                'text': 'Capital of France?',
                'question_type': 'single-choice',
                'marks': 10,
                'options': [
                    {'text': 'Lyon', 'is_correct': False},
                    {'text': 'Paris', 'is_correct': True}
                ]
            },
            {
                'text': 'Explain optimistic locking.',
                'question_type': 'essay',
                'marks': 5
            }
        ]
    }
    payload.update(overrides)
    return payload

def create_exam(begin=True, **overrides):
    exam = ExamLifecycleService.create_exam(COURSE_ID, TEACHER_ID, exam_payload(**overrides))
    if begin:
        exam = ExamLifecycleService.begin(exam.id)
    return exam
