"""Session lifecycle: attendance sessions and exams."""
from datetime import datetime, timedelta
from typing import Dict, List
import pandas as pd
from flask import current_app
from sqlalchemy import or_
from session_engine import db
from session_engine.models.attendance import AttendanceRecord, AttendanceStatus
from session_engine.models.attendance_session import AttendanceSession, SessionState, SessionType
from session_engine.models.assignment import default_passing_marks
from session_engine.models.exam import Exam, ExamStatus, ExamType, Question, QuestionType
from session_engine.services.anomaly_service import Anomaly, AnomalyService
from session_engine.services.enrollment_service import get_enrollment_directory
from session_engine.services.locking import exam_key, get_lock_registry, session_key
from session_engine.services.notification_service import (
    Notification, NotificationType, notify, notify_all
)
from session_engine.services.record_store import DeviceInfo, ParticipantRecordStore
from session_engine.services.session_window import (
    SessionWindow, attendance_is_closed, check_exam_transition
)
from session_engine.services.statistics_service import StatisticsService
from session_engine.services.submission_validator import SubmissionValidator
from session_engine.utils import clock
from session_engine.utils.errors import (
    EngineError, InvalidTransition, NotEligible, ValidationError
)
from session_engine.utils.validators import Validator

CONSTRAINT_FIELDS = (
    'location_required', 'location_latitude', 'location_longitude',
    'location_radius_meters', 'ip_whitelist', 'require_unique_device', 'allow_remark'
)
WINDOW_FIELDS = ('open_time', 'close_time', 'start_time', 'end_time')

def _parse_status(value) -> AttendanceStatus:
    if isinstance(value, AttendanceStatus):
        return value
    try:
        return AttendanceStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Invalid status. Use one of: {', '.join(s.value for s in AttendanceStatus)}"
        )

def _apply_constraints(session: AttendanceSession, constraints: Dict) -> None:
    for key in CONSTRAINT_FIELDS:
        if key in constraints:
            setattr(session, key, constraints[key])

    if not isinstance(session.ip_whitelist or [], list):
        raise ValidationError("ip_whitelist must be a list of addresses")

    if session.location_required:
        if session.location_radius_meters is None or session.location_radius_meters <= 0:
            raise ValidationError("location_radius_meters must be positive when location is required")
        coordinates = Validator.validate_coordinates(
            session.location_latitude, session.location_longitude
        )
        if not coordinates['is_valid']:
            raise ValidationError(', '.join(coordinates['errors']))

class SessionService:
    """Attendance session operations."""

    @staticmethod
    def get_session(session_id: int) -> AttendanceSession:
        session = db.session.get(AttendanceSession, session_id)
        if session is None:
            raise NotEligible("Attendance session not found")
        return session

    @staticmethod
    def create_session(
        course_id: int,
        owner_id: int,
        window: SessionWindow,
        constraints: Dict = None,
        end_time: datetime = None,
        title: str = None,
        notes: str = None,
        lesson_id: int = None,
        session_type: str = 'lecture',
        session_date: datetime = None
    ) -> AttendanceSession:
        """Create an open session. ``total_expected`` snapshots current enrollment."""
        try:
            kind = SessionType(session_type or 'lecture')
        except ValueError:
            raise ValidationError(
                f"Invalid session type. Use one of: {', '.join(t.value for t in SessionType)}"
            )

        start_time = window.reference_start
        session = AttendanceSession(
            course_id=course_id,
            lesson_id=lesson_id,
            owner_id=owner_id,
            title=title,
            notes=notes,
            session_type=kind,
            session_date=session_date or start_time,
            start_time=start_time,
            end_time=end_time or window.close_time,
            open_time=window.open_time,
            close_time=window.close_time,
            late_threshold_minutes=int(window.late_threshold.total_seconds() // 60),
            ip_whitelist=[],
            state=SessionState.OPEN,
            total_expected=get_enrollment_directory().count_enrolled(course_id)
        )
        if session.end_time < session.start_time:
            raise ValidationError("end_time must be after start_time")

        _apply_constraints(session, constraints or {})
        session.save()

        current_app.logger.info(
            f"Attendance session {session.id} created for course {course_id} by {owner_id}"
        )
        return session

    @staticmethod
    def update_session(session_id: int, changes: Dict) -> AttendanceSession:
        """Owner configuration changes, allowed only while the session accepts marks."""
        registry = get_lock_registry()

        with registry.hold(session_key(session_id)):
            session = AttendanceSession.query.filter_by(id=session_id).populate_existing().first()
            if session is None:
                raise NotEligible("Attendance session not found")
            if attendance_is_closed(session, clock.utcnow()):
                raise InvalidTransition("Closed sessions cannot be modified")

            try:
                for key in WINDOW_FIELDS:
                    if key in changes:
                        setattr(session, key, Validator.parse_datetime(changes[key], key))

                if 'late_threshold_minutes' in changes:
                    try:
                        threshold = int(changes['late_threshold_minutes'])
                    except (TypeError, ValueError):
                        raise ValidationError("late_threshold_minutes must be an integer")
                    if threshold < 0:
                        raise ValidationError("late_threshold_minutes cannot be negative")
                    session.late_threshold_minutes = threshold

                for key in ('title', 'notes'):
                    if key in changes:
                        setattr(session, key, changes[key])

                SessionWindow.for_session(session)
                if session.end_time < session.start_time:
                    raise ValidationError("end_time must be after start_time")
                _apply_constraints(session, changes)
            except EngineError:
                db.session.rollback()
                raise

            db.session.commit()

        current_app.logger.info(f"Attendance session {session_id} updated")
        return session

    @staticmethod
    def list_course_sessions(course_id: int, page: int = 1, per_page: int = None):
        per_page = min(
            per_page or current_app.config.get('DEFAULT_PAGE_SIZE', 20),
            current_app.config.get('MAX_PAGE_SIZE', 100)
        )
        return AttendanceSession.query.filter_by(course_id=course_id).order_by(
            AttendanceSession.start_time.desc()
        ).paginate(page=page, per_page=per_page, error_out=False)

    @staticmethod
    def submit_record(session_id: int, participant_id: int, payload: Dict, actor: int) -> Dict:
        """Record attendance.

        Self-submissions derive present/late from the clock and run every
        check; marks entered on someone else's behalf carry an explicit
        status and only need the session to be accepting marks.
        """
        payload = payload or {}
        session = db.session.get(AttendanceSession, session_id)
        now = clock.utcnow()
        device = payload.get('device') or DeviceInfo()

        if actor == participant_id:
            status = SubmissionValidator.validate_attendance(session, participant_id, device, now)
            create_only = not session.allow_remark
        else:
            SubmissionValidator.validate_proxy_mark(session, participant_id, now)
            status = _parse_status(payload.get('status'))
            create_only = False
            # proxy marks carry no device fingerprint
            device = DeviceInfo()

        record, created = ParticipantRecordStore.upsert(
            session_id, participant_id, status, actor,
            device=device,
            remarks=payload.get('remarks') or '',
            create_only=create_only
        )
        StatisticsService.refresh_session(session_id)

        notify(Notification(
            recipient_id=participant_id,
            type=NotificationType.ATTENDANCE,
            title='Attendance recorded',
            message=f"Marked {status.value} for session {session_id}",
            entity_type='attendance_session',
            entity_id=session_id
        ))

        return {
            'status': status.value,
            'created': created,
            'record': record.to_dict()
        }

    @staticmethod
    def bulk_submit_records(session_id: int, entries: List[Dict], actor: int) -> Dict:
        """Apply several proxy marks; each entry succeeds or fails on its own."""
        SessionService.get_session(session_id)
        if not isinstance(entries, list):
            raise ValidationError("records must be a list")

        succeeded, failed = [], []
        for index, entry in enumerate(entries):
            participant_id = entry.get('participant_id') if isinstance(entry, dict) else None
            try:
                if participant_id is None:
                    raise ValidationError("participant_id is required")
                try:
                    participant_id = int(participant_id)
                except (TypeError, ValueError):
                    raise ValidationError("participant_id must be an integer")

                session = db.session.get(AttendanceSession, session_id)
                SubmissionValidator.validate_proxy_mark(session, participant_id, clock.utcnow())
                status = _parse_status(entry.get('status'))

                record, created = ParticipantRecordStore.upsert(
                    session_id, participant_id, status, actor,
                    remarks=entry.get('remarks') or ''
                )
                succeeded.append({
                    'participant_id': participant_id,
                    'status': status.value,
                    'created': created
                })
            except EngineError as e:
                db.session.rollback()
                failed.append({
                    'index': index,
                    'participant_id': participant_id,
                    'kind': e.kind.value,
                    'message': e.message
                })

        StatisticsService.refresh_session(session_id)

        notify_all(
            Notification(
                recipient_id=result['participant_id'],
                type=NotificationType.ATTENDANCE,
                title='Attendance recorded',
                message=f"Marked {result['status']} for session {session_id}",
                entity_type='attendance_session',
                entity_id=session_id
            )
            for result in succeeded
        )

        current_app.logger.info(
            f"Bulk mark on session {session_id}: {len(succeeded)} succeeded, {len(failed)} failed"
        )
        return {'succeeded': succeeded, 'failed': failed}

    @staticmethod
    def bulk_submit_from_frame(session_id: int, df: pd.DataFrame, actor: int) -> Dict:
        """Bulk-mark from an uploaded sheet with participant_id and status columns."""
        required_columns = ['participant_id', 'status']
        missing_columns = [col for col in required_columns if col not in df.columns]
        if missing_columns:
            raise ValidationError(f"Missing columns: {', '.join(missing_columns)}")

        entries = []
        for _, row in df.iterrows():
            entry = {
                'participant_id': None if pd.isna(row['participant_id']) else row['participant_id'],
                'status': None if pd.isna(row['status']) else str(row['status'])
            }
            if 'remarks' in df.columns and not pd.isna(row['remarks']):
                entry['remarks'] = str(row['remarks'])
            entries.append(entry)

        return SessionService.bulk_submit_records(session_id, entries, actor)

    @staticmethod
    def close_session(session_id: int) -> AttendanceSession:
        """Freeze acceptance. Closing a closed session returns it unchanged."""
        registry = get_lock_registry()

        with registry.hold(session_key(session_id)):
            query = AttendanceSession.query.filter_by(id=session_id)
            session = query.with_for_update().populate_existing().first()
            if session is None:
                raise NotEligible("Attendance session not found")
            if session.state == SessionState.CLOSED:
                return session

            # State first, so marks re-checking under their record lock see it
            session.state = SessionState.CLOSED
            session.closed_at = clock.utcnow()
            db.session.commit()

            session = StatisticsService.recount_session(session_id)

        current_app.logger.info(
            f"Attendance session {session_id} closed: {session.attendance_percentage}% attendance"
        )
        notify(Notification(
            recipient_id=session.owner_id,
            type=NotificationType.ATTENDANCE,
            title='Attendance session closed',
            message=f"{session.present_count + session.late_count}/{session.total_expected} attended",
            entity_type='attendance_session',
            entity_id=session_id
        ))
        return session

    @staticmethod
    def close_expired_sessions() -> List[AttendanceSession]:
        expired = AttendanceSession.query.filter(
            AttendanceSession.state == SessionState.OPEN,
            AttendanceSession.close_time < clock.utcnow()
        ).all()
        return [SessionService.close_session(session.id) for session in expired]

    @staticmethod
    def get_anomalies(session_id: int) -> List[Anomaly]:
        SessionService.get_session(session_id)
        return AnomalyService.for_session(session_id)

    @staticmethod
    def get_participant_history(participant_id: int, filters: Dict = None) -> Dict:
        """Sessions the participant has a record in, or that are over for their courses.

        A finished session without a record counts as absent.
        """
        filters = filters or {}
        now = clock.utcnow()

        records = {
            record.session_id: record for record in
            AttendanceRecord.query.filter_by(participant_id=participant_id)
        }
        courses = set(get_enrollment_directory().courses_for(participant_id))

        query = AttendanceSession.query.filter(or_(
            AttendanceSession.course_id.in_(list(courses)),
            AttendanceSession.id.in_(list(records))
        ))
        if filters.get('course_id') is not None:
            query = query.filter(AttendanceSession.course_id == filters['course_id'])
        if filters.get('start_date') is not None:
            query = query.filter(AttendanceSession.session_date >= filters['start_date'])
        if filters.get('end_date') is not None:
            query = query.filter(AttendanceSession.session_date <= filters['end_date'])

        entries = []
        for session in query.order_by(AttendanceSession.session_date.desc()):
            record = records.get(session.id)
            if record is None and not attendance_is_closed(session, now):
                continue

            entries.append({
                'session_id': session.id,
                'course_id': session.course_id,
                'title': session.title,
                'session_date': session.session_date.isoformat(),
                'status': (record.status if record else AttendanceStatus.ABSENT).value,
                'recorded': record is not None,
                'submitted_at': record.submitted_at.isoformat() if record else None,
                'is_modified': record.is_modified if record else False
            })

        statistics = StatisticsService.history_statistics(
            AttendanceStatus(entry['status']) for entry in entries
        )
        return {'entries': entries, 'statistics': statistics}

class ExamLifecycleService:
    """Exam creation and the Scheduled -> Ongoing -> Completed state machine."""

    UPDATABLE_FIELDS = (
        'title', 'description', 'duration_minutes', 'passing_marks', 'max_attempts',
        'show_results_immediately', 'require_camera', 'require_full_screen',
        'prevent_tab_switch'
    )

    @staticmethod
    def get_exam(exam_id: int) -> Exam:
        exam = db.session.get(Exam, exam_id)
        if exam is None:
            raise NotEligible("Exam not found")
        return exam

    @staticmethod
    def list_course_exams(course_id: int, page: int = 1, per_page: int = None):
        per_page = min(
            per_page or current_app.config.get('DEFAULT_PAGE_SIZE', 20),
            current_app.config.get('MAX_PAGE_SIZE', 100)
        )
        return Exam.query.filter_by(course_id=course_id).order_by(
            Exam.scheduled_at.desc()
        ).paginate(page=page, per_page=per_page, error_out=False)

    @staticmethod
    def build_question(data: Dict, order: int) -> Question:
        Validator.require(data, ['text', 'question_type', 'marks'])
        try:
            kind = QuestionType(data['question_type'])
        except ValueError:
            raise ValidationError(
                f"Invalid question type. Use one of: {', '.join(t.value for t in QuestionType)}"
            )

        try:
            marks = float(data['marks'])
        except (TypeError, ValueError):
            raise ValidationError("Question marks must be a number")
        if marks < 1:
            raise ValidationError("Question marks must be at least 1")

        options = data.get('options') or []
        if not isinstance(options, list) or not all(isinstance(o, dict) and 'text' in o for o in options):
            raise ValidationError("options must be a list of {text, is_correct}")

        question = Question(
            text=data['text'],
            question_type=kind,
            options=options,
            correct_answer=data.get('correct_answer'),
            marks=marks,
            order=data.get('order', order)
        )
        if question.is_objective and question.correct_option_text is None:
            raise ValidationError(f"Question '{question.text}' needs a correct option")
        return question

    @staticmethod
    def create_exam(course_id: int, owner_id: int, data: Dict) -> Exam:
        """Create a scheduled exam; total marks default to the sum of question marks."""
        Validator.require(data, ['title', 'start_time', 'end_time', 'questions'])
        if not isinstance(data['questions'], list) or not data['questions']:
            raise ValidationError("An exam needs at least one question")

        start_time = Validator.parse_datetime(data['start_time'], 'start_time')
        end_time = Validator.parse_datetime(data['end_time'], 'end_time')
        SessionWindow(open_time=start_time, close_time=end_time)

        try:
            exam_type = ExamType(data.get('exam_type', 'quiz'))
        except ValueError:
            raise ValidationError(
                f"Invalid exam type. Use one of: {', '.join(t.value for t in ExamType)}"
            )

        questions = [
            ExamLifecycleService.build_question(q, order)
            for order, q in enumerate(data['questions'], start=1)
        ]
        try:
            total_marks = float(data.get('total_marks') or sum(q.marks for q in questions))
            passing_marks = data.get('passing_marks')
            passing_marks = default_passing_marks(total_marks) if passing_marks is None else float(passing_marks)
            max_attempts = int(data.get('max_attempts', 1))
        except (TypeError, ValueError):
            raise ValidationError("total_marks, passing_marks and max_attempts must be numbers")

        if not 0 <= passing_marks <= total_marks:
            raise ValidationError("passing_marks must be between 0 and total_marks")
        if max_attempts < 1:
            raise ValidationError("max_attempts must be at least 1")

        exam = Exam(
            course_id=course_id,
            owner_id=owner_id,
            title=data['title'],
            description=data.get('description') or '',
            exam_type=exam_type,
            duration_minutes=int(data.get('duration_minutes')
                                 or (end_time - start_time) / timedelta(minutes=1)),
            total_marks=total_marks,
            passing_marks=float(passing_marks),
            scheduled_at=Validator.parse_datetime(data.get('scheduled_at'), 'scheduled_at') or start_time,
            start_time=start_time,
            end_time=end_time,
            status=ExamStatus.SCHEDULED,
            max_attempts=max_attempts,
            show_results_immediately=bool(data.get('show_results_immediately', False)),
            require_camera=bool(data.get('require_camera', False)),
            require_full_screen=bool(data.get('require_full_screen', False)),
            prevent_tab_switch=bool(data.get('prevent_tab_switch', False)),
            questions=questions
        )
        exam.save()

        current_app.logger.info(f"Exam {exam.id} created for course {course_id} by {owner_id}")
        return exam

    @staticmethod
    def update_exam(exam_id: int, changes: Dict) -> Exam:
        registry = get_lock_registry()

        with registry.hold(exam_key(exam_id)):
            exam = Exam.query.filter_by(id=exam_id).populate_existing().first()
            if exam is None:
                raise NotEligible("Exam not found")
            if exam.status not in (ExamStatus.SCHEDULED, ExamStatus.ONGOING):
                raise InvalidTransition(f"Cannot modify a {exam.status.value} exam")

            try:
                for key in ('start_time', 'end_time'):
                    if key in changes:
                        setattr(exam, key, Validator.parse_datetime(changes[key], key))
                SessionWindow.for_exam(exam)

                for key in ExamLifecycleService.UPDATABLE_FIELDS:
                    if key in changes:
                        setattr(exam, key, changes[key])

                if not isinstance(exam.max_attempts, int) or exam.max_attempts < 1:
                    raise ValidationError("max_attempts must be at least 1")
            except EngineError:
                db.session.rollback()
                raise

            db.session.commit()

        current_app.logger.info(f"Exam {exam_id} updated")
        return exam

    @staticmethod
    def _transition(exam_id: int, target: ExamStatus) -> Exam:
        registry = get_lock_registry()

        with registry.hold(exam_key(exam_id)):
            exam = Exam.query.filter_by(id=exam_id).populate_existing().first()
            if exam is None:
                raise NotEligible("Exam not found")

            previous = exam.status
            check_exam_transition(previous, target)
            exam.status = target
            db.session.commit()

        current_app.logger.info(f"Exam {exam_id}: {previous.value} -> {target.value}")
        return exam

    @staticmethod
    def begin(exam_id: int) -> Exam:
        """Attempts can only start once the owner has begun the exam."""
        return ExamLifecycleService._transition(exam_id, ExamStatus.ONGOING)

    @staticmethod
    def complete(exam_id: int) -> Exam:
        exam = ExamLifecycleService._transition(exam_id, ExamStatus.COMPLETED)
        StatisticsService.refresh_exam(exam_id)
        return exam

    @staticmethod
    def cancel(exam_id: int) -> Exam:
        return ExamLifecycleService._transition(exam_id, ExamStatus.CANCELLED)

    @staticmethod
    def complete_expired_exams() -> List[Exam]:
        expired = Exam.query.filter(
            Exam.status == ExamStatus.ONGOING,
            Exam.end_time < clock.utcnow()
        ).all()
        return [ExamLifecycleService.complete(exam.id) for exam in expired]

    @staticmethod
    def answers_visible(exam: Exam, is_manager: bool) -> bool:
        return is_manager or exam.status == ExamStatus.COMPLETED

    @staticmethod
    def results_visible(exam: Exam) -> bool:
        return exam.show_results_immediately or exam.status == ExamStatus.COMPLETED
