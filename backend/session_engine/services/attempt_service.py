"""Exam attempt lifecycle: start, submit, violations."""
from typing import Dict, List
from flask import current_app
from session_engine import db
from session_engine.models.attempt import Attempt, Violation, ViolationType
from session_engine.models.exam import Exam
from session_engine.services.locking import (
    attempt_allocation_key, attempt_key, commit_or_conflict,
    get_lock_registry, retry_on_conflict
)
from session_engine.services.notification_service import (
    Notification, NotificationType, notify
)
from session_engine.services.record_store import DeviceInfo
from session_engine.services.scoring_service import ScoringService
from session_engine.services.statistics_service import StatisticsService
from session_engine.services.submission_validator import SubmissionValidator
from session_engine.utils import clock
from session_engine.utils.errors import NotEligible, ValidationError

class AttemptService:
    """Service for exam attempts."""

    @staticmethod
    def get_attempt(attempt_id: int, participant_id: int = None) -> Attempt:
        """Fetch an attempt, optionally requiring it to belong to ``participant_id``."""
        attempt = db.session.get(Attempt, attempt_id)
        if attempt is None or (participant_id is not None and attempt.participant_id != participant_id):
            raise NotEligible("Attempt not found")
        return attempt

    @staticmethod
    def start(exam_id: int, participant_id: int, device: DeviceInfo = None) -> Attempt:
        """Open the next attempt; numbers are allocated under the (exam, participant) lock."""
        device = device or DeviceInfo()
        registry = get_lock_registry()

        def apply():
            with registry.hold(attempt_allocation_key(exam_id, participant_id)):
                exam = db.session.get(Exam, exam_id)
                existing = Attempt.query.filter_by(
                    exam_id=exam_id,
                    participant_id=participant_id
                ).count()

                SubmissionValidator.validate_exam_start(exam, participant_id, existing, clock.utcnow())

                attempt = Attempt(
                    exam_id=exam_id,
                    participant_id=participant_id,
                    course_id=exam.course_id,
                    attempt_number=existing + 1,
                    started_at=clock.utcnow(),
                    total_marks=exam.total_marks,
                    ip_address=device.ip,
                    user_agent=device.user_agent
                )
                db.session.add(attempt)
                commit_or_conflict(f"Attempt number {existing + 1} already allocated")
                return attempt

        attempt = retry_on_conflict(apply)
        current_app.logger.info(
            f"Participant {participant_id} started attempt #{attempt.attempt_number} of exam {exam_id}"
        )
        return attempt

    @staticmethod
    def submit(attempt_id: int, answers: List[Dict], participant_id: int = None) -> Attempt:
        """Score and seal an attempt. A second submit raises AlreadySubmitted."""
        if answers is not None and not isinstance(answers, list):
            raise ValidationError("answers must be a list")

        registry = get_lock_registry()

        def apply():
            with registry.hold(attempt_key(attempt_id)):
                attempt = Attempt.query.filter_by(id=attempt_id).populate_existing().first()
                if attempt is not None and participant_id is not None \
                        and attempt.participant_id != participant_id:
                    attempt = None

                exam = db.session.get(Exam, attempt.exam_id) if attempt else None
                now = clock.utcnow()
                SubmissionValidator.validate_attempt_submission(attempt, exam, now)

                ScoringService.score_attempt(attempt, exam, answers or [])
                attempt.submitted_at = now
                attempt.time_spent_seconds = max(0, int((now - attempt.started_at).total_seconds()))
                attempt.is_submitted = True

                commit_or_conflict(f"Attempt {attempt_id} changed while submitting")
                return attempt, exam

        attempt, exam = retry_on_conflict(apply)
        current_app.logger.info(
            f"Attempt {attempt_id} submitted: {attempt.marks_obtained:g}/{attempt.total_marks:g}"
            f"{'' if attempt.is_graded else ' (awaiting grading)'}"
        )

        StatisticsService.refresh_exam(exam.id)

        if exam.show_results_immediately and attempt.is_graded:
            notify(Notification(
                recipient_id=attempt.participant_id,
                type=NotificationType.EXAM,
                title='Exam results available',
                message=f"{exam.title}: {attempt.percentage:g}%",
                entity_type='attempt',
                entity_id=attempt.id
            ))
        return attempt

    @staticmethod
    def record_violation(attempt_id: int, violation_type: str, detail: str = '',
                         participant_id: int = None) -> Violation:
        """Log an integrity event. Advisory only, accepted after submission too."""
        try:
            kind = ViolationType(violation_type)
        except ValueError:
            raise ValidationError(
                f"Invalid violation type. Use one of: {', '.join(v.value for v in ViolationType)}"
            )

        registry = get_lock_registry()

        def apply():
            with registry.hold(attempt_key(attempt_id)):
                attempt = Attempt.query.filter_by(id=attempt_id).populate_existing().first()
                if attempt is None or (participant_id is not None
                                       and attempt.participant_id != participant_id):
                    raise NotEligible("Attempt not found")

                violation = Violation(
                    attempt_id=attempt.id,
                    violation_type=kind,
                    detail=detail or '',
                    occurred_at=clock.utcnow()
                )
                db.session.add(violation)
                if kind == ViolationType.TAB_SWITCH:
                    attempt.tab_switches += 1

                commit_or_conflict(f"Attempt {attempt_id} changed while logging a violation")
                return violation

        violation = retry_on_conflict(apply)
        current_app.logger.warning(f"Violation {kind.value} on attempt {attempt_id}")
        return violation

    @staticmethod
    def results_for(exam_id: int, participant_id: int) -> List[Attempt]:
        """Submitted attempts of one participant, newest first."""
        return Attempt.query.filter_by(
            exam_id=exam_id,
            participant_id=participant_id,
            is_submitted=True
        ).order_by(Attempt.attempt_number.desc()).all()

    @staticmethod
    def submissions_for(exam_id: int) -> List[Attempt]:
        return Attempt.query.filter_by(
            exam_id=exam_id,
            is_submitted=True
        ).order_by(Attempt.participant_id, Attempt.attempt_number).all()
