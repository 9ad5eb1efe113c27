"""Assignment submissions: deadline and resubmission policy, grading."""
from typing import Dict, List
from flask import current_app
from session_engine import db
from session_engine.models.assignment import (
    Assignment, Submission, SubmissionReview, SubmissionStatus, default_passing_marks
)
from session_engine.services.locking import (
    assignment_key, commit_or_conflict, get_lock_registry, retry_on_conflict,
    submission_allocation_key, submission_key
)
from session_engine.services.notification_service import (
    Notification, NotificationType, notify
)
from session_engine.services.scoring_service import ScoringService
from session_engine.services.statistics_service import StatisticsService
from session_engine.services.submission_validator import SubmissionValidator
from session_engine.utils import clock
from session_engine.utils.errors import (
    InvalidGrade, InvalidTransition, NotEligible, ValidationError
)
from session_engine.utils.validators import Validator

class AssignmentService:
    """Service for assignments and their submissions."""

    @staticmethod
    def get_assignment(assignment_id: int) -> Assignment:
        assignment = db.session.get(Assignment, assignment_id)
        if assignment is None:
            raise NotEligible("Assignment not found")
        return assignment

    @staticmethod
    def get_submission(submission_id: int) -> Submission:
        submission = db.session.get(Submission, submission_id)
        if submission is None:
            raise NotEligible("Submission not found")
        return submission

    UPDATABLE_FIELDS = (
        'title', 'description', 'total_marks', 'passing_marks', 'due_date',
        'late_submission_allowed', 'late_submission_deadline', 'late_penalty_percent',
        'allow_resubmission', 'max_resubmissions'
    )

    @staticmethod
    def _normalize(data: Dict) -> Dict:
        """Validated assignment settings from a create or update payload."""
        Validator.require(data, ['title', 'total_marks', 'due_date'])

        try:
            total_marks = float(data['total_marks'])
            passing_marks = data.get('passing_marks')
            passing_marks = default_passing_marks(total_marks) if passing_marks is None else float(passing_marks)
            penalty = float(data.get('late_penalty_percent', 10))
            max_resubmissions = int(data.get('max_resubmissions', 1))
        except (TypeError, ValueError):
            raise ValidationError("Marks, penalty and resubmission limits must be numbers")

        if total_marks <= 0:
            raise ValidationError("total_marks must be positive")
        if not 0 <= passing_marks <= total_marks:
            raise ValidationError("passing_marks must be between 0 and total_marks")
        if not 0 <= penalty <= 100:
            raise ValidationError("late_penalty_percent must be between 0 and 100")
        if max_resubmissions < 0:
            raise ValidationError("max_resubmissions cannot be negative")

        due_date = Validator.parse_datetime(data['due_date'], 'due_date')
        late_deadline = Validator.parse_datetime(
            data.get('late_submission_deadline'), 'late_submission_deadline'
        )
        if late_deadline is not None and late_deadline < due_date:
            raise ValidationError("late_submission_deadline must be after due_date")

        return {
            'title': data['title'],
            'description': data.get('description') or '',
            'total_marks': total_marks,
            'passing_marks': passing_marks,
            'due_date': due_date,
            'late_submission_allowed': bool(data.get('late_submission_allowed', False)),
            'late_submission_deadline': late_deadline,
            'late_penalty_percent': penalty,
            'allow_resubmission': bool(data.get('allow_resubmission', False)),
            'max_resubmissions': max_resubmissions
        }

    @staticmethod
    def create_assignment(course_id: int, owner_id: int, data: Dict) -> Assignment:
        fields = AssignmentService._normalize(data)
        assignment = Assignment(course_id=course_id, owner_id=owner_id, **fields)
        assignment.save()

        current_app.logger.info(f"Assignment {assignment.id} created for course {course_id}")
        return assignment

    @staticmethod
    def list_course_assignments(course_id: int, page: int = 1, per_page: int = None):
        """Assignments of a course, nearest due date first."""
        per_page = min(
            per_page or current_app.config.get('DEFAULT_PAGE_SIZE', 20),
            current_app.config.get('MAX_PAGE_SIZE', 100)
        )
        return Assignment.query.filter_by(course_id=course_id).order_by(
            Assignment.due_date.asc()
        ).paginate(page=page, per_page=per_page, error_out=False)

    @staticmethod
    def _ensure_ungraded(assignment_id: int, action: str) -> None:
        graded = Submission.query.filter_by(
            assignment_id=assignment_id,
            status=SubmissionStatus.GRADED
        ).first()
        if graded is not None:
            raise InvalidTransition(f"Cannot {action} an assignment with graded submissions")

    @staticmethod
    def update_assignment(assignment_id: int, changes: Dict) -> Assignment:
        """Change settings until the first submission is graded."""
        with get_lock_registry().hold(assignment_key(assignment_id)):
            assignment = Assignment.query.filter_by(id=assignment_id).populate_existing().first()
            if assignment is None:
                raise NotEligible("Assignment not found")
            AssignmentService._ensure_ungraded(assignment_id, 'modify')

            merged = {field: getattr(assignment, field) for field in AssignmentService.UPDATABLE_FIELDS}
            merged.update({k: v for k, v in changes.items() if k in AssignmentService.UPDATABLE_FIELDS})
            fields = AssignmentService._normalize(merged)

            for key, value in fields.items():
                setattr(assignment, key, value)
            commit_or_conflict(f"Assignment {assignment_id} changed concurrently")

        current_app.logger.info(f"Assignment {assignment_id} updated")
        return assignment

    @staticmethod
    def delete_assignment(assignment_id: int) -> None:
        """Delete an ungraded assignment together with its submissions."""
        with get_lock_registry().hold(assignment_key(assignment_id)):
            assignment = db.session.get(Assignment, assignment_id)
            if assignment is None:
                raise NotEligible("Assignment not found")
            AssignmentService._ensure_ungraded(assignment_id, 'delete')

            submission_ids = [
                row.id for row in
                db.session.query(Submission.id).filter_by(assignment_id=assignment_id)
            ]
            if submission_ids:
                SubmissionReview.query.filter(
                    SubmissionReview.submission_id.in_(submission_ids)
                ).delete(synchronize_session=False)
                Submission.query.filter_by(assignment_id=assignment_id).delete(
                    synchronize_session=False
                )

            db.session.delete(assignment)
            db.session.commit()

        current_app.logger.info(f"Assignment {assignment_id} deleted")

    @staticmethod
    def submit(assignment_id: int, participant_id: int, text_content: str = '') -> Submission:
        """Store the next submission; lateness is fixed at submission time."""
        registry = get_lock_registry()

        def apply():
            with registry.hold(submission_allocation_key(assignment_id, participant_id)):
                assignment = db.session.get(Assignment, assignment_id)
                previous = Submission.query.filter_by(
                    assignment_id=assignment_id,
                    participant_id=participant_id
                ).count()
                now = clock.utcnow()

                is_late = SubmissionValidator.validate_assignment_submission(
                    assignment, participant_id, previous, now
                )

                submission = Submission(
                    assignment_id=assignment_id,
                    participant_id=participant_id,
                    text_content=text_content or '',
                    submitted_at=now,
                    is_late=is_late,
                    attempt_number=previous + 1
                )
                db.session.add(submission)
                commit_or_conflict(f"Submission {previous + 1} already stored")
                return submission

        submission = retry_on_conflict(apply)
        StatisticsService.refresh_assignment(assignment_id)

        current_app.logger.info(
            f"Participant {participant_id} submitted assignment {assignment_id} "
            f"(#{submission.attempt_number}{', late' if submission.is_late else ''})"
        )
        return submission

    @staticmethod
    def grade(submission_id: int, marks, grader: int, feedback: str = '',
              bonus_points=0) -> Submission:
        """Grade a submission. The final mark is frozen against the current total."""
        try:
            marks = float(marks)
            bonus_points = float(bonus_points or 0)
        except (TypeError, ValueError):
            raise InvalidGrade("Marks and bonus points must be numbers")
        if bonus_points < 0:
            raise InvalidGrade("Bonus points cannot be negative")

        registry = get_lock_registry()

        def apply():
            with registry.hold(submission_key(submission_id)):
                submission = Submission.query.filter_by(id=submission_id).populate_existing().first()
                if submission is None:
                    raise NotEligible("Submission not found")

                assignment = db.session.get(Assignment, submission.assignment_id)
                validation = Validator.validate_marks(marks, assignment.total_marks)
                if not validation['is_valid']:
                    raise InvalidGrade(', '.join(validation['errors']))

                final, penalty = ScoringService.final_marks(
                    marks, assignment.total_marks, assignment.late_penalty_percent,
                    bonus_points, submission.is_late
                )
                now = clock.utcnow()

                submission.status = SubmissionStatus.GRADED
                submission.marks_obtained = marks
                submission.bonus_points = bonus_points
                submission.late_penalty_applied = penalty
                submission.final_marks = final
                submission.graded_total_marks = assignment.total_marks
                submission.feedback = feedback or ''
                submission.graded_by = grader
                submission.graded_at = now

                db.session.add(SubmissionReview(
                    submission_id=submission.id,
                    reviewed_by=grader,
                    reviewed_at=now,
                    comments=feedback or '',
                    marks_given=marks
                ))
                commit_or_conflict(f"Submission {submission_id} changed while grading")
                return submission

        submission = retry_on_conflict(apply)
        StatisticsService.refresh_assignment(submission.assignment_id)

        notify(Notification(
            recipient_id=submission.participant_id,
            type=NotificationType.GRADE,
            title='Assignment graded',
            message=f"Final mark {submission.final_marks:g}/{submission.graded_total_marks:g}",
            entity_type='submission',
            entity_id=submission.id
        ))
        return submission

    @staticmethod
    def list_submissions(assignment_id: int, participant_id: int = None) -> List[Submission]:
        AssignmentService.get_assignment(assignment_id)

        query = Submission.query.filter_by(assignment_id=assignment_id)
        if participant_id is not None:
            query = query.filter_by(participant_id=participant_id)

        return query.order_by(Submission.participant_id, Submission.attempt_number).all()
