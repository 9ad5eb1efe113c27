"""Exam API endpoints: lifecycle, attempts and grading."""
from flask import Blueprint, request
from flask_jwt_extended import jwt_required
from session_engine import limiter
from session_engine.api import device_from_request, pagination_meta, submission_limit
from session_engine.services.attempt_service import AttemptService
from session_engine.services.scoring_service import ScoringService
from session_engine.services.session_service import ExamLifecycleService
from session_engine.utils.decorators import (
    current_identity, ensure_owner, is_admin, is_teacher, student_required, teacher_required
)
from session_engine.utils.errors import ValidationError
from session_engine.utils.helpers import success_response
from session_engine.utils.validators import Validator

exams_bp = Blueprint('exams', __name__)

def _owned_exam(exam_id: int):
    user_id, role = current_identity()
    exam = ExamLifecycleService.get_exam(exam_id)
    ensure_owner(exam.owner_id, user_id, role)
    return exam, user_id

@exams_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Exams service is running')

@exams_bp.route('/', methods=['POST'])
@jwt_required()
@teacher_required
def create_exam():
    """Create a scheduled exam with its questions."""
    data = Validator.require(request.get_json(silent=True), ['course_id'])
    user_id, _ = current_identity()

    try:
        course_id = int(data['course_id'])
    except (TypeError, ValueError):
        raise ValidationError("course_id must be an integer")

    exam = ExamLifecycleService.create_exam(course_id, user_id, data)

    return success_response(
        data=exam.to_dict(),
        message="Exam created successfully"
    ), 201

@exams_bp.route('/<int:exam_id>', methods=['GET'])
@jwt_required()
def get_exam(exam_id):
    """Exam details; correct answers stay hidden from participants until completion."""
    user_id, role = current_identity()
    exam = ExamLifecycleService.get_exam(exam_id)

    is_manager = is_admin(role) or (is_teacher(role) and exam.owner_id == user_id)
    hide = not ExamLifecycleService.answers_visible(exam, is_manager)

    return success_response(data=exam.to_dict(hide_answers=hide))

@exams_bp.route('/course/<int:course_id>', methods=['GET'])
@jwt_required()
def list_course_exams(course_id):
    """Exams of a course, most recently scheduled first."""
    user_id, role = current_identity()
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', type=int)

    pagination = ExamLifecycleService.list_course_exams(course_id, page=page, per_page=per_page)

    exams = []
    for exam in pagination.items:
        is_manager = is_admin(role) or (is_teacher(role) and exam.owner_id == user_id)
        hide = not ExamLifecycleService.answers_visible(exam, is_manager)
        exams.append(exam.to_dict(hide_answers=hide))

    return success_response(data=exams, meta=pagination_meta(pagination))

@exams_bp.route('/<int:exam_id>', methods=['PUT'])
@jwt_required()
@teacher_required
def update_exam(exam_id):
    _owned_exam(exam_id)
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be JSON")

    exam = ExamLifecycleService.update_exam(exam_id, data)
    return success_response(data=exam.to_dict(), message="Exam updated successfully")

@exams_bp.route('/<int:exam_id>/begin', methods=['POST'])
@jwt_required()
@teacher_required
def begin_exam(exam_id):
    """Move a scheduled exam to ongoing so attempts can start."""
    _owned_exam(exam_id)
    exam = ExamLifecycleService.begin(exam_id)
    return success_response(data=exam.to_dict(), message="Exam started")

@exams_bp.route('/<int:exam_id>/complete', methods=['POST'])
@jwt_required()
@teacher_required
def complete_exam(exam_id):
    _owned_exam(exam_id)
    exam = ExamLifecycleService.complete(exam_id)
    return success_response(data=exam.to_dict(), message="Exam completed")

@exams_bp.route('/<int:exam_id>/cancel', methods=['POST'])
@jwt_required()
@teacher_required
def cancel_exam(exam_id):
    _owned_exam(exam_id)
    exam = ExamLifecycleService.cancel(exam_id)
    return success_response(data=exam.to_dict(), message="Exam cancelled")

@exams_bp.route('/<int:exam_id>/start', methods=['POST'])
@jwt_required()
@student_required
@limiter.limit(submission_limit)
def start_attempt(exam_id):
    """Start the caller's next attempt."""
    user_id, _ = current_identity()
    attempt = AttemptService.start(exam_id, user_id, device_from_request())
    exam = ExamLifecycleService.get_exam(exam_id)

    return success_response(
        data={
            'attempt': attempt.to_dict(include_answers=False),
            'exam': exam.to_dict(hide_answers=True)
        },
        message=f"Attempt #{attempt.attempt_number} started"
    ), 201

@exams_bp.route('/attempts/<int:attempt_id>/submit', methods=['POST'])
@jwt_required()
@student_required
@limiter.limit(submission_limit)
def submit_attempt(attempt_id):
    """Submit answers for an attempt."""
    data = Validator.require(request.get_json(silent=True), ['answers'])
    user_id, _ = current_identity()

    attempt = AttemptService.submit(attempt_id, data['answers'], participant_id=user_id)
    exam = ExamLifecycleService.get_exam(attempt.exam_id)

    result = {
        'attempt_id': attempt.id,
        'attempt_number': attempt.attempt_number,
        'submitted_at': attempt.submitted_at.isoformat(),
        'time_spent_seconds': attempt.time_spent_seconds,
        'is_graded': attempt.is_graded
    }
    if ExamLifecycleService.results_visible(exam):
        result.update(attempt.result_summary())

    return success_response(data=result, message="Exam submitted successfully")

@exams_bp.route('/attempts/<int:attempt_id>/violation', methods=['POST'])
@jwt_required()
@student_required
def record_violation(attempt_id):
    """Log a proctoring event against the caller's attempt."""
    data = Validator.require(request.get_json(silent=True), ['type'])
    user_id, _ = current_identity()

    violation = AttemptService.record_violation(
        attempt_id, data['type'], data.get('detail', ''), participant_id=user_id
    )
    return success_response(data=violation.to_dict(), message="Violation recorded"), 201

@exams_bp.route('/attempts/<int:attempt_id>/grade', methods=['POST'])
@jwt_required()
@teacher_required
def grade_attempt(attempt_id):
    """Grade subjective answers of a submitted attempt."""
    data = Validator.require(request.get_json(silent=True), ['answers'])
    attempt = AttemptService.get_attempt(attempt_id)
    _, user_id = _owned_exam(attempt.exam_id)

    attempt = ScoringService.grade_subjective(
        attempt_id, data['answers'], user_id, feedback=data.get('feedback')
    )
    return success_response(data=attempt.to_dict(), message="Attempt graded successfully")

@exams_bp.route('/<int:exam_id>/my-results', methods=['GET'])
@jwt_required()
def my_results(exam_id):
    """The caller's submitted attempts, newest first."""
    user_id, _ = current_identity()
    exam = ExamLifecycleService.get_exam(exam_id)
    attempts = AttemptService.results_for(exam_id, user_id)
    visible = ExamLifecycleService.results_visible(exam)

    results = []
    for attempt in attempts:
        entry = {
            'attempt_id': attempt.id,
            'attempt_number': attempt.attempt_number,
            'submitted_at': attempt.submitted_at.isoformat(),
            'is_graded': attempt.is_graded
        }
        if visible:
            entry.update(attempt.result_summary())
            entry['feedback'] = attempt.feedback
        results.append(entry)

    return success_response(
        data=results,
        meta={'results_available': visible, 'attempts_remaining': max(0, exam.max_attempts - len(attempts))}
    )

@exams_bp.route('/<int:exam_id>/submissions', methods=['GET'])
@jwt_required()
@teacher_required
def list_submissions(exam_id):
    """All submitted attempts, for grading."""
    _owned_exam(exam_id)
    pending_only = request.args.get('pending', 'false').lower() == 'true'

    attempts = AttemptService.submissions_for(exam_id)
    if pending_only:
        attempts = [attempt for attempt in attempts if not attempt.is_graded]

    return success_response(
        data=[attempt.to_dict() for attempt in attempts],
        meta={'total': len(attempts)}
    )
