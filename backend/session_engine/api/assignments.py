"""Assignment API endpoints."""
from flask import Blueprint, request
from flask_jwt_extended import jwt_required
from session_engine import limiter
from session_engine.api import pagination_meta, submission_limit
from session_engine.services.assignment_service import AssignmentService
from session_engine.utils.decorators import (
    current_identity, ensure_owner, is_teacher, student_required, teacher_required
)
from session_engine.utils.errors import ValidationError
from session_engine.utils.helpers import success_response
from session_engine.utils.validators import Validator

assignments_bp = Blueprint('assignments', __name__)

@assignments_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Assignments service is running')

@assignments_bp.route('/', methods=['POST'])
@jwt_required()
@teacher_required
def create_assignment():
    data = Validator.require(request.get_json(silent=True), ['course_id'])
    user_id, _ = current_identity()

    try:
        course_id = int(data['course_id'])
    except (TypeError, ValueError):
        raise ValidationError("course_id must be an integer")

    assignment = AssignmentService.create_assignment(course_id, user_id, data)

    return success_response(
        data=assignment.to_dict(),
        message="Assignment created successfully"
    ), 201

@assignments_bp.route('/<int:assignment_id>', methods=['GET'])
@jwt_required()
def get_assignment(assignment_id):
    assignment = AssignmentService.get_assignment(assignment_id)
    return success_response(data=assignment.to_dict())

@assignments_bp.route('/course/<int:course_id>', methods=['GET'])
@jwt_required()
def list_course_assignments(course_id):
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', type=int)

    pagination = AssignmentService.list_course_assignments(course_id, page=page, per_page=per_page)

    return success_response(
        data=[assignment.to_dict() for assignment in pagination.items],
        meta=pagination_meta(pagination)
    )

@assignments_bp.route('/<int:assignment_id>', methods=['PUT'])
@jwt_required()
@teacher_required
def update_assignment(assignment_id):
    """Change assignment settings; refused once a submission has been graded."""
    user_id, role = current_identity()
    assignment = AssignmentService.get_assignment(assignment_id)
    ensure_owner(assignment.owner_id, user_id, role)

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be JSON")

    assignment = AssignmentService.update_assignment(assignment_id, data)
    return success_response(data=assignment.to_dict(), message="Assignment updated successfully")

@assignments_bp.route('/<int:assignment_id>', methods=['DELETE'])
@jwt_required()
@teacher_required
def delete_assignment(assignment_id):
    user_id, role = current_identity()
    assignment = AssignmentService.get_assignment(assignment_id)
    ensure_owner(assignment.owner_id, user_id, role)

    AssignmentService.delete_assignment(assignment_id)
    return success_response(message="Assignment deleted successfully")

@assignments_bp.route('/<int:assignment_id>/my-submission', methods=['GET'])
@jwt_required()
@student_required
def my_submission(assignment_id):
    """The caller's submissions for one assignment, latest attempt first."""
    user_id, _ = current_identity()
    AssignmentService.get_assignment(assignment_id)

    submissions = AssignmentService.list_submissions(assignment_id, participant_id=user_id)
    submissions = sorted(submissions, key=lambda s: s.attempt_number, reverse=True)

    return success_response(
        data=[submission.to_dict() for submission in submissions],
        meta={'total': len(submissions)}
    )

@assignments_bp.route('/<int:assignment_id>/submit', methods=['POST'])
@jwt_required()
@student_required
@limiter.limit(submission_limit)
def submit_assignment(assignment_id):
    """Submit (or resubmit) work for an assignment."""
    data = request.get_json(silent=True) or {}
    user_id, _ = current_identity()

    submission = AssignmentService.submit(assignment_id, user_id, data.get('text_content', ''))

    return success_response(
        data=submission.to_dict(),
        message="Submitted late" if submission.is_late else "Submitted successfully"
    ), 201

@assignments_bp.route('/submissions/<int:submission_id>/grade', methods=['POST'])
@jwt_required()
@teacher_required
def grade_submission(submission_id):
    """Grade a submission; late penalty and bonus are applied to the final mark."""
    data = Validator.require(request.get_json(silent=True), ['marks'])
    user_id, role = current_identity()

    submission = AssignmentService.get_submission(submission_id)
    assignment = AssignmentService.get_assignment(submission.assignment_id)
    ensure_owner(assignment.owner_id, user_id, role)

    submission = AssignmentService.grade(
        submission_id,
        data['marks'],
        grader=user_id,
        feedback=data.get('feedback', ''),
        bonus_points=data.get('bonus_points', 0)
    )
    return success_response(data=submission.to_dict(), message="Submission graded successfully")

@assignments_bp.route('/<int:assignment_id>/submissions', methods=['GET'])
@jwt_required()
def list_submissions(assignment_id):
    """Owners see every submission; participants see their own."""
    user_id, role = current_identity()
    assignment = AssignmentService.get_assignment(assignment_id)

    if is_teacher(role):
        ensure_owner(assignment.owner_id, user_id, role)
        submissions = AssignmentService.list_submissions(assignment_id)
    else:
        submissions = AssignmentService.list_submissions(assignment_id, participant_id=user_id)

    return success_response(
        data=[submission.to_dict() for submission in submissions],
        meta={'total': len(submissions)}
    )
