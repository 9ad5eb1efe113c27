"""Attendance session API endpoints."""
import io
from datetime import timedelta
import pandas as pd
from flask import Blueprint, current_app, request
from flask_jwt_extended import jwt_required
from session_engine import limiter
from session_engine.api import device_from_request, pagination_meta, submission_limit
from session_engine.services.record_store import ParticipantRecordStore
from session_engine.services.session_service import SessionService
from session_engine.services.session_window import SessionWindow
from session_engine.utils.decorators import current_identity, ensure_owner, is_teacher, teacher_required
from session_engine.utils.errors import NotEligible, ValidationError
from session_engine.utils.helpers import error_response, success_response
from session_engine.utils.validators import Validator

attendance_bp = Blueprint('attendance', __name__)

def _constraints_from(data: dict) -> dict:
    """Accept either flat constraint fields or an ``allowed_location`` object."""
    constraints = {}
    location = data.get('allowed_location')
    if location:
        constraints.update({
            'location_required': True,
            'location_latitude': location.get('latitude'),
            'location_longitude': location.get('longitude'),
            'location_radius_meters': location.get('radius')
        })

    for key in ('location_required', 'location_latitude', 'location_longitude',
                'location_radius_meters', 'ip_whitelist', 'require_unique_device',
                'allow_remark'):
        if key in data:
            constraints[key] = data[key]
    return constraints

def _owned_session(session_id: int):
    user_id, role = current_identity()
    session = SessionService.get_session(session_id)
    ensure_owner(session.owner_id, user_id, role)
    return session, user_id

@attendance_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Attendance service is running')

@attendance_bp.route('/session', methods=['POST'])
@jwt_required()
@teacher_required
def create_session():
    """Create an attendance session for a course."""
    data = Validator.require(request.get_json(silent=True), ['course_id', 'start_time', 'end_time'])
    user_id, _ = current_identity()

    start_time = Validator.parse_datetime(data['start_time'], 'start_time')
    end_time = Validator.parse_datetime(data['end_time'], 'end_time')

    try:
        threshold = int(data.get(
            'late_threshold_minutes',
            current_app.config.get('DEFAULT_LATE_THRESHOLD_MINUTES', 15)
        ))
    except (TypeError, ValueError):
        raise ValidationError("late_threshold_minutes must be an integer")
    if threshold < 0:
        raise ValidationError("late_threshold_minutes cannot be negative")

    window = SessionWindow(
        open_time=Validator.parse_datetime(data.get('open_time'), 'open_time') or start_time,
        close_time=Validator.parse_datetime(data.get('close_time'), 'close_time') or end_time,
        start_time=start_time,
        late_threshold=timedelta(minutes=threshold)
    )

    session = SessionService.create_session(
        course_id=int(data['course_id']),
        owner_id=user_id,
        window=window,
        constraints=_constraints_from(data),
        end_time=end_time,
        title=data.get('title'),
        notes=data.get('notes'),
        lesson_id=data.get('lesson_id'),
        session_type=data.get('session_type', 'lecture'),
        session_date=Validator.parse_datetime(data.get('session_date'), 'session_date')
    )

    return success_response(
        data=session.to_dict(),
        message="Attendance session created successfully"
    ), 201

@attendance_bp.route('/session/<int:session_id>', methods=['GET'])
@jwt_required()
def get_session(session_id):
    """Get session details and statistics."""
    session = SessionService.get_session(session_id)
    return success_response(data=session.to_dict())

@attendance_bp.route('/session/<int:session_id>', methods=['PUT'])
@jwt_required()
@teacher_required
def update_session(session_id):
    """Update window or constraints while the session is open."""
    _owned_session(session_id)
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be JSON")

    changes = dict(data)
    changes.update(_constraints_from(data))
    session = SessionService.update_session(session_id, changes)

    return success_response(
        data=session.to_dict(),
        message="Attendance session updated successfully"
    )

@attendance_bp.route('/session/<int:session_id>/records', methods=['GET'])
@jwt_required()
@teacher_required
def get_session_records(session_id):
    """List every record of a session with its correction history."""
    _owned_session(session_id)
    records = ParticipantRecordStore.list_for_session(session_id)
    return success_response(data=[record.to_dict() for record in records])

@attendance_bp.route('/mark/<int:session_id>', methods=['POST'])
@jwt_required()
@limiter.limit(submission_limit)
def mark_attendance(session_id):
    """Mark attendance.

    Students mark themselves; the status is derived from the clock. A
    teacher may mark a participant by passing ``participant_id`` and
    ``status``.
    """
    data = request.get_json(silent=True) or {}
    user_id, role = current_identity()

    participant_id = user_id
    if data.get('participant_id') is not None:
        try:
            participant_id = int(data['participant_id'])
        except (TypeError, ValueError):
            raise ValidationError("participant_id must be an integer")

    if participant_id != user_id:
        if not is_teacher(role):
            return error_response("Only teachers can mark other participants", 403)
        _owned_session(session_id)
        Validator.require(data, ['status'])

    payload = {
        'device': device_from_request(data),
        'status': data.get('status'),
        'remarks': data.get('remarks')
    }
    result = SessionService.submit_record(session_id, participant_id, payload, actor=user_id)

    return success_response(
        data=result,
        message=f"Attendance marked as {result['status']}"
    ), 201 if result['created'] else 200

@attendance_bp.route('/session/<int:session_id>/bulk-mark', methods=['POST'])
@jwt_required()
@teacher_required
def bulk_mark(session_id):
    """Mark several participants at once; failures are reported per entry."""
    _, user_id = _owned_session(session_id)
    data = Validator.require(request.get_json(silent=True), ['records'])

    results = SessionService.bulk_submit_records(session_id, data['records'], actor=user_id)

    return success_response(
        data=results,
        message=f"{len(results['succeeded'])} marked, {len(results['failed'])} failed"
    )

@attendance_bp.route('/session/<int:session_id>/bulk-mark/upload', methods=['POST'])
@jwt_required()
@teacher_required
def bulk_mark_upload(session_id):
    """Bulk-mark from a CSV/Excel file with participant_id and status columns."""
    _, user_id = _owned_session(session_id)

    if 'file' not in request.files:
        return error_response("No file uploaded", 400)

    file = request.files['file']
    if file.filename == '':
        return error_response("No file selected", 400)

    allowed = tuple(f'.{ext}' for ext in current_app.config.get('ALLOWED_EXTENSIONS', ['csv', 'xlsx', 'xls']))
    if not file.filename.lower().endswith(allowed):
        return error_response("Invalid file format. Use CSV or Excel", 400)

    try:
        if file.filename.lower().endswith('.csv'):
            df = pd.read_csv(io.StringIO(file.stream.read().decode("utf-8")))
        else:
            df = pd.read_excel(file.stream)
    except Exception as e:
        return error_response(f"Error reading file: {str(e)}", 400)

    results = SessionService.bulk_submit_from_frame(session_id, df, actor=user_id)

    return success_response(
        data=results,
        message="Bulk import completed"
    )

@attendance_bp.route('/session/<int:session_id>/close', methods=['POST'])
@jwt_required()
@teacher_required
def close_session(session_id):
    """Close the session and compute final statistics."""
    _owned_session(session_id)
    session = SessionService.close_session(session_id)

    return success_response(
        data=session.to_dict(),
        message="Attendance session closed"
    )

@attendance_bp.route('/session/<int:session_id>/anomalies', methods=['GET'])
@jwt_required()
@teacher_required
def get_anomalies(session_id):
    """Devices used by more than one participant."""
    _owned_session(session_id)
    anomalies = SessionService.get_anomalies(session_id)

    return success_response(
        data=[anomaly.to_dict() for anomaly in anomalies],
        meta={'total': len(anomalies)}
    )

@attendance_bp.route('/participant/<int:participant_id>', methods=['GET'])
@jwt_required()
def get_participant_history(participant_id):
    """Attendance history of a participant with summary statistics."""
    user_id, role = current_identity()
    if participant_id != user_id and not is_teacher(role):
        raise NotEligible("You can only view your own attendance", 403)

    filters = {
        'course_id': request.args.get('course_id', type=int),
        'start_date': Validator.parse_datetime(request.args.get('start_date'), 'start_date'),
        'end_date': Validator.parse_datetime(request.args.get('end_date'), 'end_date')
    }
    history = SessionService.get_participant_history(participant_id, filters)

    return success_response(data=history)

@attendance_bp.route('/course/<int:course_id>', methods=['GET'])
@jwt_required()
def list_course_sessions(course_id):
    """List sessions of a course, newest first."""
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', type=int)

    pagination = SessionService.list_course_sessions(course_id, page=page, per_page=per_page)

    return success_response(
        data=[session.to_dict() for session in pagination.items],
        meta=pagination_meta(pagination)
    )
