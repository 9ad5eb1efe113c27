"""Ordered, short-circuiting admission checks for submissions.

Checks run in a fixed order so the first failure decides the error kind:
existence and enrollment, window, IP and device constraints, geofence,
resubmission policy, deadline.
"""
from datetime import datetime, timedelta
from typing import Optional
from flask import current_app
from session_engine.models.attendance import AttendanceRecord, AttendanceStatus
from session_engine.models.attendance_session import AttendanceSession
from session_engine.models.assignment import Assignment
from session_engine.models.attempt import Attempt
from session_engine.models.exam import Exam, ExamStatus
from session_engine.services.enrollment_service import get_enrollment_directory
from session_engine.services.gps_service import GPSService
from session_engine.services.record_store import DeviceInfo
from session_engine.services.session_window import (
    SessionWindow, attendance_acceptance, exam_is_active
)
from session_engine.utils.errors import (
    AlreadySubmitted, AttemptsExhausted, ConstraintViolation, NotEligible, WindowClosed
)

class SubmissionValidator:
    """Admission rules for attendance marks, exam attempts and assignment submissions."""

    @staticmethod
    def check_enrollment(course_id: int, participant_id: int) -> None:
        if not get_enrollment_directory().is_enrolled(course_id, participant_id):
            raise NotEligible("Participant is not enrolled in this course", 403)

    @staticmethod
    def attendance_status(session: AttendanceSession, now: datetime) -> AttendanceStatus:
        """Present up to and including start + threshold, late afterwards."""
        if SessionWindow.for_session(session).is_late(now):
            return AttendanceStatus.LATE
        return AttendanceStatus.PRESENT

    @staticmethod
    def validate_attendance(
        session: Optional[AttendanceSession],
        participant_id: int,
        device: DeviceInfo,
        now: datetime
    ) -> AttendanceStatus:
        """Validate a self-submitted mark and return the status to record."""
        # 1. Existence and enrollment
        if session is None:
            raise NotEligible("Attendance session not found")
        SubmissionValidator.check_enrollment(session.course_id, participant_id)

        # 2. Window
        accepting, reason = attendance_acceptance(session, now)
        if not accepting:
            raise WindowClosed(reason)

        # 3. IP allow-list and device uniqueness
        whitelist = session.ip_whitelist or []
        if whitelist and device.ip not in whitelist:
            raise ConstraintViolation("Device IP is not allowed for this session")

        if session.require_unique_device and device.ip:
            shared = AttendanceRecord.query.filter(
                AttendanceRecord.session_id == session.id,
                AttendanceRecord.device_ip == device.ip,
                AttendanceRecord.participant_id != participant_id
            ).first()
            if shared is not None:
                raise ConstraintViolation("This device was already used by another participant")

        # 4. Geofence
        if session.location_required:
            if not device.has_location:
                raise ConstraintViolation("Location is required for this session")

            if session.has_geofence:
                result = GPSService.verify_location(
                    device.latitude, device.longitude,
                    session.location_latitude, session.location_longitude,
                    session.location_radius_meters
                )
                if not result['is_inside']:
                    raise ConstraintViolation(
                        f"Outside the allowed area ({result['distance']:.0f}m from center, "
                        f"radius {result['radius']:.0f}m)",
                        details={'distance': round(result['distance'], 2)}
                    )

        # 5. Resubmission
        if not session.allow_remark:
            existing = AttendanceRecord.query.filter_by(
                session_id=session.id,
                participant_id=participant_id
            ).first()
            if existing is not None:
                raise AlreadySubmitted("Attendance already marked for this session")

        return SubmissionValidator.attendance_status(session, now)

    @staticmethod
    def validate_proxy_mark(
        session: Optional[AttendanceSession],
        participant_id: int,
        now: datetime
    ) -> None:
        """Marks entered by the session owner: existence, enrollment and the window."""
        if session is None:
            raise NotEligible("Attendance session not found")
        SubmissionValidator.check_enrollment(session.course_id, participant_id)

        accepting, reason = attendance_acceptance(session, now)
        if not accepting:
            raise WindowClosed(reason)

    @staticmethod
    def validate_exam_start(
        exam: Optional[Exam],
        participant_id: int,
        existing_attempts: int,
        now: datetime
    ) -> None:
        if exam is None:
            raise NotEligible("Exam not found")
        SubmissionValidator.check_enrollment(exam.course_id, participant_id)

        if not exam_is_active(exam, now):
            raise WindowClosed("Exam is not currently active")

        if existing_attempts >= exam.max_attempts:
            raise AttemptsExhausted(
                f"Maximum attempts ({exam.max_attempts}) reached for this exam"
            )

    @staticmethod
    def validate_attempt_submission(attempt: Optional[Attempt], exam: Exam, now: datetime) -> None:
        if attempt is None:
            raise NotEligible("Attempt not found")

        if attempt.is_submitted:
            raise AlreadySubmitted("Attempt already submitted")

        grace = timedelta(seconds=current_app.config.get('EXAM_SUBMISSION_GRACE_SECONDS', 0))
        if exam.status == ExamStatus.CANCELLED:
            raise WindowClosed("Exam has been cancelled")
        if now > exam.end_time + grace:
            raise WindowClosed("Exam has ended")

    @staticmethod
    def validate_assignment_submission(
        assignment: Optional[Assignment],
        participant_id: int,
        previous_submissions: int,
        now: datetime
    ) -> bool:
        """Validate a submission and return whether it is late."""
        if assignment is None:
            raise NotEligible("Assignment not found")
        SubmissionValidator.check_enrollment(assignment.course_id, participant_id)

        if previous_submissions > 0:
            if not assignment.allow_resubmission:
                raise AlreadySubmitted("Assignment already submitted")
            if previous_submissions > assignment.max_resubmissions:
                raise AttemptsExhausted(
                    f"Maximum resubmissions ({assignment.max_resubmissions}) reached"
                )

        if now <= assignment.due_date:
            return False

        if not assignment.late_submission_allowed:
            raise WindowClosed("Assignment deadline has passed")

        if assignment.late_submission_deadline and now > assignment.late_submission_deadline:
            raise WindowClosed("Late submission deadline has passed")

        return True
