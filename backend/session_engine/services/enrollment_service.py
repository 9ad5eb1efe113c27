"""Enrollment directory collaborator."""
from typing import Iterable, List
from flask import current_app
from session_engine import db
from session_engine.models.enrollment import Enrollment

class EnrollmentDirectory:
    """SQL-backed view of course enrollments.

    The catalog service owns enrollments; this directory reads the mirrored
    ``enrollments`` table. Applications can inject any object exposing the
    same methods through ``create_app``.
    """

    def count_enrolled(self, course_id: int) -> int:
        return Enrollment.query.filter_by(course_id=course_id).count()

    def is_enrolled(self, course_id: int, participant_id: int) -> bool:
        return Enrollment.query.filter_by(
            course_id=course_id,
            participant_id=participant_id
        ).first() is not None

    def courses_for(self, participant_id: int) -> List[int]:
        rows = db.session.query(Enrollment.course_id).filter_by(
            participant_id=participant_id
        ).all()
        return [row.course_id for row in rows]

    @staticmethod
    def enroll(course_id: int, participant_ids: Iterable[int]) -> int:
        """Mirror enrollments; already enrolled participants are skipped."""
        existing = {
            row.participant_id for row in
            db.session.query(Enrollment.participant_id).filter_by(course_id=course_id)
        }
        added = 0
        for participant_id in participant_ids:
            if participant_id in existing:
                continue
            db.session.add(Enrollment(course_id=course_id, participant_id=participant_id))
            existing.add(participant_id)
            added += 1

        db.session.commit()
        return added

def get_enrollment_directory():
    return current_app.extensions['enrollment_directory']
