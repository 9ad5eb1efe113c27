"""Derived statistics, always recomputed from a consistent snapshot."""
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Optional
from sqlalchemy import func
from session_engine import db
from session_engine.models.attendance import AttendanceRecord, AttendanceStatus
from session_engine.models.attendance_session import AttendanceSession
from session_engine.models.attempt import Attempt
from session_engine.models.assignment import Assignment, Submission, SubmissionStatus
from session_engine.models.exam import Exam
from session_engine.services.locking import get_lock_registry, session_key

def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))

class StatisticsService:
    """Recompute (never patch) per-session, per-exam and per-assignment counters."""

    @staticmethod
    def attendance_percentage(present: int, late: int, total: int) -> int:
        if total <= 0:
            return 0
        return round_half_up((present + late) / total * 100)

    @staticmethod
    def tally(statuses: Iterable[AttendanceStatus]) -> Dict[AttendanceStatus, int]:
        counts = {status: 0 for status in AttendanceStatus}
        for status in statuses:
            counts[status] += 1
        return counts

    @staticmethod
    def refresh_session(session_id: int) -> Optional[AttendanceSession]:
        """Recount records by status and store the session counters.

        Runs under the session lock so a slower recount never overwrites a
        newer one.
        """
        with get_lock_registry().hold(session_key(session_id)):
            return StatisticsService.recount_session(session_id)

    @staticmethod
    def recount_session(session_id: int) -> Optional[AttendanceSession]:
        """Recount for callers already holding the session lock."""
        rows = db.session.query(
            AttendanceRecord.status,
            func.count(AttendanceRecord.id)
        ).filter(
            AttendanceRecord.session_id == session_id
        ).group_by(AttendanceRecord.status).all()

        session = AttendanceSession.query.filter_by(id=session_id).populate_existing().first()
        if session is None:
            return None

        counts = {status: 0 for status in AttendanceStatus}
        counts.update({status: count for status, count in rows})

        session.present_count = counts[AttendanceStatus.PRESENT]
        session.absent_count = counts[AttendanceStatus.ABSENT]
        session.late_count = counts[AttendanceStatus.LATE]
        session.excused_count = counts[AttendanceStatus.EXCUSED]
        session.attendance_percentage = StatisticsService.attendance_percentage(
            session.present_count, session.late_count, session.total_expected
        )

        db.session.commit()
        return session

    @staticmethod
    def summarize_scores(scores: Iterable[float]) -> Dict:
        scores = list(scores)
        if not scores:
            return {
                'total_attempts': 0,
                'average_score': 0,
                'highest_score': 0,
                'lowest_score': None
            }

        return {
            'total_attempts': len(scores),
            'average_score': round(sum(scores) / len(scores), 2),
            'highest_score': max(scores),
            'lowest_score': min(scores)
        }

    @staticmethod
    def refresh_exam(exam_id: int) -> Optional[Exam]:
        """Attempt totals and score spread over submitted attempts."""
        rows = db.session.query(Attempt.marks_obtained).filter(
            Attempt.exam_id == exam_id,
            Attempt.is_submitted.is_(True)
        ).all()

        exam = db.session.get(Exam, exam_id)
        if exam is None:
            return None

        summary = StatisticsService.summarize_scores(row.marks_obtained for row in rows)
        exam.total_attempts = summary['total_attempts']
        exam.average_score = summary['average_score']
        exam.highest_score = summary['highest_score']
        exam.lowest_score = summary['lowest_score']

        db.session.commit()
        return exam

    @staticmethod
    def refresh_assignment(assignment_id: int) -> Optional[Assignment]:
        rows = db.session.query(Submission.status, Submission.marks_obtained).filter(
            Submission.assignment_id == assignment_id
        ).all()

        assignment = db.session.get(Assignment, assignment_id)
        if assignment is None:
            return None

        graded = [
            row.marks_obtained for row in rows
            if row.status == SubmissionStatus.GRADED and row.marks_obtained is not None
        ]
        assignment.total_submissions = len(rows)
        assignment.graded_submissions = len(graded)
        assignment.average_score = round(sum(graded) / len(graded), 2) if graded else 0

        db.session.commit()
        return assignment

    @staticmethod
    def history_statistics(statuses: Iterable[AttendanceStatus]) -> Dict:
        """Per-participant summary over history entries."""
        statuses = list(statuses)
        counts = StatisticsService.tally(statuses)
        present = counts[AttendanceStatus.PRESENT]
        late = counts[AttendanceStatus.LATE]

        return {
            'total_sessions': len(statuses),
            'present_count': present,
            'late_count': late,
            'absent_count': counts[AttendanceStatus.ABSENT],
            'excused_count': counts[AttendanceStatus.EXCUSED],
            'attendance_percentage': StatisticsService.attendance_percentage(
                present, late, len(statuses)
            )
        }
