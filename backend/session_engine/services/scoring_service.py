"""Scoring for exam attempts and assignment final marks."""
from typing import Dict, Iterable, List, Optional, Tuple
from flask import current_app
from session_engine import db
from session_engine.models.attempt import Answer, Attempt
from session_engine.models.exam import Exam, Question
from session_engine.services.locking import (
    attempt_key, commit_or_conflict, get_lock_registry, retry_on_conflict
)
from session_engine.services.notification_service import (
    Notification, NotificationType, notify
)
from session_engine.services.statistics_service import StatisticsService
from session_engine.utils import clock
from session_engine.utils.errors import (
    InvalidGrade, InvalidTransition, NotEligible, ValidationError
)

class ScoringService:
    """Objective questions are scored on submission; subjective ones wait for a grader."""

    @staticmethod
    def needs_manual_grading(question: Question) -> bool:
        return not question.is_objective

    @staticmethod
    def score_answer(question: Question, selected_option: Optional[str]) -> Tuple[Optional[bool], Optional[float]]:
        """Return (is_correct, marks); both None for subjective questions."""
        if ScoringService.needs_manual_grading(question):
            return None, None

        expected = question.correct_option_text
        is_correct = (
            selected_option is not None
            and expected is not None
            and str(selected_option).strip() == str(expected).strip()
        )
        return is_correct, (question.marks if is_correct else 0.0)

    @staticmethod
    def compute_totals(answers: Iterable[Answer], exam: Exam) -> Dict:
        """Ungraded answers contribute zero."""
        obtained = sum(answer.marks_obtained or 0 for answer in answers)
        percentage = round(obtained / exam.total_marks * 100, 2) if exam.total_marks else 0

        return {
            'marks_obtained': obtained,
            'percentage': percentage,
            'passed': obtained >= exam.passing_marks
        }

    @staticmethod
    def apply_totals(attempt: Attempt, exam: Exam) -> None:
        totals = ScoringService.compute_totals(attempt.answers, exam)
        attempt.total_marks = exam.total_marks
        attempt.marks_obtained = totals['marks_obtained']
        attempt.percentage = totals['percentage']
        attempt.passed = totals['passed']

    @staticmethod
    def build_answers(exam: Exam, raw_answers: List[Dict]) -> List[Answer]:
        """Turn submitted payload entries into scored Answer rows."""
        questions = exam.question_map()
        seen = set()
        answers = []

        for entry in raw_answers or []:
            if not isinstance(entry, dict) or 'question_id' not in entry:
                raise ValidationError("Each answer needs a question_id")

            try:
                question_id = int(entry['question_id'])
            except (TypeError, ValueError):
                raise ValidationError("question_id must be an integer")

            question = questions.get(question_id)
            if question is None:
                raise ValidationError(f"Question {question_id} does not belong to this exam")
            if question_id in seen:
                raise ValidationError(f"Question {question_id} answered more than once")
            seen.add(question_id)

            selected = entry.get('selected_option')
            is_correct, marks = ScoringService.score_answer(question, selected)
            answers.append(Answer(
                question_id=question_id,
                selected_option=selected,
                text_answer=entry.get('text_answer') or '',
                is_correct=is_correct,
                marks_obtained=marks
            ))

        return answers

    @staticmethod
    def score_attempt(attempt: Attempt, exam: Exam, raw_answers: List[Dict]) -> Attempt:
        """Attach scored answers and totals; graded iff nothing awaits a grader."""
        answers = ScoringService.build_answers(exam, raw_answers)
        attempt.answers = answers

        questions = exam.question_map()
        attempt.is_graded = not any(
            ScoringService.needs_manual_grading(questions[answer.question_id])
            for answer in answers
        )
        ScoringService.apply_totals(attempt, exam)
        return attempt

    @staticmethod
    def grade_subjective(attempt_id: int, graded_answers: List[Dict], grader: int,
                         feedback: str = None) -> Attempt:
        """Set marks on answers by question id and recompute the attempt totals.

        Re-grading overwrites earlier marks.
        """
        if not isinstance(graded_answers, list) or not graded_answers:
            raise ValidationError("answers must be a non-empty list")

        registry = get_lock_registry()

        def apply():
            with registry.hold(attempt_key(attempt_id)):
                return ScoringService._grade(attempt_id, graded_answers, grader, feedback)

        attempt = retry_on_conflict(apply)

        StatisticsService.refresh_exam(attempt.exam_id)
        notify(Notification(
            recipient_id=attempt.participant_id,
            type=NotificationType.GRADE,
            title='Exam graded',
            message=f"Your attempt scored {attempt.marks_obtained:g}/{attempt.total_marks:g}",
            entity_type='attempt',
            entity_id=attempt.id
        ))
        return attempt

    @staticmethod
    def _grade(attempt_id, graded_answers, grader, feedback):
        attempt = Attempt.query.filter_by(id=attempt_id).populate_existing().first()
        if attempt is None:
            raise NotEligible("Attempt not found")
        if not attempt.is_submitted:
            raise InvalidTransition("Only submitted attempts can be graded")

        exam = db.session.get(Exam, attempt.exam_id)
        questions = exam.question_map()
        by_question = {answer.question_id: answer for answer in attempt.answers}

        for entry in graded_answers:
            try:
                question_id = int(entry['question_id'])
                marks = float(entry['marks'])
            except (KeyError, TypeError, ValueError):
                raise ValidationError("Each grade needs a question_id and numeric marks")

            question = questions.get(question_id)
            answer = by_question.get(question_id)
            if question is None or answer is None:
                raise ValidationError(f"No answer for question {question_id} in this attempt")

            if marks < 0 or marks > question.marks:
                raise InvalidGrade(
                    f"Marks for question {question_id} must be between 0 and {question.marks:g}"
                )
            answer.marks_obtained = marks

        ScoringService.apply_totals(attempt, exam)
        attempt.is_graded = True
        attempt.graded_by = grader
        attempt.graded_at = clock.utcnow()
        if feedback is not None:
            attempt.feedback = feedback

        commit_or_conflict(f"Attempt {attempt_id} changed while grading")
        current_app.logger.info(
            f"Attempt {attempt_id} graded by {grader}: {attempt.marks_obtained:g}/{attempt.total_marks:g}"
        )
        return attempt

    @staticmethod
    def final_marks(marks: float, total_marks: float, penalty_percent: float,
                    bonus: float, is_late: bool) -> Tuple[float, float]:
        """Return (final marks, penalty applied) for an assignment submission.

        The penalty only applies to late submissions; the result is clamped to
        [0, total_marks] and rounded to two decimals.
        """
        penalty = marks * (penalty_percent or 0) / 100 if is_late else 0.0
        final = max(0.0, min(marks - penalty + (bonus or 0), total_marks))
        return round(final, 2), round(penalty, 2)
