"""Assignment deadlines, resubmission policy and final marks."""
from datetime import timedelta
import pytest
from conftest import COURSE_ID, STUDENT_IDS, T0, TEACHER_ID
from session_engine.models.assignment import Assignment, Submission, SubmissionStatus
from session_engine.services.assignment_service import AssignmentService
from session_engine.services.scoring_service import ScoringService
from session_engine.utils.errors import (
    AlreadySubmitted, AttemptsExhausted, InvalidGrade, InvalidTransition, NotEligible,
    ValidationError, WindowClosed
)

def make_assignment(**overrides):
    data = {
        'title': 'Lab report',
        'total_marks': 100,
        'due_date': (T0 + timedelta(days=7)).isoformat()
    }
    data.update(overrides)
    return AssignmentService.create_assignment(COURSE_ID, TEACHER_ID, data)

@pytest.mark.parametrize('marks, penalty, bonus, late, expected', [
    (80, 10, 0, False, (80, 0)),
    (80, 10, 0, True, (72, 8)),
    (80, 10, 5, True, (77, 8)),
    (98, 10, 15, False, (100, 0)),
    (5, 100, 0, True, (0, 5)),
    (33.333, 10, 0, True, (30, 3.33)),
])
def test_final_marks(marks, penalty, bonus, late, expected):
    assert ScoringService.final_marks(marks, 100, penalty, bonus, late) == expected

def test_on_time_submission(enrolled, frozen_clock):
    assignment = make_assignment()

    submission = AssignmentService.submit(assignment.id, STUDENT_IDS[0], 'My report')

    assert submission.is_late is False
    assert submission.attempt_number == 1
    assert submission.status == SubmissionStatus.SUBMITTED
    assert AssignmentService.get_assignment(assignment.id).total_submissions == 1

def test_late_submission_rejected_by_default(enrolled, frozen_clock):
    assignment = make_assignment()
    frozen_clock.set(T0 + timedelta(days=7, seconds=1))

    with pytest.raises(WindowClosed):
        AssignmentService.submit(assignment.id, STUDENT_IDS[0], 'Too late')

def test_late_submission_window(enrolled, frozen_clock):
    assignment = make_assignment(
        late_submission_allowed=True,
        late_submission_deadline=(T0 + timedelta(days=9)).isoformat()
    )

    frozen_clock.set(T0 + timedelta(days=8))
    assert AssignmentService.submit(assignment.id, STUDENT_IDS[0]).is_late is True

    frozen_clock.set(T0 + timedelta(days=9, seconds=1))
    with pytest.raises(WindowClosed):
        AssignmentService.submit(assignment.id, STUDENT_IDS[1])

def test_resubmission_disallowed(enrolled, frozen_clock):
    assignment = make_assignment()
    AssignmentService.submit(assignment.id, STUDENT_IDS[0])

    with pytest.raises(AlreadySubmitted):
        AssignmentService.submit(assignment.id, STUDENT_IDS[0])

def test_resubmission_limit(enrolled, frozen_clock):
    assignment = make_assignment(allow_resubmission=True, max_resubmissions=1)
    AssignmentService.submit(assignment.id, STUDENT_IDS[0], 'draft')
    second = AssignmentService.submit(assignment.id, STUDENT_IDS[0], 'final')

    assert second.attempt_number == 2
    with pytest.raises(AttemptsExhausted):
        AssignmentService.submit(assignment.id, STUDENT_IDS[0], 'really final')

def test_resubmission_checked_before_deadline(enrolled, frozen_clock):
    assignment = make_assignment()
    AssignmentService.submit(assignment.id, STUDENT_IDS[0])
    frozen_clock.set(T0 + timedelta(days=8))

    with pytest.raises(AlreadySubmitted):
        AssignmentService.submit(assignment.id, STUDENT_IDS[0])

def test_submission_requires_enrollment(enrolled, frozen_clock):
    assignment = make_assignment()

    with pytest.raises(NotEligible):
        AssignmentService.submit(assignment.id, 999)

def test_grading_late_submission(enrolled, frozen_clock, dispatcher):
    assignment = make_assignment(late_submission_allowed=True, late_penalty_percent=20)
    frozen_clock.set(T0 + timedelta(days=8))
    submission = AssignmentService.submit(assignment.id, STUDENT_IDS[0])

    submission = AssignmentService.grade(submission.id, 90, TEACHER_ID, 'Good', bonus_points=4)

    assert submission.status == SubmissionStatus.GRADED
    assert submission.late_penalty_applied == 18
    assert submission.final_marks == 76
    assert submission.graded_total_marks == 100
    assert len(submission.reviews) == 1
    assert dispatcher.sent[-1].type.value == 'grade'

    assignment = AssignmentService.get_assignment(assignment.id)
    assert assignment.graded_submissions == 1
    assert assignment.average_score == 90

def test_final_mark_is_a_frozen_snapshot(app, enrolled, frozen_clock):
    assignment = make_assignment()
    submission = AssignmentService.submit(assignment.id, STUDENT_IDS[0])
    AssignmentService.grade(submission.id, 95, TEACHER_ID, bonus_points=10)

    assignment.total_marks = 50
    assignment.save()

    submission = AssignmentService.get_submission(submission.id)
    assert submission.final_marks == 100
    assert submission.graded_total_marks == 100

@pytest.mark.parametrize('marks', [-1, 101])
def test_grade_outside_total(enrolled, frozen_clock, marks):
    assignment = make_assignment()
    submission = AssignmentService.submit(assignment.id, STUDENT_IDS[0])

    with pytest.raises(InvalidGrade):
        AssignmentService.grade(submission.id, marks, TEACHER_ID)

def test_default_passing_marks(enrolled, frozen_clock):
    assert make_assignment(total_marks=25).passing_marks == 10

def test_invalid_assignment(enrolled, frozen_clock):
    with pytest.raises(ValidationError):
        make_assignment(late_penalty_percent=150)

def test_update_keeps_unchanged_settings(enrolled, frozen_clock):
    assignment = make_assignment(late_submission_allowed=True, late_penalty_percent=25)

    updated = AssignmentService.update_assignment(assignment.id, {'title': 'Final report', 'owner_id': 99})

    assert updated.title == 'Final report'
    assert updated.owner_id == TEACHER_ID
    assert updated.late_penalty_percent == 25
    assert updated.late_submission_allowed is True

def test_update_validates_merged_settings(enrolled, frozen_clock):
    assignment = make_assignment()

    with pytest.raises(ValidationError):
        AssignmentService.update_assignment(assignment.id, {
            'late_submission_deadline': (T0 + timedelta(days=1)).isoformat()
        })

def test_delete_removes_submissions(enrolled, frozen_clock):
    assignment = make_assignment()
    for participant_id in STUDENT_IDS[:2]:
        AssignmentService.submit(assignment.id, participant_id)

    AssignmentService.delete_assignment(assignment.id)

    assert Assignment.query.filter_by(id=assignment.id).count() == 0
    assert Submission.query.filter_by(assignment_id=assignment.id).count() == 0

def test_graded_assignment_is_frozen(enrolled, frozen_clock):
    assignment = make_assignment()
    submission = AssignmentService.submit(assignment.id, STUDENT_IDS[0])
    AssignmentService.grade(submission.id, 70, TEACHER_ID)

    with pytest.raises(InvalidTransition):
        AssignmentService.update_assignment(assignment.id, {'total_marks': 50})
    with pytest.raises(InvalidTransition):
        AssignmentService.delete_assignment(assignment.id)
