"""REST endpoints."""
import io
import json
from datetime import timedelta
import pytest
from session_engine import create_app, db
from session_engine.services.enrollment_service import EnrollmentDirectory
from conftest import COURSE_ID, STUDENT_IDS, T0, TEACHER_ID, exam_payload, make_headers, open_session

def session_payload(**overrides):
    payload = {
        'course_id': COURSE_ID,
        'title': 'Week 2 lab',
        'session_type': 'lab',
        'start_time': T0.isoformat(),
        'end_time': (T0 + timedelta(hours=1)).isoformat()
    }
    payload.update(overrides)
    return payload

def test_health_checks(client):
    """Test service health endpoints."""
    assert client.get('/health').status_code == 200
    for prefix in ('attendance', 'exams', 'assignments'):
        response = client.get(f'/api/{prefix}/health')
        assert response.status_code == 200
        assert json.loads(response.data)['error'] == False

def test_token_required(client):
    response = client.post('/api/attendance/session', json=session_payload())
    assert response.status_code == 401
    assert json.loads(response.data)['message'] == 'Authorization token required'

def test_students_cannot_create_sessions(client, student_headers):
    response = client.post('/api/attendance/session', json=session_payload(), headers=student_headers)
    assert response.status_code == 403

def test_create_session(client, enrolled, frozen_clock, teacher_headers):
    response = client.post('/api/attendance/session', json=session_payload(
        allowed_location={'latitude': 30.0, 'longitude': 31.0, 'radius': 100}
    ), headers=teacher_headers)

    assert response.status_code == 201
    data = json.loads(response.data)['data']
    assert data['state'] == 'open'
    assert data['session_type'] == 'lab'
    assert data['late_threshold_minutes'] == 15
    assert data['allowed_location']['radius'] == 100
    assert data['statistics']['total_expected'] == len(STUDENT_IDS)

def test_create_session_validation(client, teacher_headers):
    response = client.post('/api/attendance/session', json={'course_id': COURSE_ID}, headers=teacher_headers)
    assert response.status_code == 400
    assert json.loads(response.data)['kind'] == 'ValidationError'

    response = client.post('/api/attendance/session', json=session_payload(
        end_time=(T0 - timedelta(hours=1)).isoformat()
    ), headers=teacher_headers)
    assert response.status_code == 400

def test_mark_attendance(client, enrolled, frozen_clock, student_headers):
    session = open_session()

    response = client.post(
        f'/api/attendance/mark/{session.id}',
        json={},
        headers={**student_headers, 'User-Agent': 'Android 14'},
        environ_base={'REMOTE_ADDR': '10.1.1.1'}
    )

    assert response.status_code == 201
    data = json.loads(response.data)['data']
    assert data['status'] == 'present'
    assert data['record']['device_info']['ip'] == '10.1.1.1'
    assert data['record']['device_info']['device_type'] == 'mobile'

def test_remark_returns_ok(client, enrolled, frozen_clock, student_headers):
    session = open_session()
    client.post(f'/api/attendance/mark/{session.id}', json={}, headers=student_headers)

    response = client.post(f'/api/attendance/mark/{session.id}', json={}, headers=student_headers)
    assert response.status_code == 200
    assert json.loads(response.data)['data']['created'] is False

def test_mark_error_envelope(client, enrolled, frozen_clock, student_headers):
    session = open_session()
    frozen_clock.set(T0 + timedelta(hours=2))

    response = client.post(f'/api/attendance/mark/{session.id}', json={}, headers=student_headers)

    assert response.status_code == 400
    assert json.loads(response.data) == {
        'error': True,
        'kind': 'WindowClosed',
        'message': 'Attendance window is closed',
        'status_code': 400
    }

def test_student_cannot_mark_others(client, enrolled, frozen_clock, student_headers):
    session = open_session()

    response = client.post(
        f'/api/attendance/mark/{session.id}',
        json={'participant_id': STUDENT_IDS[1], 'status': 'present'},
        headers=student_headers
    )
    assert response.status_code == 403

def test_teacher_proxy_mark(client, enrolled, frozen_clock, teacher_headers):
    session = open_session()

    response = client.post(
        f'/api/attendance/mark/{session.id}',
        json={'participant_id': STUDENT_IDS[1], 'status': 'excused'},
        headers=teacher_headers
    )

    assert response.status_code == 201
    assert json.loads(response.data)['data']['record']['submitted_by'] == TEACHER_ID

def test_other_teacher_cannot_manage_session(client, enrolled, frozen_clock):
    session = open_session()

    response = client.post(
        f'/api/attendance/session/{session.id}/close',
        headers=make_headers(TEACHER_ID + 1, 'teacher')
    )
    assert response.status_code == 403
    assert json.loads(response.data)['kind'] == 'NotEligible'

def test_bulk_mark_and_close(client, enrolled, frozen_clock, teacher_headers):
    session = open_session()

    response = client.post(f'/api/attendance/session/{session.id}/bulk-mark', json={'records': [
        {'participant_id': STUDENT_IDS[0], 'status': 'present'},
        {'participant_id': STUDENT_IDS[1], 'status': 'late'},
        {'participant_id': 999, 'status': 'present'}
    ]}, headers=teacher_headers)

    assert response.status_code == 200
    data = json.loads(response.data)['data']
    assert len(data['succeeded']) == 2
    assert data['failed'][0]['kind'] == 'NotEligible'

    response = client.post(f'/api/attendance/session/{session.id}/close', headers=teacher_headers)
    data = json.loads(response.data)['data']
    assert data['state'] == 'closed'
    assert data['statistics']['attendance_percentage'] == 25

def test_bulk_mark_upload_csv(client, enrolled, frozen_clock, teacher_headers):
    session = open_session()
    csv = 'participant_id,status,remarks\n11,present,\n12,absent,sick\n'

    response = client.post(
        f'/api/attendance/session/{session.id}/bulk-mark/upload',
        data={'file': (io.BytesIO(csv.encode('utf-8')), 'marks.csv')},
        headers=teacher_headers,
        content_type='multipart/form-data'
    )

    assert response.status_code == 200
    assert len(json.loads(response.data)['data']['succeeded']) == 2

def test_bulk_mark_upload_rejects_other_formats(client, enrolled, frozen_clock, teacher_headers):
    session = open_session()

    response = client.post(
        f'/api/attendance/session/{session.id}/bulk-mark/upload',
        data={'file': (io.BytesIO(b'hello'), 'marks.txt')},
        headers=teacher_headers,
        content_type='multipart/form-data'
    )
    assert response.status_code == 400

def test_anomalies_endpoint(client, enrolled, frozen_clock, teacher_headers):
    session = open_session()
    for participant_id in STUDENT_IDS[:2]:
        client.post(
            f'/api/attendance/mark/{session.id}', json={},
            headers=make_headers(participant_id, 'student'),
            environ_base={'REMOTE_ADDR': '10.9.9.9'}
        )

    response = client.get(f'/api/attendance/session/{session.id}/anomalies', headers=teacher_headers)

    body = json.loads(response.data)
    assert body['meta']['total'] == 1
    assert body['data'][0]['participant_ids'] == STUDENT_IDS[:2]

def test_forwarded_header_is_ignored_without_trusted_proxy(client, enrolled, frozen_clock, student_headers):
    session = open_session(ip_whitelist=['192.168.50.5'])

    response = client.post(
        f'/api/attendance/mark/{session.id}', json={},
        headers={**student_headers, 'X-Forwarded-For': '192.168.50.5'},
        environ_base={'REMOTE_ADDR': '203.0.113.9'}
    )

    assert response.status_code == 400
    assert json.loads(response.data)['kind'] == 'ConstraintViolation'

@pytest.fixture
def proxied_app(dispatcher):
    """App deployed behind one trusted reverse proxy."""
    app = create_app('testing', notification_dispatcher=dispatcher,
                     test_config={'PROXY_FIX_X_FOR': 1})
    with app.app_context():
        db.create_all()
        EnrollmentDirectory.enroll(COURSE_ID, STUDENT_IDS)
        yield app
        db.session.remove()
        db.drop_all()

def test_forwarded_header_from_trusted_proxy(proxied_app, frozen_clock):
    session = open_session(ip_whitelist=['192.168.50.5'])
    client = proxied_app.test_client()

    response = client.post(
        f'/api/attendance/mark/{session.id}', json={},
        headers={**make_headers(STUDENT_IDS[0], 'student'), 'X-Forwarded-For': '192.168.50.5'},
        environ_base={'REMOTE_ADDR': '10.0.0.1'}
    )

    assert response.status_code == 201
    assert json.loads(response.data)['data']['record']['device_info']['ip'] == '192.168.50.5'

def test_update_session(client, enrolled, frozen_clock, teacher_headers):
    session = open_session()

    response = client.put(
        f'/api/attendance/session/{session.id}',
        json={'late_threshold_minutes': 5, 'ip_whitelist': ['10.0.0.1']},
        headers=teacher_headers
    )

    data = json.loads(response.data)['data']
    assert data['late_threshold_minutes'] == 5
    assert data['ip_whitelist'] == ['10.0.0.1']

def test_participant_history_permissions(client, enrolled, frozen_clock, student_headers, teacher_headers):
    response = client.get(f'/api/attendance/participant/{STUDENT_IDS[1]}', headers=student_headers)
    assert response.status_code == 403

    response = client.get(f'/api/attendance/participant/{STUDENT_IDS[1]}', headers=teacher_headers)
    assert response.status_code == 200
    assert json.loads(response.data)['data']['statistics']['total_sessions'] == 0

def test_course_listing_is_paginated(client, enrolled, frozen_clock, student_headers):
    for day in range(3):
        open_session(start=T0 + timedelta(days=day))

    response = client.get(f'/api/attendance/course/{COURSE_ID}?per_page=2', headers=student_headers)

    body = json.loads(response.data)
    assert len(body['data']) == 2
    assert body['meta']['total'] == 3
    assert body['meta']['has_next'] is True

def test_exam_flow(client, enrolled, frozen_clock, teacher_headers, student_headers):
    response = client.post('/api/exams/', json={**exam_payload(), 'course_id': COURSE_ID},
                           headers=teacher_headers)
    assert response.status_code == 201
    exam = json.loads(response.data)['data']
    choice_id, essay_id = [q['id'] for q in exam['questions']]

    # Not begun yet
    response = client.post(f"/api/exams/{exam['id']}/start", headers=student_headers)
    assert response.status_code == 400
    assert json.loads(response.data)['kind'] == 'WindowClosed'

    client.post(f"/api/exams/{exam['id']}/begin", headers=teacher_headers)

    response = client.get(f"/api/exams/{exam['id']}", headers=student_headers)
    assert 'correct_answer' not in json.loads(response.data)['data']['questions'][0]

    response = client.post(f"/api/exams/{exam['id']}/start", headers=student_headers)
    assert response.status_code == 201
    attempt_id = json.loads(response.data)['data']['attempt']['id']

    response = client.post(f'/api/exams/attempts/{attempt_id}/violation',
                           json={'type': 'tab-switch'}, headers=student_headers)
    assert response.status_code == 201

    response = client.post(f'/api/exams/attempts/{attempt_id}/submit', json={'answers': [
        {'question_id': choice_id, 'selected_option': 'Paris'},
        {'question_id': essay_id, 'text_answer': 'Version counters'}
    ]}, headers=student_headers)
    assert response.status_code == 200
    result = json.loads(response.data)['data']
    assert result['is_graded'] is False
    assert 'marks_obtained' not in result

    response = client.post(f'/api/exams/attempts/{attempt_id}/submit', json={'answers': []},
                           headers=student_headers)
    assert response.status_code == 409

    response = client.get(f"/api/exams/{exam['id']}/submissions?pending=true", headers=teacher_headers)
    assert json.loads(response.data)['meta']['total'] == 1

    response = client.post(f'/api/exams/attempts/{attempt_id}/grade', json={
        'answers': [{'question_id': essay_id, 'marks': 3}]
    }, headers=teacher_headers)
    assert response.status_code == 200
    assert json.loads(response.data)['data']['percentage'] == 86.67

    client.post(f"/api/exams/{exam['id']}/complete", headers=teacher_headers)

    response = client.get(f"/api/exams/{exam['id']}/my-results", headers=student_headers)
    body = json.loads(response.data)
    assert body['meta']['results_available'] is True
    assert body['data'][0]['marks_obtained'] == 13

def test_grade_invalid_marks(client, enrolled, frozen_clock, teacher_headers, student_headers):
    response = client.post('/api/exams/', json={**exam_payload(), 'course_id': COURSE_ID},
                           headers=teacher_headers)
    exam = json.loads(response.data)['data']
    essay_id = exam['questions'][1]['id']
    client.post(f"/api/exams/{exam['id']}/begin", headers=teacher_headers)
    attempt_id = json.loads(client.post(
        f"/api/exams/{exam['id']}/start", headers=student_headers
    ).data)['data']['attempt']['id']
    client.post(f'/api/exams/attempts/{attempt_id}/submit', json={'answers': []}, headers=student_headers)

    response = client.post(f'/api/exams/attempts/{attempt_id}/grade', json={
        'answers': [{'question_id': essay_id, 'marks': 9}]
    }, headers=teacher_headers)

    assert response.status_code == 400
    assert json.loads(response.data)['kind'] in ('InvalidGrade', 'ValidationError')

def test_assignment_flow(client, enrolled, frozen_clock, teacher_headers, student_headers):
    response = client.post('/api/assignments/', json={
        'course_id': COURSE_ID,
        'title': 'Essay',
        'total_marks': 20,
        'due_date': (T0 + timedelta(days=1)).isoformat(),
        'late_submission_allowed': True
    }, headers=teacher_headers)
    assert response.status_code == 201
    assignment_id = json.loads(response.data)['data']['id']

    frozen_clock.set(T0 + timedelta(days=2))
    response = client.post(f'/api/assignments/{assignment_id}/submit',
                           json={'text_content': 'Done'}, headers=student_headers)
    assert response.status_code == 201
    submission = json.loads(response.data)['data']
    assert submission['is_late'] is True

    response = client.post(f"/api/assignments/submissions/{submission['id']}/grade",
                           json={'marks': 20, 'bonus_points': 1}, headers=teacher_headers)
    graded = json.loads(response.data)['data']
    assert graded['final_marks'] == 19
    assert graded['late_penalty_applied'] == 2

    response = client.get(f'/api/assignments/{assignment_id}/submissions', headers=student_headers)
    assert json.loads(response.data)['meta']['total'] == 1

    response = client.post(f'/api/assignments/{assignment_id}/submit',
                           json={'text_content': 'Again'}, headers=student_headers)
    assert response.status_code == 409
    assert json.loads(response.data)['kind'] == 'AlreadySubmitted'

def test_course_exam_listing(client, enrolled, frozen_clock, teacher_headers, student_headers):
    for day in range(3):
        client.post('/api/exams/', json={
            **exam_payload(start=T0 + timedelta(days=day)), 'course_id': COURSE_ID
        }, headers=teacher_headers)

    response = client.get(f'/api/exams/course/{COURSE_ID}?per_page=2', headers=student_headers)
    body = json.loads(response.data)
    assert response.status_code == 200
    assert len(body['data']) == 2
    assert body['meta']['total'] == 3
    assert body['data'][0]['scheduled_at'] > body['data'][1]['scheduled_at']
    assert 'correct_answer' not in body['data'][0]['questions'][0]

    response = client.get(f'/api/exams/course/{COURSE_ID}', headers=teacher_headers)
    assert 'correct_answer' in json.loads(response.data)['data'][0]['questions'][0]

def create_assignment_via_api(client, headers, **overrides):
    payload = {
        'course_id': COURSE_ID,
        'title': 'Essay',
        'total_marks': 20,
        'due_date': (T0 + timedelta(days=1)).isoformat()
    }
    payload.update(overrides)
    response = client.post('/api/assignments/', json=payload, headers=headers)
    return json.loads(response.data)['data']['id']

def test_course_assignment_listing(client, enrolled, frozen_clock, teacher_headers, student_headers):
    for day in (3, 1, 2):
        create_assignment_via_api(client, teacher_headers, title=f'Day {day}',
                                  due_date=(T0 + timedelta(days=day)).isoformat())

    response = client.get(f'/api/assignments/course/{COURSE_ID}?per_page=2', headers=student_headers)

    body = json.loads(response.data)
    assert [a['title'] for a in body['data']] == ['Day 1', 'Day 2']
    assert body['meta']['total'] == 3
    assert body['meta']['has_next'] is True

def test_update_and_delete_assignment(client, enrolled, frozen_clock, teacher_headers, student_headers):
    assignment_id = create_assignment_via_api(client, teacher_headers)

    response = client.put(f'/api/assignments/{assignment_id}',
                          json={'title': 'Long essay', 'total_marks': 30}, headers=teacher_headers)
    assert response.status_code == 200
    data = json.loads(response.data)['data']
    assert data['title'] == 'Long essay'
    assert data['total_marks'] == 30

    response = client.put(f'/api/assignments/{assignment_id}', json={'title': 'Mine'},
                          headers=make_headers(TEACHER_ID + 1, 'teacher'))
    assert response.status_code == 403

    response = client.put(f'/api/assignments/{assignment_id}', json={'passing_marks': 50},
                          headers=teacher_headers)
    assert response.status_code == 400

    client.post(f'/api/assignments/{assignment_id}/submit', json={'text_content': 'Draft'},
                headers=student_headers)

    response = client.delete(f'/api/assignments/{assignment_id}', headers=teacher_headers)
    assert response.status_code == 200

    response = client.get(f'/api/assignments/{assignment_id}', headers=teacher_headers)
    assert response.status_code == 404

def test_graded_assignment_cannot_change(client, enrolled, frozen_clock, teacher_headers, student_headers):
    assignment_id = create_assignment_via_api(client, teacher_headers)
    submission = json.loads(client.post(
        f'/api/assignments/{assignment_id}/submit', json={'text_content': 'Done'}, headers=student_headers
    ).data)['data']
    client.post(f"/api/assignments/submissions/{submission['id']}/grade",
                json={'marks': 15}, headers=teacher_headers)

    response = client.put(f'/api/assignments/{assignment_id}', json={'total_marks': 10},
                          headers=teacher_headers)
    assert response.status_code == 409
    assert json.loads(response.data)['kind'] == 'InvalidTransition'

    response = client.delete(f'/api/assignments/{assignment_id}', headers=teacher_headers)
    assert response.status_code == 409

def test_my_submission(client, enrolled, frozen_clock, teacher_headers, student_headers):
    assignment_id = create_assignment_via_api(client, teacher_headers,
                                              allow_resubmission=True, max_resubmissions=1)
    for text in ('draft', 'final'):
        client.post(f'/api/assignments/{assignment_id}/submit', json={'text_content': text},
                    headers=student_headers)
    client.post(f'/api/assignments/{assignment_id}/submit', json={'text_content': 'other'},
                headers=make_headers(STUDENT_IDS[1], 'student'))

    response = client.get(f'/api/assignments/{assignment_id}/my-submission', headers=student_headers)

    body = json.loads(response.data)
    assert body['meta']['total'] == 2
    assert [s['text_content'] for s in body['data']] == ['final', 'draft']

    response = client.get(f'/api/assignments/{assignment_id}/my-submission', headers=teacher_headers)
    assert response.status_code == 403
