import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from conftest import FakeExecutor
from datetime_utils import ManualClock
from main import create_app
from models import ExecutionOutput, UserRole
from services import build_in_memory_services


def _auth(user_id, role):
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


FACULTY = _auth("faculty-1", UserRole.FACULTY)
ADMIN = _auth("admin-1", UserRole.ADMIN)
STUDENT = _auth("student-1", UserRole.STUDENT)
OTHER_STUDENT = _auth("student-2", UserRole.STUDENT)

QUIZ = {
    "title": "Unit 1 Quiz",
    "subject": "Data Structures",
    "duration_minutes": 1,
    "questions": [
        {"question_number": 1, "type": "MCQ", "text": "Pick A", "options": ["A", "B"], "correct_answer": "A"},
        {"question_number": 2, "type": "MCQ", "text": "Pick B", "options": ["A", "B"], "correct_answer": "B"},
    ],
}


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def executor():
    return FakeExecutor({"1 2": ExecutionOutput(stdout="3\n"), "4 5": ExecutionOutput(stdout="9\n")})


@pytest.fixture
def client(clock, executor):
    services = build_in_memory_services(clock=clock, executor=executor)
    with TestClient(create_app(services=services, enable_sweeper=False)) as c:
        yield c


@pytest.fixture
def created(client):
    response = client.post("/api/faculty/assessments", json=QUIZ, headers=FACULTY)
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "in-memory"}


def test_requires_authentication(client):
    assert client.get("/api/tests/submissions").status_code == 401
    assert client.get("/api/tests/submissions", headers={"Authorization": "Bearer nonsense"}).status_code == 401


def test_students_cannot_author(client):
    response = client.post("/api/faculty/assessments", json=QUIZ, headers=STUDENT)
    assert response.status_code == 403


def test_full_attempt(client, created, clock):
    assessment_id = created["assessment"]["id"]
    q1, q2 = (q["id"] for q in created["questions"])

    entered = client.post(f"/api/tests/assessments/{assessment_id}/enter", headers=STUDENT).json()
    assert entered["decision"] == "allow"
    assert entered["remaining_seconds"] == 60
    assert all("correct_answer" not in q for q in entered["questions"])
    session_id = entered["session"]["id"]

    saved = client.put(f"/api/tests/sessions/{session_id}/draft", json={"answers": {q1: "A"}}, headers=STUDENT)
    assert saved.status_code == 200
    assert saved.json()["saved_answers"] == 1

    clock.advance(20)
    timer = client.get(f"/api/tests/sessions/{session_id}/timer", headers=STUDENT).json()
    assert timer["remaining_seconds"] == 40
    assert timer["is_expired"] is False

    # a reload hands back the saved draft and the same deadline
    reloaded = client.post(f"/api/tests/assessments/{assessment_id}/enter", headers=STUDENT).json()
    assert reloaded["session"]["id"] == session_id
    assert reloaded["answers"] == {q1: "A"}
    assert reloaded["remaining_seconds"] == 40

    submitted = client.post(f"/api/tests/sessions/{session_id}/submit", json={}, headers=STUDENT)
    assert submitted.status_code == 200
    body = submitted.json()
    assert body["already_submitted"] is False
    assert body["submission"]["total_score"] == 50
    submission_id = body["submission"]["id"]

    again = client.post(f"/api/tests/sessions/{session_id}/submit",
                        json={"answers": {q1: "A", q2: "B"}}, headers=STUDENT).json()
    assert again["already_submitted"] is True
    assert again["submission"]["id"] == submission_id
    assert again["submission"]["total_score"] == 50

    redirected = client.post(f"/api/tests/assessments/{assessment_id}/enter", headers=STUDENT).json()
    assert redirected["decision"] == "redirect_to_results"
    assert redirected["submission_id"] == submission_id
    assert redirected["questions"] == []

    late = client.put(f"/api/tests/sessions/{session_id}/draft", json={"answers": {q2: "B"}}, headers=STUDENT)
    assert late.status_code == 409

    results = client.get(f"/api/tests/submissions/{submission_id}", headers=STUDENT)
    assert results.status_code == 200
    assert results.json()["answers"] == {q1: "A"}
    assert client.get(f"/api/tests/submissions/{submission_id}", headers=OTHER_STUDENT).status_code == 403
    assert client.get(f"/api/tests/submissions/{submission_id}", headers=FACULTY).status_code == 200

    mine = client.get("/api/tests/submissions", headers=STUDENT).json()
    assert [s["id"] for s in mine] == [submission_id]


def test_other_students_cannot_touch_a_session(client, created):
    assessment_id = created["assessment"]["id"]
    session_id = client.post(f"/api/tests/assessments/{assessment_id}/enter", headers=STUDENT).json()["session"]["id"]

    assert client.get(f"/api/tests/sessions/{session_id}/timer", headers=OTHER_STUDENT).status_code == 403
    assert client.put(f"/api/tests/sessions/{session_id}/draft", json={"answers": {}},
                      headers=OTHER_STUDENT).status_code == 403
    assert client.post(f"/api/tests/sessions/{session_id}/submit", json={},
                       headers=OTHER_STUDENT).status_code == 403


def test_expired_session_is_auto_submitted_on_entry(client, created, clock):
    assessment_id = created["assessment"]["id"]
    q1, q2 = (q["id"] for q in created["questions"])
    session_id = client.post(f"/api/tests/assessments/{assessment_id}/enter", headers=STUDENT).json()["session"]["id"]
    client.put(f"/api/tests/sessions/{session_id}/draft", json={"answers": {q1: "A", q2: "B"}}, headers=STUDENT)

    clock.advance(90)
    assert client.put(f"/api/tests/sessions/{session_id}/draft", json={"answers": {}},
                      headers=STUDENT).status_code == 409

    entered = client.post(f"/api/tests/assessments/{assessment_id}/enter", headers=STUDENT).json()
    assert entered["decision"] == "expired"
    assert entered["session"]["status"] == "locked"
    submission = client.get(f"/api/tests/submissions/{entered['submission_id']}", headers=STUDENT).json()
    assert submission["is_auto_submitted"] is True
    assert submission["total_score"] == 100


def test_unknown_assessment(client):
    response = client.post("/api/tests/assessments/missing/enter", headers=STUDENT)
    assert response.status_code == 404


def test_assessment_analytics(client, created):
    assessment_id = created["assessment"]["id"]
    session_id = client.post(f"/api/tests/assessments/{assessment_id}/enter", headers=STUDENT).json()["session"]["id"]
    client.post(f"/api/tests/sessions/{session_id}/submit",
                json={"answers": {created["questions"][0]["id"]: "A"}}, headers=STUDENT)

    overview = client.get("/api/faculty/analytics/assessments", headers=FACULTY).json()
    assert overview["total_assessments"] == 1
    assert overview["total_submissions"] == 1
    assert overview["average_score"] == 50.0

    assert client.get("/api/faculty/analytics/assessments", headers=STUDENT).status_code == 403
    keys = client.get(f"/api/faculty/assessments/{assessment_id}/questions", headers=FACULTY).json()
    assert [q["correct_answer"] for q in keys] == ["A", "B"]


def test_coding_lab_flow(client, executor):
    question = client.post("/api/faculty/coding/questions", json={
        "title": "Add two numbers",
        "description": "Print a + b",
        "difficulty": "easy",
        "sample_input": "1 2",
        "sample_output": "3",
        "is_published": True,
    }, headers=FACULTY).json()
    hidden = client.post(f"/api/faculty/coding/questions/{question['id']}/hidden-tests",
                         json={"input": "4 5", "expected_output": "9"}, headers=FACULTY).json()
    assert hidden["test_number"] == 1

    listed = client.get("/api/coding/questions", headers=STUDENT).json()
    assert [q["id"] for q in listed] == [question["id"]]
    assert client.get(f"/api/faculty/coding/questions/{question['id']}/hidden-tests",
                      headers=STUDENT).status_code == 403

    run = client.post("/api/coding/run", json={
        "code": "print(sum(map(int, input().split())))", "language": "python",
        "stdin": "1 2", "expected_output": "3",
    }, headers=STUDENT).json()
    assert run["status"] == "success"

    submission = client.post(f"/api/coding/questions/{question['id']}/submit", json={
        "code": "print(sum(map(int, input().split())))", "language": "python",
    }, headers=STUDENT).json()
    assert submission["status"] == "accepted"
    assert submission["tests_passed"] == 2
    assert submission["total_tests"] == 2
    assert executor.calls[-2:] == ["1 2", "4 5"]

    history = client.get(f"/api/coding/questions/{question['id']}/submissions", headers=STUDENT).json()
    assert [s["id"] for s in history] == [submission["id"]]
    assert client.get(f"/api/coding/submissions/{submission['id']}", headers=OTHER_STUDENT).status_code == 403

    analytics = client.get("/api/faculty/analytics/coding", headers=ADMIN).json()
    assert analytics["total_submissions"] == 1
    assert analytics["acceptance_rate"] == 100.0
    assert client.get("/api/faculty/analytics/coding", headers=FACULTY).status_code == 403


def test_unpublished_problems_are_hidden_from_students(client):
    question = client.post("/api/faculty/coding/questions", json={
        "title": "Draft problem", "description": "WIP",
    }, headers=FACULTY).json()

    assert client.get("/api/coding/questions", headers=STUDENT).json() == []
    assert client.get(f"/api/coding/questions/{question['id']}", headers=STUDENT).status_code == 404
    assert client.get(f"/api/coding/questions/{question['id']}", headers=FACULTY).status_code == 200


def test_students_see_assessments_and_their_results(client, created):
    assessment_id = created["assessment"]["id"]
    q1 = created["questions"][0]["id"]

    listed = client.get("/api/tests/assessments", headers=STUDENT).json()
    assert [a["id"] for a in listed] == [assessment_id]
    assert listed[0]["submission_id"] is None
    assert "faculty_id" not in listed[0]

    session_id = client.post(f"/api/tests/assessments/{assessment_id}/enter", headers=STUDENT).json()["session"]["id"]
    submission = client.post(f"/api/tests/sessions/{session_id}/submit",
                             json={"answers": {q1: "A"}}, headers=STUDENT).json()["submission"]

    listed = client.get("/api/tests/assessments", headers=STUDENT).json()
    assert listed[0]["submission_id"] == submission["id"]
    assert listed[0]["total_score"] == 50
    assert client.get("/api/tests/assessments", headers=OTHER_STUDENT).json()[0]["submission_id"] is None
    assert client.get("/api/tests/assessments", headers=FACULTY).status_code == 403


def test_faculty_deletes_only_their_own_assessments(client, created):
    assessment_id = created["assessment"]["id"]
    other_faculty = _auth("faculty-2", UserRole.FACULTY)

    assert client.delete(f"/api/faculty/assessments/{assessment_id}", headers=other_faculty).status_code == 403
    assert client.delete(f"/api/faculty/assessments/{assessment_id}", headers=STUDENT).status_code == 403

    response = client.delete(f"/api/faculty/assessments/{assessment_id}", headers=FACULTY)
    assert response.status_code == 200
    assert client.get("/api/tests/assessments", headers=STUDENT).json() == []
    assert client.get(f"/api/faculty/assessments/{assessment_id}/questions", headers=FACULTY).status_code == 404
    assert client.post(f"/api/tests/assessments/{assessment_id}/enter", headers=STUDENT).status_code == 404
    assert client.delete(f"/api/faculty/assessments/{assessment_id}", headers=FACULTY).status_code == 404


def test_admin_manages_users(client):
    created = client.post("/api/admin/users", json={
        "email": " Ada@Example.com ", "full_name": "Ada", "role": "faculty", "user_id": "faculty-9",
    }, headers=ADMIN)
    assert created.status_code == 200
    assert created.json()["email"] == "ada@example.com"
    assert client.post("/api/admin/users", json={"email": "ada@example.com", "full_name": "Ada again"},
                       headers=ADMIN).status_code == 409

    client.post("/api/admin/users", json={"email": "sam@example.com", "full_name": "Sam", "user_id": "student-1"},
                headers=ADMIN)
    by_role = client.get("/api/admin/users", params={"role": "faculty"}, headers=ADMIN).json()
    assert [u["id"] for u in by_role] == ["faculty-9"]
    by_name = client.get("/api/admin/users", params={"search": "SAM"}, headers=ADMIN).json()
    assert [u["id"] for u in by_name] == ["student-1"]

    blocked = client.patch("/api/admin/users/student-1/block", json={"blocked": True}, headers=ADMIN)
    assert blocked.json()["is_blocked"] is True
    assert client.get("/api/tests/submissions", headers=STUDENT).status_code == 403
    listed_blocked = client.get("/api/admin/users", params={"status": "blocked"}, headers=ADMIN).json()
    assert [u["id"] for u in listed_blocked] == ["student-1"]
    client.patch("/api/admin/users/student-1/block", json={"blocked": False}, headers=ADMIN)
    assert client.get("/api/tests/submissions", headers=STUDENT).status_code == 200

    client.patch("/api/admin/users/student-1/active", json={"active": False}, headers=ADMIN)
    assert client.get("/api/tests/submissions", headers=STUDENT).status_code == 403
    client.patch("/api/admin/users/student-1/active", json={"active": True}, headers=ADMIN)

    # the directory role wins over the role claimed in the token
    client.patch("/api/admin/users/student-1/role", json={"role": "faculty"}, headers=ADMIN)
    assert client.get("/api/tests/submissions", headers=STUDENT).status_code == 403
    assert client.get("/api/faculty/assessments", headers=STUDENT).status_code == 200

    assert client.delete("/api/admin/users/student-1", headers=ADMIN).status_code == 200
    assert client.delete("/api/admin/users/student-1", headers=ADMIN).status_code == 404
    assert client.get("/api/tests/submissions", headers=STUDENT).status_code == 200


def test_admins_cannot_lock_themselves_out(client):
    client.post("/api/admin/users", json={
        "email": "root@example.com", "full_name": "Root", "role": "admin", "user_id": "admin-1",
    }, headers=ADMIN)

    assert client.patch("/api/admin/users/admin-1/block", json={"blocked": True}, headers=ADMIN).status_code == 409
    assert client.patch("/api/admin/users/admin-1/active", json={"active": False}, headers=ADMIN).status_code == 409
    assert client.patch("/api/admin/users/admin-1/role", json={"role": "student"}, headers=ADMIN).status_code == 409
    assert client.delete("/api/admin/users/admin-1", headers=ADMIN).status_code == 409
    assert client.patch("/api/admin/users/missing/block", json={"blocked": True}, headers=ADMIN).status_code == 404
    assert client.get("/api/admin/users", headers=FACULTY).status_code == 403


def test_faculty_manages_students(client):
    added = client.post("/api/faculty/students", json={
        "email": "kim@example.com", "full_name": "Kim Lee", "role": "admin",
    }, headers=FACULTY)
    assert added.status_code == 200
    assert added.json()["role"] == "student"
    client.post("/api/admin/users", json={"email": "fran@example.com", "full_name": "Fran", "role": "faculty"},
                headers=ADMIN)

    students = client.get("/api/faculty/students", headers=FACULTY).json()
    assert [s["email"] for s in students] == ["kim@example.com"]
    found = client.get("/api/faculty/students", params={"search": "lee"}, headers=FACULTY).json()
    assert [s["full_name"] for s in found] == ["Kim Lee"]

    assert client.post("/api/faculty/students", json={"email": "not-an-email", "full_name": "X"},
                       headers=FACULTY).status_code == 422
    assert client.get("/api/faculty/students", headers=STUDENT).status_code == 403
