from datetime import date, time

import pytest

from conftest import PASSWORD, make_user
from models import User
from storage import storage

PAGES = ["/", "/tasks", "/schedule", "/pomodoro", "/subjects", "/progress",
         "/settings", "/settings?tab=app", "/settings?tab=pomodoro"]


def test_pages_require_login(client):
    resp = client.get("/tasks")
    assert resp.status_code == 302
    assert "/login" in resp.headers["Location"]


def test_api_requires_login(client):
    resp = client.get("/api/tasks")
    assert resp.status_code == 401
    assert resp.get_json()["status"] == "error"


@pytest.mark.parametrize("path", ["/login", "/register"])
def test_auth_pages_render(client, path):
    assert client.get(path).status_code == 200


def test_register_with_mismatched_passwords(app, client):
    resp = client.post("/register", data={
        "username": "carol", "email": "carol@example.com",
        "password": "abc123", "confirm_password": "abc124",
    })
    assert resp.status_code == 400
    assert b"Passwords don&#39;t match" in resp.data
    with app.app_context():
        assert User.query.count() == 0


def test_register_then_login(client):
    resp = client.post("/register", data={
        "username": "carol", "email": "Carol@Example.com",
        "password": "abc123", "confirm_password": "abc123", "first_name": "Carol",
    })
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/login")

    resp = client.post("/login", data={"username": "carol", "password": "abc123"})
    assert resp.status_code == 302
    assert client.get("/api/user").get_json()["email"] == "carol@example.com"


def test_register_duplicate_username(client, user_id):
    resp = client.post("/register", data={
        "username": "alice", "email": "other@example.com",
        "password": "abc123", "confirm_password": "abc123",
    })
    assert resp.status_code == 400
    assert b"Username already exists" in resp.data


def test_login_short_username_rejected(client):
    resp = client.post("/login", data={"username": "ab", "password": "abcdef"})
    assert resp.status_code == 400


def test_wrong_password(client, user_id):
    resp = client.post("/login", data={"username": "alice", "password": "wrong-password"})
    assert resp.status_code == 302
    assert client.get("/api/user").status_code == 401


@pytest.mark.parametrize("path", PAGES)
def test_pages_render(auth_client, path):
    assert auth_client.get(path).status_code == 200


def test_pages_render_with_sample_data(auth_client):
    auth_client.post("/api/sample-data")
    for path in PAGES:
        assert auth_client.get(path).status_code == 200


def test_unknown_route(auth_client):
    resp = auth_client.get("/nowhere")
    assert resp.status_code == 404
    assert b"<html" in resp.data.lower()
    resp = auth_client.get("/api/nowhere")
    assert resp.status_code == 404
    assert resp.get_json()["status"] == "error"


def test_sample_data_button_only_without_tasks(auth_client):
    assert b"Load Sample Data" in auth_client.get("/").data
    auth_client.post("/sample-data")
    assert b"Load Sample Data" not in auth_client.get("/").data


def test_sample_data_is_idempotent(auth_client):
    first = auth_client.post("/api/sample-data").get_json()
    second = auth_client.post("/api/sample-data").get_json()
    for key in ("subjectsCount", "tasksCount", "sessionsCount", "recordsCount"):
        assert first[key] == second[key]
    assert first["subjectsCount"] == 5
    assert set(second["created"].values()) == {0}
    assert len(auth_client.get("/api/subjects").get_json()) == 5


def test_task_api_crud(auth_client):
    subject = auth_client.post("/api/subjects", json={"name": "Math", "color": "blue"}).get_json()
    resp = auth_client.post("/api/tasks", json={
        "title": "Problem set", "subjectId": subject["id"], "priority": "high", "dueDate": "2026-05-04",
    })
    assert resp.status_code == 201
    task = resp.get_json()
    assert task["dueDate"] == "2026-05-04"

    fetched = auth_client.get(f"/api/tasks/{task['id']}").get_json()
    assert fetched["subject"]["name"] == "Math"

    patched = auth_client.patch(f"/api/tasks/{task['id']}", json={"completed": True}).get_json()
    assert patched["completed"] is True
    assert patched["title"] == "Problem set"

    assert auth_client.delete(f"/api/tasks/{task['id']}").status_code == 200
    assert auth_client.get(f"/api/tasks/{task['id']}").status_code == 404


def test_task_api_validation(auth_client):
    resp = auth_client.post("/api/tasks", json={"title": "", "priority": "urgent"})
    assert resp.status_code == 400
    assert set(resp.get_json()["errors"]) == {"title", "priority"}


def test_task_with_foreign_subject_rejected(app, auth_client):
    with app.app_context():
        bob = make_user("bob")
        theirs = storage.create_subject({"user_id": bob.id, "name": "Bob's", "color": "red"}).id
    resp = auth_client.post("/api/tasks", json={"title": "Sneaky", "subjectId": theirs})
    assert resp.status_code == 400


def test_other_users_task_is_not_found(app, auth_client):
    with app.app_context():
        bob = make_user("bob")
        task_id = storage.create_task({"user_id": bob.id, "title": "Private"}).id
    assert auth_client.get(f"/api/tasks/{task_id}").status_code == 404
    assert auth_client.delete(f"/api/tasks/{task_id}").status_code == 404
    with app.app_context():
        assert storage.get_task(task_id) is not None


def test_duplicate_subject_name(auth_client):
    auth_client.post("/api/subjects", json={"name": "Math"})
    resp = auth_client.post("/api/subjects", json={"name": "Math"})
    assert resp.status_code == 400


def test_task_form_flow(app, auth_client, user_id):
    resp = auth_client.post("/tasks/save", data={"title": "Write essay", "priority": "low", "next": "/tasks"})
    assert resp.status_code == 302
    with app.app_context():
        task = storage.get_tasks(user_id)[0]
        task_id = task.id
        assert task.priority == "low"

    auth_client.post(f"/tasks/{task_id}/toggle")
    with app.app_context():
        assert storage.get_task(task_id).completed is True

    auth_client.post("/tasks/save", data={"task_id": str(task_id), "title": "Write essay v2", "priority": "high"})
    with app.app_context():
        task = storage.get_task(task_id)
        assert task.title == "Write essay v2"
        assert task.completed is True

    auth_client.post(f"/tasks/{task_id}/delete")
    with app.app_context():
        assert storage.get_task(task_id) is None


def test_session_api_rejects_bad_times(auth_client):
    resp = auth_client.post("/api/sessions", json={
        "title": "Review", "date": "2026-05-04", "startTime": "10:00", "endTime": "09:00",
    })
    assert resp.status_code == 400
    assert "end_time" in resp.get_json()["errors"]


def test_invalid_pomodoro_settings(app, auth_client, user_id):
    resp = auth_client.post("/settings/pomodoro", data={
        "focus_duration": "200", "short_break_duration": "5",
        "long_break_duration": "15", "sessions_before_long_break": "4",
    })
    assert resp.status_code == 400
    with app.app_context():
        assert storage.get_settings(user_id).focus_duration == 25


def test_pomodoro_settings_saved(app, auth_client, user_id):
    resp = auth_client.post("/settings/pomodoro", data={
        "focus_duration": "50", "short_break_duration": "10",
        "long_break_duration": "30", "sessions_before_long_break": "2",
    })
    assert resp.status_code == 302
    body = auth_client.get("/api/pomodoro/next?completed=2").get_json()
    assert body["next"] == {"kind": "long_break", "label": "Long Break", "minutes": 30}
    assert len(body["cycle"]) == 4


def test_app_settings_unticked_checkboxes(app, auth_client, user_id):
    auth_client.post("/settings/app", data={"dark_mode": "on"})
    with app.app_context():
        settings = storage.get_settings(user_id)
        assert settings.dark_mode is True
        assert settings.notifications is False


def test_settings_api_patch(auth_client):
    resp = auth_client.patch("/api/settings", json={"focusDuration": 45})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["focusDuration"] == 45
    assert body["notifications"] is True
    assert auth_client.patch("/api/settings", json={"sessionsBeforeLongBreak": 0}).status_code == 400


def test_pomodoro_complete_logs_time(auth_client):
    subject = auth_client.post("/api/subjects", json={"name": "Math"}).get_json()
    study_session = auth_client.post("/api/sessions", json={
        "title": "Review", "date": date.today().isoformat(), "startTime": "10:00", "endTime": "11:00",
    }).get_json()

    for _ in range(2):
        resp = auth_client.post("/api/pomodoro/complete", json={
            "subjectId": subject["id"], "duration": 25, "focusScore": 80, "sessionId": study_session["id"],
        })
        assert resp.status_code == 200

    records = auth_client.get("/api/records").get_json()
    assert len(records) == 1
    assert records[0]["duration"] == 50
    assert auth_client.get(f"/api/sessions/{study_session['id']}").get_json()["completed"] is True

    stats = auth_client.get("/api/stats").get_json()
    assert stats["todayMinutes"] == 50
    assert stats["stats"]["todayStudyTime"] == "50m"
    assert stats["stats"]["streak"] == "1 day"


def test_logout(auth_client):
    assert auth_client.get("/logout").status_code == 302
    assert auth_client.get("/api/user").status_code == 401


def test_pomodoro_complete_with_foreign_session_saves_nothing(app, auth_client):
    subject = auth_client.post("/api/subjects", json={"name": "Math"}).get_json()
    with app.app_context():
        bob = make_user("bob")
        theirs = storage.create_study_session({
            "user_id": bob.id, "title": "Bob's", "date": date.today(),
            "start_time": time(9, 0), "end_time": time(10, 0),
        }).id

    resp = auth_client.post("/api/pomodoro/complete", json={
        "subjectId": subject["id"], "duration": 25, "sessionId": theirs,
    })
    assert resp.status_code == 404
    assert auth_client.get("/api/records").get_json() == []
    with app.app_context():
        assert storage.get_study_session(theirs).completed is False


def test_pomodoro_complete_rejects_non_numeric_session(auth_client):
    subject = auth_client.post("/api/subjects", json={"name": "Math"}).get_json()
    resp = auth_client.post("/api/pomodoro/complete", json={
        "subjectId": subject["id"], "duration": 25, "sessionId": "abc",
    })
    assert resp.status_code == 400
    assert list(resp.get_json()["errors"]) == ["session_id"]
    assert auth_client.get("/api/records").get_json() == []


def test_duplicate_record_without_task_rejected(auth_client):
    subject = auth_client.post("/api/subjects", json={"name": "Math"}).get_json()
    body = {"subjectId": subject["id"], "duration": 30, "date": "2026-10-01"}
    assert auth_client.post("/api/records", json=body).status_code == 201
    assert auth_client.post("/api/records", json=body).status_code == 400
    assert len(auth_client.get("/api/records").get_json()) == 1


def test_garbled_hidden_id_does_not_create(app, auth_client, user_id):
    resp = auth_client.post("/tasks/save", data={"task_id": "abc", "title": "Sneaky", "priority": "low"})
    assert resp.status_code == 302
    resp = auth_client.post("/subjects/save", data={"subject_id": "x1", "name": "Art"})
    assert resp.status_code == 302
    with app.app_context():
        assert storage.get_tasks(user_id) == []
        assert storage.get_subjects(user_id) == []


def test_timer_asks_server_for_next_phase(auth_client):
    page = auth_client.get("/pomodoro").data
    assert b'data-next-endpoint="/api/pomodoro/next"' in page
