import pytest

from extensions import EXTENSION_KEY
from utils.principal import AdminPrincipal, StudentPrincipal, TeacherPrincipal, principal_from_claims
from utils.security import hash_password


def _claims(app, token):
    return principal_from_claims(app.extensions[EXTENSION_KEY].tokens.verify(token))


def test_admin_login_success(app, client, db):
    db.on("FROM admin_users", {"id": 3, "name": "Principal", "mobile": "9999999999",
                               "password": hash_password("pw"), "role": "admin", "is_active": 1})

    resp = client.post("/api/admin/login", json={"mobile": "9999999999", "password": "pw"})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["token"]
    assert body["user"] == {"id": 3, "name": "Principal", "mobile": "9999999999", "role": "admin"}
    assert _claims(app, body["token"]) == AdminPrincipal(admin_id="3", display_name="Principal", mobile="9999999999")
    sql, params = db.statements("UPDATE admin_users SET last_login")[0]
    assert params[1] == 3
    assert db.commits == 1


def test_admin_login_inactive(client, db):
    db.on("FROM admin_users", {"id": 3, "name": "Principal", "mobile": "9999999999",
                               "password": hash_password("pw"), "role": "admin", "is_active": 0})

    resp = client.post("/api/admin/login", json={"mobile": "9999999999", "password": "pw"})

    assert resp.status_code == 403
    assert resp.get_json()["error"]["message"] == "Account is deactivated"
    assert db.writes == []


@pytest.mark.parametrize("row", [None, {"id": 3, "password": "plaintext-pw", "is_active": 1}])
def test_admin_login_bad_credentials(client, db, row):
    db.on("FROM admin_users", row)
    resp = client.post("/api/admin/login", json={"mobile": "9999999999", "password": "plaintext-pw"})
    assert resp.status_code == 401
    assert resp.get_json()["error"]["message"] == "Invalid credentials"


def test_admin_login_requires_both_fields(client, db):
    resp = client.post("/api/admin/login", json={"mobile": "9999999999"})
    assert resp.status_code == 422
    assert [e["field"] for e in resp.get_json()["errors"]] == ["password"]
    assert db.exec_calls == []


def test_student_login_embeds_latest_enrollment(app, client, db):
    db.on("FROM students s", {"id": 7, "roll_no": "R-7", "name": "Asha", "class": "8", "section": "B",
                              "password": hash_password("hunter22")})
    db.on("ORDER BY enrollment_id DESC", {"enrollment_id": 70})
    db.on("SELECT classroom_id FROM student_enrollment", {"classroom_id": 5})

    resp = client.post("/api/auth/login", json={"rollNumber": "R-7", "password": "hunter22"})

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["user"]["enrollmentId"] == 70
    assert data["user"]["classId"] == 5
    assert data["user"]["role"] == "student"
    assert _claims(app, data["token"]) == StudentPrincipal(
        student_id="7", enrollment_id=70, class_id=5, display_name="Asha", roll_number="R-7"
    )


def test_student_login_wrong_password(client, db):
    db.on("FROM students s", {"id": 7, "roll_no": "R-7", "password": hash_password("hunter22")})
    resp = client.post("/api/auth/login", json={"rollNumber": "R-7", "password": "nope"})
    assert resp.status_code == 401
    assert resp.get_json()["error"]["message"] == "Invalid roll number or password"


def test_teacher_login(app, client, db):
    db.on("FROM teachers", {"teacher_id": "T1", "name": "Mr. Rao", "email": "rao@example.org",
                            "password": hash_password("chalk"), "phone_no": "9123456780", "subject": "Physics"})

    resp = client.post("/api/auth/teacher/login", json={"teacherId": "T1", "password": "chalk"})

    assert resp.status_code == 200
    user = resp.get_json()["data"]["user"]
    assert user == {"teacherId": "T1", "name": "Mr. Rao", "department": "Physics", "role": "teacher",
                    "mobileNumber": "9123456780"}
    assert _claims(app, resp.get_json()["data"]["token"]) == TeacherPrincipal(
        teacher_id="T1", display_name="Mr. Rao", email="rao@example.org"
    )


def test_teacher_login_unknown_id(client):
    resp = client.post("/api/auth/teacher/login", json={"teacherId": "T404", "password": "chalk"})
    assert resp.status_code == 401
    assert resp.get_json()["error"]["message"] == "Invalid employee ID or password"


def test_change_password_updates_auth_data(client, db, bearer, student):
    db.on("SELECT auth_id FROM students", {"auth_id": "A7"})
    resp = client.post(
        "/api/users/change-password",
        json={"currentPassword": "old-pass", "newPassword": "new-pass"},
        headers=bearer(student),
    )
    assert resp.status_code == 200
    _, params = db.statements("UPDATE auth_data")[0]
    assert params[1] == "A7"
