import io
from datetime import date

import pytest

EXAM = {"exam_id": 42, "name": "Half Yearly", "is_declared": 0, "exam_type_name": "Half Yearly",
        "exam_type_code": "HY"}


# ---------- Exam declaration ----------
def test_declare_without_summaries_is_conflict(client, db, bearer, admin):
    db.on("FROM exam e", EXAM)
    db.on("FROM exam_summary", {"total": 0})

    resp = client.put("/api/admin/exams/42/declare", headers=bearer(admin))

    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "RESULTS_NOT_GENERATED"
    assert db.writes == []


def test_declare_success(client, db, bearer, admin):
    db.on("FROM exam e", EXAM)
    db.on("FROM exam_summary", {"total": 12})

    resp = client.put("/api/admin/exams/42/declare", headers=bearer(admin))

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["status"] == "declared"
    assert data["examId"] == 42
    assert data["declaredBy"] == "Principal"
    sql, params = db.writes[0]
    assert sql == "UPDATE exam SET is_declared=1 WHERE exam_id=%s AND is_declared=0"
    assert params == ("42",)
    assert db.commits == 1


def test_second_declare_is_rejected_without_mutation(client, db, bearer, admin):
    db.on("FROM exam e", dict(EXAM, is_declared=1))
    resp = client.put("/api/admin/exams/42/declare", headers=bearer(admin))
    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "EXAM_ALREADY_DECLARED"
    assert db.writes == []


def test_declare_unknown_exam(client, db, bearer, admin):
    resp = client.put("/api/admin/exams/999/declare", headers=bearer(admin))
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "EXAM_NOT_FOUND"


# ---------- Fee transactions ----------
def test_create_transaction(client, db, bearer, admin):
    db.on("FROM student_enrollment", {"enrollment_id": 70})
    payload = {"amount": "1500.50", "paymentMode": "UPI", "paymentDate": "2026-06-01", "referenceNumber": "UTR-1"}

    resp = client.post("/api/admin/fees/7/transactions", json=payload, headers=bearer(admin))

    assert resp.status_code == 201
    data = resp.get_json()["data"]
    assert data["transactionId"] == 101
    assert data["amount"] == 1500.5
    assert data["paymentDate"] == "2026-06-01"
    assert data["status"] == "completed"
    _, params = db.statements("INSERT INTO fee_transaction")[0]
    assert params[0] == 70
    assert str(params[1]) == "1500.50"
    assert params[2:5] == ("UPI", "UTR-1", date(2026, 6, 1))


@pytest.mark.parametrize(
    "payload, fields",
    [
        ({}, ["amount", "paymentMode", "referenceNumber"]),
        ({"amount": -4, "paymentMode": "Cash", "referenceNumber": "R"}, ["amount"]),
        ({"amount": "NaN", "paymentMode": "Cash", "referenceNumber": "R"}, ["amount"]),
        ({"amount": 10, "paymentMode": "Cash", "referenceNumber": "R", "paymentDate": "01/06/2026"}, ["paymentDate"]),
    ],
)
def test_create_transaction_validation(client, db, bearer, admin, payload, fields):
    resp = client.post("/api/admin/fees/7/transactions", json=payload, headers=bearer(admin))
    assert resp.status_code == 422
    body = resp.get_json()
    assert [e["field"] for e in body["errors"]] == fields
    assert body["error"]["fields"] == body["errors"]
    assert db.exec_calls == []


def test_delete_transaction_requires_ownership(client, db, bearer, admin):
    resp = client.delete("/api/admin/fees/7/transactions/55", headers=bearer(admin))
    assert resp.status_code == 404
    assert resp.get_json()["error"]["message"] == "Student or transaction not found"
    assert db.writes == []


def test_delete_transaction(client, db, bearer, admin):
    db.on("FROM fee_transaction ft", {"transaction_id": 55})
    resp = client.delete("/api/admin/fees/7/transactions/55", headers=bearer(admin))
    assert resp.status_code == 200
    assert db.writes == [("DELETE FROM fee_transaction WHERE transaction_id=%s", ("55",))]


def test_filter_options_mirror_modes(client, db, bearer, admin):
    db.on("FROM classrooms", [{"classroom_id": 5, "class": "8", "section": "B", "medium": "English"}])
    db.on("DISTINCT method", [{"method": "Cash"}, {"method": "UPI"}])
    db.on("FROM fee_category", [{"category_id": 1, "name": "Tuition"}])

    data = client.get("/api/admin/fees/filter-options", headers=bearer(admin)).get_json()["data"]

    assert data["classes"] == [{"id": 5, "name": "8", "section": "B", "medium": "English"}]
    assert data["paymentModes"] == ["Cash", "UPI"]
    assert data["paymentGateways"] == data["paymentModes"]
    assert data["feeTypes"] == [{"category_id": 1, "name": "Tuition"}]


# ---------- Study resources ----------
def test_list_resources_filters_and_nests(client, db, bearer, admin):
    db.on("SELECT COUNT(*)", {"total": 1})
    db.on(
        "SELECT sr.resource_id",
        [{"resource_id": 9, "title": "Algebra notes", "classroom_id": 5, "classroom_class": "8",
          "classroom_section": "B", "classroom_medium": "English", "teacher_id": None, "teacher_name": None,
          "subject_id": 3, "subject_name": "Math", "created_at": None, "updated_at": None}],
    )

    resp = client.get("/api/admin/resources?subject_id=3&search=Alg&limit=10", headers=bearer(admin))

    data = resp.get_json()["data"]
    item = data["resources"][0]
    assert item["teacher"] is None
    assert item["subject"] == {"id": 3, "name": "Math"}
    assert item["classroom"]["section"] == "B"
    assert data["pagination"] == {"page": 1, "limit": 10, "total": 1, "totalPages": 1}
    count_sql, count_params = db.exec_calls[0]
    assert "sr.is_current = %s AND sr.subject_id = %s AND (LOWER(sr.title) LIKE %s OR LOWER(sr.description) LIKE %s)" in count_sql
    assert count_params == (1, "3", "%alg%", "%alg%")


def test_delete_resource_tolerates_storage_failure(client, db, bearer, admin, storage):
    storage.delete.return_value = False
    db.on("FROM study_resources", {"resource_id": 9, "storage_key": "resources/9.pdf"})

    resp = client.delete("/api/admin/resources/9", headers=bearer(admin))

    assert resp.status_code == 200
    storage.delete.assert_called_once_with("test-resources", "resources/9.pdf")
    assert db.statements("DELETE FROM study_resources")


def test_delete_missing_resource(client, db, bearer, admin, storage):
    resp = client.delete("/api/admin/resources/9", headers=bearer(admin))
    assert resp.status_code == 404
    storage.delete.assert_not_called()


def test_delete_resource_rejects_bad_id(client, bearer, admin):
    resp = client.delete("/api/admin/resources/abc", headers=bearer(admin))
    assert resp.status_code == 422


# ---------- Schedules ----------
def test_schedule_view_signs_for_five_hours(client, db, bearer, admin, storage):
    db.on("FROM schedule_files", {"schedule_id": 4, "storage_bucket": None, "storage_key": "daily/5/v3.pdf"})

    resp = client.get("/api/admin/schedules/4/view", headers=bearer(admin))

    assert resp.get_json()["data"] == {"signed_url": "https://signed.example/object", "expires_in": 18000}
    storage.sign_read.assert_called_once_with("test-schedules", "daily/5/v3.pdf", ttl=18000)


def test_schedule_view_missing(client, bearer, admin):
    resp = client.get("/api/admin/schedules/4/view", headers=bearer(admin))
    assert resp.status_code == 404


def _schedule_form(**overrides):
    form = {
        "classroom_id": "5",
        "type": "daily",
        "session_year": "2026",
        "title": "Week 12",
        "file": (io.BytesIO(b"\x89PNG"), "week12.png", "image/png"),
    }
    form.update(overrides)
    return {k: v for k, v in form.items() if v is not None}


def test_publish_schedule_becomes_only_current(client, db, bearer, admin, storage):
    db.on("FROM classrooms", {"classroom_id": 5})
    db.on("SELECT version FROM schedule_files", {"version": 4})

    resp = client.post("/api/admin/schedules", data=_schedule_form(), headers=bearer(admin),
                       content_type="multipart/form-data")

    assert resp.status_code == 201
    assert resp.headers["ETag"] == "schedule-5-daily-0-v5"
    data = resp.get_json()["data"]
    assert data["scheduleId"] == 101 and data["version"] == 5 and data["isCurrent"] is True
    storage.upload.assert_called_once_with("test-schedules", "daily-schedule/2026/5/v5.png", b"\x89PNG", "image/png")
    sql, params = db.statements("UPDATE schedule_files")[0]
    assert "exam_id <=> %s AND schedule_id<>%s" in sql
    assert params == (5, "daily", None, 101)
    assert db.commits == 1


def test_publish_exam_schedule_requires_exam_id(client, db, bearer, admin, storage):
    resp = client.post("/api/admin/schedules", data=_schedule_form(type="exam"), headers=bearer(admin),
                       content_type="multipart/form-data")
    assert resp.status_code == 422
    assert [e["field"] for e in resp.get_json()["errors"]] == ["exam_id"]
    storage.upload.assert_not_called()


def test_publish_exam_schedule_unknown_exam(client, db, bearer, admin, storage):
    db.on("FROM classrooms", {"classroom_id": 5})
    resp = client.post("/api/admin/schedules", data=_schedule_form(type="exam", exam_id="8"), headers=bearer(admin),
                       content_type="multipart/form-data")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["message"] == "Exam not found"
    assert db.writes == []


def test_replace_schedule_file_retires_group(client, db, bearer, admin, storage):
    db.on("SELECT * FROM schedule_files", {"schedule_id": 31, "classroom_id": 5, "type": "exam", "exam_id": 8,
                                           "title": "Finals", "notes": None, "version": 2, "is_current": 0,
                                           "storage_bucket": None, "storage_key": "old.pdf", "uploaded_by": 1})
    db.on("SELECT version FROM schedule_files", {"version": 2})
    form = _schedule_form(schedule_id="31", type=None, classroom_id=None,
                          file=(io.BytesIO(b"%PDF"), "finals.pdf", "application/pdf"))

    resp = client.put("/api/admin/schedules", data=form, headers=bearer(admin), content_type="multipart/form-data")

    assert resp.status_code == 200
    assert resp.headers["ETag"] == "schedule-5-exam-8-v3"
    assert resp.get_json()["data"]["isCurrent"] is True
    storage.upload.assert_called_once_with("test-schedules", "exam-schedule/2026/5/8/v3.pdf", b"%PDF",
                                           "application/pdf")
    update, retire = db.writes
    assert update[1][-1] == 31 and update[1][6:9] == ("exam-schedule/2026/5/8/v3.pdf", 3, 1)
    assert retire[1] == (5, "exam", 8, 31)


def test_edit_schedule_metadata_keeps_file(client, db, bearer, admin, storage):
    db.on("SELECT * FROM schedule_files", {"schedule_id": 31, "classroom_id": 5, "type": "daily", "exam_id": None,
                                           "title": "Week 11", "version": 2, "is_current": 0,
                                           "storage_key": "daily-schedule/2026/5/v2.pdf"})

    resp = client.put("/api/admin/schedules", data={"schedule_id": "31", "title": "Week 11 (revised)"},
                      headers=bearer(admin), content_type="multipart/form-data")

    assert resp.status_code == 200
    assert resp.get_json()["data"]["title"] == "Week 11 (revised)"
    assert len(db.writes) == 1
    storage.upload.assert_not_called()


def test_update_missing_schedule(client, db, bearer, admin):
    resp = client.put("/api/admin/schedules", data={"schedule_id": "99"}, headers=bearer(admin),
                      content_type="multipart/form-data")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["message"] == "Schedule not found"
