from datetime import date
from unittest.mock import patch

import pytest

from routes.results_routes import _format_test_row, month_bounds


def test_tests_listing_formats_rows(client, db, bearer, student):
    db.on("FROM student_enrollment", [{"enrollment_id": 70}])
    db.on("SELECT COUNT(*)", {"total": 2})
    db.on("SELECT dtm.test_id", [
        {"test_id": 1, "test_name": "Quiz 1", "subject_name": "Math", "test_date": date(2026, 9, 2),
         "marks_obtained": 17, "max_marks": 20, "is_absent": 0, "remark": "Good", "teacher_name": "Mr. Rao"},
        {"test_id": 2, "test_name": "Quiz 2", "subject_name": "Math", "test_date": date(2026, 9, 9),
         "marks_obtained": None, "max_marks": 20, "is_absent": 1, "remark": None, "teacher_name": None},
    ])

    resp = client.get("/api/results/tests?subject=Math&sort=oldest", headers=bearer(student))

    data = resp.get_json()["data"]
    assert data["total"] == 2
    first, second = data["items"]
    assert first["percentage"] == 85 and first["grade"] == "A"
    assert second == dict(second, marks=None, percentage=0, grade="Absent", isAbsent=True)
    sql, params = db.statements("SELECT dtm.test_id")[0]
    assert "ORDER BY dt.test_date ASC" in sql
    assert params == (70, "Math", 20, 0)


def test_tests_month_range(client, db, bearer, student):
    db.on("FROM student_enrollment", [{"enrollment_id": 70}])
    with patch("routes.results_routes.school_today", return_value=date(2026, 2, 14)):
        client.get("/api/results/tests?range=month&limit=500", headers=bearer(student))
    _, params = db.statements("SELECT dtm.test_id")[0]
    assert params == (70, date(2026, 2, 1), date(2026, 2, 28), 100, 0)


@pytest.mark.parametrize("query", ["dateFrom=yesterday", "sort=best", "offset=-1", "limit=zero"])
def test_tests_rejects_bad_params(client, db, bearer, student, query):
    resp = client.get(f"/api/results/tests?{query}", headers=bearer(student))
    assert resp.status_code == 422
    assert db.exec_calls == []


def test_exams_lists_declared_summaries(client, db, bearer, student):
    db.on("FROM student_enrollment", {"enrollment_id": 70})
    db.on("FROM exam_summary", [{"exam_id": 12, "exam_name": "Half Yearly", "exam_type_name": None,
                                 "exam_type_code": "HY", "start_date": date(2026, 9, 15), "total_marks": 410,
                                 "max_marks": 500, "percentage": 82, "rank": 3, "grade": "A"}])

    data = client.get("/api/results/exams", headers=bearer(student)).get_json()["data"]

    assert data[0]["examName"] == "Half Yearly"
    assert data[0]["month"] == "Sep"
    assert data[0]["totalMaxMarks"] == 500.0
    sql, _ = db.statements("SELECT es.exam_id")[0]
    assert "e.is_declared=1" in sql


def test_exams_upcoming_is_empty(client, db, bearer, student):
    resp = client.get("/api/results/exams?status=upcoming", headers=bearer(student))
    assert resp.get_json()["data"] == []
    assert db.exec_calls == []


def test_month_bounds_leap_year():
    assert month_bounds(date(2028, 2, 3)) == (date(2028, 2, 1), date(2028, 2, 29))


def test_format_zero_max_marks():
    row = _format_test_row({"test_id": 3, "marks_obtained": 5, "max_marks": 0, "is_absent": 0})
    assert row["percentage"] == 0
    assert row["grade"] == "F"
