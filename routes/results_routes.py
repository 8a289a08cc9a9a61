from __future__ import annotations

import calendar
from datetime import date

from flask import Blueprint, request

from utils import student_required
from utils.auth import current_principal
from utils.db import fetch_all, fetch_one, get_db_connection
from utils.performance import grade_for, round_half_up, student_performance
from utils.query import And, Eq, Gte, In, Lte, enrollment_ids_for_student, resolve_latest_enrollment, where_clause
from utils.responses import not_found, success, validation_error
from utils.timezone_helpers import parse_iso_date, school_today, to_iso

results_bp = Blueprint("results", __name__, url_prefix="/api/results")

MAX_LIMIT = 100
ABSENT_GRADE = "Absent"
SORT_ORDERS = {"newest": "DESC", "oldest": "ASC"}


def _int_arg(name: str, default: int, minimum: int, errors: list) -> int:
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        value = minimum - 1
    if value < minimum:
        errors.append({"field": name, "message": f"{name} must be an integer >= {minimum}"})
    return value


def month_bounds(today: date) -> tuple[date, date]:
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


@results_bp.route("/performance", methods=["GET"])
@student_required
def performance():
    db = get_db_connection()
    try:
        data = student_performance(db, current_principal().student_id)
    finally:
        db.close()
    return success(data=data)


def _format_test_row(row: dict) -> dict:
    max_marks = float(row.get("max_marks") or 0)
    absent = bool(row.get("is_absent"))
    if absent:
        marks = None
        percentage = 0
    else:
        marks = float(row["marks_obtained"]) if row.get("marks_obtained") is not None else None
        percentage = int(round_half_up((marks or 0) / max_marks * 100, 0)) if max_marks > 0 else 0
    return {
        "id": row.get("test_id"),
        "testName": row.get("test_name") or "",
        "subject": row.get("subject_name") or row.get("subject_id"),
        "date": to_iso(row.get("test_date")),
        "marks": marks,
        "maxMarks": max_marks,
        "percentage": percentage,
        "grade": ABSENT_GRADE if absent else grade_for(percentage),
        "isAbsent": absent,
        "teacherRemarks": row.get("remark") or "",
        "teacherName": row.get("teacher_name"),
    }


@results_bp.route("/tests", methods=["GET"])
@student_required
def daily_tests():
    args = request.args
    errors: list = []
    limit = min(_int_arg("limit", 20, 1, errors), MAX_LIMIT)
    offset = _int_arg("offset", 0, 0, errors)
    sort = args.get("sort") or "newest"
    if sort not in SORT_ORDERS:
        errors.append({"field": "sort", "message": "sort must be newest or oldest"})

    date_from = date_to = None
    for name in ("dateFrom", "dateTo"):
        if args.get(name):
            parsed = parse_iso_date(args[name])
            if parsed is None:
                errors.append({"field": name, "message": "Invalid date format"})
            elif name == "dateFrom":
                date_from = parsed
            else:
                date_to = parsed
    if errors:
        raise validation_error(errors)

    month_from = month_to = None
    if args.get("range") == "month":
        month_from, month_to = month_bounds(school_today())

    db = get_db_connection()
    try:
        enrollment_ids = enrollment_ids_for_student(db, current_principal().student_id)
        if not enrollment_ids:
            raise not_found("No enrollments found")
        where = And(
            In("dtm.enrollment_id", enrollment_ids),
            Eq("s.name", args["subject"]) if args.get("subject") else None,
            Gte("dt.test_date", date_from) if date_from else None,
            Lte("dt.test_date", date_to) if date_to else None,
            Gte("dt.test_date", month_from) if month_from else None,
            Lte("dt.test_date", month_to) if month_to else None,
        )
        where_sql, params = where_clause(where)
        joins = (
            "FROM daily_test_mark dtm "
            "JOIN daily_test dt ON dt.test_id = dtm.test_id "
            "LEFT JOIN subject s ON s.subject_id = dt.subject_id "
            "LEFT JOIN teachers t ON t.teacher_id = dtm.updated_by"
        )
        total_row = fetch_one(db, f"SELECT COUNT(*) AS total {joins}{where_sql}", params)
        rows = fetch_all(
            db,
            "SELECT dtm.test_id, dtm.marks_obtained, dtm.remark, dtm.is_absent, "
            "dt.name AS test_name, dt.subject_id, dt.test_date, dt.max_marks, "
            f"s.name AS subject_name, t.name AS teacher_name {joins}{where_sql} "
            f"ORDER BY dt.test_date {SORT_ORDERS[sort]}, dtm.test_id {SORT_ORDERS[sort]} LIMIT %s OFFSET %s",
            [*params, limit, offset],
        )
    finally:
        db.close()

    total = int((total_row or {}).get("total") or 0)
    return success(data={"total": total, "items": [_format_test_row(r) for r in rows]})


@results_bp.route("/exams", methods=["GET"])
@student_required
def exam_results():
    errors: list = []
    limit = min(_int_arg("limit", 50, 1, errors), MAX_LIMIT)
    offset = _int_arg("offset", 0, 0, errors)
    if errors:
        raise validation_error(errors)
    # Every summarised exam is completed
    if request.args.get("status") == "upcoming":
        return success(data=[])

    db = get_db_connection()
    try:
        enrollment_id = resolve_latest_enrollment(db, current_principal().student_id)
        rows = fetch_all(
            db,
            """
            SELECT es.exam_id, es.total_marks, es.max_marks, es.percentage, es.rank, es.grade,
                   e.name AS exam_name, e.start_date, e.exam_type_id,
                   et.name AS exam_type_name, et.code AS exam_type_code
            FROM exam_summary es
            JOIN exam e ON e.exam_id = es.exam_id
            LEFT JOIN exam_type et ON et.exam_type_id = e.exam_type_id
            WHERE es.enrollment_id=%s AND e.is_declared=1
            ORDER BY e.start_date DESC, es.exam_id DESC
            LIMIT %s OFFSET %s
            """,
            (enrollment_id, limit, offset),
        )
    finally:
        db.close()

    def _num(value):
        return float(value) if value is not None else None

    items = []
    for r in rows:
        start = r.get("start_date")
        items.append(
            {
                "id": r["exam_id"],
                "examTypeId": r.get("exam_type_id"),
                "examName": r.get("exam_type_name") or r.get("exam_name") or "",
                "code": r.get("exam_type_code"),
                "month": start.strftime("%b") if isinstance(start, date) else "",
                "examDate": to_iso(start),
                "isCompleted": True,
                "totalMarks": _num(r.get("total_marks")),
                "totalMaxMarks": _num(r.get("max_marks")),
                "percentage": _num(r.get("percentage")),
                "rank": r.get("rank"),
                "grade": r.get("grade"),
            }
        )
    return success(data=items)
