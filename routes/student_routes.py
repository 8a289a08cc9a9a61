from __future__ import annotations

from datetime import datetime, time

import mysql.connector
from flask import Blueprint, current_app, request

from utils import services, student_required
from utils.auth import current_principal
from utils.db import execute, fetch_all, fetch_one, get_db_connection
from utils.query import And, Eq, Gte, Lte, Or, classroom_for_enrollment, denormalize, paginate, parse_page, search_any
from utils.responses import field_error, not_found, success
from utils.timezone_helpers import parse_iso_date, to_iso

student_bp = Blueprint("student", __name__, url_prefix="/api")

PRIVATE_CACHE = "private, max-age=60"
DIARY_PERSONAL = "Personal"
DIARY_BROADCAST = "Broadcast"


def _student_classroom(db) -> int:
    """Classroom of the enrollment carried by the caller's token."""
    student = current_principal()
    if not student.enrollment_id:
        raise not_found("Enrollment not found")
    classroom_id = classroom_for_enrollment(db, student.enrollment_id)
    if classroom_id is None:
        raise not_found("Classroom not found")
    return classroom_id


# ---------- Schedules ----------
@student_bp.route("/student/schedules/daily", methods=["GET"])
@student_required
def daily_schedule():
    svc = services()
    db = get_db_connection()
    try:
        classroom_id = _student_classroom(db)
        row = fetch_one(
            db,
            "SELECT schedule_id, version, title, notes, storage_bucket, storage_key, created_at "
            "FROM schedule_files "
            "WHERE classroom_id=%s AND type='daily' AND exam_id IS NULL AND is_current=1 "
            "ORDER BY version DESC LIMIT 1",
            (classroom_id,),
        )
    finally:
        db.close()
    if not row or not row.get("storage_key"):
        return success(data=None)

    url = svc.storage.sign_read(row.get("storage_bucket") or svc.schedules_bucket, row["storage_key"])
    return success(
        headers={
            "ETag": f"schedule-{classroom_id}-daily-0-v{row.get('version')}",
            "Cache-Control": PRIVATE_CACHE,
        },
        data={
            "scheduleId": row["schedule_id"],
            "version": row.get("version"),
            "title": row.get("title"),
            "notes": row.get("notes"),
            "uploadedAt": to_iso(row.get("created_at")),
            "url": url,
        },
    )


def collapse_exam_terms(rows):
    """One entry per exam: highest version seen and whether any row is current."""
    terms = {}
    for r in rows:
        exam_id = r.get("exam_id")
        if not exam_id:
            continue
        term = terms.setdefault(exam_id, {"examId": exam_id, "hasCurrent": False, "latestVersion": 0})
        term["hasCurrent"] = term["hasCurrent"] or bool(r.get("is_current"))
        term["latestVersion"] = max(term["latestVersion"], int(r.get("version") or 0))
    return list(terms.values())


@student_bp.route("/student/schedules/exam/terms", methods=["GET"])
@student_required
def exam_terms():
    student = current_principal()
    if not student.enrollment_id:
        raise not_found("Enrollment not found")
    db = get_db_connection()
    try:
        classroom_id = classroom_for_enrollment(db, student.enrollment_id)
        if classroom_id is None:
            return success(data=[])
        rows = fetch_all(
            db,
            "SELECT exam_id, version, is_current, created_at FROM schedule_files "
            "WHERE classroom_id=%s AND type='exam' ORDER BY created_at DESC",
            (classroom_id,),
        )
        terms = collapse_exam_terms(rows)
        if terms:
            exam_ids = [t["examId"] for t in terms]
            marks = ",".join(["%s"] * len(exam_ids))
            exams = fetch_all(
                db,
                "SELECT e.exam_id, e.name, e.start_date, e.end_date, et.name AS exam_type_name, et.code "
                f"FROM exam e LEFT JOIN exam_type et ON et.exam_type_id = e.exam_type_id WHERE e.exam_id IN ({marks})",
                exam_ids,
            )
            by_id = {e["exam_id"]: e for e in exams}
            for term in terms:
                exam = by_id.get(term["examId"])
                if exam:
                    term["name"] = exam.get("name") or exam.get("exam_type_name")
                    term["code"] = exam.get("code")
                    term["startDate"] = to_iso(exam.get("start_date"))
                    term["endDate"] = to_iso(exam.get("end_date"))
    finally:
        db.close()
    return success(data=terms)


# ---------- Diary ----------
def diary_visibility(enrollment_id, classroom_id):
    """Personal entries for this enrollment, or broadcasts to this classroom."""
    return Or(
        And(Eq("d.entry_type", DIARY_PERSONAL), Eq("d.enrollment_id", enrollment_id)),
        And(Eq("d.entry_type", DIARY_BROADCAST), Eq("d.classroom_id", classroom_id)) if classroom_id else None,
    )


@student_bp.route("/diary", methods=["GET"])
@student_required
def diary_entries():
    student = current_principal()
    if not student.enrollment_id:
        raise not_found("Enrollment not found")

    day = None
    if request.args.get("date"):
        day = parse_iso_date(request.args["date"])
        if day is None:
            raise field_error("date", "Invalid date format")

    where = And(
        diary_visibility(student.enrollment_id, student.class_id),
        Gte("d.created_at", datetime.combine(day, time.min)) if day else None,
        Lte("d.created_at", datetime.combine(day, time.max)) if day else None,
    )
    sql, params = where.compile()
    db = get_db_connection()
    try:
        rows = fetch_all(
            db,
            "SELECT d.entry_id, d.subject, d.content, d.created_at, d.entry_type, t.name AS teacher_name "
            "FROM diary_entries d LEFT JOIN teachers t ON t.teacher_id = d.teacher_id "
            f"WHERE {sql} ORDER BY d.created_at ASC, d.entry_id ASC",
            params,
        )
    finally:
        db.close()

    entries = [
        {
            "id": r["entry_id"],
            "subject": r.get("subject"),
            "content": r.get("content"),
            "date": to_iso(r.get("created_at")),
            "entryType": r.get("entry_type"),
            "teacher": {"name": r.get("teacher_name") or "System"},
        }
        for r in rows
    ]
    return success(entries=entries)


# ---------- Study resources ----------
@student_bp.route("/student/resources", methods=["GET"])
@student_required
def list_resources():
    page = parse_page(request.args)
    db = get_db_connection()
    try:
        classroom_id = _student_classroom(db)
        where = And(
            Eq("sr.classroom_id", classroom_id),
            Eq("sr.is_current", 1),
            Eq("sr.is_public", 1),
            Eq("sr.subject_id", request.args["subject_id"]) if request.args.get("subject_id") else None,
            Eq("sr.resource_type", request.args["resource_type"]) if request.args.get("resource_type") else None,
            search_any(("sr.title", "sr.description"), request.args.get("search")),
        )
        rows, total = paginate(
            db,
            select=(
                "sr.resource_id, sr.subject_id, sr.title, sr.description, sr.resource_type, sr.category, "
                "sr.file_name, sr.file_size, sr.mime_type, sr.version, sr.created_at, sr.updated_at, "
                "t.name AS teacher_name, s.name AS subject_name"
            ),
            from_=(
                "study_resources sr "
                "LEFT JOIN teachers t ON t.teacher_id = sr.teacher_id "
                "LEFT JOIN subject s ON s.subject_id = sr.subject_id"
            ),
            where=where,
            page=page,
            order_by="sr.updated_at DESC, sr.resource_id DESC",
        )
    finally:
        db.close()

    resources = []
    for r in rows:
        item = denormalize(
            r,
            parent={
                "resourceId": "resource_id",
                "title": "title",
                "description": "description",
                "resourceType": "resource_type",
                "category": "category",
                "fileName": "file_name",
                "fileSize": "file_size",
                "mimeType": "mime_type",
                "version": "version",
            },
            children={
                "teacher": {"name": "teacher_name"},
                "subject": {"id": "subject_id", "name": "subject_name"},
            },
        )
        item["createdAt"] = to_iso(r.get("created_at"))
        item["updatedAt"] = to_iso(r.get("updated_at"))
        resources.append(item)
    return success(data={"resources": resources, "pagination": page.meta(total)})


@student_bp.route("/student/resources/<resource_id>", methods=["GET"])
@student_required
def resource_download(resource_id):
    try:
        rid = int(resource_id)
    except (TypeError, ValueError):
        rid = 0
    if rid < 1:
        raise field_error("resourceId", "Invalid resource ID")

    svc = services()
    db = get_db_connection()
    try:
        classroom_id = _student_classroom(db)
        resource = fetch_one(
            db,
            "SELECT resource_id, title, file_name, file_size, mime_type, storage_bucket, storage_key "
            "FROM study_resources "
            "WHERE resource_id=%s AND classroom_id=%s AND is_current=1 AND is_public=1",
            (rid, classroom_id),
        )
        if not resource:
            raise not_found("Resource not found")
        url = svc.storage.sign_read(resource.get("storage_bucket") or svc.resources_bucket, resource["storage_key"])
        try:
            execute(db, "UPDATE study_resources SET download_count = download_count + 1 WHERE resource_id=%s", (rid,))
            db.commit()
        except mysql.connector.Error as exc:
            current_app.logger.warning("Could not bump download count for resource %s: %s", rid, exc)
    finally:
        db.close()

    return success(
        headers={"ETag": f"resource-{rid}", "Cache-Control": PRIVATE_CACHE},
        data={
            "resourceId": resource["resource_id"],
            "title": resource.get("title"),
            "fileName": resource.get("file_name"),
            "fileSize": resource.get("file_size"),
            "mimeType": resource.get("mime_type"),
            "downloadUrl": url,
        },
    )
