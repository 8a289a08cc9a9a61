from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional

import mysql.connector
from flask import Blueprint, current_app, request

from utils import admin_required, services
from utils.auth import current_principal
from utils.db import execute, fetch_all, fetch_one, get_db_connection, insert
from utils.exams import declare_exam
from utils.principal import AdminPrincipal, claims_for
from utils.query import And, Eq, denormalize, paginate, parse_page, resolve_latest_enrollment, search_any
from utils.responses import ApiError, field_error, forbidden, not_found, success, validation_error
from utils.security import verify_password
from utils.timezone_helpers import db_now, parse_iso_date, school_today, to_iso
from utils.uploads import SCHEDULE_EXTENSIONS, extension_for, form_id, read_upload, store_object

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

RESOURCE_FILTERS = ("classroom_id", "subject_id", "teacher_id", "resource_type")
RESOURCE_SEARCH_COLUMNS = ("sr.title", "sr.description")
SCHEDULE_VIEW_TTL = 5 * 60 * 60
SCHEDULE_TYPES = ("daily", "exam")
PRIVATE_CACHE = "private, max-age=60"

RESOURCE_SELECT = """
    sr.resource_id, sr.classroom_id, sr.subject_id, sr.teacher_id, sr.title, sr.description,
    sr.resource_type, sr.category, sr.file_name, sr.file_size, sr.mime_type, sr.version,
    sr.is_current, sr.is_public, sr.download_count, sr.created_at, sr.updated_at,
    c.class AS classroom_class, c.section AS classroom_section, c.medium AS classroom_medium,
    t.name AS teacher_name, s.name AS subject_name
"""
RESOURCE_FROM = """
    study_resources sr
    LEFT JOIN classrooms c ON c.classroom_id = sr.classroom_id
    LEFT JOIN teachers t ON t.teacher_id = sr.teacher_id
    LEFT JOIN subject s ON s.subject_id = sr.subject_id
"""


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _positive_int(value, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = 0
    if number < 1:
        raise field_error(field, f"Invalid {field}")
    return number


# ---------- Login ----------
@admin_bp.route("/login", methods=["POST"])
def admin_login():
    body = _json_body()
    mobile = str(body.get("mobile") or "").strip()
    password = str(body.get("password") or "")
    errors = []
    if not mobile:
        errors.append({"field": "mobile", "message": "Mobile number is required"})
    if not password:
        errors.append({"field": "password", "message": "Password is required"})
    if errors:
        raise validation_error(errors, "Mobile number and password are required")

    db = get_db_connection()
    try:
        admin = fetch_one(
            db,
            "SELECT id, name, mobile, password, role, is_active FROM admin_users WHERE mobile=%s LIMIT 1",
            (mobile,),
        )
        if not admin or not verify_password(admin.get("password"), password):
            raise ApiError("UNAUTHORIZED", "Invalid credentials")
        if not admin.get("is_active"):
            raise forbidden("Account is deactivated")

        execute(db, "UPDATE admin_users SET last_login=%s WHERE id=%s", (db_now(), admin["id"]))
        db.commit()
    finally:
        db.close()

    principal = AdminPrincipal(admin_id=str(admin["id"]), display_name=admin.get("name"), mobile=admin.get("mobile"))
    token = services().tokens.sign(claims_for(principal))
    current_app.logger.info("Admin %s logged in", admin["id"])
    return success(
        message="Login successful",
        token=token,
        user={
            "id": admin["id"],
            "name": admin.get("name"),
            "mobile": admin.get("mobile"),
            "role": principal.role,
        },
    )


# ---------- Exam declaration ----------
@admin_bp.route("/exams/<exam_id>/declare", methods=["PUT"])
@admin_required
def declare_results(exam_id):
    admin = current_principal()
    db = get_db_connection()
    try:
        exam = declare_exam(db, exam_id)
    finally:
        db.close()
    return success(
        message="Results declared successfully",
        data={
            "examId": exam.get("exam_id", exam_id),
            "examName": exam.get("name") or exam.get("exam_type_name"),
            "status": "declared",
            "declaredAt": to_iso(db_now()),
            "declaredBy": admin.display_name,
        },
    )


# ---------- Fee transactions ----------
def _validate_transaction(body: dict) -> dict:
    errors = []
    amount = None
    try:
        amount = Decimal(str(body.get("amount")))
        if not amount.is_finite() or amount <= 0:
            raise InvalidOperation
    except (InvalidOperation, ValueError):
        amount = None
        errors.append({"field": "amount", "message": "Amount must be greater than 0"})

    payment_mode = str(body.get("paymentMode") or "").strip()
    if not payment_mode:
        errors.append({"field": "paymentMode", "message": "paymentMode is required"})

    raw_date = body.get("paymentDate")
    payment_date = parse_iso_date(raw_date) if raw_date else None
    if raw_date and payment_date is None:
        errors.append({"field": "paymentDate", "message": "Invalid date format"})

    reference = str(body.get("referenceNumber") or "").strip()
    if not reference:
        errors.append({"field": "referenceNumber", "message": "referenceNumber is required"})

    if errors:
        raise validation_error(errors)
    return {
        "amount": amount,
        "payment_mode": payment_mode,
        "payment_date": payment_date or school_today(),
        "reference": reference,
    }


@admin_bp.route("/fees/<student_id>/transactions", methods=["POST"])
@admin_required
def create_transaction(student_id):
    tx = _validate_transaction(_json_body())
    db = get_db_connection()
    try:
        enrollment_id = resolve_latest_enrollment(db, student_id)
        created_at = db_now()
        transaction_id = insert(
            db,
            "INSERT INTO fee_transaction (enrollment_id, amount, method, ref_no, payment_date, created_at) "
            "VALUES (%s,%s,%s,%s,%s,%s)",
            (enrollment_id, tx["amount"], tx["payment_mode"], tx["reference"], tx["payment_date"], created_at),
        )
        db.commit()
    finally:
        db.close()

    current_app.logger.info("Fee transaction %s recorded for student %s", transaction_id, student_id)
    return success(
        status=201,
        message="Transaction created successfully",
        data={
            "transactionId": transaction_id,
            "studentId": student_id,
            "amount": float(tx["amount"]),
            "paymentMode": tx["payment_mode"],
            "paymentDate": to_iso(tx["payment_date"]),
            "referenceNumber": tx["reference"],
            "status": "completed",
            "createdAt": to_iso(created_at),
        },
    )


@admin_bp.route("/fees/<student_id>/transactions/<transaction_id>", methods=["DELETE"])
@admin_required
def delete_transaction(student_id, transaction_id):
    db = get_db_connection()
    try:
        # Only a transaction on one of this student's enrollments may be removed
        owned = fetch_one(
            db,
            "SELECT ft.transaction_id FROM fee_transaction ft "
            "JOIN student_enrollment se ON se.enrollment_id = ft.enrollment_id "
            "WHERE ft.transaction_id=%s AND se.student_id=%s",
            (transaction_id, student_id),
        )
        if not owned:
            raise not_found("Student or transaction not found")
        execute(db, "DELETE FROM fee_transaction WHERE transaction_id=%s", (transaction_id,))
        db.commit()
    finally:
        db.close()

    current_app.logger.info("Fee transaction %s deleted for student %s", transaction_id, student_id)
    return success(
        message="Transaction deleted successfully",
        data={"transactionId": transaction_id, "studentId": student_id, "deletedAt": to_iso(db_now())},
    )


@admin_bp.route("/fees/filter-options", methods=["GET"])
@admin_required
def fee_filter_options():
    db = get_db_connection()
    try:
        classes = fetch_all(db, "SELECT classroom_id, class, section, medium FROM classrooms ORDER BY class")
        methods = fetch_all(
            db,
            "SELECT DISTINCT method FROM fee_transaction WHERE method IS NOT NULL AND method <> '' ORDER BY method",
        )
        fee_types = fetch_all(db, "SELECT * FROM fee_category ORDER BY category_id")
    finally:
        db.close()

    payment_modes = [m["method"] for m in methods]
    return success(
        data={
            "classes": [
                {"id": c["classroom_id"], "name": c.get("class"), "section": c.get("section"), "medium": c.get("medium")}
                for c in classes
            ],
            "paymentModes": payment_modes,
            "feeTypes": fee_types,
            # No separate gateway registry exists; gateways mirror the recorded modes
            "paymentGateways": list(payment_modes),
        }
    )


# ---------- Study resources ----------
def _format_resource(row: dict) -> dict:
    item = denormalize(
        row,
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
            "downloadCount": "download_count",
        },
        children={
            "classroom": {
                "id": "classroom_id",
                "class": "classroom_class",
                "section": "classroom_section",
                "medium": "classroom_medium",
            },
            "teacher": {"id": "teacher_id", "name": "teacher_name"},
            "subject": {"id": "subject_id", "name": "subject_name"},
        },
    )
    item["createdAt"] = to_iso(row.get("created_at"))
    item["updatedAt"] = to_iso(row.get("updated_at"))
    return item


@admin_bp.route("/resources", methods=["GET"])
@admin_required
def list_resources():
    page = parse_page(request.args)
    filters = [Eq(f"sr.{name}", request.args[name]) for name in RESOURCE_FILTERS if request.args.get(name)]
    where = And(Eq("sr.is_current", 1), *filters, search_any(RESOURCE_SEARCH_COLUMNS, request.args.get("search")))

    db = get_db_connection()
    try:
        rows, total = paginate(
            db,
            select=RESOURCE_SELECT,
            from_=RESOURCE_FROM,
            where=where,
            page=page,
            order_by="sr.created_at DESC, sr.resource_id DESC",
        )
    finally:
        db.close()
    return success(data={"resources": [_format_resource(r) for r in rows], "pagination": page.meta(total)})


@admin_bp.route("/resources/<resource_id>", methods=["DELETE"])
@admin_required
def delete_resource(resource_id):
    rid = _positive_int(resource_id, "resourceId")
    svc = services()
    db = get_db_connection()
    try:
        resource = fetch_one(db, "SELECT resource_id, storage_key FROM study_resources WHERE resource_id=%s", (rid,))
        if not resource:
            raise not_found("Resource not found")
        # The object may already be gone; the row is removed regardless
        svc.storage.delete(svc.resources_bucket, resource.get("storage_key"))
        execute(db, "DELETE FROM study_resources WHERE resource_id=%s", (rid,))
        db.commit()
    finally:
        db.close()
    current_app.logger.info("Study resource %s deleted", rid)
    return success(message="Resource deleted successfully")


# ---------- Schedules ----------
@admin_bp.route("/schedules/<schedule_id>/view", methods=["GET"])
@admin_required
def view_schedule(schedule_id):
    sid = _positive_int(schedule_id, "scheduleId")
    svc = services()
    db = get_db_connection()
    try:
        schedule = fetch_one(
            db,
            "SELECT schedule_id, storage_bucket, storage_key FROM schedule_files WHERE schedule_id=%s",
            (sid,),
        )
    finally:
        db.close()
    if not schedule or not schedule.get("storage_key"):
        raise not_found("Schedule not found")

    bucket = schedule.get("storage_bucket") or svc.schedules_bucket
    url = svc.storage.sign_read(bucket, schedule["storage_key"], ttl=SCHEDULE_VIEW_TTL)
    current_app.logger.info("Schedule %s viewed by admin %s", sid, current_principal().id)
    return success(data={"signed_url": url, "expires_in": SCHEDULE_VIEW_TTL})


def schedule_storage_key(
    session_year, classroom_id, schedule_type: str, exam_id, version: int, content_type: str
) -> str:
    extension = extension_for(content_type, SCHEDULE_EXTENSIONS)
    suffix = f".{extension}" if extension else ""
    if schedule_type == "exam":
        return f"exam-schedule/{session_year}/{classroom_id}/{exam_id or 'unknown'}/v{version}{suffix}"
    return f"daily-schedule/{session_year}/{classroom_id}/v{version}{suffix}"


def schedule_etag(classroom_id, schedule_type: str, exam_id, version) -> str:
    return f"schedule-{classroom_id}-{schedule_type}-{exam_id or 0}-v{version}"


def next_schedule_version(db, classroom_id: int, schedule_type: str, exam_id: Optional[int]) -> int:
    # <=> matches NULL exam_id for daily schedules
    row = fetch_one(
        db,
        "SELECT version FROM schedule_files WHERE classroom_id=%s AND type=%s AND exam_id <=> %s "
        "ORDER BY version DESC LIMIT 1",
        (classroom_id, schedule_type, exam_id),
    )
    return int((row or {}).get("version") or 0) + 1


def retire_other_schedules(db, schedule_id: int, classroom_id: int, schedule_type: str, exam_id: Optional[int]) -> int:
    """Leave ``schedule_id`` as the only current file of its (classroom, type, exam) group."""
    return execute(
        db,
        "UPDATE schedule_files SET is_current=0 "
        "WHERE classroom_id=%s AND type=%s AND exam_id <=> %s AND schedule_id<>%s",
        (classroom_id, schedule_type, exam_id, schedule_id),
    )


def _check_schedule_targets(db, classroom_id: Optional[int], exam_id: Optional[int]) -> None:
    if classroom_id is not None and not fetch_one(
        db, "SELECT classroom_id FROM classrooms WHERE classroom_id=%s", (classroom_id,)
    ):
        raise not_found("Classroom not found")
    if exam_id is not None and not fetch_one(db, "SELECT exam_id FROM exam WHERE exam_id=%s", (exam_id,)):
        raise not_found("Exam not found")


def _format_schedule(row: dict) -> dict:
    return {
        "scheduleId": row.get("schedule_id"),
        "classroomId": row.get("classroom_id"),
        "type": row.get("type"),
        "examId": row.get("exam_id"),
        "title": row.get("title"),
        "notes": row.get("notes"),
        "version": row.get("version"),
        "isCurrent": bool(row.get("is_current")),
        "uploadedBy": row.get("uploaded_by"),
        "createdAt": to_iso(row.get("created_at")),
    }


@admin_bp.route("/schedules", methods=["POST"])
@admin_required
def publish_schedule():
    form = request.form
    errors = []
    classroom_id = form_id(form, "classroom_id")
    if classroom_id is None:
        errors.append({"field": "classroom_id", "message": "classroom_id is required"})
    schedule_type = str(form.get("type") or "").strip().lower()
    if schedule_type not in SCHEDULE_TYPES:
        errors.append({"field": "type", "message": 'Invalid type. Must be "daily" or "exam"'})
    session_year = form_id(form, "session_year")
    if session_year is None:
        errors.append({"field": "session_year", "message": "session_year is required"})
    exam_id = form_id(form, "exam_id") if schedule_type == "exam" else None
    if schedule_type == "exam" and exam_id is None:
        errors.append({"field": "exam_id", "message": "exam_id is required for exam schedules"})
    title = str(form.get("title") or "").strip()
    if not title:
        errors.append({"field": "title", "message": "title is required"})
    upload = read_upload(request.files.get("file"))
    if upload is None:
        errors.append({"field": "file", "message": "file is required"})
    if errors:
        raise validation_error(errors, "Missing or invalid fields")

    admin = current_principal()
    svc = services()
    db = get_db_connection()
    try:
        _check_schedule_targets(db, classroom_id, exam_id)
        version = next_schedule_version(db, classroom_id, schedule_type, exam_id)
        key = schedule_storage_key(session_year, classroom_id, schedule_type, exam_id, version, upload.content_type)
        store_object(svc.storage, svc.schedules_bucket, key, upload)

        row = {
            "classroom_id": classroom_id,
            "exam_id": exam_id,
            "type": schedule_type,
            "title": title,
            "notes": str(form.get("notes") or "") or None,
            "version": version,
            "is_current": 1,
            "uploaded_by": admin.id,
            "created_at": db_now(),
        }
        try:
            row["schedule_id"] = insert(
                db,
                "INSERT INTO schedule_files (classroom_id, exam_id, type, storage_bucket, storage_key, version, "
                "is_current, title, notes, uploaded_by, created_at) VALUES (%s,%s,%s,%s,%s,%s,1,%s,%s,%s,%s)",
                (
                    classroom_id, exam_id, schedule_type, svc.schedules_bucket, key, version,
                    title, row["notes"], admin.id, row["created_at"],
                ),
            )
            retire_other_schedules(db, row["schedule_id"], classroom_id, schedule_type, exam_id)
            db.commit()
        except mysql.connector.Error:
            db.rollback()
            svc.storage.delete(svc.schedules_bucket, key)
            raise
    finally:
        db.close()

    current_app.logger.info(
        "Schedule %s published (%s v%s) by admin %s", row["schedule_id"], schedule_type, version, admin.id
    )
    return success(
        status=201,
        headers={"ETag": schedule_etag(classroom_id, schedule_type, exam_id, version), "Cache-Control": PRIVATE_CACHE},
        data=_format_schedule(row),
    )


@admin_bp.route("/schedules", methods=["PUT"])
@admin_required
def update_schedule():
    form = request.form
    schedule_id = form_id(form, "schedule_id")
    if schedule_id is None:
        raise field_error("schedule_id", "schedule_id is required")
    schedule_type = str(form.get("type") or "").strip().lower() or None
    if schedule_type is not None and schedule_type not in SCHEDULE_TYPES:
        raise field_error("type", 'Invalid type. Must be "daily" or "exam"')
    classroom_id = form_id(form, "classroom_id")
    exam_id = form_id(form, "exam_id")
    if schedule_type == "exam" and exam_id is None:
        raise field_error("exam_id", "exam_id is required for exam schedules")
    session_year = form_id(form, "session_year")
    upload = read_upload(request.files.get("file"))

    admin = current_principal()
    svc = services()
    db = get_db_connection()
    try:
        existing = fetch_one(db, "SELECT * FROM schedule_files WHERE schedule_id=%s", (schedule_id,))
        if not existing:
            raise not_found("Schedule not found")
        _check_schedule_targets(
            db,
            classroom_id if classroom_id not in (None, existing.get("classroom_id")) else None,
            exam_id if exam_id not in (None, existing.get("exam_id")) else None,
        )

        row = dict(existing)
        if form.get("title"):
            row["title"] = str(form["title"]).strip()
        if form.get("notes"):
            row["notes"] = str(form["notes"])
        if schedule_type is not None:
            row["type"] = schedule_type
        if classroom_id is not None:
            row["classroom_id"] = classroom_id
        if row["type"] == "daily":
            row["exam_id"] = None
        elif exam_id is not None:
            row["exam_id"] = exam_id
        if row["type"] == "exam" and row.get("exam_id") is None:
            raise field_error("exam_id", "exam_id is required for exam schedules")

        key = None
        if upload is not None:
            row["version"] = next_schedule_version(db, row["classroom_id"], row["type"], row["exam_id"])
            key = schedule_storage_key(
                session_year or school_today().year,
                row["classroom_id"], row["type"], row["exam_id"], row["version"], upload.content_type,
            )
            store_object(svc.storage, svc.schedules_bucket, key, upload)
            row.update(storage_bucket=svc.schedules_bucket, storage_key=key, is_current=1, uploaded_by=admin.id)

        try:
            execute(
                db,
                "UPDATE schedule_files SET classroom_id=%s, exam_id=%s, type=%s, title=%s, notes=%s, "
                "storage_bucket=%s, storage_key=%s, version=%s, is_current=%s, uploaded_by=%s "
                "WHERE schedule_id=%s",
                (
                    row["classroom_id"], row["exam_id"], row["type"], row.get("title"), row.get("notes"),
                    row.get("storage_bucket"), row.get("storage_key"), row.get("version"),
                    1 if row.get("is_current") else 0, row.get("uploaded_by"), schedule_id,
                ),
            )
            if row.get("is_current"):
                retire_other_schedules(db, schedule_id, row["classroom_id"], row["type"], row["exam_id"])
            db.commit()
        except mysql.connector.Error:
            db.rollback()
            if key:
                svc.storage.delete(svc.schedules_bucket, key)
            raise
    finally:
        db.close()

    current_app.logger.info("Schedule %s updated by admin %s", schedule_id, admin.id)
    return success(
        headers={
            "ETag": schedule_etag(row["classroom_id"], row["type"], row["exam_id"], row.get("version")),
            "Cache-Control": PRIVATE_CACHE,
        },
        data=_format_schedule(row),
    )
