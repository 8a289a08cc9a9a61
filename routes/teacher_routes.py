from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import mysql.connector
from flask import Blueprint, current_app, request

from utils import services, teacher_required
from utils.auth import current_principal
from utils.db import execute, fetch_all, fetch_one, get_db_connection, insert
from utils.notifications import notify_classroom
from utils.responses import not_found, success, validation_error
from utils.timezone_helpers import db_now, school_today, to_iso
from utils.uploads import RESOURCE_EXTENSIONS, extension_for, form_id, read_upload, slug_title, store_object

teacher_bp = Blueprint("teacher", __name__, url_prefix="/api/teacher")

RESOURCE_TYPES = ("notes", "assignment", "reference", "video", "presentation", "other")


def _with_connection(connect, func, *args):
    # Each worker opens its own connection; MySQL connections are not shared across threads
    db = connect()
    try:
        return func(db, *args)
    finally:
        db.close()


def fetch_class_assignments(db, teacher_id, today):
    """Active assignments only: ``valid_upto`` unset or not yet passed."""
    return fetch_all(
        db,
        """
        SELECT tc.teacher_class_id, tc.class_id, tc.is_temporary, tc.valid_upto, tc.schedule,
               c.class, c.section, c.medium, c.total_student
        FROM teacher_class tc
        LEFT JOIN classrooms c ON c.classroom_id = tc.class_id
        WHERE tc.teacher_id=%s AND (tc.valid_upto IS NULL OR tc.valid_upto >= %s)
        ORDER BY c.class, c.section
        """,
        (teacher_id, today),
    )


def fetch_subjects(db):
    return fetch_all(db, "SELECT subject_id, name FROM subject ORDER BY name")


def format_class(row: dict) -> dict:
    students = int(row.get("total_student") or 0)
    return {
        "id": row["teacher_class_id"],
        "classId": row.get("class_id"),
        "isTemporary": bool(row.get("is_temporary")),
        "name": f"{row.get('class') or ''} {row.get('section') or ''}".strip(),
        "students": students,
        "sections": [row.get("section")] if row.get("section") else [],
        "medium": row.get("medium"),
        "schedule": row.get("schedule") or "No schedule available",
    }


@teacher_bp.route("/dashboard", methods=["GET"])
@teacher_required
def dashboard():
    teacher = current_principal()
    connect = services().connect
    with ThreadPoolExecutor(max_workers=2) as executor:
        classes_future = executor.submit(
            _with_connection, connect, fetch_class_assignments, teacher.teacher_id, school_today()
        )
        subjects_future = executor.submit(_with_connection, connect, fetch_subjects)
        class_rows = classes_future.result()
        subject_rows = subjects_future.result()

    classes = [format_class(r) for r in class_rows]
    return success(
        data={
            "classes": classes,
            "subjects": [{"subjectId": s["subject_id"], "name": s.get("name")} for s in subject_rows],
            "metrics": {"classes": len(classes), "students": sum(c["students"] for c in classes)},
        }
    )


@teacher_bp.route("/subjects", methods=["GET"])
@teacher_required
def subjects():
    connect = services().connect
    rows = _with_connection(connect, fetch_subjects)
    return success(data=[{"subjectId": s["subject_id"], "name": s.get("name")} for s in rows])


# ---------- Study resources ----------
def validate_resource_form(form, files) -> dict:
    errors = []
    classroom_id = form_id(form, "classroom_id")
    if classroom_id is None:
        errors.append({"field": "classroom_id", "message": "classroom_id is required"})
    subject_id = form_id(form, "subject_id")
    if subject_id is None:
        errors.append({"field": "subject_id", "message": "subject_id is required"})
    title = str(form.get("title") or "").strip()
    if not title:
        errors.append({"field": "title", "message": "title is required"})
    resource_type = str(form.get("resource_type") or "").strip().lower()
    if resource_type not in RESOURCE_TYPES:
        errors.append({"field": "resource_type", "message": "Invalid resource type"})
    session_year = form_id(form, "session_year")
    if session_year is None:
        errors.append({"field": "session_year", "message": "session_year is required"})
    upload = read_upload(files.get("file"))
    if upload is None:
        errors.append({"field": "file", "message": "file is required"})
    if errors:
        raise validation_error(errors, "Missing required fields")

    return {
        "classroom_id": classroom_id,
        "subject_id": subject_id,
        "title": title,
        "description": str(form.get("description") or "").strip() or None,
        "resource_type": resource_type,
        "category": str(form.get("category") or "").strip() or None,
        "session_year": session_year,
        "file": upload,
    }


def next_resource_version(db, classroom_id: int, subject_id: int, title: str) -> int:
    row = fetch_one(
        db,
        "SELECT version FROM study_resources WHERE classroom_id=%s AND subject_id=%s AND title=%s "
        "ORDER BY version DESC LIMIT 1",
        (classroom_id, subject_id, title),
    )
    return int((row or {}).get("version") or 0) + 1


def resource_storage_key(form: dict, version: int) -> str:
    upload = form["file"]
    extension = extension_for(upload.content_type, RESOURCE_EXTENSIONS, default="bin")
    file_name = f"{slug_title(form['title'])}_v{version}.{extension}"
    return (
        f"study-resources/{form['session_year']}/{form['classroom_id']}/{form['subject_id']}/"
        f"{form['resource_type']}/v{version}/{file_name}"
    )


@teacher_bp.route("/resources", methods=["POST"])
@teacher_required
def upload_resource():
    teacher = current_principal()
    form = validate_resource_form(request.form, request.files)
    upload = form["file"]
    svc = services()
    db = get_db_connection()
    try:
        if not fetch_one(db, "SELECT classroom_id FROM classrooms WHERE classroom_id=%s", (form["classroom_id"],)):
            raise not_found("Classroom not found")
        subject = fetch_one(db, "SELECT subject_id, name FROM subject WHERE subject_id=%s", (form["subject_id"],))
        if not subject:
            raise not_found("Subject not found")

        version = next_resource_version(db, form["classroom_id"], form["subject_id"], form["title"])
        key = resource_storage_key(form, version)
        store_object(svc.storage, svc.resources_bucket, key, upload)

        now = db_now()
        try:
            resource_id = insert(
                db,
                "INSERT INTO study_resources (classroom_id, subject_id, teacher_id, title, description, "
                "resource_type, category, storage_bucket, storage_key, file_name, file_size, mime_type, "
                "version, is_current, is_public, download_count, created_at, updated_at) "
                "VALUES (%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,1,1,0,%s,%s)",
                (
                    form["classroom_id"], form["subject_id"], teacher.teacher_id, form["title"],
                    form["description"], form["resource_type"], form["category"], svc.resources_bucket, key,
                    upload.name, upload.size, upload.content_type, version, now, now,
                ),
            )
            # Exactly one current version per (classroom, subject, title)
            execute(
                db,
                "UPDATE study_resources SET is_current=0 "
                "WHERE classroom_id=%s AND subject_id=%s AND title=%s AND resource_id<>%s",
                (form["classroom_id"], form["subject_id"], form["title"], resource_id),
            )
            db.commit()
        except mysql.connector.Error:
            db.rollback()
            svc.storage.delete(svc.resources_bucket, key)
            raise

        notified = notify_classroom(
            db,
            form["classroom_id"],
            {
                "type": "study_resource",
                "title": f"New {form['resource_type']} uploaded in {subject.get('name') or 'your class'}",
                "body": f"{form['title']} - {form['description'] or 'No description provided'}",
                "data": {
                    "screen": "Resources",
                    "resourceId": resource_id,
                    "classroomId": form["classroom_id"],
                    "subjectId": form["subject_id"],
                    "resourceType": form["resource_type"],
                },
            },
            svc.notifier,
        )
    finally:
        db.close()

    current_app.logger.info(
        "Teacher %s uploaded resource %s (v%s, %d students notified)",
        teacher.teacher_id,
        resource_id,
        version,
        notified,
    )
    return success(
        status=201,
        message="Resource uploaded successfully",
        data={
            "resourceId": resource_id,
            "classroomId": form["classroom_id"],
            "subjectId": form["subject_id"],
            "title": form["title"],
            "description": form["description"],
            "resourceType": form["resource_type"],
            "category": form["category"],
            "fileName": upload.name,
            "fileSize": upload.size,
            "mimeType": upload.content_type,
            "version": version,
            "isCurrent": True,
            "createdAt": to_iso(now),
        },
    )
