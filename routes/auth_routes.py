from __future__ import annotations

from flask import Blueprint, request

from utils import services
from utils.db import fetch_one, get_db_connection
from utils.principal import StudentPrincipal, TeacherPrincipal, claims_for
from utils.query import classroom_for_enrollment
from utils.responses import ApiError, success, validation_error
from utils.security import verify_password

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

MIN_PASSWORD_LENGTH = 6


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _require(body: dict, *fields: str) -> dict:
    values = {name: str(body.get(name) or "").strip() for name in fields}
    missing = [{"field": name, "message": f"{name} is required"} for name, value in values.items() if not value]
    if missing:
        raise validation_error(missing)
    return values


def validate_new_password(password: str, field: str = "newPassword") -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise validation_error(
            [{"field": field, "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"}]
        )


@auth_bp.route("/login", methods=["POST"])
def student_login():
    """Roll number + password. The token carries the latest enrollment and its classroom."""
    body = _json_body()
    values = _require(body, "rollNumber", "password")

    db = get_db_connection()
    try:
        student = fetch_one(
            db,
            "SELECT s.id, s.roll_no, s.name, s.class, s.section, a.password "
            "FROM students s LEFT JOIN auth_data a ON a.auth_id = s.auth_id "
            "WHERE s.roll_no=%s LIMIT 1",
            (values["rollNumber"],),
        )
        if not student or not verify_password(student.get("password"), str(body.get("password"))):
            raise ApiError("UNAUTHORIZED", "Invalid roll number or password")

        enrollment = fetch_one(
            db,
            "SELECT enrollment_id FROM student_enrollment WHERE student_id=%s ORDER BY enrollment_id DESC LIMIT 1",
            (student["id"],),
        )
        enrollment_id = int(enrollment["enrollment_id"]) if enrollment else None
        class_id = classroom_for_enrollment(db, enrollment_id) if enrollment_id else None
    finally:
        db.close()

    principal = StudentPrincipal(
        student_id=str(student["id"]),
        enrollment_id=enrollment_id,
        class_id=class_id,
        display_name=student.get("name"),
        roll_number=student.get("roll_no"),
    )
    token = services().tokens.sign(claims_for(principal))
    return success(
        message="Login successful",
        data={
            "token": token,
            "user": {
                "id": student["id"],
                "rollNumber": student.get("roll_no"),
                "name": student.get("name"),
                "class": student.get("class"),
                "section": student.get("section"),
                "enrollmentId": enrollment_id,
                "classId": class_id,
                "role": principal.role,
            },
        },
    )


@auth_bp.route("/teacher/login", methods=["POST"])
def teacher_login():
    body = _json_body()
    values = _require(body, "teacherId", "password")

    db = get_db_connection()
    try:
        teacher = fetch_one(
            db,
            "SELECT teacher_id, name, email, password, phone_no, subject FROM teachers WHERE teacher_id=%s LIMIT 1",
            (values["teacherId"],),
        )
    finally:
        db.close()
    if not teacher or not verify_password(teacher.get("password"), str(body.get("password"))):
        raise ApiError("UNAUTHORIZED", "Invalid employee ID or password")

    principal = TeacherPrincipal(
        teacher_id=str(teacher["teacher_id"]),
        display_name=teacher.get("name"),
        email=teacher.get("email"),
    )
    token = services().tokens.sign(claims_for(principal))
    return success(
        data={
            "token": token,
            "user": {
                "teacherId": teacher["teacher_id"],
                "name": teacher.get("name"),
                "department": teacher.get("subject") or "",
                "role": principal.role,
                "mobileNumber": teacher.get("phone_no") or "",
            },
        },
    )


# ---------- Password recovery ----------
@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    values = _require(_json_body(), "mobile")
    db = get_db_connection()
    try:
        masked = services().otp.request_password_reset(db, values["mobile"])
    finally:
        db.close()
    return success(message="OTP sent successfully", data={"maskedMobile": masked})


@auth_bp.route("/verify-otp", methods=["POST"])
def verify_otp():
    values = _require(_json_body(), "mobile", "otp")
    db = get_db_connection()
    try:
        reset_token = services().otp.verify_otp(db, values["mobile"], values["otp"])
    finally:
        db.close()
    return success(message="OTP verified successfully", data={"resetToken": reset_token})


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    body = _json_body()
    values = _require(body, "resetToken", "newPassword")
    new_password = str(body.get("newPassword"))
    validate_new_password(new_password)

    db = get_db_connection()
    try:
        services().otp.reset_with_token(db, values["resetToken"], new_password)
    finally:
        db.close()
    return success(message="Password reset successful")
