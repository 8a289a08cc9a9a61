from __future__ import annotations

from flask import Blueprint, current_app, request

from routes.auth_routes import validate_new_password
from utils import student_required
from utils.auth import current_principal
from utils.db import execute, fetch_one, get_db_connection
from utils.responses import field_error, not_found, success
from utils.security import hash_password

user_bp = Blueprint("users", __name__, url_prefix="/api/users")


@user_bp.route("/change-password", methods=["POST"])
@student_required
def change_password():
    body = request.get_json(silent=True) or {}
    new_password = body.get("newPassword") if isinstance(body, dict) else None
    if not new_password:
        raise field_error("newPassword", "New password is required")
    validate_new_password(str(new_password))

    student = current_principal()
    db = get_db_connection()
    try:
        row = fetch_one(db, "SELECT auth_id FROM students WHERE id=%s", (student.student_id,))
        if not row or not row.get("auth_id"):
            raise not_found("Student or authentication data not found")
        execute(db, "UPDATE auth_data SET password=%s WHERE auth_id=%s", (hash_password(str(new_password)), row["auth_id"]))
        db.commit()
    finally:
        db.close()
    current_app.logger.info("Student %s changed password", student.student_id)
    return success(message="Password changed successfully")
