from __future__ import annotations

from flask import Blueprint, current_app, request

from utils import services, user_required
from utils.auth import current_principal
from utils.db import get_db_connection
from utils.notifications import (
    create_and_send,
    list_for_principal,
    mark_all_read,
    mark_read,
    register_device,
    unread_count,
    unregister_device,
)
from utils.principal import StudentPrincipal
from utils.query import parse_page
from utils.responses import field_error, forbidden, not_found, success, validation_error

notification_bp = Blueprint("notifications", __name__, url_prefix="/api")

PLATFORMS = ("android", "ios", "web")


@notification_bp.route("/notifications", methods=["GET"])
@user_required
def list_notifications():
    page = parse_page(request.args)
    status = (request.args.get("status") or "all").strip().lower()
    db = get_db_connection()
    try:
        items, total = list_for_principal(db, current_principal(), page, status)
    finally:
        db.close()
    return success(data={"items": items, "pagination": page.meta(total)})


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@user_required
def notifications_unread_count():
    db = get_db_connection()
    try:
        count = unread_count(db, current_principal())
    finally:
        db.close()
    return success(data={"count": count})


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["PATCH"])
@user_required
def notification_read(notification_id):
    db = get_db_connection()
    try:
        updated = mark_read(db, current_principal(), notification_id)
    finally:
        db.close()
    if not updated:
        raise not_found("Notification not found")
    return success(data={"id": notification_id})


@notification_bp.route("/notifications/read-all", methods=["PATCH"])
@user_required
def notifications_read_all():
    db = get_db_connection()
    try:
        updated = mark_all_read(db, current_principal())
    finally:
        db.close()
    return success(data={"updated": updated})


@notification_bp.route("/notifications/event", methods=["POST"])
@user_required
def notification_event():
    """Fan an event out to its recipients. Emitted by staff tooling, never by students."""
    principal = current_principal()
    if isinstance(principal, StudentPrincipal):
        raise forbidden("Students cannot emit notifications")
    event = request.get_json(silent=True)
    if not isinstance(event, dict):
        raise validation_error([{"field": "body", "message": "JSON object expected"}])

    db = get_db_connection()
    try:
        rows = create_and_send(db, event, services().notifier)
    finally:
        db.close()
    current_app.logger.info("%s %s emitted %r", principal.role, principal.id, event.get("type"))
    return success(data={"created": len(rows), "ids": [r["notification_id"] for r in rows]})


# ---------- Device tokens ----------
@notification_bp.route("/devices", methods=["POST"])
@user_required
def device_register():
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        body = {}
    token = str(body.get("token") or "").strip()
    platform = str(body.get("platform") or "").strip().lower()
    errors = []
    if not token:
        errors.append({"field": "token", "message": "token is required"})
    if platform not in PLATFORMS:
        errors.append({"field": "platform", "message": f"platform must be one of {', '.join(PLATFORMS)}"})
    if errors:
        raise validation_error(errors)

    db = get_db_connection()
    try:
        register_device(db, current_principal(), token, platform)
    finally:
        db.close()
    return success(message="Device registered")


@notification_bp.route("/devices", methods=["DELETE"])
@user_required
def device_unregister():
    token = (request.args.get("token") or "").strip()
    if not token:
        raise field_error("token", "token query param required")
    db = get_db_connection()
    try:
        removed = unregister_device(db, current_principal(), token)
    finally:
        db.close()
    return success(data={"removed": removed})
