from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

import mysql.connector

from utils.db import execute, fetch_all, fetch_one, insert
from utils.dispatchers import DispatchUnavailable, NotificationDriver
from utils.principal import PLURAL_ROLES, Principal, recipient_types_for
from utils.query import And, Eq, In, IsNull, Node, NotNull, Page, paginate, where_clause
from utils.responses import ApiError, internal_error, validation_error
from utils.timezone_helpers import db_now, to_iso

logger = logging.getLogger(__name__)

SINGULAR_ROLES = tuple(PLURAL_ROLES)
TOPICS = ("students", "teachers", "admins", "all")
BROADCAST_IDS = {"ALL", "*", "BROADCAST"}
STATUS_FILTERS = ("all", "unread", "read")


def canonicalize_recipients(recipients: Any) -> List[Tuple[str, str]]:
    """Map recipient descriptors to ``(recipient_type, recipient_id)`` pairs.

    ``{"role": "student", "id": 7}`` -> ``("student", "7")``
    ``{"topic": "students"}`` -> ``("students", "ALL")``
    ``{"role": "teacher", "id": "ALL"}`` -> ``("teachers", "ALL")``

    Duplicates collapse to the first occurrence.
    """
    if not isinstance(recipients, list) or not recipients:
        raise validation_error([{"field": "recipients", "message": "Recipients required"}])

    out: List[Tuple[str, str]] = []
    errors = []
    for i, r in enumerate(recipients):
        pair = _canonical(r)
        if pair is None:
            errors.append({"field": f"recipients[{i}]", "message": "Expected {role, id} or {topic}"})
        elif pair not in out:
            out.append(pair)
    if errors:
        raise validation_error(errors)
    return out


def _canonical(r: Any) -> Optional[Tuple[str, str]]:
    if not isinstance(r, Mapping):
        return None
    topic = r.get("topic")
    if topic is not None:
        topic = str(topic).strip().lower()
        topic = PLURAL_ROLES.get(topic, topic)
        return (topic, "ALL") if topic in TOPICS else None

    role = str(r.get("role") or "").strip().lower()
    rid = r.get("id")
    if rid is None or str(rid).strip() == "":
        return None
    rid = str(rid).strip()
    if role in TOPICS:
        return (role, "ALL")
    if role not in SINGULAR_ROLES:
        return None
    if rid.upper() in BROADCAST_IDS:
        return (PLURAL_ROLES[role], "ALL")
    return (role, rid)


def find_template(conn, notification_type: Optional[str]) -> Optional[Dict[str, Any]]:
    if not notification_type:
        return None
    return fetch_one(
        conn,
        "SELECT notification_template_id, title_template, body_template FROM notification_templates "
        "WHERE type=%s AND is_active=1 LIMIT 1",
        (notification_type,),
    )


def create_and_send(conn, event: Mapping[str, Any], driver: NotificationDriver) -> List[Dict[str, Any]]:
    """Persist one notification row per canonical recipient, then hand them to ``driver``."""
    pairs = canonicalize_recipients(event.get("recipients"))
    template = find_template(conn, event.get("type"))
    title = template["title_template"] if template else event.get("title")
    body = template["body_template"] if template else event.get("body")
    if not title:
        raise validation_error([{"field": "title", "message": "title is required"}])
    data = event.get("data")
    if data is not None and not isinstance(data, Mapping):
        raise validation_error([{"field": "data", "message": "data must be an object"}])

    now = db_now()
    rows: List[Dict[str, Any]] = []
    for rtype, rid in pairs:
        nid = insert(
            conn,
            "INSERT INTO notifications (notification_template_id, title, body, data_json, dispatch_mode, "
            "recipient_type, recipient_id, status, created_at, read_at) "
            "VALUES (%s,%s,%s,%s,%s,%s,%s,'pending',%s,NULL)",
            (
                template["notification_template_id"] if template else None,
                title,
                body,
                json.dumps(data) if data is not None else None,
                driver.name,
                rtype,
                rid,
                now,
            ),
        )
        rows.append(
            {
                "notification_id": nid,
                "title": title,
                "body": body,
                "data": dict(data) if data is not None else None,
                "recipient_type": rtype,
                "recipient_id": rid,
                "created_at": now,
                "read_at": None,
            }
        )
    conn.commit()

    try:
        result = driver.send(rows, conn)
    except DispatchUnavailable:
        logger.exception("Notification driver %s unavailable", driver.name)
        raise internal_error("Failed to dispatch notifications")
    logger.info(
        "Notification event %r fanned out to %d recipients via %s",
        event.get("type"),
        len(rows),
        result.driver,
    )
    return rows


def notify_classroom(conn, classroom_id: int, event: Mapping[str, Any], driver: NotificationDriver) -> int:
    """Fan ``event`` out to every student enrolled in the classroom; returns the rows created.

    A failed fan-out is logged and reported as 0 so the write that triggered it stands.
    """
    students = fetch_all(
        conn,
        "SELECT DISTINCT student_id FROM student_enrollment WHERE classroom_id=%s",
        (classroom_id,),
    )
    if not students:
        return 0
    recipients = [{"role": "student", "id": s["student_id"]} for s in students]
    try:
        return len(create_and_send(conn, dict(event, recipients=recipients), driver))
    except (ApiError, mysql.connector.Error) as exc:
        conn.rollback()
        logger.warning("Classroom %s notification %r not sent: %s", classroom_id, event.get("type"), exc)
        return 0


def _recipient_filter(principal: Principal) -> Node:
    return And(
        In("recipient_id", [str(principal.id), "ALL"]),
        In("recipient_type", recipient_types_for(principal)),
    )


def list_for_principal(conn, principal: Principal, page: Page, status: str = "all"):
    if status not in STATUS_FILTERS:
        raise validation_error([{"field": "status", "message": "status must be all, unread or read"}])
    where = _recipient_filter(principal)
    if status == "unread":
        where = And(where, IsNull("read_at"))
    elif status == "read":
        where = And(where, NotNull("read_at"))
    rows, total = paginate(
        conn,
        select="notification_id, title, body, data_json, read_at, created_at",
        from_="notifications",
        where=where,
        page=page,
        order_by="created_at DESC, notification_id DESC",
    )
    return [serialize(r) for r in rows], total


def unread_count(conn, principal: Principal) -> int:
    where_sql, params = where_clause(And(_recipient_filter(principal), IsNull("read_at")))
    row = fetch_one(conn, f"SELECT COUNT(*) AS total FROM notifications{where_sql}", params)
    return int((row or {}).get("total") or 0)


def _own_rows(principal: Principal) -> Node:
    return And(Eq("recipient_id", str(principal.id)), Eq("recipient_type", principal.role))


def mark_read(conn, principal: Principal, notification_id: int) -> int:
    sql, params = And(Eq("notification_id", notification_id), _own_rows(principal)).compile()
    count = execute(conn, f"UPDATE notifications SET read_at=%s WHERE {sql}", [db_now(), *params])
    conn.commit()
    return count


def mark_all_read(conn, principal: Principal) -> int:
    sql, params = And(_own_rows(principal), IsNull("read_at")).compile()
    count = execute(conn, f"UPDATE notifications SET read_at=%s WHERE {sql}", [db_now(), *params])
    conn.commit()
    return count


def serialize(row: Mapping[str, Any]) -> Dict[str, Any]:
    data = row.get("data_json")
    if isinstance(data, (str, bytes, bytearray)):
        try:
            data = json.loads(data)
        except ValueError:
            data = None
    return {
        "id": row.get("notification_id"),
        "title": row.get("title"),
        "body": row.get("body"),
        "data": data,
        "readAt": to_iso(row.get("read_at")),
        "createdAt": to_iso(row.get("created_at")),
    }


def register_device(conn, principal: Principal, token: str, platform: str) -> None:
    """Upsert by token: re-registration rebinds the token and revalidates it."""
    execute(
        conn,
        "INSERT INTO device_tokens (token, platform, recipient_type, recipient_id, is_valid) "
        "VALUES (%s,%s,%s,%s,1) "
        "ON DUPLICATE KEY UPDATE platform=VALUES(platform), recipient_type=VALUES(recipient_type), "
        "recipient_id=VALUES(recipient_id), is_valid=1",
        (token, platform, principal.role, str(principal.id)),
    )
    conn.commit()


def unregister_device(conn, principal: Principal, token: str) -> int:
    count = execute(
        conn,
        "DELETE FROM device_tokens WHERE token=%s AND recipient_type=%s AND recipient_id=%s",
        (token, principal.role, str(principal.id)),
    )
    conn.commit()
    return count
