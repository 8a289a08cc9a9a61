"""Notification delivery drivers.

A driver receives the notification rows that were just persisted and delivers
them. ``sync`` pushes inline and never raises; ``queue`` writes an outbox job
and raises :class:`DispatchUnavailable` when it cannot.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from utils.db import execute, fetch_all, insert, placeholders
from utils.push import FcmClient, PushNotConfigured, chunk
from utils.timezone_helpers import db_now

logger = logging.getLogger(__name__)

TOPIC_TYPES = {"students", "teachers", "admins"}


class DispatchUnavailable(RuntimeError):
    pass


@dataclass
class DispatchResult:
    driver: str
    sent: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    queued: List[int] = field(default_factory=list)


def ensure_outbox_table(conn) -> None:
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS notification_outbox (
            job_id INT AUTO_INCREMENT PRIMARY KEY,
            payload TEXT NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'queued',
            created_at DATETIME NOT NULL,
            INDEX idx_outbox_status (status)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
        """
    )
    conn.commit()


class NotificationDriver:
    name = "base"

    def send(self, rows: List[Mapping[str, Any]], conn) -> DispatchResult:
        raise NotImplementedError


class SyncDriver(NotificationDriver):
    """Deliver inline over FCM, best-effort."""

    name = "sync"

    def __init__(self, push_client: FcmClient, chunk_size: int = 500):
        self.push = push_client
        self.chunk_size = chunk_size

    def send(self, rows, conn) -> DispatchResult:
        result = DispatchResult(self.name)
        for row in rows:
            nid = row["notification_id"]
            try:
                if self._deliver(row, conn):
                    result.sent.append(nid)
                else:
                    result.failed.append(nid)
            except Exception:
                logger.exception("Push delivery failed for notification %s", nid)
                result.failed.append(nid)
        try:
            conn.commit()
        except Exception:
            logger.exception("Could not persist delivery status")
        return result

    def _deliver(self, row, conn) -> bool:
        nid = row["notification_id"]
        rtype = row["recipient_type"]
        try:
            if row["recipient_id"] == "ALL" and (rtype in TOPIC_TYPES or rtype == "all"):
                topics = sorted(TOPIC_TYPES) if rtype == "all" else [rtype]
                ok = all(self._push({"topic": t}, row).ok for t in topics)
                if ok:
                    self.mark_sent(conn, nid)
                else:
                    self.mark_failed(conn, nid, "topic_failed", "Topic send failed")
                return ok

            tokens = self.tokens_for(conn, rtype, row["recipient_id"])
            if not tokens:
                self.mark_failed(conn, nid, "no_tokens", "No valid device tokens")
                return False

            invalid: List[str] = []
            first_error = None
            any_ok = False
            for token_chunk in chunk(tokens, self.chunk_size):
                for token in token_chunk:
                    res = self._push({"token": token}, row)
                    if res.ok:
                        any_ok = True
                        continue
                    first_error = first_error or res
                    if res.token_invalid:
                        invalid.append(token)
            if invalid:
                self.invalidate_tokens(conn, invalid)
            if any_ok:
                self.mark_sent(conn, nid)
            else:
                self.mark_failed(
                    conn,
                    nid,
                    (first_error.error_code if first_error else None) or "all_failed",
                    (first_error.error_message if first_error else None) or "All tokens failed",
                )
            return any_ok
        except PushNotConfigured as exc:
            logger.warning("Notification %s not pushed: %s", nid, exc)
            self.mark_failed(conn, nid, "not_configured", str(exc))
            return False

    def _push(self, target: Dict[str, str], row):
        return self.push.send(target, row.get("title") or "", row.get("body") or "", row.get("data"))

    @staticmethod
    def tokens_for(conn, recipient_type: str, recipient_id: str) -> List[str]:
        rows = fetch_all(
            conn,
            "SELECT token FROM device_tokens WHERE recipient_type=%s AND recipient_id=%s AND is_valid=1",
            (recipient_type, str(recipient_id)),
        )
        return [r["token"] for r in rows]

    @staticmethod
    def invalidate_tokens(conn, tokens: List[str]) -> None:
        execute(conn, f"UPDATE device_tokens SET is_valid=0 WHERE token IN ({placeholders(tokens)})", tokens)

    @staticmethod
    def mark_sent(conn, notification_id: int) -> None:
        execute(
            conn,
            "UPDATE notifications SET status='sent', sent_at=%s WHERE notification_id=%s",
            (db_now(), notification_id),
        )

    @staticmethod
    def mark_failed(conn, notification_id: int, error_code: str, error_msg: str) -> None:
        execute(conn, "UPDATE notifications SET status='failed' WHERE notification_id=%s", (notification_id,))
        insert(
            conn,
            "INSERT INTO send_failures (notification_id, error_code, error_msg, created_at) VALUES (%s,%s,%s,%s)",
            (notification_id, error_code, (error_msg or "")[:500], db_now()),
        )


class QueueDriver(NotificationDriver):
    """Hand rows to the outbox table for an out-of-process sender."""

    name = "queue"

    def send(self, rows, conn) -> DispatchResult:
        ids = [int(r["notification_id"]) for r in rows]
        try:
            insert(
                conn,
                "INSERT INTO notification_outbox (payload, status, created_at) VALUES (%s,'queued',%s)",
                (json.dumps({"notificationIds": ids}), db_now()),
            )
            conn.commit()
        except Exception as exc:
            raise DispatchUnavailable("notification queue unavailable") from exc
        return DispatchResult(self.name, queued=ids)


DRIVER_NAMES = ("sync", "queue")


def build_driver(name: str, config: Mapping[str, Any]) -> NotificationDriver:
    name = (name or "sync").strip().lower()
    if name == "sync":
        client = FcmClient(config.get("FCM_PROJECT_ID"), config.get("FCM_SERVICE_ACCOUNT_JSON"))
        return SyncDriver(client, chunk_size=int(config.get("DISPATCH_CHUNK_SIZE") or 500))
    if name == "queue":
        return QueueDriver()
    raise ValueError(f"NOTIFICATION_DRIVER must be one of {DRIVER_NAMES}, got {name!r}")
