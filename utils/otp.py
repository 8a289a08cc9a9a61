"""One-time passwords and password-reset tokens.

OTP and reset-token rows live in their own tables (``auth_otps``,
``auth_reset_tokens``) and are only reached through :class:`OtpService`.
Expiry is the ``expires_at > now`` predicate on every read.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from utils.db import execute, fetch_one, insert
from utils.responses import field_error, internal_error, not_found
from utils.security import (
    generate_otp,
    generate_reset_token,
    hash_password,
    mask_mobile,
    verify_password,
)
from utils.timezone_helpers import db_now

logger = logging.getLogger(__name__)

PURPOSE_PASSWORD_RESET = "password_reset"
PURPOSES = (PURPOSE_PASSWORD_RESET,)


def ensure_otp_tables(conn) -> None:
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS auth_otps (
            otp_id INT AUTO_INCREMENT PRIMARY KEY,
            auth_id VARCHAR(64) NOT NULL,
            mobile VARCHAR(32) NOT NULL,
            otp_hash VARCHAR(255) NOT NULL,
            purpose VARCHAR(32) NOT NULL,
            expires_at DATETIME NOT NULL,
            is_used TINYINT(1) NOT NULL DEFAULT 0,
            created_at DATETIME NOT NULL,
            INDEX idx_otp_auth (auth_id, purpose)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS auth_reset_tokens (
            token_id INT AUTO_INCREMENT PRIMARY KEY,
            auth_id VARCHAR(64) NOT NULL,
            token VARCHAR(128) NOT NULL,
            expires_at DATETIME NOT NULL,
            is_used TINYINT(1) NOT NULL DEFAULT 0,
            created_at DATETIME NOT NULL,
            UNIQUE KEY uq_reset_token (token),
            INDEX idx_reset_auth (auth_id)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
        """
    )
    conn.commit()


class OtpService:
    def __init__(
        self,
        gateway,
        otp_ttl: timedelta = timedelta(minutes=10),
        reset_ttl: timedelta = timedelta(minutes=15),
    ):
        self.gateway = gateway
        self.otp_ttl = otp_ttl
        self.reset_ttl = reset_ttl

    def find_subject(self, conn, mobile: str) -> Dict[str, Any]:
        row = fetch_one(conn, "SELECT auth_id, mobile FROM auth_data WHERE mobile=%s LIMIT 1", (mobile,))
        if not row:
            raise not_found("Mobile number not found")
        return row

    def issue_otp(self, conn, auth_id, mobile: str, purpose: str = PURPOSE_PASSWORD_RESET) -> str:
        """Store a hashed 6-digit code and send it over chat. Returns the masked mobile."""
        if purpose not in PURPOSES:
            raise ValueError(f"unsupported OTP purpose {purpose!r}")
        now = db_now()
        otp = generate_otp()
        # Purge stale codes for this subject before issuing a fresh one
        execute(
            conn,
            "DELETE FROM auth_otps WHERE auth_id=%s AND purpose=%s AND (is_used=1 OR expires_at <= %s)",
            (str(auth_id), purpose, now),
        )
        insert(
            conn,
            "INSERT INTO auth_otps (auth_id, mobile, otp_hash, purpose, expires_at, is_used, created_at) "
            "VALUES (%s,%s,%s,%s,%s,0,%s)",
            (str(auth_id), mobile, hash_password(otp), purpose, now + self.otp_ttl, now),
        )
        conn.commit()

        sent, reason = self.gateway.send_otp(mobile, otp)
        if not sent:
            logger.error("Failed to deliver OTP to %s: %s", mask_mobile(mobile), reason)
            raise internal_error("Failed to send OTP")
        return mask_mobile(mobile)

    def request_password_reset(self, conn, mobile: str) -> str:
        subject = self.find_subject(conn, mobile)
        return self.issue_otp(conn, subject["auth_id"], subject["mobile"] or mobile)

    def verify_otp(self, conn, mobile: str, candidate: str, purpose: str = PURPOSE_PASSWORD_RESET) -> str:
        """Check the latest live code; on match mark it used and mint a reset token."""
        now = db_now()
        row = fetch_one(
            conn,
            "SELECT otp_id, auth_id, otp_hash FROM auth_otps "
            "WHERE mobile=%s AND purpose=%s AND is_used=0 AND expires_at > %s "
            "ORDER BY otp_id DESC LIMIT 1",
            (mobile, purpose, now),
        )
        if not row or not verify_password(row.get("otp_hash"), (candidate or "").strip()):
            raise field_error("otp", "Invalid or expired OTP")

        used = execute(conn, "UPDATE auth_otps SET is_used=1 WHERE otp_id=%s AND is_used=0", (row["otp_id"],))
        if used != 1:
            # Another request consumed it first
            conn.rollback()
            raise field_error("otp", "Invalid or expired OTP")

        token = generate_reset_token()
        insert(
            conn,
            "INSERT INTO auth_reset_tokens (auth_id, token, expires_at, is_used, created_at) "
            "VALUES (%s,%s,%s,0,%s)",
            (row["auth_id"], token, now + self.reset_ttl, now),
        )
        conn.commit()
        return token

    def reset_with_token(self, conn, token: Optional[str], new_password: str) -> None:
        """Replace the subject's password and delete the token in one transaction."""
        now = db_now()
        row = fetch_one(
            conn,
            "SELECT token_id, auth_id FROM auth_reset_tokens "
            "WHERE token=%s AND is_used=0 AND expires_at > %s LIMIT 1",
            (token or "", now),
        )
        if not row:
            raise not_found("Invalid or expired reset token")
        try:
            deleted = execute(conn, "DELETE FROM auth_reset_tokens WHERE token_id=%s", (row["token_id"],))
            if deleted != 1:
                conn.rollback()
                raise not_found("Invalid or expired reset token")
            execute(
                conn,
                "UPDATE auth_data SET password=%s WHERE auth_id=%s",
                (hash_password(new_password), row["auth_id"]),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        logger.info("Password reset completed for auth_id=%s", row["auth_id"])
