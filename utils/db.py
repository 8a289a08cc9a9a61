from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import mysql.connector
from flask import current_app

# Key of the service container in ``app.extensions``
EXTENSION_KEY = "school"


def _flag(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return str(value).strip().lower() in ("1", "true", "yes")


class ConnectionFactory:
    """Opens short-lived MySQL connections from the app configuration."""

    def __init__(self, config: Dict[str, Any]):
        host = config.get("DB_HOST") or "localhost"
        user = config.get("DB_USER") or "root"
        password = config.get("DB_PASSWORD") or ""
        database = config.get("DB_NAME") or "school_app"
        port = 3306

        # Prefer credentials from DATABASE_URI to avoid hardcoding
        uri = config.get("DATABASE_URI") or ""
        if uri:
            parsed = urlparse(uri)
            if not parsed.scheme.startswith("mysql"):
                raise ValueError("DATABASE_URI must be a mysql:// URI")
            host = parsed.hostname or host
            user = parsed.username or user
            password = parsed.password or password
            port = parsed.port or port
            if parsed.path and len(parsed.path) > 1:
                database = parsed.path.lstrip("/")

        params: Dict[str, Any] = dict(host=host, user=user, password=password, database=database, port=port)
        # TLS only when explicitly requested or a CA is provided
        ssl_ca = (config.get("DB_SSL_CA") or "").strip() or None
        if _flag(config.get("DB_SSL_DISABLED")):
            params["ssl_disabled"] = True
        elif ssl_ca or _flag(config.get("DB_SSL_REQUIRE")):
            if ssl_ca:
                params["ssl_ca"] = ssl_ca
            params["ssl_verify_cert"] = _flag(config.get("DB_SSL_VERIFY"), default=True)
        self.params = params

    def __call__(self):
        return mysql.connector.connect(**self.params)


def get_db_connection():
    """Open a MySQL connection for the current request. The caller closes it."""
    return current_app.extensions[EXTENSION_KEY].connect()


def fetch_one(conn, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
    cur = conn.cursor(dictionary=True)
    cur.execute(sql, tuple(params))
    return cur.fetchone()


def fetch_all(conn, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
    cur = conn.cursor(dictionary=True)
    cur.execute(sql, tuple(params))
    return cur.fetchall() or []


def execute(conn, sql: str, params: Sequence[Any] = ()) -> int:
    """Run a write statement and return the affected row count. The caller commits."""
    cur = conn.cursor()
    cur.execute(sql, tuple(params))
    return cur.rowcount


def insert(conn, sql: str, params: Sequence[Any] = ()) -> int:
    cur = conn.cursor()
    cur.execute(sql, tuple(params))
    return int(cur.lastrowid)


def placeholders(values: Sequence[Any]) -> str:
    return ",".join(["%s"] * len(values))
