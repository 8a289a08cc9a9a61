import os
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app import create_app
from config import Config
from extensions import EXTENSION_KEY
from utils.dispatchers import DispatchResult
from utils.principal import AdminPrincipal, StudentPrincipal, TeacherPrincipal, claims_for

WRITE_VERBS = ("INSERT", "UPDATE", "DELETE")


class FakeCursor:
    def __init__(self, conn, dictionary=False):
        self.conn = conn
        self.dictionary = dictionary
        self.rows = []
        self.rowcount = -1
        self.lastrowid = None

    def execute(self, query, params=None):
        sql = " ".join(query.split())
        self.conn.exec_calls.append((sql, tuple(params) if params is not None else None))
        reply = self.conn.reply_for(sql)
        if isinstance(reply, Exception):
            raise reply
        is_write = sql.upper().startswith(WRITE_VERBS)
        if isinstance(reply, bool) or reply is None:
            self.rows = []
            self.rowcount = 1 if is_write else 0
        elif isinstance(reply, int):
            self.rows = []
            self.rowcount = reply
        elif isinstance(reply, dict):
            self.rows = [reply]
            self.rowcount = 1
        else:
            self.rows = list(reply)
            self.rowcount = len(self.rows)
        if sql.upper().startswith("INSERT"):
            self.lastrowid = self.conn.next_id()

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return list(self.rows)

    def close(self):
        pass


class FakeConnection:
    """In-process stand-in for a MySQL connection.

    ``on(pattern, *replies)`` scripts the result of statements containing
    ``pattern``. A reply is a row dict, a list of rows, an int rowcount or an
    exception to raise. Replies are consumed in order; the last one repeats.
    """

    def __init__(self):
        self.rules = []
        self.exec_calls = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self._last_id = 100

    def on(self, pattern, *replies):
        self.rules.append([pattern, list(replies)])
        return self

    def reply_for(self, sql):
        for pattern, replies in self.rules:
            if pattern in sql:
                return replies.pop(0) if len(replies) > 1 else replies[0]
        return None

    def next_id(self):
        self._last_id += 1
        return self._last_id

    def cursor(self, dictionary=False):
        return FakeCursor(self, dictionary)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True

    def statements(self, prefix):
        return [call for call in self.exec_calls if call[0].upper().startswith(prefix.upper())]

    @property
    def writes(self):
        return [call for call in self.exec_calls if call[0].upper().startswith(WRITE_VERBS)]


class ConfigForTests(Config):
    TESTING = True
    JWT_SECRET = "test-secret"
    NOTIFICATION_DRIVER = "sync"
    FCM_PROJECT_ID = ""
    FCM_SERVICE_ACCOUNT_JSON = ""
    WHATSAPP_ACCESS_TOKEN = ""
    WHATSAPP_PHONE_NUMBER_ID = ""
    AWS_S3_BUCKET = ""
    STUDY_RESOURCES_S3_BUCKET = "test-resources"
    SCHEDULES_S3_BUCKET = "test-schedules"


@pytest.fixture
def db():
    return FakeConnection()


@pytest.fixture
def storage():
    store = MagicMock()
    store.sign_read.return_value = "https://signed.example/object"
    store.delete.return_value = True
    return store


@pytest.fixture
def notifier():
    driver = MagicMock()
    driver.name = "sync"
    driver.send.side_effect = lambda rows, conn: DispatchResult("sync", sent=[r["notification_id"] for r in rows])
    return driver


@pytest.fixture
def app(db, storage, notifier):
    return create_app(ConfigForTests, connect=lambda: db, storage=storage, notifier=notifier)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def bearer(app):
    tokens = app.extensions[EXTENSION_KEY].tokens

    def _bearer(principal):
        return {"Authorization": f"Bearer {tokens.sign(claims_for(principal))}"}

    return _bearer


@pytest.fixture
def student():
    return StudentPrincipal(student_id="7", enrollment_id=70, class_id=5, display_name="Asha", roll_number="R-7")


@pytest.fixture
def teacher():
    return TeacherPrincipal(teacher_id="1", display_name="Mr. Rao", email="rao@example.org")


@pytest.fixture
def admin():
    return AdminPrincipal(admin_id="3", display_name="Principal", mobile="9999999999")
