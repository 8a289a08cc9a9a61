from __future__ import annotations

from flask import current_app

from utils.auth import admin_required, student_required, teacher_required, user_required
from utils.db import EXTENSION_KEY


def services():
    """The process-wide service container built by ``extensions.init_extensions``."""
    return current_app.extensions[EXTENSION_KEY]


__all__ = ["services", "admin_required", "student_required", "teacher_required", "user_required"]
