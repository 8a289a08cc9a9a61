from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from google.auth.transport.requests import Request
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
# Error codes meaning the device token will never work again
INVALID_TOKEN_CODES = {"UNREGISTERED", "INVALID_ARGUMENT"}


class PushNotConfigured(RuntimeError):
    pass


@dataclass
class PushResult:
    ok: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def token_invalid(self) -> bool:
        return not self.ok and self.error_code in INVALID_TOKEN_CODES


def chunk(items: List[Any], size: int) -> List[List[Any]]:
    """Split ``items`` into consecutive slices of at most ``size``."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [items[i:i + size] for i in range(0, len(items), size)]


def stringify_data(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    """FCM requires data values to be strings; ``None`` values are dropped."""
    if not data:
        return None
    return {str(k): str(v) for k, v in data.items() if v is not None}


class FcmClient:
    """Firebase Cloud Messaging HTTP v1 sender."""

    def __init__(self, project_id: Optional[str], service_account_json: Optional[str], timeout: int = 20):
        self.project_id = project_id or ""
        self.service_account_json = service_account_json or ""
        self.timeout = timeout
        self._credentials = None

    def is_configured(self) -> bool:
        return bool(self.project_id and self.service_account_json)

    def _load_credentials(self):
        raw = self.service_account_json
        if os.path.exists(raw):
            return service_account.Credentials.from_service_account_file(raw, scopes=[FCM_SCOPE])
        return service_account.Credentials.from_service_account_info(json.loads(raw), scopes=[FCM_SCOPE])

    def _access_token(self) -> str:
        if not self.is_configured():
            raise PushNotConfigured("Set FCM_PROJECT_ID and FCM_SERVICE_ACCOUNT_JSON to deliver push notifications.")
        if self._credentials is None:
            self._credentials = self._load_credentials()
        if not self._credentials.valid:
            self._credentials.refresh(Request())
        return self._credentials.token

    def _endpoint(self) -> str:
        return f"https://fcm.googleapis.com/v1/projects/{self.project_id}/messages:send"

    def send(self, target: Dict[str, str], title: str, body: str, data: Optional[Dict[str, Any]] = None) -> PushResult:
        """Send one message. ``target`` is ``{"token": ...}`` or ``{"topic": ...}``."""
        message: Dict[str, Any] = dict(target)
        message["notification"] = {"title": title or "", "body": body or ""}
        safe = stringify_data(data)
        if safe:
            message["data"] = safe
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }
        try:
            r = requests.post(self._endpoint(), headers=headers, json={"message": message}, timeout=self.timeout)
        except requests.RequestException as e:
            return PushResult(False, "transport_error", str(e))
        if 200 <= r.status_code < 300:
            return PushResult(True)
        code, msg = _parse_error(r)
        return PushResult(False, code, msg)


def _parse_error(r) -> tuple[str, str]:
    try:
        err = (r.json() or {}).get("error") or {}
    except ValueError:
        return f"http_{r.status_code}", r.text
    code = err.get("status") or f"http_{r.status_code}"
    for detail in err.get("details") or []:
        if detail.get("errorCode"):
            code = detail["errorCode"]
            break
    return code, err.get("message") or ""
