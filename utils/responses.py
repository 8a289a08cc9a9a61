"""Uniform JSON envelope for every API response.

Success: ``{"success": true, ...payload, "timestamp": iso}``
Failure: ``{"success": false, "error": {code, message, details?, fields?}, "timestamp": iso}``
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from flask import jsonify


# Closed error-code set -> HTTP status
ERROR_STATUS: Dict[str, int] = {
    "UNAUTHORIZED": 401,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "EXAM_NOT_FOUND": 404,
    "CONFLICT": 409,
    "EXAM_ALREADY_DECLARED": 409,
    "RESULTS_NOT_GENERATED": 409,
    "VALIDATION_ERROR": 422,
    "INTERNAL_ERROR": 500,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_now() -> str:
    return utc_now().isoformat()


class ApiError(Exception):
    """Raised by handlers and services; rendered as the failure envelope."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Any = None,
        fields: Optional[List[Dict[str, str]]] = None,
        status: Optional[int] = None,
    ) -> None:
        if code not in ERROR_STATUS:
            raise ValueError(f"unknown error code {code!r}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.fields = fields
        self.status = status or ERROR_STATUS[code]

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        if self.fields is not None:
            error["fields"] = self.fields
        body: Dict[str, Any] = {"success": False, "error": error}
        if self.fields is not None:
            # Fee endpoints historically exposed the list as top-level ``errors``
            body["errors"] = self.fields
        body["timestamp"] = iso_now()
        return body

    def __repr__(self) -> str:
        return f"<ApiError {self.code} {self.status}: {self.message}>"


def unauthorized() -> ApiError:
    return ApiError("UNAUTHORIZED", "Unauthorized")


def forbidden(message: str = "Forbidden") -> ApiError:
    return ApiError("FORBIDDEN", message)


def not_found(message: str = "Not found") -> ApiError:
    return ApiError("NOT_FOUND", message)


def conflict(message: str, details: Any = None) -> ApiError:
    return ApiError("CONFLICT", message, details=details)


def validation_error(fields: Iterable[Dict[str, str]], message: str = "Validation failed") -> ApiError:
    return ApiError("VALIDATION_ERROR", message, fields=list(fields))


def field_error(field: str, message: str) -> ApiError:
    return validation_error([{"field": field, "message": message}])


def exam_not_found() -> ApiError:
    return ApiError("EXAM_NOT_FOUND", "Exam not found")


def exam_already_declared() -> ApiError:
    return ApiError("EXAM_ALREADY_DECLARED", "Results already declared")


def results_not_generated() -> ApiError:
    return ApiError(
        "RESULTS_NOT_GENERATED",
        "Cannot declare results - results have not been generated yet",
    )


def internal_error(message: str = "Internal server error") -> ApiError:
    return ApiError("INTERNAL_ERROR", message)


def success(status: int = 200, headers: Optional[Dict[str, str]] = None, **payload: Any):
    """Build a success envelope response. ``payload`` keys are merged at the top level."""
    body: Dict[str, Any] = {"success": True}
    body.update(payload)
    body["timestamp"] = iso_now()
    resp = jsonify(body)
    resp.status_code = status
    for name, value in (headers or {}).items():
        resp.headers[name] = value
    return resp


def failure(err: ApiError):
    resp = jsonify(err.to_dict())
    resp.status_code = err.status
    return resp
