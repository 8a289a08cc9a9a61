from __future__ import annotations

from flask import Flask, request

API_PREFIX = "/api/"
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, PATCH, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}
PREFLIGHT_MAX_AGE = str(60 * 60 * 24)


def _is_api_path(path: str) -> bool:
    return path == API_PREFIX.rstrip("/") or path.startswith(API_PREFIX)


def register_cors(app: Flask) -> None:
    """Short-circuit API preflights and decorate every other API response. No credentials mode."""

    @app.before_request
    def _cors_preflight():
        if request.method == "OPTIONS" and _is_api_path(request.path):
            resp = app.response_class(status=200)
            resp.headers["Access-Control-Max-Age"] = PREFLIGHT_MAX_AGE
            return resp
        return None

    @app.after_request
    def _cors_headers(resp):
        if _is_api_path(request.path):
            for name, value in CORS_HEADERS.items():
                resp.headers[name] = value
        return resp
