from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from flask import Flask

from utils.db import EXTENSION_KEY, ConnectionFactory
from utils.dispatchers import NotificationDriver, build_driver
from utils.otp import OtpService
from utils.storage import ObjectStore
from utils.tokens import TokenService
from utils.whatsapp import WhatsAppGateway

@dataclass(frozen=True)
class AppServices:
    """Process-wide collaborators, built once at startup and read-only afterwards."""

    connect: Callable[[], Any]
    tokens: TokenService
    storage: ObjectStore
    otp: OtpService
    notifier: NotificationDriver
    resources_bucket: str
    schedules_bucket: str


def init_extensions(app: Flask, **overrides: Any) -> AppServices:
    """Build the service container from ``app.config``. ``overrides`` replace individual services."""
    cfg = app.config
    secret = cfg.get("JWT_SECRET")
    if not secret:
        raise RuntimeError("JWT_SECRET is required")

    services = dict(
        connect=ConnectionFactory(cfg),
        tokens=TokenService(
            secret,
            algorithm=cfg.get("JWT_ALGORITHM") or "HS256",
            default_ttl=timedelta(days=int(cfg.get("JWT_EXPIRES_DAYS") or 90)),
        ),
        storage=ObjectStore(region=cfg.get("AWS_REGION"), default_ttl=int(cfg.get("SIGNED_URL_TTL") or 300)),
        otp=OtpService(
            WhatsAppGateway.from_config(cfg),
            otp_ttl=timedelta(minutes=int(cfg.get("OTP_TTL_MINUTES") or 10)),
            reset_ttl=timedelta(minutes=int(cfg.get("RESET_TOKEN_TTL_MINUTES") or 15)),
        ),
        notifier=build_driver(cfg.get("NOTIFICATION_DRIVER") or "sync", cfg),
        resources_bucket=cfg.get("STUDY_RESOURCES_S3_BUCKET") or cfg.get("AWS_S3_BUCKET") or "vps-docs",
        schedules_bucket=cfg.get("SCHEDULES_S3_BUCKET") or cfg.get("AWS_S3_BUCKET") or "schedules",
    )
    services.update(overrides)
    container = AppServices(**services)
    app.extensions[EXTENSION_KEY] = container
    return container
