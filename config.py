import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except (TypeError, ValueError):
        return default


class Config:
    # --------------------------
    # 🔹 Auth / tokens
    # --------------------------
    # Required. create_app() refuses to start without it.
    JWT_SECRET = os.environ.get("JWT_SECRET", "")
    JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
    JWT_EXPIRES_DAYS = _int_env("JWT_EXPIRES_DAYS", 90)

    # --------------------------
    # 🔹 MySQL Database
    # --------------------------
    # DATABASE_URI wins over the individual DB_* variables when set
    DATABASE_URI = os.environ.get("DATABASE_URI", "")
    DB_HOST = os.environ.get("DB_HOST", "localhost")
    DB_USER = os.environ.get("DB_USER", "root")
    DB_PASSWORD = os.environ.get("DB_PASSWORD", "")
    DB_NAME = os.environ.get("DB_NAME", "school_app")
    # Optional TLS; plaintext unless a CA is given or DB_SSL_REQUIRE is set
    DB_SSL_DISABLED = os.environ.get("DB_SSL_DISABLED", "0")
    DB_SSL_REQUIRE = os.environ.get("DB_SSL_REQUIRE", "0")
    DB_SSL_CA = os.environ.get("DB_SSL_CA", "")
    DB_SSL_VERIFY = os.environ.get("DB_SSL_VERIFY", "1")

    # Hosted-Postgres credentials from the previous deployment. Accepted, unused.
    SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
    SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")

    # --------------------------
    # 🔹 Object storage (S3)
    # --------------------------
    AWS_REGION = os.environ.get("AWS_REGION", "ap-south-1")
    AWS_S3_BUCKET = os.environ.get("AWS_S3_BUCKET", "")
    STUDY_RESOURCES_S3_BUCKET = (
        os.environ.get("STUDY_RESOURCES_S3_BUCKET") or AWS_S3_BUCKET or "vps-docs"
    )
    SCHEDULES_S3_BUCKET = os.environ.get("SCHEDULES_S3_BUCKET") or AWS_S3_BUCKET or "schedules"
    SIGNED_URL_TTL = _int_env("SIGNED_URL_TTL", 60 * 5)

    # --------------------------
    # 🔹 WhatsApp Cloud API (Meta)
    # --------------------------
    # Required for sending OTPs over WhatsApp
    WHATSAPP_ACCESS_TOKEN = os.environ.get("WHATSAPP_ACCESS_TOKEN", "")
    WHATSAPP_PHONE_NUMBER_ID = os.environ.get("WHATSAPP_PHONE_NUMBER_ID", "")
    WHATSAPP_TEMPLATE_NAME = os.environ.get("WHATSAPP_TEMPLATE_NAME", "otp_verification")
    WHATSAPP_TEMPLATE_LANG = os.environ.get("WHATSAPP_TEMPLATE_LANG", "en_US")
    WHATSAPP_COUNTRY_CODE = os.environ.get("WHATSAPP_COUNTRY_CODE", "91")

    # --------------------------
    # 🔹 OTP / password reset
    # --------------------------
    OTP_TTL_MINUTES = _int_env("OTP_TTL_MINUTES", 10)
    RESET_TOKEN_TTL_MINUTES = _int_env("RESET_TOKEN_TTL_MINUTES", 15)

    # --------------------------
    # 🔹 Notifications
    # --------------------------
    NOTIFICATION_DRIVER = (os.environ.get("NOTIFICATION_DRIVER", "sync") or "sync").strip().lower()
    FCM_PROJECT_ID = os.environ.get("FCM_PROJECT_ID", "")
    # Path to (or inline JSON of) the Firebase service account
    FCM_SERVICE_ACCOUNT_JSON = os.environ.get("FCM_SERVICE_ACCOUNT_JSON", "")
    DISPATCH_CHUNK_SIZE = _int_env("DISPATCH_CHUNK_SIZE", 500)

    # --------------------------
    # 🔹 Other App Constants
    # --------------------------
    APP_NAME = os.environ.get("APP_NAME", "School App API")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
