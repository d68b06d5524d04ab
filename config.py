import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as futsal.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "futsal.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Create tables on startup instead of running migrations (local dev, tests)
    AUTO_CREATE_TABLES = os.getenv("AUTO_CREATE_TABLES", "false").lower() == "true"

    # Every "today", "past" and gate-window check is evaluated here
    BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "Africa/Mogadishu")

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "futsal_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"
    CSRF_ENABLED = True

    # Passwords
    PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", "8"))
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Gate OTP issued with every booking
    BOOKING_OTP_LENGTH = int(os.getenv("BOOKING_OTP_LENGTH", "6"))

    # Subscriptions
    SUBSCRIPTION_MAX_MONTHS = int(os.getenv("SUBSCRIPTION_MAX_MONTHS", "12"))

    # WaafiPay mobile money (set in environment for production)
    WAAFI_API_URL = os.getenv("WAAFI_API_URL", "https://api.waafipay.com/asm")
    WAAFI_MERCHANT_UID = os.getenv("WAAFI_MERCHANT_UID")
    WAAFI_API_USER_ID = os.getenv("WAAFI_API_USER_ID")
    WAAFI_API_KEY = os.getenv("WAAFI_API_KEY")
    WAAFI_CURRENCY = os.getenv("WAAFI_CURRENCY", "USD")
    WAAFI_TIMEOUT_SECONDS = float(os.getenv("WAAFI_TIMEOUT_SECONDS", "60"))

    # Audit log retention sweep (flask prune-audit-logs)
    AUDIT_LOG_RETENTION_DAYS = int(os.getenv("AUDIT_LOG_RETENTION_DAYS", "90"))

    # Basic app settings
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    DEBUG = False
