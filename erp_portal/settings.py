"""Django settings for the ERP order sync portal."""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _env_float(name: str, default: float, *, minimum: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return default
    return value

# Security: prefer env in production; dev default only when explicitly enabled
_SECRET_KEY = os.getenv("DJANGO_SECRET_KEY")
if _SECRET_KEY:
    SECRET_KEY = _SECRET_KEY
else:
    # Fallback for local dev only; do not use in production
    SECRET_KEY = os.getenv("ERP_PORTAL_DEV_SECRET_KEY", "django-insecure-dev-only-change-in-production")

# Default DEBUG=True when unset so runserver works with no env (local dev). Set DJANGO_DEBUG=0 in production.
_debug_raw = os.getenv("DJANGO_DEBUG")
if _debug_raw is None:
    DEBUG = True
else:
    DEBUG = _debug_raw.lower() in ("1", "true", "yes")

_raw_hosts = os.getenv("DJANGO_ALLOWED_HOSTS", "").strip()
if _raw_hosts:
    ALLOWED_HOSTS = [h.strip() for h in _raw_hosts.split(",") if h.strip()]
elif DEBUG:
    ALLOWED_HOSTS = ["localhost", "127.0.0.1", "[::1]", "*"]
else:
    ALLOWED_HOSTS = ["localhost", "127.0.0.1", "[::1]"]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "apps.order_sync",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "erp_portal.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "erp_portal.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("ERP_PORTAL_DB_PATH") or (BASE_DIR / "db.sqlite3"),
    }
}

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "loggers": {
        "apps.order_sync": {
            "handlers": ["console"],
            "level": os.getenv("ERP_PORTAL_LOG_LEVEL", "INFO").upper(),
            "propagate": False,
        },
    },
}

# Completion emails are sent through per-user SMTP profiles; this backend is the transport class.
EMAIL_BACKEND = os.getenv("ERP_PORTAL_EMAIL_BACKEND", "django.core.mail.backends.smtp.EmailBackend")
ERP_SYNC_EMAIL_TIMEOUT_SECONDS = _env_int("ERP_SYNC_EMAIL_TIMEOUT_SECONDS", 30, minimum=1)

# External step executor (per-step order submission to the ERP).
ERP_SYNC_STEP_URL = os.getenv("ERP_SYNC_STEP_URL", "http://127.0.0.1:54321/functions/v1/sync-order-to-odoo-step")
ERP_SYNC_STEP_API_KEY = os.getenv("ERP_SYNC_STEP_API_KEY", "")
ERP_SYNC_STEP_TIMEOUT_SECONDS = _env_float("ERP_SYNC_STEP_TIMEOUT_SECONDS", 60.0, minimum=1)

# Bearer token required by the trigger/control API. Empty disables the check (local dev).
ERP_SYNC_API_TOKEN = os.getenv("ERP_SYNC_API_TOKEN", "")

# Chunk budgets for the aggregated runner and the daily supervisor.
ERP_SYNC_CHUNK_MAX_INVOICES = _env_int("ERP_SYNC_CHUNK_MAX_INVOICES", 5, minimum=1)
ERP_SYNC_CHUNK_MAX_SECONDS = _env_float("ERP_SYNC_CHUNK_MAX_SECONDS", 20.0, minimum=1)
ERP_SYNC_DAILY_MAX_SECONDS = _env_float("ERP_SYNC_DAILY_MAX_SECONDS", 25.0, minimum=1)
ERP_SYNC_DAILY_POLL_SECONDS = _env_float("ERP_SYNC_DAILY_POLL_SECONDS", 5.0, minimum=0)
ERP_SYNC_DAILY_POLL_MAX_ATTEMPTS = _env_int("ERP_SYNC_DAILY_POLL_MAX_ATTEMPTS", 120, minimum=1)
ERP_SYNC_EXCLUDED_PAYMENT_METHOD = os.getenv("ERP_SYNC_EXCLUDED_PAYMENT_METHOD", "point")

# Task worker knobs.
ERP_SYNC_WORKER_POLL_SECONDS = _env_int("ERP_SYNC_WORKER_POLL_SECONDS", 5, minimum=1)
ERP_SYNC_WORKER_THREADS = _env_int("ERP_SYNC_WORKER_THREADS", 2, minimum=1)
ERP_SYNC_TASK_STALE_MINUTES = _env_int("ERP_SYNC_TASK_STALE_MINUTES", 15, minimum=1)
ERP_SYNC_TASK_MAX_ATTEMPTS = _env_int("ERP_SYNC_TASK_MAX_ATTEMPTS", 3, minimum=1)

# Canonical business-day clock for scheduled daily syncs.
ERP_BUSINESS_TIMEZONE = os.getenv("ERP_BUSINESS_TIMEZONE", "Asia/Riyadh")
ERP_BUSINESS_DAY_CUTOFF_HOUR = _env_int("ERP_BUSINESS_DAY_CUTOFF_HOUR", 5, minimum=0)

# Production security (when DEBUG is False)
if not DEBUG:
    SECURE_BROWSER_XSS_FILTER = True
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = "DENY"
    CSRF_COOKIE_SECURE = True
    SESSION_COOKIE_SECURE = True
    SECURE_SSL_REDIRECT = os.getenv("DJANGO_SECURE_SSL_REDIRECT", "").lower() in ("1", "true", "yes")
    SECURE_HSTS_SECONDS = _env_int("DJANGO_SECURE_HSTS_SECONDS", 0, minimum=0)
    SECURE_HSTS_INCLUDE_SUBDOMAINS = SECURE_HSTS_SECONDS > 0
    SECURE_HSTS_PRELOAD = SECURE_HSTS_SECONDS > 0
