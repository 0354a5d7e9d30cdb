"""
Sync settings: typed accessors over Django settings / environment.

Every accessor falls back to its default when the setting is missing or invalid,
so a bad env value never breaks a running job.
"""

from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings as django_settings


def _int_from_settings(name: str, default: int, *, minimum: int = 0) -> int:
    raw = getattr(django_settings, name, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    if value < minimum:
        return default
    return value


def _float_from_settings(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = getattr(django_settings, name, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    if value < minimum:
        return default
    return value


def _str_from_settings(name: str, default: str = "") -> str:
    raw = getattr(django_settings, name, default)
    if raw is None:
        return default
    return str(raw).strip()


def get_step_url() -> str:
    return _str_from_settings("ERP_SYNC_STEP_URL")


def get_step_api_key() -> str:
    return _str_from_settings("ERP_SYNC_STEP_API_KEY")


def get_step_timeout_seconds() -> float:
    return _float_from_settings("ERP_SYNC_STEP_TIMEOUT_SECONDS", 60.0, minimum=1.0)


def get_api_token() -> str:
    return _str_from_settings("ERP_SYNC_API_TOKEN")


def get_chunk_max_invoices() -> int:
    return _int_from_settings("ERP_SYNC_CHUNK_MAX_INVOICES", 5, minimum=1)


def get_chunk_max_seconds() -> float:
    return _float_from_settings("ERP_SYNC_CHUNK_MAX_SECONDS", 20.0, minimum=1.0)


def get_daily_max_seconds() -> float:
    return _float_from_settings("ERP_SYNC_DAILY_MAX_SECONDS", 25.0, minimum=1.0)


def get_daily_poll_seconds() -> float:
    return _float_from_settings("ERP_SYNC_DAILY_POLL_SECONDS", 5.0, minimum=0.0)


def get_daily_poll_max_attempts() -> int:
    return _int_from_settings("ERP_SYNC_DAILY_POLL_MAX_ATTEMPTS", 120, minimum=1)


def get_excluded_payment_method() -> str:
    return _str_from_settings("ERP_SYNC_EXCLUDED_PAYMENT_METHOD", "point")


def get_worker_poll_seconds() -> int:
    return _int_from_settings("ERP_SYNC_WORKER_POLL_SECONDS", 5, minimum=1)


def get_worker_threads() -> int:
    return _int_from_settings("ERP_SYNC_WORKER_THREADS", 2, minimum=1)


def get_task_stale_minutes() -> int:
    return _int_from_settings("ERP_SYNC_TASK_STALE_MINUTES", 15, minimum=1)


def get_task_max_attempts() -> int:
    return _int_from_settings("ERP_SYNC_TASK_MAX_ATTEMPTS", 3, minimum=1)


def get_email_timeout_seconds() -> int:
    return _int_from_settings("ERP_SYNC_EMAIL_TIMEOUT_SECONDS", 30, minimum=1)


def get_business_timezone() -> ZoneInfo:
    name = _str_from_settings("ERP_BUSINESS_TIMEZONE", "UTC") or "UTC"
    try:
        return ZoneInfo(name)
    except (ValueError, ZoneInfoNotFoundError):
        return ZoneInfo("UTC")


def get_business_day_cutoff_hour() -> int:
    hour = _int_from_settings("ERP_BUSINESS_DAY_CUTOFF_HOUR", 5)
    return hour if hour <= 23 else 5
