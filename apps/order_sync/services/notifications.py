"""
Completion emails for aggregated and daily sync jobs.

Mail goes out through the job owner's own SMTP account (MailProfile + MailServer).
Sending is best-effort: every failure is logged and reported as False, never raised.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from django.core.mail import EmailMultiAlternatives, get_connection
from django.template.loader import render_to_string
from django.utils.html import strip_tags

from .. import sync_settings
from ..models import BackgroundSyncJob, DailySyncJob, MailProfile

logger = logging.getLogger(__name__)

SENDER_NAME = "ERP Sync"


def format_duration(start: datetime | None, end: datetime | None) -> str:
    if start is None or end is None:
        return "0s"
    total_seconds = max(0, int((end - start).total_seconds()))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def _send(user_email: str, subject: str, html_body: str) -> bool:
    profile = MailProfile.objects.select_related("mail_server").filter(email=user_email).first()
    if profile is None or not profile.email_password or profile.mail_server is None:
        logger.info("User email %s not configured, skipping email notification", user_email)
        return False

    server = profile.mail_server
    use_ssl = bool(server.smtp_secure) and server.smtp_port == 465
    try:
        connection = get_connection(
            host=server.smtp_host,
            port=server.smtp_port,
            username=user_email,
            password=profile.email_password,
            use_ssl=use_ssl,
            use_tls=bool(server.smtp_secure) and not use_ssl,
            timeout=sync_settings.get_email_timeout_seconds(),
        )
        message = EmailMultiAlternatives(
            subject=subject,
            body=strip_tags(html_body),
            from_email=f"{SENDER_NAME} <{user_email}>",
            to=[user_email],
            connection=connection,
        )
        message.attach_alternative(html_body, "text/html")
        message.send()
    except Exception:
        logger.exception("Error sending completion email to %s", user_email)
        return False

    logger.info("Completion email sent to %s", user_email)
    return True


def _status_prefix(has_failures: bool) -> str:
    return "[Attention]" if has_failures else "[OK]"


def send_aggregated_summary(job: BackgroundSyncJob, *, duration: str) -> bool:
    context = {
        "user_name": job.user_name,
        "from_date": job.from_date.isoformat(),
        "to_date": job.to_date.isoformat(),
        "total": job.total_orders,
        "successful": job.successful_orders,
        "failed": job.failed_orders,
        "skipped": job.skipped_orders,
        "duration": duration,
    }
    subject = (
        f"{_status_prefix(job.failed_orders > 0)} Aggregated ERP Sync Complete - "
        f"{context['from_date']} to {context['to_date']}"
    )
    html_body = render_to_string("order_sync/email/aggregated_summary.html", context)
    return _send(job.user_email, subject, html_body)


def send_daily_summary(job: DailySyncJob, days: list[dict[str, Any]], *, duration: str) -> bool:
    completed_days = sum(1 for day in days if day.get("status") == "completed")
    failed_days = sum(1 for day in days if day.get("status") == "failed")
    context = {
        "user_name": job.user_name,
        "from_date": job.from_date.isoformat(),
        "to_date": job.to_date.isoformat(),
        "days": days,
        "total_days": len(days),
        "completed_days": completed_days,
        "failed_days": failed_days,
        "total_orders": sum(int(day.get("total_orders") or 0) for day in days),
        "successful_orders": sum(int(day.get("successful_orders") or 0) for day in days),
        "failed_orders": sum(int(day.get("failed_orders") or 0) for day in days),
        "skipped_orders": sum(int(day.get("skipped_orders") or 0) for day in days),
        "duration": duration,
    }
    subject = (
        f"{_status_prefix(failed_days > 0)} Daily ERP Sync Complete - "
        f"{context['from_date']} to {context['to_date']}"
    )
    html_body = render_to_string("order_sync/email/daily_summary.html", context)
    return _send(job.user_email, subject, html_body)
