"""
Daily sync runner.

Walks a date range one day at a time. Each non-empty day is delegated to a child
BackgroundSyncJob whose progress is polled into the parent's day status map. When the
invocation budget runs out the runner enqueues a continuation for the same day; the
child keeps running on its own tasks meanwhile.

Day status only moves forward: pending -> running -> completed | failed.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import replace
from datetime import date, timedelta
from typing import Any

from django.utils import timezone

from .. import sync_settings
from ..models import BackgroundSyncJob, DailySyncJob, SyncTask
from .aggregation import build_invoices_for_range
from .notifications import format_duration, send_daily_summary
from .payloads import AggregatedSyncRequest, DailySyncRequest
from .task_queue import enqueue_task, has_pending_task

logger = logging.getLogger(__name__)

DAY_PENDING = "pending"
DAY_RUNNING = "running"
DAY_COMPLETED = "completed"
DAY_FAILED = "failed"
DAY_TERMINAL = (DAY_COMPLETED, DAY_FAILED)
_DAY_RANK = {DAY_PENDING: 0, DAY_RUNNING: 1, DAY_COMPLETED: 2, DAY_FAILED: 2}

OUTCOME_COMPLETED = "completed"
OUTCOME_CONTINUED = "continued"
OUTCOME_FAILED = "failed"
OUTCOME_ABORTED = "aborted"
OUTCOME_SKIPPED = "skipped"


def _monotonic() -> float:
    return time.monotonic()


def _wait(seconds: float) -> None:
    time.sleep(seconds)


def dates_in_range(from_date: date, to_date: date) -> list[date]:
    day, days = from_date, []
    while day <= to_date:
        days.append(day)
        day += timedelta(days=1)
    return days


def new_day_status(day: date) -> dict[str, Any]:
    return {
        "date": day.isoformat(),
        "status": DAY_PENDING,
        "total_orders": 0,
        "successful_orders": 0,
        "failed_orders": 0,
        "skipped_orders": 0,
        "error_message": "",
        "started_at": None,
        "completed_at": None,
        "background_job_id": None,
        "poll_attempts": 0,
    }


def advance_day(entry: dict[str, Any], status: str, **fields: Any) -> bool:
    """Apply a status transition; regressions are refused."""
    current = entry.get("status") or DAY_PENDING
    if current in DAY_TERMINAL or _DAY_RANK[status] < _DAY_RANK[current]:
        logger.warning("Refusing day %s transition %s -> %s", entry.get("date"), current, status)
        return False
    entry["status"] = status
    entry.update(fields)
    return True


def create_daily_job(request: DailySyncRequest, *, status: str = DailySyncJob.STATUS_PENDING, **extra) -> DailySyncJob:
    days = dates_in_range(request.from_date, request.to_date)
    return DailySyncJob.objects.create(
        id=request.job_id,
        from_date=request.from_date,
        to_date=request.to_date,
        user_id=request.user_id,
        user_email=request.user_email,
        user_name=request.user_name,
        status=status,
        total_days=len(days),
        day_statuses={day.isoformat(): new_day_status(day) for day in days},
        **extra,
    )


def _live_status(job_id) -> str | None:
    return DailySyncJob.objects.filter(id=job_id).values_list("status", flat=True).first()


def _totals(day_statuses: dict[str, dict[str, Any]]) -> dict[str, int]:
    entries = list(day_statuses.values())
    return {
        "completed_days": sum(1 for entry in entries if entry.get("status") == DAY_COMPLETED),
        "failed_days": sum(1 for entry in entries if entry.get("status") == DAY_FAILED),
        "total_orders": sum(int(entry.get("total_orders") or 0) for entry in entries),
        "successful_orders": sum(int(entry.get("successful_orders") or 0) for entry in entries),
        "failed_orders": sum(int(entry.get("failed_orders") or 0) for entry in entries),
        "skipped_orders": sum(int(entry.get("skipped_orders") or 0) for entry in entries),
    }


def _persist(job: DailySyncJob, day_statuses: dict[str, dict[str, Any]], *, current_day: date | None = None) -> None:
    # Queryset update so a concurrent pause/cancel on `status` is never overwritten.
    fields: dict[str, Any] = {"day_statuses": day_statuses, "updated_at": timezone.now(), **_totals(day_statuses)}
    if current_day is not None:
        fields["current_day"] = current_day
    DailySyncJob.objects.filter(id=job.id).update(**fields)


def _budget_exceeded(invocation_start: float) -> bool:
    return _monotonic() - invocation_start > sync_settings.get_daily_max_seconds()


def _finish_day_from_child(entry: dict[str, Any], child: BackgroundSyncJob) -> None:
    error_message = child.error_message or ""
    if child.status == BackgroundSyncJob.STATUS_CANCELLED and not error_message:
        error_message = "Background job was cancelled"
    advance_day(
        entry,
        DAY_COMPLETED if child.status == BackgroundSyncJob.STATUS_COMPLETED else DAY_FAILED,
        total_orders=child.total_orders,
        successful_orders=child.successful_orders,
        failed_orders=child.failed_orders,
        skipped_orders=child.skipped_orders,
        error_message=error_message,
        completed_at=timezone.now().isoformat(),
    )


def _copy_child_counters(entry: dict[str, Any], child: BackgroundSyncJob) -> None:
    entry["total_orders"] = child.total_orders
    entry["successful_orders"] = child.successful_orders
    entry["failed_orders"] = child.failed_orders
    entry["skipped_orders"] = child.skipped_orders


def _spawn_child(job: DailySyncJob, day: date, entry: dict[str, Any], day_statuses) -> BackgroundSyncJob | None:
    result = build_invoices_for_range(day, day)
    entry["total_orders"] = len(result.invoices)
    entry["skipped_orders"] = len(result.already_synced)
    _persist(job, day_statuses, current_day=day)

    if not result.invoices:
        logger.info("Daily job %s: no invoices for %s", job.id, day)
        advance_day(entry, DAY_COMPLETED, completed_at=timezone.now().isoformat())
        return None

    child = BackgroundSyncJob.objects.create(
        id=uuid.uuid4(),
        from_date=day,
        to_date=day,
        user_id=job.user_id,
        user_email=job.user_email,
        user_name=job.user_name,
        status=BackgroundSyncJob.STATUS_PENDING,
        total_orders=len(result.invoices),
        skipped_orders=len(result.already_synced),
        invoice_snapshot=[invoice.to_payload() for invoice in result.invoices],
        daily_job=job,
    )
    entry["background_job_id"] = str(child.id)
    entry["poll_attempts"] = 0
    _persist(job, day_statuses, current_day=day)

    child_request = AggregatedSyncRequest(
        job_id=child.id,
        from_date=day,
        to_date=day,
        user_id=job.user_id,
        user_email=job.user_email,
        user_name=job.user_name,
    )
    enqueue_task(SyncTask.KIND_AGGREGATED, child.id, child_request.to_payload())
    logger.info("Daily job %s: spawned child %s for %s (%s invoices)", job.id, child.id, day, len(result.invoices))
    return child


def _reattach_child(entry: dict[str, Any]) -> BackgroundSyncJob | None:
    from .job_control import aggregated_request_for, requeue_aggregated_job

    child = BackgroundSyncJob.objects.filter(id=entry["background_job_id"]).first()
    if child is None:
        return None
    if child.status == BackgroundSyncJob.STATUS_PAUSED:
        requeue_aggregated_job(child)
    elif child.status in (BackgroundSyncJob.STATUS_PENDING, BackgroundSyncJob.STATUS_RUNNING) and not has_pending_task(
        child.id
    ):
        # The child's task was lost (worker crash after retries); give it a fresh one.
        enqueue_task(SyncTask.KIND_AGGREGATED, child.id, aggregated_request_for(child).to_payload())
    return child


def _poll_child(
    job: DailySyncJob,
    day: date,
    entry: dict[str, Any],
    day_statuses,
    child: BackgroundSyncJob,
    invocation_start: float,
    request: DailySyncRequest,
) -> str | None:
    max_attempts = sync_settings.get_daily_poll_max_attempts()
    poll_seconds = sync_settings.get_daily_poll_seconds()

    while True:
        if child.status in BackgroundSyncJob.TERMINAL_STATUSES:
            _finish_day_from_child(entry, child)
            return None

        attempts = int(entry.get("poll_attempts") or 0)
        if attempts >= max_attempts:
            advance_day(
                entry,
                DAY_FAILED,
                error_message=f"Timed out waiting for background job {child.id} after {attempts} checks",
                completed_at=timezone.now().isoformat(),
            )
            return None

        status = _live_status(job.id)
        if status is None:
            return OUTCOME_ABORTED
        if status in (DailySyncJob.STATUS_PAUSED, DailySyncJob.STATUS_CANCELLED):
            _persist(job, day_statuses, current_day=day)
            return status

        if _budget_exceeded(invocation_start):
            return _schedule_continuation(job, day, day_statuses, request)

        _wait(poll_seconds)
        entry["poll_attempts"] = attempts + 1
        refreshed = BackgroundSyncJob.objects.filter(id=child.id).first()
        if refreshed is None:
            advance_day(
                entry,
                DAY_FAILED,
                error_message=f"Background job {child.id} disappeared",
                completed_at=timezone.now().isoformat(),
            )
            return None
        child = refreshed
        _copy_child_counters(entry, child)
        _persist(job, day_statuses, current_day=day)


def _process_day(
    job: DailySyncJob,
    day: date,
    day_statuses,
    invocation_start: float,
    request: DailySyncRequest,
) -> str | None:
    entry = day_statuses[day.isoformat()]
    child = None
    if entry.get("background_job_id"):
        child = _reattach_child(entry)
        if child is None:
            advance_day(
                entry,
                DAY_FAILED,
                error_message=f"Background job {entry['background_job_id']} disappeared",
                completed_at=timezone.now().isoformat(),
            )
            return None

    if child is None:
        advance_day(entry, DAY_RUNNING, started_at=entry.get("started_at") or timezone.now().isoformat())
        logger.info("Daily job %s: processing %s", job.id, day)
        child = _spawn_child(job, day, entry, day_statuses)
        if child is None:
            return None

    return _poll_child(job, day, entry, day_statuses, child, invocation_start, request)


def _schedule_continuation(job: DailySyncJob, day: date, day_statuses, request: DailySyncRequest) -> str:
    _persist(job, day_statuses, current_day=day)
    status = _live_status(job.id)
    if status is None:
        return OUTCOME_ABORTED
    if status not in (DailySyncJob.STATUS_RUNNING, DailySyncJob.STATUS_PENDING):
        logger.info("Not scheduling continuation because daily job %s status=%s", job.id, status)
        return status
    enqueue_task(SyncTask.KIND_DAILY, job.id, replace(request, job_id=job.id, resume_from_day=day).to_payload())
    logger.info("Daily job %s: runtime budget reached, continuing at %s", job.id, day)
    return OUTCOME_CONTINUED


def _complete(job: DailySyncJob, day_statuses) -> str:
    end = timezone.now()
    totals = _totals(day_statuses)
    for name, value in totals.items():
        setattr(job, name, value)
    job.day_statuses = day_statuses
    days = [day_statuses[key] for key in sorted(day_statuses)]
    duration = format_duration(job.started_at or job.created_at, end)
    job.email_sent = send_daily_summary(job, days, duration=duration)
    job.status = DailySyncJob.STATUS_COMPLETED
    job.completed_at = end
    job.save(
        update_fields=[
            *totals.keys(),
            "day_statuses",
            "email_sent",
            "status",
            "completed_at",
            "updated_at",
        ]
    )
    logger.info(
        "Daily job %s completed: %s day(s) completed, %s failed",
        job.id,
        totals["completed_days"],
        totals["failed_days"],
    )
    return OUTCOME_COMPLETED


def _run_job(job: DailySyncJob, request: DailySyncRequest, invocation_start: float) -> str:
    now = timezone.now()
    claimed = DailySyncJob.objects.filter(
        id=job.id,
        status__in=[DailySyncJob.STATUS_PENDING, DailySyncJob.STATUS_RUNNING],
    ).update(status=DailySyncJob.STATUS_RUNNING, started_at=job.started_at or now, updated_at=now)
    if not claimed:
        logger.info("Daily job %s is no longer pending/running; nothing to do", job.id)
        return OUTCOME_SKIPPED
    job.refresh_from_db()

    all_days = dates_in_range(job.from_date, job.to_date)
    day_statuses: dict[str, dict[str, Any]] = dict(job.day_statuses or {})
    for day in all_days:
        day_statuses.setdefault(day.isoformat(), new_day_status(day))

    start_index = 0
    if request.resume_from_day in all_days:
        start_index = all_days.index(request.resume_from_day)

    days_handled = 0
    for day in all_days[start_index:]:
        if days_handled > 0 and _budget_exceeded(invocation_start):
            return _schedule_continuation(job, day, day_statuses, request)

        status = _live_status(job.id)
        if status is None:
            logger.info("Daily job %s was deleted; stopping", job.id)
            return OUTCOME_ABORTED
        if status in (DailySyncJob.STATUS_PAUSED, DailySyncJob.STATUS_CANCELLED):
            logger.info("Daily job %s %s before %s", job.id, status, day)
            _persist(job, day_statuses, current_day=day)
            return status
        if status == DailySyncJob.STATUS_PENDING:
            DailySyncJob.objects.filter(id=job.id, status=status).update(
                status=DailySyncJob.STATUS_RUNNING,
                updated_at=timezone.now(),
            )

        entry = day_statuses[day.isoformat()]
        if entry.get("status") in DAY_TERMINAL:
            continue

        days_handled += 1
        try:
            outcome = _process_day(job, day, day_statuses, invocation_start, request)
        except Exception as exc:
            logger.exception("Daily job %s: error processing %s", job.id, day)
            advance_day(
                entry,
                DAY_FAILED,
                error_message=str(exc) or "Unknown error",
                completed_at=timezone.now().isoformat(),
            )
            outcome = None
        if outcome is not None:
            return outcome
        _persist(job, day_statuses, current_day=day)

    return _complete(job, day_statuses)


def run_daily_sync(request: DailySyncRequest) -> str:
    invocation_start = _monotonic()
    job = DailySyncJob.objects.filter(id=request.job_id).first()
    if job is None:
        if request.is_resume:
            logger.info("Daily job %s not found on resume; aborting silently", request.job_id)
            return OUTCOME_ABORTED
        job = create_daily_job(request)

    try:
        return _run_job(job, request, invocation_start)
    except Exception as exc:
        logger.exception("Daily sync job %s failed", job.id)
        now = timezone.now()
        DailySyncJob.objects.filter(id=job.id).update(
            status=DailySyncJob.STATUS_FAILED,
            error_message=str(exc) or "Unknown error",
            completed_at=now,
            updated_at=now,
        )
        return OUTCOME_FAILED
