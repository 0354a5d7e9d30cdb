from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta

from django.db import transaction
from django.utils import timezone

from .. import sync_settings
from ..models import DailySyncJob, SyncSchedule, SyncTask
from .job_guard import describe_job, find_overlapping_job
from .payloads import DailySyncRequest
from .task_queue import enqueue_task

logger = logging.getLogger(__name__)

RESULT_QUEUED = SyncSchedule.LAST_RESULT_QUEUED
RESULT_SKIPPED_OVERLAP = SyncSchedule.LAST_RESULT_SKIPPED_OVERLAP
RESULT_SKIPPED_INVALID = SyncSchedule.LAST_RESULT_SKIPPED_INVALID


def get_target_sales_date(now: datetime | None = None) -> date:
    """Last closed business day: yesterday once the local cutoff hour has passed, else the day before."""
    current = now if now is not None else timezone.now()
    if timezone.is_naive(current):
        current = timezone.make_aware(current)
    local = timezone.localtime(current, sync_settings.get_business_timezone())
    closed_today = local.hour >= sync_settings.get_business_day_cutoff_hour()
    return local.date() - timedelta(days=1 if closed_today else 2)


def _record_overlap(schedule: SyncSchedule, *, now: datetime, reason: str = "") -> tuple[None, str]:
    schedule.last_result = RESULT_SKIPPED_OVERLAP
    schedule.last_error = reason
    schedule.last_fired_at = now
    schedule.save(update_fields=["last_result", "last_error", "last_fired_at", "updated_at"])
    return None, RESULT_SKIPPED_OVERLAP


def _active_scheduled_job_exists(schedule: SyncSchedule) -> bool:
    return DailySyncJob.objects.filter(
        scheduled_by=schedule,
        status__in=DailySyncJob.ACTIVE_STATUSES,
    ).exists()


def _mark_invalid(schedule: SyncSchedule, message: str) -> None:
    schedule.last_result = RESULT_SKIPPED_INVALID
    schedule.last_error = message
    schedule.save(update_fields=["last_result", "last_error", "updated_at"])


def _initialize_missing_next_fire(schedule: SyncSchedule, *, now: datetime) -> bool:
    if not schedule.enabled or schedule.next_fire_at is not None:
        return False
    try:
        schedule.next_fire_at = schedule.compute_next_fire_at(from_dt=now)
        schedule.last_error = ""
        schedule.save(update_fields=["next_fire_at", "last_error", "updated_at"])
    except Exception as exc:
        logger.warning("Schedule %s is invalid and cannot be initialized: %s", schedule.id, exc)
        _mark_invalid(schedule, str(exc))
    return True


def enqueue_daily_sync_for_schedule(
    schedule: SyncSchedule,
    *,
    now: datetime | None = None,
    source: str = "manual",
) -> tuple[DailySyncJob | None, str]:
    current = now or timezone.now()
    with transaction.atomic():
        schedule = SyncSchedule.objects.select_for_update().get(pk=schedule.pk)
        if _active_scheduled_job_exists(schedule):
            logger.info("Skipped %s enqueue for schedule %s: a daily sync is still active", source, schedule.id)
            return _record_overlap(schedule, now=current)

        target_date = get_target_sales_date(now=current)
        conflict = find_overlapping_job(target_date, target_date)
        if conflict is not None:
            reason = f"Another sync is already active: {describe_job(conflict)}"
            logger.info("Skipped %s enqueue for schedule %s: %s", source, schedule.id, reason)
            return _record_overlap(schedule, now=current, reason=reason)

        from .daily_runner import create_daily_job

        request = DailySyncRequest(
            job_id=uuid.uuid4(),
            from_date=target_date,
            to_date=target_date,
            user_id=schedule.user_id,
            user_email=schedule.user_email,
            user_name=schedule.user_name,
        )
        job = create_daily_job(request, scheduled_by=schedule)
        enqueue_task(SyncTask.KIND_DAILY, job.id, request.to_payload())

        schedule.last_result = RESULT_QUEUED
        schedule.last_error = ""
        schedule.last_fired_at = current
        schedule.save(update_fields=["last_result", "last_error", "last_fired_at", "updated_at"])
        logger.info("Schedule %s queued daily sync %s for %s (%s)", schedule.id, job.id, target_date, source)
        return job, RESULT_QUEUED


def _process_due_schedule(schedule: SyncSchedule, *, now: datetime) -> tuple[DailySyncJob | None, str]:
    try:
        next_fire_at = schedule.compute_next_fire_at(from_dt=now)
    except Exception as exc:
        logger.warning("Skipping invalid schedule %s: %s", schedule.id, exc)
        _mark_invalid(schedule, str(exc))
        return None, RESULT_SKIPPED_INVALID

    schedule.next_fire_at = next_fire_at
    schedule.save(update_fields=["next_fire_at", "updated_at"])
    return enqueue_daily_sync_for_schedule(schedule, now=now, source="worker")


def process_schedule_cycle(*, now: datetime | None = None, max_due: int = 25) -> dict[str, int]:
    current = now or timezone.now()
    stats = {
        "initialized": 0,
        "due": 0,
        "queued": 0,
        "skipped_overlap": 0,
        "skipped_invalid": 0,
        "errors": 0,
    }

    for schedule in SyncSchedule.objects.filter(enabled=True, next_fire_at__isnull=True):
        if _initialize_missing_next_fire(schedule, now=current):
            stats["initialized"] += 1

    with transaction.atomic():
        due_schedules = list(
            SyncSchedule.objects.select_for_update(skip_locked=True)
            .filter(enabled=True, next_fire_at__isnull=False, next_fire_at__lte=current)
            .order_by("next_fire_at", "created_at")[:max_due]
        )
        stats["due"] = len(due_schedules)

        for schedule in due_schedules:
            try:
                job, result = _process_due_schedule(schedule, now=current)
            except Exception:
                stats["errors"] += 1
                logger.exception("Failed processing schedule %s", schedule.id)
                continue

            if job is not None and result == RESULT_QUEUED:
                stats["queued"] += 1
            elif result == RESULT_SKIPPED_OVERLAP:
                stats["skipped_overlap"] += 1
            elif result == RESULT_SKIPPED_INVALID:
                stats["skipped_invalid"] += 1

    return stats
