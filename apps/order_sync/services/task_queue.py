from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .. import sync_settings
from ..models import BackgroundSyncJob, DailySyncJob, SyncRun, SyncTask
from .payloads import AggregatedSyncRequest, DailySyncRequest

logger = logging.getLogger(__name__)


def enqueue_task(kind: str, job_id, payload: dict[str, Any]) -> SyncTask:
    task = SyncTask.objects.create(kind=kind, job_id=job_id, payload_json=dict(payload))
    logger.info("Queued %s task %s for job %s", kind, task.id, job_id)
    return task


def has_pending_task(job_id) -> bool:
    return SyncTask.objects.filter(
        job_id=job_id,
        status__in=[SyncTask.STATUS_QUEUED, SyncTask.STATUS_RUNNING],
    ).exists()


def claim_next_task() -> SyncTask | None:
    with transaction.atomic():
        candidates = list(
            SyncTask.objects.select_for_update(skip_locked=True)
            .filter(status=SyncTask.STATUS_QUEUED)
            .order_by("queued_at")[:5]
        )
        for task in candidates:
            now = timezone.now()
            # Conditional update so two workers on a backend without row locks cannot both claim it.
            claimed = SyncTask.objects.filter(id=task.id, status=SyncTask.STATUS_QUEUED).update(
                status=SyncTask.STATUS_RUNNING,
                attempts=F("attempts") + 1,
                started_at=now,
                finished_at=None,
            )
            if claimed:
                task.refresh_from_db()
                return task
    return None


def _run_task_payload(task: SyncTask) -> str:
    if task.kind == SyncTask.KIND_AGGREGATED:
        from .aggregated_runner import run_aggregated_sync

        return run_aggregated_sync(AggregatedSyncRequest.from_payload(task.payload_json))
    if task.kind == SyncTask.KIND_DAILY:
        from .daily_runner import run_daily_sync

        return run_daily_sync(DailySyncRequest.from_payload(task.payload_json))
    raise ValueError(f"Unknown task kind: {task.kind}")


def execute_task(task: SyncTask) -> str:
    try:
        outcome = _run_task_payload(task)
    except Exception as exc:
        logger.exception("Sync task %s (%s) crashed", task.id, task.kind)
        SyncTask.objects.filter(id=task.id).update(
            status=SyncTask.STATUS_FAILED,
            last_error=str(exc) or exc.__class__.__name__,
            finished_at=timezone.now(),
        )
        return "error"

    SyncTask.objects.filter(id=task.id).update(
        status=SyncTask.STATUS_SUCCEEDED,
        last_error="",
        finished_at=timezone.now(),
    )
    logger.info("Sync task %s (%s) finished: %s", task.id, task.kind, outcome)
    requeue_orphaned_job(task)
    return outcome


def requeue_orphaned_job(task: SyncTask) -> SyncTask | None:
    """
    Queue a fresh task for a job that is pending with nothing queued.

    A resume that lands after the runner returned but before its task was marked
    succeeded sees the task as still pending and queues nothing itself.
    """
    from .job_control import aggregated_request_for, daily_request_for

    if task.kind == SyncTask.KIND_DAILY:
        model, build_request = DailySyncJob, daily_request_for
    else:
        model, build_request = BackgroundSyncJob, aggregated_request_for
    job = model.objects.filter(id=task.job_id, status=model.STATUS_PENDING).first()
    if job is None or has_pending_task(job.id):
        return None
    logger.info("Job %s was resumed while task %s was finishing; queueing it again", job.id, task.id)
    return enqueue_task(task.kind, job.id, build_request(job).to_payload())


def process_task_cycle(*, max_tasks: int | None = None) -> dict[str, int]:
    """Claim and execute queued tasks until the queue is empty (or max_tasks is reached)."""
    stats = {"claimed": 0, "succeeded": 0, "failed": 0}
    while max_tasks is None or stats["claimed"] < max_tasks:
        task = claim_next_task()
        if task is None:
            break
        stats["claimed"] += 1
        if execute_task(task) == "error":
            stats["failed"] += 1
        else:
            stats["succeeded"] += 1
    return stats


def fail_abandoned_job(task: SyncTask, message: str, *, now: datetime) -> bool:
    """Fail the job an abandoned task was driving, plus the run it left open."""
    if task.kind == SyncTask.KIND_DAILY:
        updated = DailySyncJob.objects.filter(
            id=task.job_id,
            status__in=[DailySyncJob.STATUS_PENDING, DailySyncJob.STATUS_RUNNING],
        ).update(status=DailySyncJob.STATUS_FAILED, error_message=message, completed_at=now, updated_at=now)
        return bool(updated)

    updated = BackgroundSyncJob.objects.filter(
        id=task.job_id,
        status__in=[BackgroundSyncJob.STATUS_PENDING, BackgroundSyncJob.STATUS_RUNNING],
    ).update(status=BackgroundSyncJob.STATUS_FAILED, error_message=message, completed_at=now, updated_at=now)
    if updated:
        SyncRun.objects.filter(
            jobs__id=task.job_id,
            status=SyncRun.STATUS_RUNNING,
        ).update(status=SyncRun.STATUS_FAILED, end_time=now, updated_at=now)
    return bool(updated)


def requeue_stale_tasks(
    *,
    now: datetime | None = None,
    stale_minutes: int | None = None,
    max_attempts: int | None = None,
) -> dict[str, int]:
    current = now or timezone.now()
    minutes = stale_minutes or sync_settings.get_task_stale_minutes()
    attempts_cap = max_attempts or sync_settings.get_task_max_attempts()
    cutoff = current - timedelta(minutes=minutes)
    stats = {"requeued": 0, "failed": 0}

    with transaction.atomic():
        stale = SyncTask.objects.select_for_update(skip_locked=True).filter(
            status=SyncTask.STATUS_RUNNING,
            started_at__lt=cutoff,
        )
        for task in stale:
            if task.attempts >= attempts_cap:
                task.status = SyncTask.STATUS_FAILED
                task.last_error = f"Abandoned after {task.attempts} attempt(s); worker stopped responding."
                task.finished_at = current
                task.save(update_fields=["status", "last_error", "finished_at"])
                stats["failed"] += 1
                logger.warning("Sync task %s failed permanently after %s attempts", task.id, task.attempts)
                if fail_abandoned_job(
                    task,
                    f"Sync worker stopped responding; gave up after {task.attempts} attempt(s).",
                    now=current,
                ):
                    logger.warning("Marked %s job %s failed after its task was abandoned", task.kind, task.job_id)
                continue
            task.status = SyncTask.STATUS_QUEUED
            task.queued_at = current
            task.started_at = None
            task.last_error = "Requeued after worker stopped responding."
            task.save(update_fields=["status", "queued_at", "started_at", "last_error"])
            stats["requeued"] += 1
            logger.info("Requeued stale sync task %s (attempt %s)", task.id, task.attempts)
    return stats
