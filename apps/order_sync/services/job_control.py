"""
Job lifecycle operations behind the HTTP API: trigger, pause, resume, cancel.

Status writes are conditional updates so a concurrent runner and a user action cannot
both win. Runners observe pause/cancel at their next checkpoint.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from django.db import transaction
from django.utils import timezone

from ..models import BackgroundSyncJob, DailySyncJob, SyncRun, SyncTask
from .job_guard import describe_job, find_overlapping_job
from .payloads import AggregatedSyncRequest, DailySyncRequest
from .task_queue import enqueue_task, has_pending_task

logger = logging.getLogger(__name__)

KIND_AGGREGATED = SyncTask.KIND_AGGREGATED
KIND_DAILY = SyncTask.KIND_DAILY
ACTION_PAUSE = "pause"
ACTION_RESUME = "resume"
ACTION_CANCEL = "cancel"


class JobControlError(Exception):
    status_code = 400


class JobNotFoundError(JobControlError):
    status_code = 404


class JobConflictError(JobControlError):
    status_code = 409


def _model_for(kind: str):
    if kind == KIND_AGGREGATED:
        return BackgroundSyncJob
    if kind == KIND_DAILY:
        return DailySyncJob
    raise JobControlError(f"Unknown job kind: {kind}")


def get_job(kind: str, job_id):
    model = _model_for(kind)
    job = model.objects.filter(id=job_id).first()
    if job is None:
        raise JobNotFoundError("Job not found.")
    return job


def aggregated_request_for(job: BackgroundSyncJob) -> AggregatedSyncRequest:
    return AggregatedSyncRequest(
        job_id=job.id,
        from_date=job.from_date,
        to_date=job.to_date,
        user_id=job.user_id,
        user_email=job.user_email,
        user_name=job.user_name,
        resume_from=job.processed_orders,
        selected_order_numbers=list(job.selected_order_numbers or []),
    )


def daily_request_for(job: DailySyncJob) -> DailySyncRequest:
    return DailySyncRequest(
        job_id=job.id,
        from_date=job.from_date,
        to_date=job.to_date,
        user_id=job.user_id,
        user_email=job.user_email,
        user_name=job.user_name,
        resume_from_day=job.current_day,
    )


def _reactivate(model, job, reactivatable: tuple[str, ...]) -> None:
    if job.status in reactivatable:
        model.objects.filter(id=job.id, status=job.status).update(
            status=model.STATUS_PENDING,
            error_message="",
            completed_at=None,
            updated_at=timezone.now(),
        )
        job.status = model.STATUS_PENDING


def trigger_aggregated_sync(request: AggregatedSyncRequest) -> tuple[BackgroundSyncJob, str]:
    with transaction.atomic():
        job = BackgroundSyncJob.objects.select_for_update().filter(id=request.job_id).first()
        if job is None:
            if request.is_resume:
                raise JobNotFoundError("Job not found.")
            conflict = find_overlapping_job(request.from_date, request.to_date)
            if conflict is not None:
                raise JobConflictError(f"Another sync is already active: {describe_job(conflict)}.")
            job = BackgroundSyncJob.objects.create(
                id=request.job_id,
                from_date=request.from_date,
                to_date=request.to_date,
                user_id=request.user_id,
                user_email=request.user_email,
                user_name=request.user_name,
                selected_order_numbers=list(request.selected_order_numbers),
                status=BackgroundSyncJob.STATUS_PENDING,
            )
            message = "Aggregated sync started"
        else:
            if job.status in (BackgroundSyncJob.STATUS_COMPLETED, BackgroundSyncJob.STATUS_CANCELLED):
                raise JobConflictError(f"Job is already {job.status}.")
            if has_pending_task(job.id):
                return job, "Aggregated sync already queued"
            _reactivate(
                BackgroundSyncJob,
                job,
                (BackgroundSyncJob.STATUS_PAUSED, BackgroundSyncJob.STATUS_FAILED),
            )
            request = replace(request, resume_from=request.resume_from or job.processed_orders)
            message = "Aggregated sync resumed"

        enqueue_task(KIND_AGGREGATED, job.id, request.to_payload())
    logger.info("%s: job %s (%s to %s)", message, job.id, job.from_date, job.to_date)
    return job, message


def trigger_daily_sync(request: DailySyncRequest) -> tuple[DailySyncJob, str]:
    with transaction.atomic():
        job = DailySyncJob.objects.select_for_update().filter(id=request.job_id).first()
        if job is None:
            if request.is_resume:
                raise JobNotFoundError("Job not found.")
            conflict = find_overlapping_job(request.from_date, request.to_date)
            if conflict is not None:
                raise JobConflictError(f"Another sync is already active: {describe_job(conflict)}.")
            from .daily_runner import create_daily_job

            job = create_daily_job(request)
            message = "Daily sync started"
        else:
            if job.status in (DailySyncJob.STATUS_COMPLETED, DailySyncJob.STATUS_CANCELLED):
                raise JobConflictError(f"Job is already {job.status}.")
            if has_pending_task(job.id):
                return job, "Daily sync already queued"
            _reactivate(DailySyncJob, job, (DailySyncJob.STATUS_PAUSED, DailySyncJob.STATUS_FAILED))
            request = replace(request, resume_from_day=request.resume_from_day or job.current_day)
            message = "Daily sync resumed"

        enqueue_task(KIND_DAILY, job.id, request.to_payload())
    logger.info("%s: job %s (%s to %s)", message, job.id, job.from_date, job.to_date)
    return job, message


def requeue_aggregated_job(job: BackgroundSyncJob) -> bool:
    """Move a paused aggregated job back to pending and queue it. False if it was not paused."""
    updated = BackgroundSyncJob.objects.filter(id=job.id, status=BackgroundSyncJob.STATUS_PAUSED).update(
        status=BackgroundSyncJob.STATUS_PENDING,
        updated_at=timezone.now(),
    )
    if not updated:
        return False
    job.refresh_from_db()
    if not has_pending_task(job.id):
        enqueue_task(KIND_AGGREGATED, job.id, aggregated_request_for(job).to_payload())
    return True


def pause_job(kind: str, job_id):
    model = _model_for(kind)
    with transaction.atomic():
        updated = model.objects.filter(
            id=job_id,
            status__in=[model.STATUS_PENDING, model.STATUS_RUNNING],
        ).update(status=model.STATUS_PAUSED, updated_at=timezone.now())
        if not updated:
            job = get_job(kind, job_id)
            raise JobConflictError(f"Cannot pause a {job.status} job.")
        if kind == KIND_DAILY:
            BackgroundSyncJob.objects.filter(
                daily_job_id=job_id,
                status__in=[BackgroundSyncJob.STATUS_PENDING, BackgroundSyncJob.STATUS_RUNNING],
            ).update(status=BackgroundSyncJob.STATUS_PAUSED, updated_at=timezone.now())
    logger.info("Paused %s job %s", kind, job_id)
    return get_job(kind, job_id)


def cancel_job(kind: str, job_id):
    model = _model_for(kind)
    now = timezone.now()
    with transaction.atomic():
        updated = model.objects.filter(id=job_id, status__in=model.ACTIVE_STATUSES).update(
            status=model.STATUS_CANCELLED,
            completed_at=now,
            updated_at=now,
        )
        if not updated:
            job = get_job(kind, job_id)
            raise JobConflictError(f"Cannot cancel a {job.status} job.")
        if kind == KIND_DAILY:
            children = BackgroundSyncJob.objects.filter(
                daily_job_id=job_id,
                status__in=BackgroundSyncJob.ACTIVE_STATUSES,
            )
            run_ids = [run_id for run_id in children.values_list("sync_run_id", flat=True) if run_id]
            children.update(status=BackgroundSyncJob.STATUS_CANCELLED, completed_at=now, updated_at=now)
        else:
            run_ids = [get_job(kind, job_id).sync_run_id]
        SyncRun.objects.filter(
            id__in=[run_id for run_id in run_ids if run_id],
            status__in=[SyncRun.STATUS_RUNNING, SyncRun.STATUS_PAUSED],
        ).update(status=SyncRun.STATUS_CANCELLED, end_time=now, updated_at=now)
    logger.info("Cancelled %s job %s", kind, job_id)
    return get_job(kind, job_id)


def resume_job(kind: str, job_id):
    model = _model_for(kind)
    with transaction.atomic():
        updated = model.objects.filter(id=job_id, status=model.STATUS_PAUSED).update(
            status=model.STATUS_PENDING,
            updated_at=timezone.now(),
        )
        if not updated:
            job = get_job(kind, job_id)
            raise JobConflictError(f"Cannot resume a {job.status} job.")
        job = get_job(kind, job_id)
        if not has_pending_task(job.id):
            if kind == KIND_DAILY:
                enqueue_task(KIND_DAILY, job.id, daily_request_for(job).to_payload())
            else:
                enqueue_task(KIND_AGGREGATED, job.id, aggregated_request_for(job).to_payload())
    logger.info("Resumed %s job %s", kind, job_id)
    return job


CONTROL_ACTIONS = {
    ACTION_PAUSE: pause_job,
    ACTION_RESUME: resume_job,
    ACTION_CANCEL: cancel_job,
}
