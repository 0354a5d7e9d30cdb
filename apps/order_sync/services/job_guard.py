from __future__ import annotations

from datetime import date

from django.db.models import Model

from ..models import BackgroundSyncJob, DailySyncJob


def find_overlapping_job(from_date: date, to_date: date) -> Model | None:
    """
    Return an active job (either kind, daily children included) whose range touches
    [from_date, to_date]. Two jobs over the same date would race on invoice numbering.
    """
    aggregated = BackgroundSyncJob.objects.filter(
        status__in=BackgroundSyncJob.ACTIVE_STATUSES,
        from_date__lte=to_date,
        to_date__gte=from_date,
    )
    daily = DailySyncJob.objects.filter(
        status__in=DailySyncJob.ACTIVE_STATUSES,
        from_date__lte=to_date,
        to_date__gte=from_date,
    )
    return daily.order_by("created_at").first() or aggregated.order_by("created_at").first()


def describe_job(job: Model) -> str:
    kind = "daily" if isinstance(job, DailySyncJob) else "aggregated"
    return f"{kind} job {job.id} ({job.from_date} to {job.to_date}, {job.status})"
