"""
Aggregated sync runner.

One call handles one chunk of a BackgroundSyncJob: it loads the job's invoice snapshot,
submits the invoices not yet recorded in the run audit table, and either completes the
job or enqueues a continuation task carrying ``resumeFrom``. Pause/cancel is observed
between invoices, never in the middle of one.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Any

from django.db import transaction
from django.utils import timezone

from .. import sync_settings
from ..models import BackgroundSyncJob, OrderMapping, SyncRun, SyncRunDetail, SyncTask, TransactionLine
from .aggregation import AggregatedInvoice, build_invoices_for_range, load_non_stock_skus
from .notifications import format_duration, send_aggregated_summary
from .payloads import AggregatedSyncRequest
from .step_client import STEP_ORDER, STEP_PURCHASE, StepExecutorClient, StepFailedError
from .task_queue import enqueue_task

logger = logging.getLogger(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_CONTINUED = "continued"
OUTCOME_PAUSED = BackgroundSyncJob.STATUS_PAUSED
OUTCOME_CANCELLED = BackgroundSyncJob.STATUS_CANCELLED
OUTCOME_FAILED = "failed"
OUTCOME_ABORTED = "aborted"
OUTCOME_SKIPPED = "skipped"

MAPPING_UPDATE_FIELDS = [
    "aggregated_order_number",
    "aggregation_date",
    "brand_name",
    "payment_method",
    "payment_brand",
    "user_name",
]
PROGRESS_FIELDS = [
    "processed_orders",
    "successful_orders",
    "failed_orders",
    "skipped_orders",
    "current_order_number",
    "updated_at",
]


def _monotonic() -> float:
    return time.monotonic()


@dataclass
class InvoiceOutcome:
    success: bool
    error_message: str
    step_status: dict[str, str]


def _run_step(client: StepExecutorClient, step: str, transactions, non_stock) -> None:
    result = client.execute_step(step, transactions, non_stock)
    if not result.success:
        raise StepFailedError(step, result.message)


def process_invoice(
    client: StepExecutorClient,
    invoice: AggregatedInvoice,
    non_stock_skus: set[str],
) -> InvoiceOutcome:
    # Aggregated invoices go straight to the order step; customer/brand/product checks are not run.
    step_status = {
        "customer": "skipped",
        "brand": "skipped",
        "product": "skipped",
        "order": "pending",
        "purchase": "pending",
    }
    transactions = invoice.synthetic_transactions()
    non_stock = [tx for tx in transactions if (tx["sku"] or tx["product_id"]) in non_stock_skus]

    try:
        _run_step(client, STEP_ORDER, transactions, non_stock)
        step_status["order"] = "sent"
        if invoice.has_non_stock and non_stock:
            _run_step(client, STEP_PURCHASE, transactions, non_stock)
            step_status["purchase"] = "created"
        else:
            step_status["purchase"] = "skipped"
    except StepFailedError as exc:
        return InvoiceOutcome(success=False, error_message=str(exc), step_status=step_status)

    return InvoiceOutcome(success=True, error_message="", step_status=step_status)


def _live_status(job_id) -> str | None:
    return BackgroundSyncJob.objects.filter(id=job_id).values_list("status", flat=True).first()


def _mark_sent(order_numbers: list[str]) -> None:
    TransactionLine.objects.filter(order_number__in=order_numbers).update(sent_to_erp=True)


def _upsert_mappings(invoice: AggregatedInvoice) -> None:
    OrderMapping.objects.bulk_create(
        [
            OrderMapping(
                original_order_number=number,
                aggregated_order_number=invoice.order_number,
                aggregation_date=invoice.invoice_date,
                brand_name=invoice.brand_name,
                payment_method=invoice.payment_method,
                payment_brand=invoice.payment_brand,
                user_name=invoice.user_name,
            )
            for number in invoice.original_order_numbers
        ],
        update_conflicts=True,
        unique_fields=["original_order_number"],
        update_fields=MAPPING_UPDATE_FIELDS,
    )


def _record_outcome(run: SyncRun, invoice: AggregatedInvoice, outcome: InvoiceOutcome) -> None:
    with transaction.atomic():
        if outcome.success:
            _mark_sent(invoice.original_order_numbers)
            _upsert_mappings(invoice)
        SyncRunDetail.objects.create(
            run=run,
            order_number=invoice.order_number,
            order_date=invoice.invoice_date,
            original_orders=list(invoice.original_order_numbers),
            customer_phone="0000",
            brand_name=invoice.brand_name,
            payment_method=invoice.payment_method,
            payment_brand=invoice.payment_brand,
            product_names=invoice.product_names,
            total_amount=invoice.grand_total,
            sync_status=SyncRunDetail.SYNC_SUCCESS if outcome.success else SyncRunDetail.SYNC_FAILED,
            error_message=outcome.error_message,
            step_customer=outcome.step_status["customer"],
            step_brand=outcome.step_status["brand"],
            step_product=outcome.step_status["product"],
            step_order=outcome.step_status["order"],
            step_purchase=outcome.step_status["purchase"],
        )


def _save_progress(job: BackgroundSyncJob, run: SyncRun) -> None:
    job.save(update_fields=PROGRESS_FIELDS)
    SyncRun.objects.filter(id=run.id).update(
        successful_orders=job.successful_orders,
        failed_orders=job.failed_orders,
        skipped_orders=job.skipped_orders,
        updated_at=timezone.now(),
    )


def _close_run(job: BackgroundSyncJob, run: SyncRun, status: str) -> None:
    SyncRun.objects.filter(id=run.id).update(
        status=status,
        end_time=timezone.now(),
        successful_orders=job.successful_orders,
        failed_orders=job.failed_orders,
        skipped_orders=job.skipped_orders,
        updated_at=timezone.now(),
    )


def _load_invoices(job: BackgroundSyncJob, request: AggregatedSyncRequest) -> list[AggregatedInvoice]:
    if job.invoice_snapshot:
        return [AggregatedInvoice.from_payload(item) for item in job.invoice_snapshot]

    result = build_invoices_for_range(job.from_date, job.to_date, job.selected_order_numbers or None)
    job.invoice_snapshot = [invoice.to_payload() for invoice in result.invoices]
    update_fields = ["invoice_snapshot", "updated_at"]
    if not request.is_resume:
        job.skipped_orders = len(result.already_synced)
        update_fields.append("skipped_orders")
    job.save(update_fields=update_fields)
    return result.invoices


def _ensure_run(job: BackgroundSyncJob) -> SyncRun:
    run = job.sync_run
    if run is None:
        run = SyncRun.objects.create(
            from_date=job.from_date,
            to_date=job.to_date,
            total_orders=job.total_orders,
            status=SyncRun.STATUS_RUNNING,
            created_by=job.user_id,
        )
        job.sync_run = run
        job.save(update_fields=["sync_run", "updated_at"])
        return run
    run.status = SyncRun.STATUS_RUNNING
    run.end_time = None
    run.save(update_fields=["status", "end_time", "updated_at"])
    return run


def _schedule_continuation(job: BackgroundSyncJob, run: SyncRun, request: AggregatedSyncRequest) -> str:
    job.current_order_number = None
    _save_progress(job, run)

    # The job may have been paused while the last invoice was in flight.
    status = _live_status(job.id)
    if status is None:
        logger.info("Job %s was deleted; not scheduling a continuation", job.id)
        return OUTCOME_ABORTED
    if status not in (BackgroundSyncJob.STATUS_RUNNING, BackgroundSyncJob.STATUS_PENDING):
        logger.info("Not scheduling continuation because job %s status=%s", job.id, status)
        if status in (BackgroundSyncJob.STATUS_PAUSED, BackgroundSyncJob.STATUS_CANCELLED):
            _close_run(job, run, status)
            return status
        return OUTCOME_SKIPPED

    continuation = replace(request, job_id=job.id, resume_from=job.processed_orders)
    enqueue_task(SyncTask.KIND_AGGREGATED, job.id, continuation.to_payload())
    logger.info("Scheduled continuation for job %s (resumeFrom=%s)", job.id, job.processed_orders)
    return OUTCOME_CONTINUED


def _complete(job: BackgroundSyncJob, run: SyncRun) -> str:
    end = timezone.now()
    job.current_order_number = None
    _close_run(job, run, SyncRun.STATUS_COMPLETED)

    duration = format_duration(job.started_at, end)
    job.email_sent = send_aggregated_summary(job, duration=duration)
    job.status = BackgroundSyncJob.STATUS_COMPLETED
    job.completed_at = end
    job.save(update_fields=PROGRESS_FIELDS + ["status", "completed_at", "email_sent"])
    logger.info(
        "Job %s completed in %s: %s successful, %s failed, %s skipped",
        job.id,
        duration,
        job.successful_orders,
        job.failed_orders,
        job.skipped_orders,
    )
    return OUTCOME_COMPLETED


def _mark_failed(job: BackgroundSyncJob, message: str) -> None:
    now = timezone.now()
    BackgroundSyncJob.objects.filter(id=job.id).update(
        status=BackgroundSyncJob.STATUS_FAILED,
        error_message=message,
        current_order_number=None,
        completed_at=now,
        updated_at=now,
    )
    if job.sync_run_id:
        SyncRun.objects.filter(id=job.sync_run_id).update(
            status=SyncRun.STATUS_FAILED,
            end_time=now,
            updated_at=now,
        )


def _run_job(
    job: BackgroundSyncJob,
    request: AggregatedSyncRequest,
    client: StepExecutorClient,
    invocation_start: float,
) -> str:
    now = timezone.now()
    updates: dict[str, Any] = {"status": BackgroundSyncJob.STATUS_RUNNING, "updated_at": now}
    if not request.is_resume or job.started_at is None:
        updates["started_at"] = now
    claimed = BackgroundSyncJob.objects.filter(
        id=job.id,
        status__in=[BackgroundSyncJob.STATUS_PENDING, BackgroundSyncJob.STATUS_RUNNING],
    ).update(**updates)
    if not claimed:
        logger.info("Job %s is no longer pending/running; nothing to do", job.id)
        return OUTCOME_SKIPPED
    job.refresh_from_db()

    invoices = _load_invoices(job, request)
    if not request.is_resume:
        job.total_orders = len(invoices)
        job.save(update_fields=["total_orders", "updated_at"])

    non_stock_skus = load_non_stock_skus()
    run = _ensure_run(job)
    done = set(SyncRunDetail.objects.filter(run=run).values_list("order_number", flat=True))
    remaining = [invoice for invoice in invoices if invoice.order_number not in done]
    logger.info(
        "%s job %s: %s of %s invoice(s) left to process",
        "Resuming" if request.is_resume else "Starting",
        job.id,
        len(remaining),
        len(invoices),
    )

    max_invoices = sync_settings.get_chunk_max_invoices()
    max_seconds = sync_settings.get_chunk_max_seconds()
    processed_this_chunk = 0

    for invoice in remaining:
        if processed_this_chunk > 0 and (
            processed_this_chunk >= max_invoices or _monotonic() - invocation_start > max_seconds
        ):
            return _schedule_continuation(job, run, request)

        status = _live_status(job.id)
        if status is None:
            logger.info("Job %s was deleted mid-run; stopping", job.id)
            return OUTCOME_ABORTED
        if status in (BackgroundSyncJob.STATUS_PAUSED, BackgroundSyncJob.STATUS_CANCELLED):
            logger.info("Job %s %s; stopping before invoice %s", job.id, status, invoice.order_number)
            job.current_order_number = None
            _save_progress(job, run)
            _close_run(job, run, status)
            return status
        if status == BackgroundSyncJob.STATUS_PENDING:
            # Paused and resumed while this invocation was still between invoices.
            BackgroundSyncJob.objects.filter(id=job.id, status=status).update(
                status=BackgroundSyncJob.STATUS_RUNNING,
                updated_at=timezone.now(),
            )

        job.current_order_number = invoice.order_number
        job.save(update_fields=["current_order_number", "updated_at"])

        outcome = process_invoice(client, invoice, non_stock_skus)
        _record_outcome(run, invoice, outcome)
        if outcome.success:
            job.successful_orders += 1
            logger.info("Invoice %s synced successfully", invoice.order_number)
        else:
            job.failed_orders += 1
            logger.warning("Invoice %s failed: %s", invoice.order_number, outcome.error_message)
        job.processed_orders += 1
        processed_this_chunk += 1
        _save_progress(job, run)

    return _complete(job, run)


def run_aggregated_sync(
    request: AggregatedSyncRequest,
    *,
    client: StepExecutorClient | None = None,
) -> str:
    invocation_start = _monotonic()
    job = BackgroundSyncJob.objects.filter(id=request.job_id).first()
    if job is None:
        if request.is_resume:
            # Never resurrect a job that was deleted while a continuation was queued.
            logger.info("Job %s not found on resume; aborting silently", request.job_id)
            return OUTCOME_ABORTED
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

    try:
        return _run_job(job, request, client or StepExecutorClient(), invocation_start)
    except Exception as exc:
        logger.exception("Aggregated sync job %s failed", job.id)
        _mark_failed(job, str(exc) or "Unknown error")
        return OUTCOME_FAILED
