from __future__ import annotations

import hmac
import json
from functools import wraps

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from . import sync_settings
from .models import BackgroundSyncJob, DailySyncJob, SyncRunDetail
from .services.job_control import (
    CONTROL_ACTIONS,
    KIND_AGGREGATED,
    KIND_DAILY,
    JobControlError,
    trigger_aggregated_sync,
    trigger_daily_sync,
)
from .services.payloads import AggregatedSyncRequest, DailySyncRequest, PayloadError, parse_date_range
from .services.sync_reset import reset_sync_state

ACTIVE_JOB_LIMIT = 25


def _error(message: str, status: int) -> JsonResponse:
    return JsonResponse({"success": False, "error": message}, status=status)


def api_token_required(view):
    """Bearer-token check against ERP_SYNC_API_TOKEN; an empty token disables it."""

    @wraps(view)
    def wrapper(request, *args, **kwargs):
        expected = sync_settings.get_api_token()
        if expected:
            header = request.headers.get("Authorization", "")
            scheme, _, token = header.partition(" ")
            if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), expected):
                return _error("Unauthorized", 401)
        return view(request, *args, **kwargs)

    return wrapper


def _json_body(request) -> dict:
    try:
        data = json.loads(request.body or b"{}")
    except (ValueError, UnicodeDecodeError) as exc:
        raise PayloadError("Request body must be valid JSON.") from exc
    if not isinstance(data, dict):
        raise PayloadError("Request body must be a JSON object.")
    return data


def _iso(value):
    return value.isoformat() if value else None


def _aggregated_job_payload(job: BackgroundSyncJob, *, include_details: bool = False) -> dict:
    payload = {
        "id": str(job.id),
        "syncType": job.sync_type,
        "status": job.status,
        "fromDate": _iso(job.from_date),
        "toDate": _iso(job.to_date),
        "userId": job.user_id,
        "userName": job.user_name,
        "totalOrders": job.total_orders,
        "processedOrders": job.processed_orders,
        "successfulOrders": job.successful_orders,
        "failedOrders": job.failed_orders,
        "skippedOrders": job.skipped_orders,
        "currentOrderNumber": job.current_order_number,
        "errorMessage": job.error_message or None,
        "emailSent": job.email_sent,
        "dailyJobId": str(job.daily_job_id) if job.daily_job_id else None,
        "syncRunId": str(job.sync_run_id) if job.sync_run_id else None,
        "startedAt": _iso(job.started_at),
        "completedAt": _iso(job.completed_at),
        "createdAt": _iso(job.created_at),
    }
    if include_details:
        details = SyncRunDetail.objects.filter(run_id=job.sync_run_id) if job.sync_run_id else []
        payload["details"] = [
            {
                "orderNumber": detail.order_number,
                "orderDate": _iso(detail.order_date),
                "originalOrders": detail.original_orders,
                "brandName": detail.brand_name,
                "paymentMethod": detail.payment_method,
                "paymentBrand": detail.payment_brand,
                "productNames": detail.product_names,
                "totalAmount": str(detail.total_amount) if detail.total_amount is not None else None,
                "syncStatus": detail.sync_status,
                "errorMessage": detail.error_message or None,
                "steps": {
                    "customer": detail.step_customer,
                    "brand": detail.step_brand,
                    "product": detail.step_product,
                    "order": detail.step_order,
                    "purchase": detail.step_purchase,
                },
            }
            for detail in details
        ]
    return payload


def _daily_job_payload(job: DailySyncJob) -> dict:
    return {
        "id": str(job.id),
        "status": job.status,
        "fromDate": _iso(job.from_date),
        "toDate": _iso(job.to_date),
        "userId": job.user_id,
        "userName": job.user_name,
        "totalDays": job.total_days,
        "completedDays": job.completed_days,
        "failedDays": job.failed_days,
        "currentDay": _iso(job.current_day),
        "totalOrders": job.total_orders,
        "successfulOrders": job.successful_orders,
        "failedOrders": job.failed_orders,
        "skippedOrders": job.skipped_orders,
        "errorMessage": job.error_message or None,
        "emailSent": job.email_sent,
        "dayStatuses": [job.day_statuses[key] for key in sorted(job.day_statuses or {})],
        "startedAt": _iso(job.started_at),
        "completedAt": _iso(job.completed_at),
        "createdAt": _iso(job.created_at),
    }


@csrf_exempt
@require_POST
@api_token_required
def aggregated_trigger(request):
    try:
        sync_request = AggregatedSyncRequest.from_payload(_json_body(request))
        job, message = trigger_aggregated_sync(sync_request)
    except PayloadError as exc:
        return _error(str(exc), 400)
    except JobControlError as exc:
        return _error(str(exc), exc.status_code)
    return JsonResponse({"success": True, "jobId": str(job.id), "message": message}, status=202)


@csrf_exempt
@require_POST
@api_token_required
def daily_trigger(request):
    try:
        sync_request = DailySyncRequest.from_payload(_json_body(request))
        job, message = trigger_daily_sync(sync_request)
    except PayloadError as exc:
        return _error(str(exc), 400)
    except JobControlError as exc:
        return _error(str(exc), exc.status_code)
    return JsonResponse({"success": True, "jobId": str(job.id), "message": message}, status=202)


@require_GET
@api_token_required
def aggregated_status(request, job_id):
    job = BackgroundSyncJob.objects.filter(id=job_id).first()
    if job is None:
        return _error("Job not found.", 404)
    return JsonResponse(_aggregated_job_payload(job, include_details=True))


@require_GET
@api_token_required
def daily_status(request, job_id):
    job = DailySyncJob.objects.filter(id=job_id).first()
    if job is None:
        return _error("Job not found.", 404)
    return JsonResponse(_daily_job_payload(job))


@require_GET
@api_token_required
def active_jobs(request):
    aggregated = (
        BackgroundSyncJob.objects.filter(status__in=BackgroundSyncJob.ACTIVE_STATUSES)
        .order_by("-created_at")
        .values_list("id", flat=True)[:ACTIVE_JOB_LIMIT]
    )
    daily = (
        DailySyncJob.objects.filter(status__in=DailySyncJob.ACTIVE_STATUSES)
        .order_by("-created_at")
        .values_list("id", flat=True)[:ACTIVE_JOB_LIMIT]
    )
    return JsonResponse(
        {
            "aggregated": [str(job_id) for job_id in aggregated],
            "daily": [str(job_id) for job_id in daily],
        }
    )


def _control(request, kind: str, job_id, action: str):
    handler = CONTROL_ACTIONS.get(action)
    if handler is None:
        return _error(f"Unknown action: {action}", 400)
    try:
        job = handler(kind, job_id)
    except JobControlError as exc:
        return _error(str(exc), exc.status_code)
    return JsonResponse(
        {"success": True, "jobId": str(job.id), "status": job.status, "message": f"Job {job.status}"}
    )


@csrf_exempt
@require_POST
@api_token_required
def aggregated_control(request, job_id, action):
    return _control(request, KIND_AGGREGATED, job_id, action)


@csrf_exempt
@require_POST
@api_token_required
def daily_control(request, job_id, action):
    return _control(request, KIND_DAILY, job_id, action)


@csrf_exempt
@require_POST
@api_token_required
def reset_sync(request):
    try:
        from_date, to_date = parse_date_range(_json_body(request))
    except PayloadError as exc:
        return _error(str(exc), 400)
    counts = reset_sync_state(from_date, to_date)
    message = (
        f"Reset {counts['updatedCount']} transaction(s) and "
        f"{counts['deletedMappingsCount']} aggregated mapping(s) successfully"
    )
    return JsonResponse({"success": True, **counts, "message": message})
