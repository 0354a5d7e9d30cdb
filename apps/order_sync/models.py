from __future__ import annotations

import uuid
from datetime import datetime, timezone as dt_timezone
from zoneinfo import ZoneInfo

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


def validate_cron_expr(value: str) -> None:
    from croniter import croniter

    expr = (value or "").strip()
    if not expr:
        raise ValidationError("Cron expression is required.")
    if not croniter.is_valid(expr):
        raise ValidationError("Invalid cron expression.")


def validate_timezone_name(value: str) -> None:
    name = (value or "").strip()
    if not name:
        raise ValidationError("Timezone is required.")
    try:
        ZoneInfo(name)
    except Exception as exc:
        raise ValidationError("Invalid timezone name.") from exc


class TransactionLine(models.Model):
    """One sold item. Only `sent_to_erp` is ever written by the sync pipeline."""

    order_number = models.CharField(max_length=64, blank=True, db_index=True)
    sold_at = models.DateTimeField(db_index=True)
    brand_name = models.CharField(max_length=255, blank=True)
    brand_code = models.CharField(max_length=64, blank=True)
    sku = models.CharField(max_length=128, blank=True)
    product_id = models.CharField(max_length=128, blank=True)
    product_name = models.CharField(max_length=255, blank=True)
    unit_price = models.DecimalField(max_digits=19, decimal_places=4, default=0)
    qty = models.DecimalField(max_digits=19, decimal_places=4, default=0)
    total = models.DecimalField(max_digits=19, decimal_places=4, default=0)
    payment_method = models.CharField(max_length=64, blank=True)
    payment_brand = models.CharField(max_length=64, blank=True)
    user_name = models.CharField(max_length=255, blank=True)
    company = models.CharField(max_length=255, blank=True)
    customer_name = models.CharField(max_length=255, blank=True)
    customer_phone = models.CharField(max_length=64, blank=True)
    is_deleted = models.BooleanField(default=False)
    sent_to_erp = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["sold_at", "order_number", "id"]
        indexes = [
            models.Index(fields=["sent_to_erp", "sold_at"], name="order_sync_tl_sent_sold_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.order_number} {self.sku or self.product_id} x{self.qty}"


class Product(models.Model):
    sku = models.CharField(max_length=128, blank=True, db_index=True)
    product_id = models.CharField(max_length=128, blank=True)
    name = models.CharField(max_length=255, blank=True)
    non_stock = models.BooleanField(default=False)

    class Meta:
        ordering = ["sku"]

    def __str__(self) -> str:
        return f"{self.sku} ({self.name})"


class OrderMapping(models.Model):
    original_order_number = models.CharField(max_length=64, unique=True)
    aggregated_order_number = models.CharField(max_length=32, db_index=True)
    aggregation_date = models.DateField()
    brand_name = models.CharField(max_length=255, blank=True)
    payment_method = models.CharField(max_length=64, blank=True)
    payment_brand = models.CharField(max_length=64, blank=True)
    user_name = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-aggregation_date", "aggregated_order_number"]
        indexes = [
            models.Index(fields=["aggregation_date", "aggregated_order_number"], name="order_sync_om_date_num_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.original_order_number} -> {self.aggregated_order_number}"


class SyncRun(models.Model):
    STATUS_RUNNING = "running"
    STATUS_PAUSED = "paused"
    STATUS_CANCELLED = "cancelled"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_CHOICES = [
        (STATUS_RUNNING, "Running"),
        (STATUS_PAUSED, "Paused"),
        (STATUS_CANCELLED, "Cancelled"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    run_date = models.DateField(default=timezone.localdate)
    from_date = models.DateField()
    to_date = models.DateField()
    start_time = models.DateTimeField(default=timezone.now)
    end_time = models.DateTimeField(null=True, blank=True)
    total_orders = models.PositiveIntegerField(default=0)
    successful_orders = models.PositiveIntegerField(default=0)
    failed_orders = models.PositiveIntegerField(default=0)
    skipped_orders = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_RUNNING)
    created_by = models.CharField(max_length=64, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-start_time"]

    def __str__(self) -> str:
        return f"SyncRun {self.id} [{self.status}]"


class SyncRunDetail(models.Model):
    """Append-only audit row: one per processed aggregated invoice."""

    SYNC_SUCCESS = "success"
    SYNC_FAILED = "failed"
    SYNC_STATUS_CHOICES = [
        (SYNC_SUCCESS, "Success"),
        (SYNC_FAILED, "Failed"),
    ]

    run = models.ForeignKey(SyncRun, on_delete=models.CASCADE, related_name="details")
    order_number = models.CharField(max_length=64)
    order_date = models.DateField(null=True, blank=True)
    original_orders = models.JSONField(default=list)
    customer_phone = models.CharField(max_length=64, blank=True)
    brand_name = models.CharField(max_length=255, blank=True)
    payment_method = models.CharField(max_length=64, blank=True)
    payment_brand = models.CharField(max_length=64, blank=True)
    product_names = models.TextField(blank=True)
    total_amount = models.DecimalField(max_digits=19, decimal_places=4, null=True, blank=True)
    sync_status = models.CharField(max_length=16, choices=SYNC_STATUS_CHOICES)
    error_message = models.TextField(blank=True)
    step_customer = models.CharField(max_length=16, blank=True)
    step_brand = models.CharField(max_length=16, blank=True)
    step_product = models.CharField(max_length=16, blank=True)
    step_order = models.CharField(max_length=16, blank=True)
    step_purchase = models.CharField(max_length=16, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["run", "order_number"], name="order_sync_rd_run_order_idx"),
        ]


class SyncSchedule(models.Model):
    LAST_RESULT_QUEUED = "queued"
    LAST_RESULT_SKIPPED_OVERLAP = "skipped_overlap"
    LAST_RESULT_SKIPPED_INVALID = "skipped_invalid"
    LAST_RESULT_CHOICES = [
        (LAST_RESULT_QUEUED, "Queued"),
        (LAST_RESULT_SKIPPED_OVERLAP, "Skipped (Overlap)"),
        (LAST_RESULT_SKIPPED_INVALID, "Skipped (Invalid)"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=120)
    enabled = models.BooleanField(default=True)
    cron_expr = models.CharField(max_length=120)
    timezone_name = models.CharField(max_length=64, default="UTC")
    user_id = models.CharField(max_length=64)
    user_email = models.EmailField()
    user_name = models.CharField(max_length=255)
    next_fire_at = models.DateTimeField(null=True, blank=True)
    last_fired_at = models.DateTimeField(null=True, blank=True)
    last_result = models.CharField(max_length=32, choices=LAST_RESULT_CHOICES, blank=True)
    last_error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "created_at"]
        indexes = [
            models.Index(fields=["enabled", "next_fire_at"], name="order_sync_ss_enabled_next_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.cron_expr})"

    def clean(self) -> None:
        errors: dict[str, str] = {}
        try:
            validate_cron_expr(self.cron_expr)
        except ValidationError:
            errors["cron_expr"] = "Enter a valid cron expression."
        try:
            validate_timezone_name(self.timezone_name)
        except ValidationError:
            errors["timezone_name"] = "Enter a valid timezone."
        if errors:
            raise ValidationError(errors)

    def compute_next_fire_at(self, *, from_dt: datetime | None = None) -> datetime:
        from croniter import croniter

        validate_cron_expr(self.cron_expr)
        validate_timezone_name(self.timezone_name)

        tz = ZoneInfo(self.timezone_name)
        base = from_dt or timezone.now()
        if timezone.is_naive(base):
            base = timezone.make_aware(base, dt_timezone.utc)

        next_local = croniter(self.cron_expr, base.astimezone(tz)).get_next(datetime)
        if next_local.tzinfo is None:
            next_local = next_local.replace(tzinfo=tz)
        return next_local.astimezone(dt_timezone.utc)


class DailySyncJob(models.Model):
    STATUS_PENDING = "pending"
    STATUS_RUNNING = "running"
    STATUS_PAUSED = "paused"
    STATUS_CANCELLED = "cancelled"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_RUNNING, "Running"),
        (STATUS_PAUSED, "Paused"),
        (STATUS_CANCELLED, "Cancelled"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]
    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_RUNNING, STATUS_PAUSED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    from_date = models.DateField()
    to_date = models.DateField()
    user_id = models.CharField(max_length=64)
    user_email = models.EmailField()
    user_name = models.CharField(max_length=255)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)
    total_days = models.PositiveIntegerField(default=0)
    completed_days = models.PositiveIntegerField(default=0)
    failed_days = models.PositiveIntegerField(default=0)
    current_day = models.DateField(null=True, blank=True)
    day_statuses = models.JSONField(default=dict)
    total_orders = models.PositiveIntegerField(default=0)
    successful_orders = models.PositiveIntegerField(default=0)
    failed_orders = models.PositiveIntegerField(default=0)
    skipped_orders = models.PositiveIntegerField(default=0)
    error_message = models.TextField(blank=True)
    email_sent = models.BooleanField(default=False)
    scheduled_by = models.ForeignKey(
        SyncSchedule,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="daily_jobs",
    )
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "-created_at"], name="order_sync_dj_status_idx"),
        ]

    def __str__(self) -> str:
        return f"DailySyncJob {self.id} [{self.status}]"


class BackgroundSyncJob(models.Model):
    STATUS_PENDING = "pending"
    STATUS_RUNNING = "running"
    STATUS_PAUSED = "paused"
    STATUS_CANCELLED = "cancelled"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_RUNNING, "Running"),
        (STATUS_PAUSED, "Paused"),
        (STATUS_CANCELLED, "Cancelled"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]
    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_RUNNING, STATUS_PAUSED)
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED)

    SYNC_TYPE_AGGREGATED = "aggregated"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sync_type = models.CharField(max_length=32, default=SYNC_TYPE_AGGREGATED)
    from_date = models.DateField()
    to_date = models.DateField()
    user_id = models.CharField(max_length=64)
    user_email = models.EmailField()
    user_name = models.CharField(max_length=255)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)
    total_orders = models.PositiveIntegerField(default=0)
    processed_orders = models.PositiveIntegerField(default=0)
    successful_orders = models.PositiveIntegerField(default=0)
    failed_orders = models.PositiveIntegerField(default=0)
    skipped_orders = models.PositiveIntegerField(default=0)
    current_order_number = models.CharField(max_length=64, null=True, blank=True)
    error_message = models.TextField(blank=True)
    email_sent = models.BooleanField(default=False)
    selected_order_numbers = models.JSONField(default=list, blank=True)
    invoice_snapshot = models.JSONField(default=list, blank=True)
    sync_run = models.ForeignKey(
        SyncRun,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="jobs",
    )
    daily_job = models.ForeignKey(
        DailySyncJob,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="day_jobs",
    )
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "-created_at"], name="order_sync_bj_status_idx"),
        ]

    def __str__(self) -> str:
        return f"BackgroundSyncJob {self.id} [{self.status}]"


class SyncTask(models.Model):
    """Durable unit of work: one runner invocation (fresh start or continuation)."""

    KIND_AGGREGATED = "aggregated"
    KIND_DAILY = "daily"
    KIND_CHOICES = [
        (KIND_AGGREGATED, "Aggregated sync"),
        (KIND_DAILY, "Daily sync"),
    ]

    STATUS_QUEUED = "queued"
    STATUS_RUNNING = "running"
    STATUS_SUCCEEDED = "succeeded"
    STATUS_FAILED = "failed"
    STATUS_CHOICES = [
        (STATUS_QUEUED, "Queued"),
        (STATUS_RUNNING, "Running"),
        (STATUS_SUCCEEDED, "Succeeded"),
        (STATUS_FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    kind = models.CharField(max_length=16, choices=KIND_CHOICES)
    job_id = models.UUIDField(db_index=True)
    payload_json = models.JSONField(default=dict)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_QUEUED)
    attempts = models.PositiveSmallIntegerField(default=0)
    last_error = models.TextField(blank=True)
    queued_at = models.DateTimeField(default=timezone.now)
    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["queued_at"]
        indexes = [
            models.Index(fields=["status", "queued_at"], name="order_sync_task_status_idx"),
        ]

    def __str__(self) -> str:
        return f"SyncTask {self.kind}:{self.job_id} [{self.status}]"


class MailServer(models.Model):
    name = models.CharField(max_length=120, unique=True)
    smtp_host = models.CharField(max_length=255)
    smtp_port = models.PositiveIntegerField(default=465)
    smtp_secure = models.BooleanField(default=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.smtp_host}:{self.smtp_port})"


class MailProfile(models.Model):
    """Per-user SMTP credentials used for completion emails."""

    email = models.EmailField(unique=True)
    email_password = models.CharField(max_length=255, blank=True)
    mail_server = models.ForeignKey(
        MailServer,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="profiles",
    )

    def __str__(self) -> str:
        return self.email
