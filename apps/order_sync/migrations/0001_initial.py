from __future__ import annotations

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

STATUS_CHOICES = [
    ("pending", "Pending"),
    ("running", "Running"),
    ("paused", "Paused"),
    ("cancelled", "Cancelled"),
    ("completed", "Completed"),
    ("failed", "Failed"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="TransactionLine",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("order_number", models.CharField(blank=True, db_index=True, max_length=64)),
                ("sold_at", models.DateTimeField(db_index=True)),
                ("brand_name", models.CharField(blank=True, max_length=255)),
                ("brand_code", models.CharField(blank=True, max_length=64)),
                ("sku", models.CharField(blank=True, max_length=128)),
                ("product_id", models.CharField(blank=True, max_length=128)),
                ("product_name", models.CharField(blank=True, max_length=255)),
                ("unit_price", models.DecimalField(decimal_places=4, default=0, max_digits=19)),
                ("qty", models.DecimalField(decimal_places=4, default=0, max_digits=19)),
                ("total", models.DecimalField(decimal_places=4, default=0, max_digits=19)),
                ("payment_method", models.CharField(blank=True, max_length=64)),
                ("payment_brand", models.CharField(blank=True, max_length=64)),
                ("user_name", models.CharField(blank=True, max_length=255)),
                ("company", models.CharField(blank=True, max_length=255)),
                ("customer_name", models.CharField(blank=True, max_length=255)),
                ("customer_phone", models.CharField(blank=True, max_length=64)),
                ("is_deleted", models.BooleanField(default=False)),
                ("sent_to_erp", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["sold_at", "order_number", "id"],
                "indexes": [
                    models.Index(fields=["sent_to_erp", "sold_at"], name="order_sync_tl_sent_sold_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sku", models.CharField(blank=True, db_index=True, max_length=128)),
                ("product_id", models.CharField(blank=True, max_length=128)),
                ("name", models.CharField(blank=True, max_length=255)),
                ("non_stock", models.BooleanField(default=False)),
            ],
            options={"ordering": ["sku"]},
        ),
        migrations.CreateModel(
            name="OrderMapping",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("original_order_number", models.CharField(max_length=64, unique=True)),
                ("aggregated_order_number", models.CharField(db_index=True, max_length=32)),
                ("aggregation_date", models.DateField()),
                ("brand_name", models.CharField(blank=True, max_length=255)),
                ("payment_method", models.CharField(blank=True, max_length=64)),
                ("payment_brand", models.CharField(blank=True, max_length=64)),
                ("user_name", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["-aggregation_date", "aggregated_order_number"],
                "indexes": [
                    models.Index(fields=["aggregation_date", "aggregated_order_number"], name="order_sync_om_date_num_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SyncRun",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("run_date", models.DateField(default=django.utils.timezone.localdate)),
                ("from_date", models.DateField()),
                ("to_date", models.DateField()),
                ("start_time", models.DateTimeField(default=django.utils.timezone.now)),
                ("end_time", models.DateTimeField(blank=True, null=True)),
                ("total_orders", models.PositiveIntegerField(default=0)),
                ("successful_orders", models.PositiveIntegerField(default=0)),
                ("failed_orders", models.PositiveIntegerField(default=0)),
                ("skipped_orders", models.PositiveIntegerField(default=0)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("running", "Running"),
                            ("paused", "Paused"),
                            ("cancelled", "Cancelled"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="running",
                        max_length=16,
                    ),
                ),
                ("created_by", models.CharField(blank=True, max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["-start_time"]},
        ),
        migrations.CreateModel(
            name="SyncRunDetail",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("order_number", models.CharField(max_length=64)),
                ("order_date", models.DateField(blank=True, null=True)),
                ("original_orders", models.JSONField(default=list)),
                ("customer_phone", models.CharField(blank=True, max_length=64)),
                ("brand_name", models.CharField(blank=True, max_length=255)),
                ("payment_method", models.CharField(blank=True, max_length=64)),
                ("payment_brand", models.CharField(blank=True, max_length=64)),
                ("product_names", models.TextField(blank=True)),
                ("total_amount", models.DecimalField(blank=True, decimal_places=4, max_digits=19, null=True)),
                ("sync_status", models.CharField(choices=[("success", "Success"), ("failed", "Failed")], max_length=16)),
                ("error_message", models.TextField(blank=True)),
                ("step_customer", models.CharField(blank=True, max_length=16)),
                ("step_brand", models.CharField(blank=True, max_length=16)),
                ("step_product", models.CharField(blank=True, max_length=16)),
                ("step_order", models.CharField(blank=True, max_length=16)),
                ("step_purchase", models.CharField(blank=True, max_length=16)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "run",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="details",
                        to="order_sync.syncrun",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(fields=["run", "order_number"], name="order_sync_rd_run_order_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SyncSchedule",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=120)),
                ("enabled", models.BooleanField(default=True)),
                ("cron_expr", models.CharField(max_length=120)),
                ("timezone_name", models.CharField(default="UTC", max_length=64)),
                ("user_id", models.CharField(max_length=64)),
                ("user_email", models.EmailField(max_length=254)),
                ("user_name", models.CharField(max_length=255)),
                ("next_fire_at", models.DateTimeField(blank=True, null=True)),
                ("last_fired_at", models.DateTimeField(blank=True, null=True)),
                (
                    "last_result",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("queued", "Queued"),
                            ("skipped_overlap", "Skipped (Overlap)"),
                            ("skipped_invalid", "Skipped (Invalid)"),
                        ],
                        max_length=32,
                    ),
                ),
                ("last_error", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name", "created_at"],
                "indexes": [
                    models.Index(fields=["enabled", "next_fire_at"], name="order_sync_ss_enabled_next_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="DailySyncJob",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("from_date", models.DateField()),
                ("to_date", models.DateField()),
                ("user_id", models.CharField(max_length=64)),
                ("user_email", models.EmailField(max_length=254)),
                ("user_name", models.CharField(max_length=255)),
                ("status", models.CharField(choices=STATUS_CHOICES, default="pending", max_length=16)),
                ("total_days", models.PositiveIntegerField(default=0)),
                ("completed_days", models.PositiveIntegerField(default=0)),
                ("failed_days", models.PositiveIntegerField(default=0)),
                ("current_day", models.DateField(blank=True, null=True)),
                ("day_statuses", models.JSONField(default=dict)),
                ("total_orders", models.PositiveIntegerField(default=0)),
                ("successful_orders", models.PositiveIntegerField(default=0)),
                ("failed_orders", models.PositiveIntegerField(default=0)),
                ("skipped_orders", models.PositiveIntegerField(default=0)),
                ("error_message", models.TextField(blank=True)),
                ("email_sent", models.BooleanField(default=False)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "scheduled_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="daily_jobs",
                        to="order_sync.syncschedule",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "-created_at"], name="order_sync_dj_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BackgroundSyncJob",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("sync_type", models.CharField(default="aggregated", max_length=32)),
                ("from_date", models.DateField()),
                ("to_date", models.DateField()),
                ("user_id", models.CharField(max_length=64)),
                ("user_email", models.EmailField(max_length=254)),
                ("user_name", models.CharField(max_length=255)),
                ("status", models.CharField(choices=STATUS_CHOICES, default="pending", max_length=16)),
                ("total_orders", models.PositiveIntegerField(default=0)),
                ("processed_orders", models.PositiveIntegerField(default=0)),
                ("successful_orders", models.PositiveIntegerField(default=0)),
                ("failed_orders", models.PositiveIntegerField(default=0)),
                ("skipped_orders", models.PositiveIntegerField(default=0)),
                ("current_order_number", models.CharField(blank=True, max_length=64, null=True)),
                ("error_message", models.TextField(blank=True)),
                ("email_sent", models.BooleanField(default=False)),
                ("selected_order_numbers", models.JSONField(blank=True, default=list)),
                ("invoice_snapshot", models.JSONField(blank=True, default=list)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "sync_run",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="jobs",
                        to="order_sync.syncrun",
                    ),
                ),
                (
                    "daily_job",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="day_jobs",
                        to="order_sync.dailysyncjob",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "-created_at"], name="order_sync_bj_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SyncTask",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("kind", models.CharField(choices=[("aggregated", "Aggregated sync"), ("daily", "Daily sync")], max_length=16)),
                ("job_id", models.UUIDField(db_index=True)),
                ("payload_json", models.JSONField(default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("queued", "Queued"),
                            ("running", "Running"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                        ],
                        default="queued",
                        max_length=16,
                    ),
                ),
                ("attempts", models.PositiveSmallIntegerField(default=0)),
                ("last_error", models.TextField(blank=True)),
                ("queued_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["queued_at"],
                "indexes": [
                    models.Index(fields=["status", "queued_at"], name="order_sync_task_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="MailServer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=120, unique=True)),
                ("smtp_host", models.CharField(max_length=255)),
                ("smtp_port", models.PositiveIntegerField(default=465)),
                ("smtp_secure", models.BooleanField(default=True)),
            ],
        ),
        migrations.CreateModel(
            name="MailProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("email_password", models.CharField(blank=True, max_length=255)),
                (
                    "mail_server",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="profiles",
                        to="order_sync.mailserver",
                    ),
                ),
            ],
        ),
    ]
