from django.contrib import admin

from .models import (
    BackgroundSyncJob,
    DailySyncJob,
    MailProfile,
    MailServer,
    OrderMapping,
    Product,
    SyncRun,
    SyncRunDetail,
    SyncSchedule,
    SyncTask,
    TransactionLine,
)


@admin.register(TransactionLine)
class TransactionLineAdmin(admin.ModelAdmin):
    list_display = ("order_number", "sold_at", "brand_name", "sku", "qty", "total", "payment_method", "sent_to_erp")
    list_filter = ("sent_to_erp", "is_deleted", "payment_method", "brand_name")
    search_fields = ("order_number", "sku", "product_name", "user_name")


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("sku", "product_id", "name", "non_stock")
    list_filter = ("non_stock",)
    search_fields = ("sku", "product_id", "name")


@admin.register(OrderMapping)
class OrderMappingAdmin(admin.ModelAdmin):
    list_display = ("original_order_number", "aggregated_order_number", "aggregation_date", "brand_name", "user_name")
    list_filter = ("aggregation_date",)
    search_fields = ("original_order_number", "aggregated_order_number")


class SyncRunDetailInline(admin.TabularInline):
    model = SyncRunDetail
    extra = 0
    fields = ("order_number", "sync_status", "step_order", "step_purchase", "total_amount", "error_message")
    readonly_fields = fields
    can_delete = False


@admin.register(SyncRun)
class SyncRunAdmin(admin.ModelAdmin):
    list_display = ("id", "from_date", "to_date", "status", "total_orders", "successful_orders", "failed_orders", "start_time")
    list_filter = ("status",)
    inlines = [SyncRunDetailInline]


@admin.register(BackgroundSyncJob)
class BackgroundSyncJobAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "from_date",
        "to_date",
        "status",
        "processed_orders",
        "total_orders",
        "successful_orders",
        "failed_orders",
        "daily_job",
        "created_at",
    )
    list_filter = ("status", "sync_type")
    search_fields = ("user_name", "user_email", "current_order_number")
    exclude = ("invoice_snapshot",)


@admin.register(DailySyncJob)
class DailySyncJobAdmin(admin.ModelAdmin):
    list_display = ("id", "from_date", "to_date", "status", "current_day", "completed_days", "failed_days", "total_days")
    list_filter = ("status",)
    search_fields = ("user_name", "user_email")


@admin.register(SyncTask)
class SyncTaskAdmin(admin.ModelAdmin):
    list_display = ("id", "kind", "job_id", "status", "attempts", "queued_at", "started_at", "finished_at")
    list_filter = ("kind", "status")


@admin.register(SyncSchedule)
class SyncScheduleAdmin(admin.ModelAdmin):
    list_display = ("name", "enabled", "cron_expr", "timezone_name", "user_email", "next_fire_at", "last_result")
    list_filter = ("enabled", "last_result", "timezone_name")
    search_fields = ("name", "cron_expr", "user_email")


@admin.register(MailServer)
class MailServerAdmin(admin.ModelAdmin):
    list_display = ("name", "smtp_host", "smtp_port", "smtp_secure")


@admin.register(MailProfile)
class MailProfileAdmin(admin.ModelAdmin):
    list_display = ("email", "mail_server")
    search_fields = ("email",)
