from django.apps import AppConfig


class OrderSyncConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.order_sync"
    verbose_name = "ERP Order Sync"
