from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("order-sync/", include("apps.order_sync.urls")),
]
