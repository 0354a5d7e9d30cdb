from django.urls import path

from . import views

app_name = "order_sync"

urlpatterns = [
    path("api/aggregated/trigger", views.aggregated_trigger, name="aggregated-trigger"),
    path("api/aggregated/<uuid:job_id>/", views.aggregated_status, name="aggregated-status"),
    path(
        "api/aggregated/<uuid:job_id>/<slug:action>",
        views.aggregated_control,
        name="aggregated-control",
    ),
    path("api/daily/trigger", views.daily_trigger, name="daily-trigger"),
    path("api/daily/<uuid:job_id>/", views.daily_status, name="daily-status"),
    path("api/daily/<uuid:job_id>/<slug:action>", views.daily_control, name="daily-control"),
    path("api/jobs/active", views.active_jobs, name="active-jobs"),
    path("api/reset", views.reset_sync, name="reset"),
]
