from __future__ import annotations

import json
import uuid
from datetime import date

from django.test import TestCase, override_settings
from django.urls import reverse

from apps.order_sync.models import BackgroundSyncJob, DailySyncJob, SyncRun, SyncTask
from apps.order_sync.tests.helpers import trigger_body, user_fields

JAN_1 = date(2025, 1, 1)
JAN_2 = date(2025, 1, 2)


def _aggregated_job(**overrides) -> BackgroundSyncJob:
    values = {"from_date": JAN_1, "to_date": JAN_1, "status": BackgroundSyncJob.STATUS_RUNNING, **user_fields()}
    values.update(overrides)
    return BackgroundSyncJob.objects.create(**values)


def _daily_job(**overrides) -> DailySyncJob:
    values = {"from_date": JAN_1, "to_date": JAN_2, "status": DailySyncJob.STATUS_RUNNING, **user_fields()}
    values.update(overrides)
    return DailySyncJob.objects.create(**values)


class ApiTestCase(TestCase):
    def post_json(self, url, body=None, **extra):
        return self.client.post(url, data=json.dumps(body or {}), content_type="application/json", **extra)


class TriggerApiTests(ApiTestCase):
    def test_aggregated_trigger_creates_job_and_task(self):
        response = self.post_json(reverse("order_sync:aggregated-trigger"), trigger_body())

        self.assertEqual(response.status_code, 202)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["message"], "Aggregated sync started")
        job = BackgroundSyncJob.objects.get(id=payload["jobId"])
        self.assertEqual(job.status, BackgroundSyncJob.STATUS_PENDING)
        task = SyncTask.objects.get(job_id=job.id)
        self.assertEqual(task.kind, SyncTask.KIND_AGGREGATED)
        self.assertEqual(task.payload_json["resumeFrom"], 0)

    def test_trigger_keeps_caller_job_id_and_selection(self):
        job_id = str(uuid.uuid4())

        response = self.post_json(
            reverse("order_sync:aggregated-trigger"),
            trigger_body(jobId=job_id, selectedOrderNumbers=["A1", " ", "A2"]),
        )

        self.assertEqual(response.json()["jobId"], job_id)
        self.assertEqual(BackgroundSyncJob.objects.get(id=job_id).selected_order_numbers, ["A1", "A2"])

    def test_missing_fields_return_400(self):
        cases = [
            trigger_body(fromDate=""),
            trigger_body(userEmail=""),
            trigger_body(fromDate="2025-13-01"),
            trigger_body(fromDate="2025-01-05", toDate="2025-01-01"),
            trigger_body(resumeFrom="abc"),
        ]
        for body in cases:
            with self.subTest(body=body):
                response = self.post_json(reverse("order_sync:aggregated-trigger"), body)
                self.assertEqual(response.status_code, 400)
                self.assertFalse(response.json()["success"])
        self.assertFalse(BackgroundSyncJob.objects.exists())

    def test_invalid_json_returns_400(self):
        response = self.client.post(
            reverse("order_sync:aggregated-trigger"),
            data="{not json",
            content_type="application/json",
        )

        self.assertEqual(response.status_code, 400)

    def test_resume_of_unknown_job_returns_404(self):
        response = self.post_json(
            reverse("order_sync:aggregated-trigger"),
            trigger_body(jobId=str(uuid.uuid4()), resumeFrom=3),
        )

        self.assertEqual(response.status_code, 404)

    def test_overlapping_active_job_returns_409(self):
        _daily_job()

        response = self.post_json(reverse("order_sync:aggregated-trigger"), trigger_body(toDate="2025-01-03"))

        self.assertEqual(response.status_code, 409)
        self.assertIn("Another sync is already active", response.json()["error"])

    def test_finished_jobs_do_not_block_new_triggers(self):
        _aggregated_job(status=BackgroundSyncJob.STATUS_COMPLETED)
        _daily_job(status=DailySyncJob.STATUS_CANCELLED)

        response = self.post_json(reverse("order_sync:daily-trigger"), trigger_body())

        self.assertEqual(response.status_code, 202)

    def test_retrigger_of_paused_job_resumes_it(self):
        job = _aggregated_job(status=BackgroundSyncJob.STATUS_PAUSED, processed_orders=4)

        response = self.post_json(reverse("order_sync:aggregated-trigger"), trigger_body(jobId=str(job.id)))

        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json()["message"], "Aggregated sync resumed")
        job.refresh_from_db()
        self.assertEqual(job.status, BackgroundSyncJob.STATUS_PENDING)
        self.assertEqual(SyncTask.objects.get(job_id=job.id).payload_json["resumeFrom"], 4)

    def test_retrigger_with_queued_task_does_not_duplicate(self):
        self.post_json(reverse("order_sync:aggregated-trigger"), trigger_body(jobId=str(uuid.uuid4())))
        job = BackgroundSyncJob.objects.get()

        response = self.post_json(reverse("order_sync:aggregated-trigger"), trigger_body(jobId=str(job.id)))

        self.assertEqual(response.json()["message"], "Aggregated sync already queued")
        self.assertEqual(SyncTask.objects.filter(job_id=job.id).count(), 1)

    def test_retrigger_of_completed_job_returns_409(self):
        job = _aggregated_job(status=BackgroundSyncJob.STATUS_COMPLETED)

        response = self.post_json(reverse("order_sync:aggregated-trigger"), trigger_body(jobId=str(job.id)))

        self.assertEqual(response.status_code, 409)

    def test_daily_trigger_initializes_day_statuses(self):
        response = self.post_json(reverse("order_sync:daily-trigger"), trigger_body(toDate="2025-01-03"))

        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json()["message"], "Daily sync started")
        job = DailySyncJob.objects.get(id=response.json()["jobId"])
        self.assertEqual(job.total_days, 3)
        self.assertEqual(sorted(job.day_statuses), ["2025-01-01", "2025-01-02", "2025-01-03"])
        self.assertEqual({entry["status"] for entry in job.day_statuses.values()}, {"pending"})
        self.assertEqual(SyncTask.objects.get(job_id=job.id).kind, SyncTask.KIND_DAILY)

    def test_get_is_not_allowed_on_trigger(self):
        response = self.client.get(reverse("order_sync:aggregated-trigger"))

        self.assertEqual(response.status_code, 405)


@override_settings(ERP_SYNC_API_TOKEN="s3cret")
class ApiTokenTests(ApiTestCase):
    def test_missing_or_wrong_token_is_rejected(self):
        url = reverse("order_sync:active-jobs")

        self.assertEqual(self.client.get(url).status_code, 401)
        self.assertEqual(self.client.get(url, HTTP_AUTHORIZATION="Bearer nope").status_code, 401)
        self.assertEqual(self.client.get(url, HTTP_AUTHORIZATION="Basic s3cret").status_code, 401)

    def test_matching_token_is_accepted(self):
        response = self.post_json(
            reverse("order_sync:aggregated-trigger"),
            trigger_body(),
            HTTP_AUTHORIZATION="Bearer s3cret",
        )

        self.assertEqual(response.status_code, 202)


class StatusApiTests(ApiTestCase):
    def test_aggregated_status_includes_run_details(self):
        run = SyncRun.objects.create(from_date=JAN_1, to_date=JAN_1)
        run.details.create(
            order_number="202501010001",
            order_date=JAN_1,
            original_orders=["A1"],
            sync_status="failed",
            error_message="Order: Bad SKU",
            step_order="pending",
        )
        job = _aggregated_job(sync_run=run, total_orders=1, processed_orders=1, failed_orders=1)

        response = self.client.get(reverse("order_sync:aggregated-status", args=[job.id]))

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "running")
        self.assertEqual(payload["failedOrders"], 1)
        self.assertEqual(payload["details"][0]["orderNumber"], "202501010001")
        self.assertEqual(payload["details"][0]["errorMessage"], "Order: Bad SKU")
        self.assertEqual(payload["details"][0]["steps"]["order"], "pending")

    def test_daily_status_lists_days_in_order(self):
        job = _daily_job(
            day_statuses={
                "2025-01-02": {"date": "2025-01-02", "status": "pending"},
                "2025-01-01": {"date": "2025-01-01", "status": "completed"},
            }
        )

        payload = self.client.get(reverse("order_sync:daily-status", args=[job.id])).json()

        self.assertEqual([day["date"] for day in payload["dayStatuses"]], ["2025-01-01", "2025-01-02"])

    def test_unknown_job_returns_404(self):
        response = self.client.get(reverse("order_sync:daily-status", args=[uuid.uuid4()]))

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"success": False, "error": "Job not found."})

    def test_active_jobs_lists_only_active(self):
        running = _aggregated_job()
        _aggregated_job(status=BackgroundSyncJob.STATUS_COMPLETED)
        paused = _daily_job(status=DailySyncJob.STATUS_PAUSED)

        payload = self.client.get(reverse("order_sync:active-jobs")).json()

        self.assertEqual(payload, {"aggregated": [str(running.id)], "daily": [str(paused.id)]})


class ControlApiTests(ApiTestCase):
    def _control(self, name, job, action):
        return self.client.post(reverse(f"order_sync:{name}", args=[job.id, action]))

    def test_pause_then_resume_requeues_job(self):
        job = _aggregated_job(processed_orders=2)

        paused = self._control("aggregated-control", job, "pause")
        resumed = self._control("aggregated-control", job, "resume")

        self.assertEqual(paused.json()["status"], "paused")
        self.assertEqual(resumed.status_code, 200)
        self.assertEqual(resumed.json()["status"], "pending")
        task = SyncTask.objects.get(job_id=job.id)
        self.assertEqual(task.payload_json["resumeFrom"], 2)

    def test_resume_requires_paused_job(self):
        job = _aggregated_job()

        response = self._control("aggregated-control", job, "resume")

        self.assertEqual(response.status_code, 409)

    def test_cancel_closes_job_and_run(self):
        run = SyncRun.objects.create(from_date=JAN_1, to_date=JAN_1)
        job = _aggregated_job(status=BackgroundSyncJob.STATUS_PAUSED, sync_run=run)

        response = self._control("aggregated-control", job, "cancel")

        self.assertEqual(response.json()["status"], "cancelled")
        job.refresh_from_db()
        run.refresh_from_db()
        self.assertIsNotNone(job.completed_at)
        self.assertEqual(run.status, SyncRun.STATUS_CANCELLED)
        self.assertEqual(self._control("aggregated-control", job, "pause").status_code, 409)

    def test_daily_pause_and_cancel_cascade_to_children(self):
        parent = _daily_job()
        child = _aggregated_job(daily_job=parent)

        self._control("daily-control", parent, "pause")
        child.refresh_from_db()
        self.assertEqual(child.status, BackgroundSyncJob.STATUS_PAUSED)

        self._control("daily-control", parent, "cancel")
        child.refresh_from_db()
        parent.refresh_from_db()
        self.assertEqual(parent.status, DailySyncJob.STATUS_CANCELLED)
        self.assertEqual(child.status, BackgroundSyncJob.STATUS_CANCELLED)

    def test_daily_resume_continues_from_current_day(self):
        parent = _daily_job(status=DailySyncJob.STATUS_PAUSED, current_day=JAN_2)

        self._control("daily-control", parent, "resume")

        task = SyncTask.objects.get(job_id=parent.id)
        self.assertEqual(task.payload_json["resumeFromDay"], "2025-01-02")

    def test_unknown_action_and_job(self):
        job = _aggregated_job()

        self.assertEqual(self._control("aggregated-control", job, "restart").status_code, 400)
        missing = self.client.post(reverse("order_sync:aggregated-control", args=[uuid.uuid4(), "pause"]))
        self.assertEqual(missing.status_code, 404)


class ResetApiTests(ApiTestCase):
    def test_reset_requires_dates(self):
        response = self.post_json(reverse("order_sync:reset"), {"fromDate": "2025-01-01"})

        self.assertEqual(response.status_code, 400)

    def test_reset_reports_counts(self):
        response = self.post_json(reverse("order_sync:reset"), {"fromDate": "2025-01-01", "toDate": "2025-01-01"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["updatedCount"], 0)
        self.assertEqual(payload["deletedMappingsCount"], 0)
        self.assertIn("successfully", payload["message"])
