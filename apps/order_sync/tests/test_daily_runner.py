from __future__ import annotations

import itertools
import uuid
from datetime import date
from unittest import mock

from django.test import SimpleTestCase, TestCase, override_settings

from apps.order_sync.models import BackgroundSyncJob, DailySyncJob, SyncTask
from apps.order_sync.services.aggregated_runner import run_aggregated_sync
from apps.order_sync.services.aggregation import AggregationResult, build_invoices_for_range
from apps.order_sync.services.daily_runner import (
    DAY_COMPLETED,
    DAY_FAILED,
    DAY_PENDING,
    DAY_RUNNING,
    OUTCOME_ABORTED,
    OUTCOME_COMPLETED,
    OUTCOME_CONTINUED,
    advance_day,
    new_day_status,
    run_daily_sync,
)
from apps.order_sync.services.payloads import AggregatedSyncRequest, DailySyncRequest
from apps.order_sync.services.step_client import StepExecutorClient, StepResult
from apps.order_sync.services.task_queue import claim_next_task, execute_task
from apps.order_sync.tests.helpers import make_line

JAN_1 = date(2025, 1, 1)
JAN_2 = date(2025, 1, 2)
JAN_3 = date(2025, 1, 3)


def _request(from_date=JAN_1, to_date=JAN_3, **overrides) -> DailySyncRequest:
    values = {
        "job_id": uuid.uuid4(),
        "from_date": from_date,
        "to_date": to_date,
        "user_id": "u-1",
        "user_email": "sara@example.com",
        "user_name": "Sara",
    }
    values.update(overrides)
    return DailySyncRequest(**values)


def _step_client() -> mock.Mock:
    client = mock.Mock(spec=StepExecutorClient)
    client.execute_step.return_value = StepResult(success=True)
    return client


def _run_queued_children(seconds):
    """Stand-in for the poll sleep: a worker drains queued child tasks meanwhile."""
    while True:
        task = claim_next_task()
        if task is None:
            return
        execute_task(task)


class AdvanceDayTests(SimpleTestCase):
    def test_moves_forward(self):
        entry = new_day_status(JAN_1)

        self.assertTrue(advance_day(entry, DAY_RUNNING, started_at="t0"))
        self.assertTrue(advance_day(entry, DAY_COMPLETED))

        self.assertEqual(entry["status"], DAY_COMPLETED)
        self.assertEqual(entry["started_at"], "t0")

    def test_refuses_regression_and_terminal_changes(self):
        entry = new_day_status(JAN_1)
        advance_day(entry, DAY_RUNNING)

        self.assertFalse(advance_day(entry, DAY_PENDING))
        advance_day(entry, DAY_FAILED, error_message="boom")
        self.assertFalse(advance_day(entry, DAY_COMPLETED))

        self.assertEqual(entry["status"], DAY_FAILED)
        self.assertEqual(entry["error_message"], "boom")


@override_settings(ERP_SYNC_DAILY_POLL_SECONDS=0)
class DailyRunnerTests(TestCase):
    def setUp(self):
        make_line("A1", JAN_1)
        make_line("C1", JAN_3)
        make_line("C2", JAN_3, user_name="Ali")
        monotonic = mock.patch("apps.order_sync.services.daily_runner._monotonic", return_value=0.0)
        monotonic.start()
        self.addCleanup(monotonic.stop)
        client_patch = mock.patch(
            "apps.order_sync.services.aggregated_runner.StepExecutorClient",
            return_value=_step_client(),
        )
        client_patch.start()
        self.addCleanup(client_patch.stop)

    def test_runs_each_day_through_a_child_job(self):
        request = _request()

        with mock.patch("apps.order_sync.services.daily_runner._wait", side_effect=_run_queued_children):
            outcome = run_daily_sync(request)

        self.assertEqual(outcome, OUTCOME_COMPLETED)
        job = DailySyncJob.objects.get(id=request.job_id)
        self.assertEqual(job.status, DailySyncJob.STATUS_COMPLETED)
        self.assertEqual(job.total_days, 3)
        self.assertEqual(job.completed_days, 3)
        self.assertEqual(job.failed_days, 0)
        self.assertEqual(job.total_orders, 3)
        self.assertEqual(job.successful_orders, 3)
        self.assertIsNotNone(job.completed_at)

        days = job.day_statuses
        self.assertEqual({entry["status"] for entry in days.values()}, {DAY_COMPLETED})
        self.assertIsNone(days["2025-01-02"]["background_job_id"])
        self.assertEqual(days["2025-01-03"]["total_orders"], 2)

        children = BackgroundSyncJob.objects.filter(daily_job=job)
        self.assertEqual(children.count(), 2)
        self.assertEqual(set(children.values_list("status", flat=True)), {BackgroundSyncJob.STATUS_COMPLETED})
        self.assertEqual(
            {str(child.id) for child in children},
            {days["2025-01-01"]["background_job_id"], days["2025-01-03"]["background_job_id"]},
        )

    @override_settings(ERP_SYNC_DAILY_POLL_MAX_ATTEMPTS=2)
    def test_child_that_never_finishes_fails_the_day(self):
        request = _request(JAN_1, JAN_1)

        with mock.patch("apps.order_sync.services.daily_runner._wait") as wait:
            outcome = run_daily_sync(request)

        self.assertEqual(outcome, OUTCOME_COMPLETED)
        self.assertEqual(wait.call_count, 2)
        job = DailySyncJob.objects.get(id=request.job_id)
        self.assertEqual(job.failed_days, 1)
        entry = job.day_statuses["2025-01-01"]
        self.assertEqual(entry["status"], DAY_FAILED)
        self.assertIn("Timed out waiting for background job", entry["error_message"])
        self.assertIn("after 2 checks", entry["error_message"])

    def test_budget_exhaustion_continues_on_the_same_day(self):
        request = _request(JAN_1, JAN_1)

        with mock.patch(
            "apps.order_sync.services.daily_runner._monotonic",
            side_effect=itertools.chain([0.0], itertools.repeat(100.0)),
        ), mock.patch("apps.order_sync.services.daily_runner._wait") as wait:
            outcome = run_daily_sync(request)

        self.assertEqual(outcome, OUTCOME_CONTINUED)
        wait.assert_not_called()
        job = DailySyncJob.objects.get(id=request.job_id)
        self.assertEqual(job.status, DailySyncJob.STATUS_RUNNING)
        entry = job.day_statuses["2025-01-01"]
        self.assertEqual(entry["status"], DAY_RUNNING)
        continuation = SyncTask.objects.get(kind=SyncTask.KIND_DAILY)
        self.assertEqual(continuation.payload_json["resumeFromDay"], "2025-01-01")
        self.assertEqual(continuation.payload_json["jobId"], str(request.job_id))
        self.assertTrue(SyncTask.objects.filter(kind=SyncTask.KIND_AGGREGATED, job_id=entry["background_job_id"]).exists())

    def test_resume_reattaches_existing_child(self):
        request = _request(JAN_1, JAN_1)
        with mock.patch(
            "apps.order_sync.services.daily_runner._monotonic",
            side_effect=itertools.chain([0.0], itertools.repeat(100.0)),
        ), mock.patch("apps.order_sync.services.daily_runner._wait"):
            run_daily_sync(request)
        child_task = SyncTask.objects.get(kind=SyncTask.KIND_AGGREGATED)
        run_aggregated_sync(AggregatedSyncRequest.from_payload(child_task.payload_json))
        continuation = SyncTask.objects.get(kind=SyncTask.KIND_DAILY)

        with mock.patch("apps.order_sync.services.daily_runner._wait") as wait:
            outcome = run_daily_sync(DailySyncRequest.from_payload(continuation.payload_json))

        self.assertEqual(outcome, OUTCOME_COMPLETED)
        wait.assert_not_called()
        self.assertEqual(BackgroundSyncJob.objects.count(), 1)
        job = DailySyncJob.objects.get(id=request.job_id)
        self.assertEqual(job.day_statuses["2025-01-01"]["status"], DAY_COMPLETED)
        self.assertEqual(job.successful_orders, 1)

    def test_resume_requeues_paused_child(self):
        request = _request(JAN_1, JAN_1)
        with mock.patch(
            "apps.order_sync.services.daily_runner._monotonic",
            side_effect=itertools.chain([0.0], itertools.repeat(100.0)),
        ), mock.patch("apps.order_sync.services.daily_runner._wait"):
            run_daily_sync(request)
        SyncTask.objects.update(status=SyncTask.STATUS_FAILED)
        child = BackgroundSyncJob.objects.get()
        BackgroundSyncJob.objects.filter(id=child.id).update(status=BackgroundSyncJob.STATUS_PAUSED)

        with mock.patch("apps.order_sync.services.daily_runner._wait", side_effect=_run_queued_children):
            outcome = run_daily_sync(_request(JAN_1, JAN_1, job_id=request.job_id, resume_from_day=JAN_1))

        self.assertEqual(outcome, OUTCOME_COMPLETED)
        child.refresh_from_db()
        self.assertEqual(child.status, BackgroundSyncJob.STATUS_COMPLETED)
        self.assertEqual(BackgroundSyncJob.objects.count(), 1)

    def test_pause_during_poll_stops_the_runner(self):
        request = _request(JAN_1, JAN_1)

        def pause_parent(seconds):
            DailySyncJob.objects.filter(id=request.job_id).update(status=DailySyncJob.STATUS_PAUSED)

        with mock.patch("apps.order_sync.services.daily_runner._wait", side_effect=pause_parent):
            outcome = run_daily_sync(request)

        self.assertEqual(outcome, DailySyncJob.STATUS_PAUSED)
        job = DailySyncJob.objects.get(id=request.job_id)
        self.assertEqual(job.status, DailySyncJob.STATUS_PAUSED)
        self.assertEqual(job.day_statuses["2025-01-01"]["status"], DAY_RUNNING)
        self.assertFalse(SyncTask.objects.filter(kind=SyncTask.KIND_DAILY).exists())

    def test_failure_inside_a_day_does_not_stop_later_days(self):
        request = _request(JAN_1, JAN_2)

        with mock.patch(
            "apps.order_sync.services.daily_runner.build_invoices_for_range",
            side_effect=[RuntimeError("lines table locked"), AggregationResult(invoices=[])],
        ):
            outcome = run_daily_sync(request)

        self.assertEqual(outcome, OUTCOME_COMPLETED)
        job = DailySyncJob.objects.get(id=request.job_id)
        self.assertEqual(job.day_statuses["2025-01-01"]["status"], DAY_FAILED)
        self.assertEqual(job.day_statuses["2025-01-01"]["error_message"], "lines table locked")
        self.assertEqual(job.day_statuses["2025-01-02"]["status"], DAY_COMPLETED)
        self.assertEqual(job.failed_days, 1)
        self.assertEqual(job.completed_days, 1)

    def test_resume_of_deleted_job_aborts_silently(self):
        outcome = run_daily_sync(_request(resume_from_day=JAN_2))

        self.assertEqual(outcome, OUTCOME_ABORTED)
        self.assertFalse(DailySyncJob.objects.exists())

    def test_job_deleted_while_polling_aborts_without_recreating(self):
        request = _request(JAN_1, JAN_1)

        def delete_parent(seconds):
            DailySyncJob.objects.filter(id=request.job_id).delete()

        with mock.patch("apps.order_sync.services.daily_runner._wait", side_effect=delete_parent) as wait:
            outcome = run_daily_sync(request)

        self.assertEqual(outcome, OUTCOME_ABORTED)
        self.assertEqual(wait.call_count, 1)
        self.assertFalse(DailySyncJob.objects.exists())
        self.assertFalse(SyncTask.objects.filter(kind=SyncTask.KIND_DAILY).exists())

    def test_job_deleted_between_days_stops_before_next_day(self):
        request = _request(JAN_1, JAN_2)

        def finish_children_then_delete_parent(seconds):
            _run_queued_children(seconds)
            DailySyncJob.objects.filter(id=request.job_id).delete()

        with mock.patch(
            "apps.order_sync.services.daily_runner._wait",
            side_effect=finish_children_then_delete_parent,
        ), mock.patch(
            "apps.order_sync.services.daily_runner.build_invoices_for_range",
            wraps=build_invoices_for_range,
        ) as build:
            outcome = run_daily_sync(request)

        self.assertEqual(outcome, OUTCOME_ABORTED)
        self.assertEqual([call.args[:2] for call in build.call_args_list], [(JAN_1, JAN_1)])
        self.assertFalse(DailySyncJob.objects.exists())
        self.assertEqual(BackgroundSyncJob.objects.get().status, BackgroundSyncJob.STATUS_COMPLETED)
