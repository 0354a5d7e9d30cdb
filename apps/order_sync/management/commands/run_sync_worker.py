from __future__ import annotations

import logging
import threading

from django.core.management.base import BaseCommand
from django.db import close_old_connections, connection

from apps.order_sync import sync_settings
from apps.order_sync.services.schedule_worker import process_schedule_cycle
from apps.order_sync.services.task_queue import process_task_cycle, requeue_stale_tasks

logger = logging.getLogger(__name__)


def _task_loop(stop: threading.Event, poll_seconds: int) -> None:
    try:
        while not stop.is_set():
            close_old_connections()
            try:
                process_task_cycle()
            except Exception:
                logger.exception("Sync task cycle failed")
            stop.wait(poll_seconds)
    finally:
        connection.close()


class Command(BaseCommand):
    help = "Run the sync worker: executes queued SyncTask rows and fires due SyncSchedule entries."

    def add_arguments(self, parser):
        parser.add_argument(
            "--poll-seconds",
            type=int,
            default=None,
            help="Polling interval in seconds (default from ERP_SYNC_WORKER_POLL_SECONDS or 5).",
        )
        parser.add_argument(
            "--threads",
            type=int,
            default=None,
            help="Task-executing threads (default from ERP_SYNC_WORKER_THREADS or 2).",
        )
        parser.add_argument(
            "--once",
            action="store_true",
            help="Fire due schedules, drain the task queue in this thread, then exit.",
        )

    def _schedule_cycle(self) -> None:
        stats = process_schedule_cycle()
        if any(stats.values()):
            self.stdout.write(
                "schedules "
                f"initialized={stats['initialized']} "
                f"due={stats['due']} "
                f"queued={stats['queued']} "
                f"skipped_overlap={stats['skipped_overlap']} "
                f"skipped_invalid={stats['skipped_invalid']} "
                f"errors={stats['errors']}"
            )
        stale = requeue_stale_tasks()
        if any(stale.values()):
            self.stdout.write(f"stale tasks requeued={stale['requeued']} failed={stale['failed']}")

    def handle(self, *args, **options):
        poll_seconds = max(1, options["poll_seconds"] or sync_settings.get_worker_poll_seconds())
        threads = max(1, options["threads"] or sync_settings.get_worker_threads())
        once = bool(options["once"])
        self.stdout.write(
            self.style.SUCCESS(f"Sync worker started (poll_seconds={poll_seconds}, threads={threads}, once={once}).")
        )

        if once:
            self._schedule_cycle()
            stats = process_task_cycle()
            self.stdout.write(
                f"tasks claimed={stats['claimed']} succeeded={stats['succeeded']} failed={stats['failed']}"
            )
            self.stdout.write(self.style.SUCCESS("Sync worker stopped."))
            return

        stop = threading.Event()
        workers = [
            threading.Thread(target=_task_loop, args=(stop, poll_seconds), name=f"sync-worker-{index}", daemon=True)
            for index in range(threads)
        ]
        for worker in workers:
            worker.start()

        try:
            while True:
                close_old_connections()
                try:
                    self._schedule_cycle()
                except Exception:
                    logger.exception("Schedule cycle failed")
                stop.wait(poll_seconds)
        except KeyboardInterrupt:
            self.stdout.write("Stopping sync worker...")
        finally:
            stop.set()
            for worker in workers:
                worker.join(timeout=poll_seconds * 2)

        self.stdout.write(self.style.SUCCESS("Sync worker stopped."))
