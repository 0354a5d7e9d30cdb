from __future__ import annotations

from django.core.management.base import BaseCommand

from apps.order_sync.services.task_queue import requeue_stale_tasks


class Command(BaseCommand):
    help = "Return sync tasks stuck in running (dead worker) to the queue, failing them after max attempts."

    def add_arguments(self, parser):
        parser.add_argument("--stale-minutes", type=int, default=None)
        parser.add_argument("--max-attempts", type=int, default=None)

    def handle(self, *args, **options):
        stats = requeue_stale_tasks(
            stale_minutes=options["stale_minutes"],
            max_attempts=options["max_attempts"],
        )
        self.stdout.write(
            self.style.SUCCESS(f"Requeued {stats['requeued']} task(s); failed {stats['failed']} task(s).")
        )
