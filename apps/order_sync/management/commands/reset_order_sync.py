from __future__ import annotations

from datetime import date

from django.core.management.base import BaseCommand, CommandError

from apps.order_sync.services.sync_reset import reset_sync_state


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise CommandError(f"Invalid date {value!r}; expected YYYY-MM-DD.") from exc


class Command(BaseCommand):
    help = "Delete order mappings and clear the sent-to-ERP flag for a sales date range."

    def add_arguments(self, parser):
        parser.add_argument("--from-date", required=True)
        parser.add_argument("--to-date", required=True)

    def handle(self, *args, **options):
        from_date = _parse_date(options["from_date"])
        to_date = _parse_date(options["to_date"])
        if from_date > to_date:
            raise CommandError("--from-date must be on or before --to-date.")
        counts = reset_sync_state(from_date, to_date)
        self.stdout.write(
            self.style.SUCCESS(
                f"Reset {counts['updatedCount']} transaction(s) and "
                f"{counts['deletedMappingsCount']} aggregated mapping(s) for {from_date} to {to_date}."
            )
        )
