from __future__ import annotations

import logging
from datetime import date

from django.db import transaction

from ..models import OrderMapping, TransactionLine

logger = logging.getLogger(__name__)


def reset_sync_state(from_date: date, to_date: date) -> dict[str, int]:
    """
    Forget that a date range was synced: drop its order mappings and clear the sent flag
    on its transaction lines, so the next run aggregates and submits it again.
    """
    if from_date > to_date:
        raise ValueError("from_date must be on or before to_date.")

    with transaction.atomic():
        lines = TransactionLine.objects.filter(
            sold_at__date__gte=from_date,
            sold_at__date__lte=to_date,
            sent_to_erp=True,
        )
        total_count = lines.count()
        deleted_mappings, _ = OrderMapping.objects.filter(
            aggregation_date__gte=from_date,
            aggregation_date__lte=to_date,
        ).delete()
        updated_count = lines.update(sent_to_erp=False)

    logger.info(
        "Reset sync state for %s..%s: %s line(s) cleared, %s mapping(s) deleted",
        from_date,
        to_date,
        updated_count,
        deleted_mappings,
    )
    return {
        "totalCount": total_count,
        "updatedCount": updated_count,
        "deletedMappingsCount": deleted_mappings,
    }
