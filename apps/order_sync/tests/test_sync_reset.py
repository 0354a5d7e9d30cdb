from __future__ import annotations

from datetime import date

from django.core.management import call_command
from django.test import TestCase

from apps.order_sync.models import OrderMapping, TransactionLine
from apps.order_sync.services.sync_reset import reset_sync_state
from apps.order_sync.tests.helpers import make_line

JAN_1 = date(2025, 1, 1)
JAN_2 = date(2025, 1, 2)


class ResetSyncStateTests(TestCase):
    def setUp(self):
        make_line("A1", JAN_1, sent_to_erp=True)
        make_line("A1", JAN_1, sku="SKU-2", sent_to_erp=True)
        make_line("B1", JAN_2, sent_to_erp=True)
        OrderMapping.objects.create(
            original_order_number="A1",
            aggregated_order_number="202501010001",
            aggregation_date=JAN_1,
        )
        OrderMapping.objects.create(
            original_order_number="B1",
            aggregated_order_number="202501020001",
            aggregation_date=JAN_2,
        )

    def test_clears_only_the_requested_range(self):
        counts = reset_sync_state(JAN_1, JAN_1)

        self.assertEqual(counts, {"totalCount": 2, "updatedCount": 2, "deletedMappingsCount": 1})
        self.assertEqual(
            list(TransactionLine.objects.filter(sent_to_erp=True).values_list("order_number", flat=True)),
            ["B1"],
        )
        self.assertEqual(list(OrderMapping.objects.values_list("original_order_number", flat=True)), ["B1"])

    def test_rejects_inverted_range(self):
        with self.assertRaises(ValueError):
            reset_sync_state(JAN_2, JAN_1)

    def test_management_command_resets_range(self):
        call_command("reset_order_sync", "--from-date", "2025-01-01", "--to-date", "2025-01-02", verbosity=0)

        self.assertFalse(TransactionLine.objects.filter(sent_to_erp=True).exists())
        self.assertFalse(OrderMapping.objects.exists())
