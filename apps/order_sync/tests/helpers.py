from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

from django.utils import timezone

from apps.order_sync.models import TransactionLine

LINE_DEFAULTS = {
    "brand_name": "Brand X",
    "brand_code": "BX",
    "sku": "SKU-1",
    "product_id": "P-1",
    "product_name": "Coffee",
    "unit_price": Decimal("10"),
    "qty": Decimal("1"),
    "total": Decimal("10"),
    "payment_method": "cash",
    "payment_brand": "cash",
    "user_name": "Sara",
    "company": "Main Co",
}


def sold_at(day: date, hour: int = 10) -> datetime:
    return timezone.make_aware(datetime(day.year, day.month, day.day, hour, 0, 0))


def line_namespace(order_number: str, day: date = date(2025, 1, 1), **overrides) -> SimpleNamespace:
    values = {**LINE_DEFAULTS, "order_number": order_number, "sold_at": sold_at(day), **overrides}
    return SimpleNamespace(**values)


def make_line(order_number: str, day: date = date(2025, 1, 1), **overrides) -> TransactionLine:
    values = {**LINE_DEFAULTS, "order_number": order_number, "sold_at": sold_at(day), **overrides}
    return TransactionLine.objects.create(**values)


def user_fields() -> dict:
    return {"user_id": "u-1", "user_email": "sara@example.com", "user_name": "Sara"}


def trigger_body(**overrides) -> dict:
    body = {
        "fromDate": "2025-01-01",
        "toDate": "2025-01-01",
        "userId": "u-1",
        "userEmail": "sara@example.com",
        "userName": "Sara",
    }
    body.update(overrides)
    return body
