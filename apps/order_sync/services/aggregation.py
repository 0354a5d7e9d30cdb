"""
Aggregation builder: groups transaction lines into synthetic ERP invoices.

One aggregated invoice per (sale date, brand, payment method, payment brand, cashier).
Invoice numbers are YYYYMMDD + 4-digit per-date sequence, continuing from the highest
number already present in the order mapping table for that date. Groups whose original
orders are all mapped already are reported as synced and left out of the output.

Sequence allocation reads the mapping table; two jobs building the same date at the
same time can hand out the same number. Triggers refuse overlapping jobs, but nothing
locks the date itself.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Iterator

from django.utils import timezone

from .. import sync_settings
from ..models import OrderMapping, Product, TransactionLine

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 4
_IN_CLAUSE_CHUNK = 500

CASH_CUSTOMER_NAME = "Cash Customer"
CASH_CUSTOMER_PHONE = "0000"

InvoiceKey = tuple[date, str, str, str, str]


@dataclass
class ProductLine:
    sku: str
    product_name: str
    unit_price: Decimal
    total_qty: Decimal
    total_amount: Decimal


@dataclass
class AggregatedInvoice:
    order_number: str
    invoice_date: date
    brand_name: str
    brand_code: str
    payment_method: str
    payment_brand: str
    user_name: str
    company: str
    product_lines: list[ProductLine] = field(default_factory=list)
    grand_total: Decimal = Decimal("0")
    original_order_numbers: list[str] = field(default_factory=list)
    has_non_stock: bool = False

    @property
    def product_names(self) -> str:
        return ", ".join(line.product_name for line in self.product_lines)

    def synthetic_transactions(self) -> list[dict[str, Any]]:
        """Transaction rows in the shape the step endpoint expects, one per product line."""
        return [
            {
                "order_number": self.order_number,
                "customer_name": CASH_CUSTOMER_NAME,
                "customer_phone": CASH_CUSTOMER_PHONE,
                "brand_code": self.brand_code,
                "brand_name": self.brand_name,
                "product_id": line.sku,
                "sku": line.sku,
                "product_name": line.product_name,
                "unit_price": float(line.unit_price),
                "total": float(line.total_amount),
                "qty": float(line.total_qty),
                "created_at_date": self.invoice_date.isoformat(),
                "payment_method": self.payment_method,
                "payment_brand": self.payment_brand,
                "user_name": self.user_name,
                "company": self.company,
            }
            for line in self.product_lines
        ]

    def to_payload(self) -> dict[str, Any]:
        return {
            "order_number": self.order_number,
            "invoice_date": self.invoice_date.isoformat(),
            "brand_name": self.brand_name,
            "brand_code": self.brand_code,
            "payment_method": self.payment_method,
            "payment_brand": self.payment_brand,
            "user_name": self.user_name,
            "company": self.company,
            "product_lines": [
                {
                    "sku": line.sku,
                    "product_name": line.product_name,
                    "unit_price": str(line.unit_price),
                    "total_qty": str(line.total_qty),
                    "total_amount": str(line.total_amount),
                }
                for line in self.product_lines
            ],
            "grand_total": str(self.grand_total),
            "original_order_numbers": list(self.original_order_numbers),
            "has_non_stock": self.has_non_stock,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "AggregatedInvoice":
        return cls(
            order_number=data["order_number"],
            invoice_date=date.fromisoformat(data["invoice_date"]),
            brand_name=data.get("brand_name") or "",
            brand_code=data.get("brand_code") or "",
            payment_method=data.get("payment_method") or "",
            payment_brand=data.get("payment_brand") or "",
            user_name=data.get("user_name") or "",
            company=data.get("company") or "",
            product_lines=[
                ProductLine(
                    sku=line.get("sku") or "",
                    product_name=line.get("product_name") or "",
                    unit_price=Decimal(str(line.get("unit_price") or "0")),
                    total_qty=Decimal(str(line.get("total_qty") or "0")),
                    total_amount=Decimal(str(line.get("total_amount") or "0")),
                )
                for line in data.get("product_lines") or []
            ],
            grand_total=Decimal(str(data.get("grand_total") or "0")),
            original_order_numbers=list(data.get("original_order_numbers") or []),
            has_non_stock=bool(data.get("has_non_stock")),
        )


@dataclass
class AggregationResult:
    invoices: list[AggregatedInvoice]
    # Invoice numbers of groups whose original orders were all mapped already.
    already_synced: list[str] = field(default_factory=list)


def format_invoice_number(invoice_date: date, sequence: int) -> str:
    return f"{invoice_date:%Y%m%d}{sequence:0{SEQUENCE_WIDTH}d}"


def parse_invoice_sequence(invoice_number: str, invoice_date: date) -> int | None:
    prefix = f"{invoice_date:%Y%m%d}"
    value = (invoice_number or "").strip()
    if not value.startswith(prefix):
        return None
    suffix = value[len(prefix):]
    if len(suffix) != SEQUENCE_WIDTH or not suffix.isdigit():
        return None
    return int(suffix)


def line_sale_date(line: Any) -> date:
    sold_at = line.sold_at
    if isinstance(sold_at, datetime):
        if timezone.is_aware(sold_at):
            return timezone.localdate(sold_at)
        return sold_at.date()
    return sold_at


def _line_sku(line: Any) -> str:
    return (line.sku or line.product_id or "").strip()


def _invoice_key(line: Any) -> InvoiceKey:
    return (
        line_sale_date(line),
        line.brand_name or "",
        line.payment_method or "",
        line.payment_brand or "",
        line.user_name or "",
    )


def _aggregate_product_lines(lines: list[Any]) -> list[ProductLine]:
    merged: dict[tuple[str, Decimal], ProductLine] = {}
    for line in lines:
        sku = _line_sku(line)
        unit_price = Decimal(str(line.unit_price or 0))
        key = (sku, unit_price)
        product_line = merged.get(key)
        if product_line is None:
            merged[key] = ProductLine(
                sku=sku,
                product_name=line.product_name or "",
                unit_price=unit_price,
                total_qty=Decimal(str(line.qty or 0)),
                total_amount=Decimal(str(line.total or 0)),
            )
            continue
        product_line.total_qty += Decimal(str(line.qty or 0))
        product_line.total_amount += Decimal(str(line.total or 0))
    return [merged[key] for key in sorted(merged)]


def build_aggregated_invoices(
    lines: Iterable[Any],
    *,
    non_stock_skus: set[str],
    existing_mappings: dict[str, str],
    sequence_floor: dict[date, int],
) -> AggregationResult:
    """
    Pure aggregation over already-fetched rows.

    Args:
        lines: transaction lines (model instances or objects with the same attributes)
        non_stock_skus: SKUs / product ids flagged non-stock
        existing_mappings: original order number -> aggregated invoice number
        sequence_floor: highest sequence already used per date; not mutated

    Returns:
        AggregationResult with invoices in invoice-key order.
    """
    orders: dict[str, list[Any]] = defaultdict(list)
    for line in lines:
        order_number = (line.order_number or "").strip()
        if not order_number:
            continue
        orders[order_number].append(line)

    # An order lands in exactly one invoice: the key of its first line.
    groups: dict[InvoiceKey, dict[str, list[Any]]] = defaultdict(dict)
    for order_number in sorted(orders):
        order_lines = orders[order_number]
        groups[_invoice_key(order_lines[0])][order_number] = order_lines

    next_sequence = dict(sequence_floor)
    result = AggregationResult(invoices=[])

    for key in sorted(groups):
        invoice_date, brand_name, payment_method, payment_brand, user_name = key
        group_orders = groups[key]
        original_order_numbers = sorted(group_orders)

        if all(number in existing_mappings for number in original_order_numbers):
            result.already_synced.append(existing_mappings[original_order_numbers[0]])
            continue

        sequence = next_sequence.get(invoice_date, 0) + 1
        next_sequence[invoice_date] = sequence

        group_lines = [line for number in original_order_numbers for line in group_orders[number]]
        product_lines = _aggregate_product_lines(group_lines)
        first_line = group_lines[0]
        has_non_stock = any(
            (line.sku and line.sku in non_stock_skus) or (line.product_id and line.product_id in non_stock_skus)
            for line in group_lines
        )

        result.invoices.append(
            AggregatedInvoice(
                order_number=format_invoice_number(invoice_date, sequence),
                invoice_date=invoice_date,
                brand_name=brand_name,
                brand_code=first_line.brand_code or "",
                payment_method=payment_method,
                payment_brand=payment_brand,
                user_name=user_name,
                company=first_line.company or "",
                product_lines=product_lines,
                grand_total=sum((line.total_amount for line in product_lines), Decimal("0")),
                original_order_numbers=original_order_numbers,
                has_non_stock=has_non_stock,
            )
        )

    return result


def _chunked(values: list[str], size: int = _IN_CLAUSE_CHUNK) -> Iterator[list[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def fetch_candidate_lines(
    from_date: date,
    to_date: date,
    selected_order_numbers: list[str] | None = None,
) -> list[TransactionLine]:
    """Unsent, non-deleted lines for the range (or the explicit order numbers)."""
    queryset = TransactionLine.objects.filter(is_deleted=False, sent_to_erp=False)
    excluded_method = sync_settings.get_excluded_payment_method()
    if excluded_method:
        queryset = queryset.exclude(payment_method=excluded_method)

    if selected_order_numbers:
        lines: list[TransactionLine] = []
        for chunk in _chunked(sorted(set(selected_order_numbers))):
            lines.extend(queryset.filter(order_number__in=chunk))
        lines.sort(key=lambda line: (line.sold_at, line.order_number, line.id))
        return lines

    return list(queryset.filter(sold_at__date__gte=from_date, sold_at__date__lte=to_date))


def load_non_stock_skus() -> set[str]:
    skus: set[str] = set()
    for sku, product_id in Product.objects.filter(non_stock=True).values_list("sku", "product_id"):
        if sku:
            skus.add(sku)
        if product_id:
            skus.add(product_id)
    return skus


def load_existing_mappings(order_numbers: Iterable[str]) -> dict[str, str]:
    numbers = sorted({number for number in order_numbers if number})
    mappings: dict[str, str] = {}
    for chunk in _chunked(numbers):
        rows = OrderMapping.objects.filter(original_order_number__in=chunk).values_list(
            "original_order_number",
            "aggregated_order_number",
        )
        mappings.update(dict(rows))
    return mappings


def load_sequence_floor(dates: Iterable[date]) -> dict[date, int]:
    floor: dict[date, int] = {}
    for invoice_date in sorted(set(dates)):
        prefix = f"{invoice_date:%Y%m%d}"
        highest = 0
        numbers = OrderMapping.objects.filter(aggregated_order_number__startswith=prefix).values_list(
            "aggregated_order_number",
            flat=True,
        )
        for number in numbers:
            sequence = parse_invoice_sequence(number, invoice_date)
            if sequence is not None and sequence > highest:
                highest = sequence
        floor[invoice_date] = highest
    return floor


def build_invoices_for_range(
    from_date: date,
    to_date: date,
    selected_order_numbers: list[str] | None = None,
) -> AggregationResult:
    lines = fetch_candidate_lines(from_date, to_date, selected_order_numbers)
    non_stock_skus = load_non_stock_skus()
    existing_mappings = load_existing_mappings(line.order_number for line in lines)
    sequence_floor = load_sequence_floor(line_sale_date(line) for line in lines)
    result = build_aggregated_invoices(
        lines,
        non_stock_skus=non_stock_skus,
        existing_mappings=existing_mappings,
        sequence_floor=sequence_floor,
    )
    logger.info(
        "Aggregated %s line(s) for %s..%s into %s invoice(s) (%s already synced)",
        len(lines),
        from_date,
        to_date,
        len(result.invoices),
        len(result.already_synced),
    )
    return result
