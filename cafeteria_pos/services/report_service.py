"""
Report service.
Aggregations over the read-only sale history and the catalog, for the
dashboard and export collaborators (which own any file formatting).
"""
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Iterable, List, Tuple

from cafeteria_pos.entities import Product, Sale, StockLevel
from cafeteria_pos.utils.money import CENT, ZERO


@dataclass(frozen=True)
class SalesSummary:
    sale_count: int = 0
    units: int = 0
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO
    average_ticket: Decimal = ZERO


@dataclass(frozen=True)
class DailyTotal:
    day: date
    sale_count: int
    total: Decimal


@dataclass(frozen=True)
class ProductSales:
    product_id: str
    name: str
    units: int
    revenue: Decimal


def get_day_range(day: date) -> Tuple[datetime, datetime]:
    """Start (inclusive) and end (exclusive) datetimes of ``day``."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def get_month_range(day: date) -> Tuple[datetime, datetime]:
    """Start (inclusive) and end (exclusive) datetimes of the calendar month of ``day``."""
    start = datetime(day.year, day.month, 1)
    if day.month == 12:
        return start, datetime(day.year + 1, 1, 1)
    return start, datetime(day.year, day.month + 1, 1)


def summarize_sales(sales: Iterable[Sale]) -> SalesSummary:
    """Totals over a set of sales, e.g. ``history.reader().query(*get_day_range(today))``."""
    count = units = 0
    subtotal = tax = total = ZERO
    for sale in sales:
        count += 1
        units += sale.units
        subtotal += sale.subtotal
        tax += sale.tax
        total += sale.total

    average = (total / count).quantize(CENT) if count else ZERO
    return SalesSummary(
        sale_count=count,
        units=units,
        subtotal=subtotal,
        tax=tax,
        total=total,
        average_ticket=average
    )


def daily_totals(sales: Iterable[Sale]) -> List[DailyTotal]:
    """One entry per calendar day that has sales, oldest first."""
    days = OrderedDict()
    for sale in sales:
        day = sale.committed_at.date()
        count, total = days.get(day, (0, ZERO))
        days[day] = (count + 1, total + sale.total)
    return [DailyTotal(day, count, total) for day, (count, total) in sorted(days.items())]


def weekly_average(sales: Iterable[Sale], today: date, days: int = 7) -> Decimal:
    """
    Average daily revenue over the ``days`` days ending on ``today``.

    Days without sales are not counted. Returns 0 when the window has no
    sales.
    """
    start = datetime.combine(today - timedelta(days=days - 1), time.min)
    end = datetime.combine(today, time.min) + timedelta(days=1)
    totals = [
        d.total for d in daily_totals(s for s in sales if start <= s.committed_at < end)
    ]
    if not totals:
        return ZERO
    return (sum(totals, ZERO) / len(totals)).quantize(CENT)


def top_products(sales: Iterable[Sale], limit: int = 5) -> List[ProductSales]:
    """
    Best sellers by units sold.

    Ties are broken by revenue, then by product id so the order is stable.
    Revenue uses the snapshotted line prices, not current catalog prices.
    """
    units = {}
    revenue = {}
    names = {}
    for sale in sales:
        for item in sale.line_items:
            units[item.product_id] = units.get(item.product_id, 0) + item.quantity
            revenue[item.product_id] = revenue.get(item.product_id, ZERO) + item.line_total
            names[item.product_id] = item.name

    ranked = sorted(units, key=lambda pid: (-units[pid], -revenue[pid], pid))
    return [
        ProductSales(pid, names[pid], units[pid], revenue[pid].quantize(CENT))
        for pid in ranked[:limit]
    ]


def classify_stock(quantity: int, low_threshold: int = 10, critical_threshold: int = 3) -> StockLevel:
    """OUT at 0, CRITICAL below ``critical_threshold``, LOW below ``low_threshold``."""
    if quantity <= 0:
        return StockLevel.OUT
    if quantity < critical_threshold:
        return StockLevel.CRITICAL
    if quantity < low_threshold:
        return StockLevel.LOW
    return StockLevel.OK


def stock_report(catalog, low_threshold: int = 10, critical_threshold: int = 3) -> List[Tuple[Product, StockLevel]]:
    """Every product with its stock level, most urgent first."""
    urgency = {StockLevel.OUT: 0, StockLevel.CRITICAL: 1, StockLevel.LOW: 2, StockLevel.OK: 3}
    rows = [
        (product, classify_stock(product.stock, low_threshold, critical_threshold))
        for product in catalog.list_all()
    ]
    return sorted(rows, key=lambda row: (urgency[row[1]], row[0].stock, row[0].product_id))


def unsold_products(catalog, sales: Iterable[Sale]) -> List[Product]:
    """Catalog products that appear in none of ``sales``, highest stock first."""
    sold = {item.product_id for sale in sales for item in sale.line_items}
    unsold = [p for p in catalog.list_all() if p.product_id not in sold]
    return sorted(unsold, key=lambda p: (-p.stock, p.product_id))
