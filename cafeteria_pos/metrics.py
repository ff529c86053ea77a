"""
Prometheus metrics for sales and stock.

No HTTP endpoint is exposed; ``flask metrics`` prints the current values in
the Prometheus text format. In multi-process deployments set
``PROMETHEUS_MULTIPROC_DIR`` and the values are aggregated across workers.
"""
import os

from prometheus_client import Counter, Histogram, CollectorRegistry, REGISTRY, generate_latest
from prometheus_client import multiprocess

# Check if running in multi-process mode
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

sales_committed_total = Counter(
    'pos_sales_committed_total',
    'Sales committed by the sale processor'
)

sales_rejected_total = Counter(
    'pos_sales_rejected_total',
    'Commit attempts rejected before a sale was recorded',
    ['reason']
)

sale_amount = Histogram(
    'pos_sale_amount',
    'Total amount of committed sales',
    buckets=(1, 2.5, 5, 10, 25, 50, 100, 250)
)

stock_mutations_total = Counter(
    'pos_stock_mutations_total',
    'Restocks and manual adjustments applied by the ledger',
    ['operation']
)

stock_rejections_total = Counter(
    'pos_stock_rejections_total',
    'Stock changes refused because stock would go negative'
)


def render_latest() -> bytes:
    """Return every metric in the Prometheus text exposition format."""
    if MULTIPROCESS_MODE:
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        return generate_latest(registry)
    return generate_latest(REGISTRY)
