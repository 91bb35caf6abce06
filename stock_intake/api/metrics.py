"""Prometheus metrics for the stock intake API.

Exposes:
- Request counts and durations by endpoint
- OCR outcomes and latency
- Commit outcomes and the writes they made
- Confidence of automatic product matches

Based on Prometheus naming practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# OCR metrics
invoice_upload_size_bytes = Histogram(
    "invoice_upload_size_bytes",
    "Invoice image size in bytes",
    buckets=(1024, 10240, 102400, 1048576, 10485760),  # 1KB to 10MB
)

ocr_processing_duration_seconds = Histogram(
    "ocr_processing_duration_seconds",
    "OCR processing duration in seconds",
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

ocr_requests_total = Counter(
    "ocr_requests_total",
    "Total OCR processing requests",
    ["status"],  # success, failed
)

# Reconciliation metrics
line_item_match_confidence = Histogram(
    "line_item_match_confidence",
    "Confidence of automatic product matches for seeded line items",
    buckets=(0.0, 0.3, 0.5, 0.6, 0.8, 1.0),
)

# Commit metrics
ingestion_commits_total = Counter(
    "ingestion_commits_total",
    "Total ingestion commits",
    ["status"],  # success, rejected, failed
)

products_created_total = Counter(
    "products_created_total",
    "Products created from invoice lines",
)

stock_movements_created_total = Counter(
    "stock_movements_created_total",
    "Stock inflow movements created from invoice lines",
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
