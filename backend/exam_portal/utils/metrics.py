"""
Prometheus counters for uploads and exports

Counters are always updated; `/metrics` only exposes them when
METRICS_ENABLED is set.
"""
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

upload_count = Counter(
    "exam_portal_uploads_total",
    "Bulk CSV uploads by target and final status",
    ["target", "status"]
)

upload_rows = Counter(
    "exam_portal_upload_rows_total",
    "Rows of bulk CSV uploads by target and outcome",
    ["target", "outcome"]
)

export_count = Counter(
    "exam_portal_exports_total",
    "Streamed CSV exports by final status",
    ["status"]
)

export_rows = Counter(
    "exam_portal_export_rows_total",
    "Rows written by streamed CSV exports"
)


def get_metrics() -> bytes:
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST


def record_upload(target: str, status: str, created: int = 0, rejected: int = 0, failed: int = 0) -> None:
    """
    Record a finished upload

    Args:
        target: Upload target (results, regular, late, post)
        status: complete, aborted or error
        created: Rows inserted
        rejected: Rows rejected by validation
        failed: Accepted rows lost to failed chunks
    """
    upload_count.labels(target=target, status=status).inc()
    for outcome, amount in (("created", created), ("rejected", rejected), ("failed", failed)):
        if amount:
            upload_rows.labels(target=target, outcome=outcome).inc(amount)


def record_export(status: str, rows: int) -> None:
    export_count.labels(status=status).inc()
    if rows:
        export_rows.inc(rows)
