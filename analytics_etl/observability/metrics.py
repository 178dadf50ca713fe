"""
Prometheus metrics collection for analytics-etl

Counters and histograms for layer transforms, data quality, warehouse
writes and whole ETL runs, registered on a private registry.
"""
import os
from collections.abc import Iterable
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# LAYER METRICS
# =======================

# Records transformed per layer
records_transformed_total = Counter(
    name="etl_records_transformed_total",
    documentation="Total number of records transformed by a warehouse layer",
    labelnames=["layer", "status"],  # status: success, failure
    registry=REGISTRY,
)

# Stage duration
stage_duration_seconds = Histogram(
    name="etl_stage_duration_seconds",
    documentation="Time spent in one pipeline stage in seconds",
    labelnames=["stage"],  # stage: ODS, DWD, DWS, ADS, quality
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0],
    registry=REGISTRY,
)


# =======================
# DATA QUALITY METRICS
# =======================

# Validation issues counter
validation_issues_total = Counter(
    name="etl_validation_issues_total",
    documentation="Total number of data-quality rule violations",
    labelnames=["layer", "rule"],
    registry=REGISTRY,
)

# Extraction failures
extraction_errors_total = Counter(
    name="etl_extraction_errors_total",
    documentation="Total number of failed source extractions",
    labelnames=["source"],
    registry=REGISTRY,
)


# =======================
# WAREHOUSE METRICS
# =======================

# Warehouse writes counter
warehouse_writes_total = Counter(
    name="etl_warehouse_writes_total",
    documentation="Total number of records written to the warehouse",
    labelnames=["table"],
    registry=REGISTRY,
)

# Warehouse write duration
warehouse_write_duration_seconds = Histogram(
    name="etl_warehouse_write_duration_seconds",
    documentation="Time spent writing one batch to the warehouse in seconds",
    labelnames=["table"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0],
    registry=REGISTRY,
)


# =======================
# RUN METRICS
# =======================

etl_runs_total = Counter(
    name="etl_runs_total",
    documentation="Total number of full ETL runs",
    labelnames=["status"],  # status: completed, failed
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """Current metric values in the Prometheus text exposition format."""
    return generate_latest(REGISTRY)


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Serve REGISTRY over HTTP for Prometheus to scrape

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Imported lazily so importing this module never binds a port
    from prometheus_client import start_http_server

    start_http_server(port or int(os.getenv("METRICS_PORT", "8000")), registry=REGISTRY)


def track_duration(histogram: Histogram, **labels):
    """
    Time a block into a labelled histogram

    Usage:
        with track_duration(stage_duration_seconds, stage="DWD"):
            ...
    """
    return histogram.labels(**labels).time()


def record_layer_batch(layer: str, succeeded: int, failed: int) -> None:
    """Count the outcome of one layer transform batch."""
    records_transformed_total.labels(layer=layer, status="success").inc(succeeded)
    records_transformed_total.labels(layer=layer, status="failure").inc(failed)


def record_validation_issues(layer: str, rules: Iterable[str]) -> None:
    for rule in rules:
        validation_issues_total.labels(layer=layer, rule=rule).inc()


def record_extraction_error(source: str) -> None:
    extraction_errors_total.labels(source=source).inc()


def record_warehouse_write(table: str, count: int) -> None:
    warehouse_writes_total.labels(table=table).inc(count)


def record_run(status: str) -> None:
    """Count a finished ETL run by status."""
    etl_runs_total.labels(status=status).inc()
