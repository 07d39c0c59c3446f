"""Prometheus metrics for the price scan pipeline."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("pricescan", "Price scan application info")
app_info.info({"version": "0.1.0", "name": "pricescan"})

# Adapter search metrics
source_searches_total = Counter(
    "source_searches_total",
    "Total number of adapter searches",
    ["source", "status"],
)

source_search_errors_total = Counter(
    "source_search_errors_total",
    "Total number of failed adapter searches",
    ["source", "reason"],
)

source_search_duration_seconds = Histogram(
    "source_search_duration_seconds",
    "Time spent in a single adapter search",
    ["source"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

# Job metrics
scraping_jobs_total = Counter(
    "scraping_jobs_total",
    "Scraping jobs by final status",
    ["status"],
)

scraping_jobs_active = Gauge(
    "scraping_jobs_active",
    "Number of scraping jobs currently running",
)

products_processed_total = Counter(
    "products_processed_total",
    "Products processed by scraping jobs",
    ["outcome"],
)

# Result ingest metrics
results_saved_total = Counter(
    "results_saved_total",
    "Price results persisted",
)

outliers_dropped_total = Counter(
    "outliers_dropped_total",
    "Price results dropped by the outlier filter",
)

margin_alerts_total = Counter(
    "margin_alerts_total",
    "Margin opportunity alerts",
    ["status"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_search_success(source: str, duration: float, observations: int):
    """Record an adapter search that returned (possibly zero) observations."""
    status = "hit" if observations else "empty"
    source_searches_total.labels(source=source, status=status).inc()
    source_search_duration_seconds.labels(source=source).observe(duration)


def record_search_error(source: str, reason: str, duration: float):
    """Record a failed adapter search."""
    source_searches_total.labels(source=source, status="error").inc()
    source_search_errors_total.labels(source=source, reason=reason).inc()
    source_search_duration_seconds.labels(source=source).observe(duration)


def record_job_finished(status: str):
    """Record a job reaching a terminal state."""
    scraping_jobs_total.labels(status=status).inc()


def record_alert(success: bool):
    """Record a margin alert attempt."""
    margin_alerts_total.labels(status="created" if success else "error").inc()


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
