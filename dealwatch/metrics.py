"""Prometheus metrics for the deal update pipeline."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("dealwatch", "Deal watch worker info")
app_info.info({"version": "0.1.0", "name": "dealwatch"})

# Scrape metrics
scrapes_total = Counter(
    "scrapes_total",
    "Total number of listing scrapes by result",
    ["status"],
)

js_fallbacks_total = Counter(
    "js_fallbacks_total",
    "Total number of JS-rendered fallback attempts",
    ["status"],
)

scrapes_in_flight = Gauge(
    "scrapes_in_flight",
    "Number of deal refreshes currently holding the admission gate",
)

scrape_duration_seconds = Histogram(
    "scrape_duration_seconds",
    "Time spent scraping a listing",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

# Refresh metrics
deal_refresh_outcomes_total = Counter(
    "deal_refresh_outcomes_total",
    "Total number of deal refresh outcomes",
    ["outcome"],
)

deals_expired_total = Counter(
    "deals_expired_total",
    "Total number of deals transitioned to expired by the sweep",
)

price_changes_total = Counter(
    "price_changes_total",
    "Total number of price changes detected",
    ["direction"],
)

# Ingestion metrics
listings_ingested_total = Counter(
    "listings_ingested_total",
    "Total number of new listings created",
    ["store"],
)

ingest_query_errors_total = Counter(
    "ingest_query_errors_total",
    "Total number of failed ingestion queries",
    ["store"],
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


def record_scrape(status: str, duration: float | None = None):
    """Record a scrape result (ok, blocked, failed, skipped)."""
    scrapes_total.labels(status=status).inc()
    if duration is not None:
        scrape_duration_seconds.observe(duration)


def record_js_fallback(success: bool):
    """Record a JS-rendered fallback attempt."""
    js_fallbacks_total.labels(status="rendered" if success else "empty").inc()


def record_refresh_outcome(outcome: str):
    """Record the outcome of a single deal refresh."""
    deal_refresh_outcomes_total.labels(outcome=outcome).inc()


def record_price_change(old_price, new_price):
    """Record a price change."""
    direction = "up" if old_price is not None and new_price > old_price else "down"
    price_changes_total.labels(direction=direction).inc()


def record_deals_expired(count: int):
    """Record deals expired by the sweep."""
    if count > 0:
        deals_expired_total.inc(count)


def record_listings_ingested(store: str, count: int):
    """Record newly created listings for a store."""
    if count > 0:
        listings_ingested_total.labels(store=store).inc(count)


def record_ingest_query_error(store: str):
    """Record a failed ingestion query."""
    ingest_query_errors_total.labels(store=store).inc()


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
