"""Prometheus metrics for the price pipeline."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("price_compare", "Price comparison service info")
app_info.info({"version": "0.1.0", "name": "price-compare"})

# Ingestion metrics
observations_ingested_total = Counter(
    "observations_ingested_total",
    "Total number of price observations processed",
    ["status"],
)

products_created_total = Counter(
    "products_created_total",
    "Total number of products created by ingestion",
)

price_changes_total = Counter(
    "price_changes_total",
    "Total number of price changes archived",
    ["direction"],
)

# History metrics
price_history_points_total = Counter(
    "price_history_points_total",
    "Total number of price history points written",
    ["source"],
)

price_history_pruned_total = Counter(
    "price_history_pruned_total",
    "Total number of price history points pruned",
)

backfill_batch_errors_total = Counter(
    "backfill_batch_errors_total",
    "Total number of backfill batches that failed to write",
)

# Deal metrics
featured_deals = Gauge(
    "featured_deals",
    "Featured deals currently materialized",
    ["scope"],
)

deal_updates_total = Counter(
    "deal_updates_total",
    "Total number of featured deal scope replacements",
    ["status"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["run_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["run_type"],
)

scheduler_task_runs_total = Counter(
    "scheduler_task_runs_total",
    "Total number of orchestrator task executions",
    ["task", "status"],
)

scheduler_task_duration_seconds = Histogram(
    "scheduler_task_duration_seconds",
    "Time spent executing orchestrator tasks",
    ["task"],
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0, 1800.0],
)

run_lock_rejections_total = Counter(
    "run_lock_rejections_total",
    "Total number of triggers rejected because a run was active",
    ["run_type"],
)

stale_runs_recovered_total = Counter(
    "stale_runs_recovered_total",
    "Total number of stale running scheduler runs marked failed",
)


def record_observation(success: bool):
    """Record one processed observation."""
    observations_ingested_total.labels(status="success" if success else "error").inc()


def record_price_change(old_price: float, new_price: float):
    """Record an archived price transition."""
    if new_price == old_price:
        direction = "unchanged"
    else:
        direction = "up" if new_price > old_price else "down"
    price_changes_total.labels(direction=direction).inc()


def record_history_points(source: str, count: int):
    """Record history points written by ingestion or backfill."""
    if count > 0:
        price_history_points_total.labels(source=source).inc(count)


def record_deal_update(scope: str, count: int, success: bool):
    """Record a featured deal replacement for a scope."""
    deal_updates_total.labels(status="success" if success else "error").inc()
    if success:
        featured_deals.labels(scope=scope).set(count)


def record_scheduler_run(run_type: str, status: str):
    """Record a terminal scheduler run."""
    scheduler_runs_total.labels(run_type=run_type, status=status).inc()
    scheduler_last_run_timestamp.labels(run_type=run_type).set(time.time())


def record_task_result(task: str, success: bool, duration: float):
    """Record one orchestrator task execution."""
    status = "success" if success else "error"
    scheduler_task_runs_total.labels(task=task, status=status).inc()
    scheduler_task_duration_seconds.labels(task=task).observe(duration)
