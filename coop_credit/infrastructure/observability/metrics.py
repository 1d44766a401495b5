"""Prometheus metrics for monitoring payments, surcharges and sweep health"""

from decimal import Decimal

from prometheus_client import Counter, Histogram

# Payment metrics
payment_counter = Counter(
    "coop_credit_payments_total",
    "Payments processed",
    ["outcome"],  # applied | noop | rejected
)

payment_amount_counter = Counter(
    "coop_credit_payment_amount_total",
    "Total money applied against member debt",
)

partial_success_counter = Counter(
    "coop_credit_partial_success_total",
    "Payments committed whose follow-up bookkeeping failed",
)

# Surcharge metrics
surcharge_counter = Counter(
    "coop_credit_surcharges_total",
    "Penalty, late fee and interest entries posted",
    ["kind"],  # product_penalty | late_fee | interest
)

consistency_error_counter = Counter(
    "coop_credit_consistency_errors_total",
    "Ledger invariant violations detected",
)

# Sweep metrics
sweep_member_failures_counter = Counter(
    "coop_credit_sweep_member_failures_total",
    "Members whose sweep processing failed",
)

sweep_duration_histogram = Histogram(
    "coop_credit_sweep_duration_seconds",
    "Penalty sweep wall time",
    buckets=[0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
)

# Notification metrics
notification_latency_histogram = Histogram(
    "notification_latency_seconds",
    "Notification webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

notification_failure_counter = Counter(
    "notification_failures_total",
    "Failed notification deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_payment(applied: Decimal) -> None:
    """Record payment metrics; zero means nothing was owed"""
    if applied > 0:
        payment_counter.labels(outcome="applied").inc()
        payment_amount_counter.inc(float(applied))
    else:
        payment_counter.labels(outcome="noop").inc()
