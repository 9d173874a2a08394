"""Prometheus metrics for monitoring checkout conversion, coupon use, and processor health"""

from decimal import Decimal

from prometheus_client import Counter, Histogram

# Quote metrics
quote_counter = Counter(
    "pyrus_checkout_quotes_total",
    "Checkout quotes computed",
)

coupon_counter = Counter(
    "pyrus_coupon_applications_total",
    "Coupon applications by outcome",
    ["outcome"],  # applied | invalid | empty | minimum_not_met | lookup_failed | removed
)

# Settlement metrics
settlement_counter = Counter(
    "pyrus_settlement_total",
    "Settled checkouts by payment path",
    ["payment_path"],  # new_card | card_on_file | no_payment
)

settlement_amount_bucket_counter = Counter(
    "pyrus_settlement_amount_bucket",
    "Settled amounts by bucket",
    ["bucket"],  # $0, $0-$500, $500-$2000, $2000+
)

# Processor metrics
authorization_counter = Counter(
    "pyrus_authorizations_total",
    "Payment intents created and cancelled",
    ["outcome"],  # created | cancelled
)

processor_failure_counter = Counter(
    "pyrus_processor_failures_total",
    "Failed payment processor calls",
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "onboarding_webhook_latency_seconds",
    "Onboarding webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "onboarding_webhook_failures_total",
    "Failed onboarding webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_settlement(payment_path: str, final_amount: Decimal) -> None:
    """Record settlement metrics for conversion and revenue distribution"""
    settlement_counter.labels(payment_path=payment_path).inc()

    if final_amount == 0:
        bucket = "$0"
    elif final_amount <= 500:
        bucket = "$0-$500"
    elif final_amount <= 2000:
        bucket = "$500-$2000"
    else:
        bucket = "$2000+"

    settlement_amount_bucket_counter.labels(bucket=bucket).inc()
