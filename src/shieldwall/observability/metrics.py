from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

EXCHANGES = Counter(
    "shieldwall_exchanges_total",
    "Total proxied exchanges by terminal state",
    ["outcome"],  # completed/denied/errored
)

DECISIONS = Counter(
    "shieldwall_decisions_total",
    "Policy decisions",
    ["phase", "decision"],  # phase: request/response
)

UPSTREAM_DURATION = Histogram(
    "shieldwall_upstream_duration_seconds",
    "Backend round-trip latency",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
