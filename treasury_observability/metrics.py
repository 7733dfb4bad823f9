# treasury_observability/metrics.py
"""
Prometheus metrics for the monitor and treasury services.

❗️This module does NOT start a standalone HTTP server.
Expose metrics from each FastAPI app by mounting the ASGI exporter:

    from prometheus_client import make_asgi_app
    app.mount("/metrics", make_asgi_app())

If you ever need a sidecar server (e.g., for the replay CLI), set
METRICS_HTTP_SERVER=1 and call maybe_start_http_server().
"""

import os
import threading
from typing import Any, Dict, Tuple, Type

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# ----------------------------
# Optional standalone server
# ----------------------------
_METRICS_PORT = int(os.getenv("METRICS_PORT", "8001"))
_server_started = False
_server_lock = threading.Lock()


def maybe_start_http_server() -> None:
    """
    Start a sidecar metrics HTTP server exactly once,
    but only if METRICS_HTTP_SERVER=1 is set in the environment.
    """
    global _server_started
    if _server_started or os.getenv("METRICS_HTTP_SERVER") != "1":
        return
    with _server_lock:
        if not _server_started and os.getenv("METRICS_HTTP_SERVER") == "1":
            start_http_server(_METRICS_PORT)
            _server_started = True


# ----------------------------
# Registration helper (avoid duplicate collectors)
# ----------------------------
_METRICS: Dict[Tuple[Type[Any], str], Any] = {}


def get_metric(cls: Type[Any], name: str, *args, **kwargs):
    key = (cls, name)
    if key in _METRICS:
        return _METRICS[key]
    metric = cls(name, *args, **kwargs)
    _METRICS[key] = metric
    return metric


# ----------------------------
# Monitor metrics
# ----------------------------

price_observations_total = get_metric(
    Counter,
    "price_observations_total",
    "Accepted price observations",
    ["feed_id"],
)

price_breaches_total = get_metric(
    Counter,
    "price_breaches_total",
    "Observations whose change met the feed threshold",
    ["feed_id"],
)

feed_last_price = get_metric(
    Gauge,
    "feed_last_price",
    "Last observed price (8-decimal fixed point)",
    ["feed_id"],
)

dispatch_total = get_metric(
    Counter,
    "rebalance_dispatch_total",
    "Rebalance commands sent to treasuries",
    ["scope_id", "outcome"],
)

dispatch_latency_seconds = get_metric(
    Histogram,
    "rebalance_dispatch_latency_seconds",
    "Latency of a single treasury dispatch in seconds",
    ["scope_id"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

# ----------------------------
# Treasury metrics
# ----------------------------

rebalance_total = get_metric(
    Counter,
    "rebalance_total",
    "Rebalance attempts by outcome (ok, unauthorized, paused, cooldown, policy)",
    ["treasury", "outcome"],
)

rebalance_latency_seconds = get_metric(
    Histogram,
    "rebalance_latency_seconds",
    "Latency of successful rebalance executions in seconds",
    ["treasury"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1),
)

treasury_paused = get_metric(
    Gauge,
    "treasury_paused",
    "1 while the treasury is paused",
    ["treasury"],
)

portfolio_value = get_metric(
    Gauge,
    "treasury_portfolio_value",
    "Total portfolio value in the common unit",
    ["treasury"],
)
