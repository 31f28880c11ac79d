from __future__ import annotations

"""Prometheus instruments for the chatbot API.

Request latency is labelled with the matched route template, so chatbot and
project ids never become label values. The relay and the summary generator
update the stream and summary series directly.
"""

import re
import time
from typing import Awaitable, Callable

from prometheus_client import Counter, Gauge, Histogram
from starlette.requests import Request
from starlette.responses import Response

# SSE responses stay open for the whole completion
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 60.0)

REQUEST_LATENCY = Histogram(
    "projectbot_request_latency_seconds",
    "Time until the response starts, per route",
    labelnames=("method", "route", "status"),
    buckets=LATENCY_BUCKETS,
)

STREAMS_ACTIVE = Gauge("projectbot_streams_active", "Chat streams currently relaying tokens")

STREAM_OUTCOMES = Counter(
    "projectbot_stream_outcomes_total",
    "Finished chat streams by outcome",
    labelnames=("outcome",),
)

SUMMARIES_GENERATED = Counter(
    "projectbot_summaries_total",
    "Summary runs by period and result",
    labelnames=("period", "result"),
)

_NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")

CallNext = Callable[[Request], Awaitable[Response]]


def sanitize_path(path: str) -> str:
    """Label for requests no route matched: numeric segments become ``:id``."""
    bare = (path or "").split("?", 1)[0]
    return _NUMERIC_SEGMENT.sub("/:id", bare) or "/"


def route_label(request: Request) -> str:
    template = getattr(request.scope.get("route"), "path", None)
    return template or sanitize_path(request.url.path)


def metrics_middleware_factory() -> Callable[[Request, CallNext], Awaitable[Response]]:
    async def record_latency(request: Request, call_next: CallNext) -> Response:
        if request.url.path.endswith("/metrics"):
            return await call_next(request)
        started = time.perf_counter()
        response = await call_next(request)
        REQUEST_LATENCY.labels(request.method, route_label(request), str(response.status_code)).observe(
            time.perf_counter() - started
        )
        return response

    return record_latency
