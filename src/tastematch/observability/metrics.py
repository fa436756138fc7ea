from __future__ import annotations

"""Prometheus metrics for the TasteMatch service.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for the room workflow milestones.
"""

import time
from typing import Awaitable, Callable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "tastematch_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

ROOMS_CREATED = Counter("tastematch_rooms_created_total", "Rooms created")
MESSAGES_PROCESSED = Counter(
    "tastematch_messages_processed_total",
    "Inbound chat messages processed",
    labelnames=("outcome",),
)
REVEALS = Counter("tastematch_reveals_total", "Compatibility reveals delivered")
ACTION_PROPOSALS = Counter(
    "tastematch_action_proposals_total",
    "Joint action proposals",
    labelnames=("outcome",),
)
AUTH_HANDSHAKES = Counter(
    "tastematch_auth_handshakes_total",
    "Deferred authorization handshakes",
    labelnames=("stage",),
)
ASSET_OUTCOMES = Counter(
    "tastematch_asset_outcomes_total",
    "Background asset generation outcomes",
    labelnames=("state",),
)


def sanitize_path(path: str) -> str:
    """Collapse room ids out of paths so labels stay low-cardinality.

    ``/api/rooms/ab12cd34/join`` becomes ``/api/rooms/{room_id}/join``.
    """
    if not path:
        return "/"
    segs = path.split("?")[0].split("/")
    out = []
    for idx, seg in enumerate(segs):
        if idx > 0 and segs[idx - 1] in ("rooms", "ws") and seg:
            out.append("{room_id}")
        else:
            out.append(seg)
    return "/".join(out) or "/"


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception:
            # Never block the request due to metrics
            pass
        return response

    return middleware
