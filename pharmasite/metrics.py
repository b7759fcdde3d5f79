from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQS = Counter(
    "pharmasite_requests_total",
    "Requests",
    ["method", "path", "status"],
)
LAT = Histogram(
    "pharmasite_latency_seconds",
    "Latency",
    ["method", "path"],
)
RATE_LIMITED = Counter(
    "pharmasite_rate_limited_total",
    "Requests rejected by the rate limiter",
    ["action"],
)


def router() -> APIRouter:
    r = APIRouter()

    @r.get("/metrics", include_in_schema=False)
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return r
