import time

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST

from ...core.exceptions import UnavailableError
from ...metrics import generate_prometheus_metrics
from ..dependencies import CoreDep
from ..models import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(core: CoreDep) -> HealthResponse:
    """Unauthenticated for load balancer and orchestrator checks."""
    start = time.perf_counter()
    try:
        await core.store.run(lambda uow: uow.rides.count_searching_by_category(), "health")
    except UnavailableError as e:
        return HealthResponse(
            status="unhealthy",
            store="unhealthy",
            change_feed=type(core.store.feed).__name__,
            message=str(e)[:80],
        )
    latency_ms = (time.perf_counter() - start) * 1000
    return HealthResponse(
        status="healthy" if latency_ms < 500 else "degraded",
        store="healthy",
        change_feed=type(core.store.feed).__name__,
        message=f"Store answered in {latency_ms:.1f}ms",
    )


@router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(content=generate_prometheus_metrics(), media_type=CONTENT_TYPE_LATEST)
