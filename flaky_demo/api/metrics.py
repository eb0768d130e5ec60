from __future__ import annotations

from fastapi import APIRouter, Request, Response

from flaky_demo.observability.metrics import MetricsRegistry

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def metrics(request: Request) -> Response:
    registry: MetricsRegistry = request.app.state.metrics
    return Response(content=registry.render_exposition(), media_type=registry.content_type)
