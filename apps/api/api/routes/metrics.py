from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from apps.api.metrics import CONTENT_TYPE, PrometheusExporter, metrics_registry

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse, summary="Prometheus metrics")
async def metrics() -> PlainTextResponse:
    payload = PrometheusExporter(metrics_registry).export()
    return PlainTextResponse(payload, media_type=CONTENT_TYPE)
