from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from apps.api.metrics import PrometheusExporter, metrics_registry

router = APIRouter(tags=["observability"])

_exporter = PrometheusExporter(metrics_registry)


@router.get("/metrics", summary="Prometheus metrics", response_class=PlainTextResponse)
async def metrics() -> PlainTextResponse:
    return PlainTextResponse(_exporter.build_payload(), media_type=PrometheusExporter.content_type)
