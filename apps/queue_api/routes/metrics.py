from fastapi import APIRouter, Response

from apps.queue_api.metrics import PrometheusExporter, metrics_registry

router = APIRouter(tags=["metrics"])
_exporter = PrometheusExporter(metrics_registry)


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=_exporter.build_payload(), media_type=_exporter.content_type)
