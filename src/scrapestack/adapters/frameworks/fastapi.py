"""FastAPI adapter for instrumented applications."""

import json

from fastapi import APIRouter, Response

from scrapestack.adapters.frameworks.asgi import DEFAULT_METRICS_PATH
from scrapestack.adapters.logging import get_logger
from scrapestack.core.encoding.prometheus import CONTENT_TYPE, encode_families
from scrapestack.core.registry import MetricsRegistry

logger = get_logger(__name__)


def create_metrics_router(
    registry: MetricsRegistry, path: str = DEFAULT_METRICS_PATH
) -> APIRouter:
    """Create a FastAPI router exposing ``registry`` at ``path``.

    Args:
        registry: Registry to expose.
        path: Route of the metrics endpoint, trailing slash significant.

    Returns:
        APIRouter with the metrics endpoint configured.
    """
    router = APIRouter()

    @router.get(path, include_in_schema=False)
    async def get_metrics() -> Response:
        """Return metrics in Prometheus text format."""
        try:
            body = encode_families(registry.collect())
        except Exception:
            logger.exception("Error encoding metrics endpoint")
            return Response(
                content=json.dumps({"error": "Internal Server Error"}),
                status_code=500,
                media_type="application/json",
            )
        return Response(content=body, media_type=CONTENT_TYPE)

    return router
