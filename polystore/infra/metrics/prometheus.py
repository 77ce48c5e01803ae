"""Prometheus registry shared by every polystore metric."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, generate_latest

# Custom registry so embedding applications decide whether to expose it
REGISTRY = CollectorRegistry()


def render_metrics() -> bytes:
    """Render every registered series in the Prometheus text format.

    Example:
        ```python
        body = render_metrics()
        return Response(body, media_type=CONTENT_TYPE_LATEST)
        ```
    """
    return generate_latest(REGISTRY)
