"""OpenTelemetry helpers.

polystore depends only on the OpenTelemetry API. Spans are no-ops until the
embedding application installs an SDK TracerProvider.
"""

from __future__ import annotations

from opentelemetry import trace


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer instance for creating custom spans.

    Args:
        name: Tracer name, typically __name__ of the module.

    Returns:
        Tracer instance for creating spans.

    Example:
        ```python
        tracer = get_tracer(__name__)

        with tracer.start_as_current_span("sync_prefix") as span:
            span.set_attribute("storage.prefix", prefix)
        ```
    """
    return trace.get_tracer(name)
