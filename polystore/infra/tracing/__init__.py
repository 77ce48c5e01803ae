"""Tracing helpers built on the OpenTelemetry API."""

from __future__ import annotations

from .opentelemetry import get_tracer

__all__ = ["get_tracer"]
