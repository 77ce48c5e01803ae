"""Prometheus metrics registry."""

from __future__ import annotations

from .prometheus import REGISTRY, render_metrics

__all__ = ["REGISTRY", "render_metrics"]
