"""Prometheus metrics for the dispatch core."""

from .prometheus_exporter import REGISTRY, generate_prometheus_metrics

__all__ = ["REGISTRY", "generate_prometheus_metrics"]
