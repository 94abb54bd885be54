"""Metrics (Prometheus remote-write) and log (Loki) export of run results."""

from .delivery import ExportOutcome
from .exporter import LOGS, METRICS, MetricsExporter

__all__ = ["ExportOutcome", "LOGS", "METRICS", "MetricsExporter"]
