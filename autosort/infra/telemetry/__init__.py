"""
Telemetry Layer: Unified Observability
========================================

All other layers depend on this.

Provides:
  - Structured logging with context injection
  - Engine log bridging
  - Metrics collection (Prometheus)

Usage:
    from autosort.infra.telemetry import get_logger, get_metrics

    logger = get_logger(__name__)
    logger.info("sorted", plugins=42)
"""

from autosort.infra.telemetry.logger import (
    StructuredLogger,
    clear_log_context,
    engine_log_callback,
    get_logger,
    set_log_context,
    setup_logging,
)
from autosort.infra.telemetry.metrics import MetricsCollector, get_metrics

__all__ = [
    "MetricsCollector",
    "StructuredLogger",
    "clear_log_context",
    "engine_log_callback",
    "get_logger",
    "get_metrics",
    "set_log_context",
    "setup_logging",
]
