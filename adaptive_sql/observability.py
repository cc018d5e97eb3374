"""
Observability
=============
Structured event logging for the adaptive SQL layer.

Module loggers live under ``adaptive_sql.<module>``. Request-level
events (generations, degradations, feedback, errors) go through
:class:`StructuredLogger`, which writes one JSON object per event to
stdout by default. Counters and latency histograms are exported
through :class:`MetricsCollector` when Prometheus is enabled.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional, Tuple

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, start_http_server

# Attributes every LogRecord carries; anything else came from ``extra``.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

logger = logging.getLogger("adaptive_sql.observability")


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON line including its ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def _formatter_for(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter()
    return logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_file_logging(
    log_dir: str = "./logs",
    log_name: str = "adaptive_sql.log",
    max_bytes: int = 10_000_000,  # 10 MB
    backup_count: int = 5,
    log_format: str = "text",
) -> Path:
    """Attach a rotating file handler to the ``adaptive_sql`` logger.

    Calling it again for the same file does not add a second handler.

    Args:
        log_dir: Directory for log files (created if missing).
        log_name: Log file name.
        max_bytes: Size at which the file is rotated.
        backup_count: Rotated files to keep.
        log_format: ``"json"`` for :class:`JsonFormatter`, anything else
            for plain text lines.

    Returns:
        Path to the log file.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / log_name

    package_logger = logging.getLogger("adaptive_sql")
    for existing in package_logger.handlers:
        if (
            isinstance(existing, RotatingFileHandler)
            and existing.baseFilename == os.path.abspath(log_file)
        ):
            return log_file

    handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(_formatter_for(log_format))

    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG)

    return log_file


class StructuredLogger:
    """Emits request-level events with machine-readable fields.

    Args:
        name: Logger name.
        config: ``ObservabilityConfig`` (optional) for level and format.
    """

    def __init__(self, name: str = "adaptive_sql.events", config=None):
        log_level = "INFO"
        log_format = "json"

        if config is not None:
            log_level = config.log_level
            log_format = config.log_format

        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(_formatter_for(log_format))
            self.logger.addHandler(handler)
            self.logger.propagate = False

    def log_generation(
        self,
        prompt_hash: str,
        optimized: bool,
        success: bool,
        latency_ms: float,
        confidence: Optional[float] = None,
    ):
        """Log one SQL generation request."""
        self.logger.info(
            "SQL Generation",
            extra={
                "event": "generation",
                "prompt_hash": prompt_hash,
                "optimized": optimized,
                "success": success,
                "latency_ms": latency_ms,
                "confidence": confidence,
            },
        )

    def log_degradation(
        self,
        operation: str,
        error: BaseException,
        prompt_hash: Optional[str] = None,
    ):
        """Log an adaptive step that failed and fell back to base behaviour."""
        self.logger.warning(
            "Adaptive step degraded",
            extra={
                "event": "degradation",
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
                "prompt_hash": prompt_hash,
            },
        )

    def log_feedback(self, prompt_hash: str, user_id: str, rating: int):
        self.logger.info(
            "Feedback",
            extra={
                "event": "feedback",
                "prompt_hash": prompt_hash,
                "user_id": user_id,
                "rating": rating,
            },
        )

    def log_error(self, error: BaseException, context: Optional[Dict] = None):
        """Log a swallowed error with context."""
        self.logger.error(
            "Error",
            extra={
                "event": "error",
                "error_type": type(error).__name__,
                "error_message": str(error),
                "context": context or {},
            },
            exc_info=error,
        )


class MetricsCollector:
    """Prometheus metrics for the adaptive layer.

    Disabled (every ``record_*`` call is a no-op) unless
    ``prometheus_enabled`` is set in the config.

    Args:
        config: ``ObservabilityConfig`` (optional).
        registry: Registry the metrics are registered in. Defaults to the
            process-wide ``prometheus_client`` registry.
    """

    def __init__(self, config=None, registry: Optional[CollectorRegistry] = None):
        self.enabled = False

        if config is not None and config.prometheus_enabled:
            self._initialize_prometheus(config, registry or REGISTRY)

    def _initialize_prometheus(self, config, registry: CollectorRegistry):
        self.generations_total = Counter(
            "adaptive_sql_generations_total",
            "SQL generation requests",
            ["status"],
            registry=registry,
        )
        self.generation_latency = Histogram(
            "adaptive_sql_generation_latency_seconds",
            "SQL generation latency",
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
            registry=registry,
        )
        self.degradations_total = Counter(
            "adaptive_sql_degradations_total",
            "Adaptive steps that fell back to base behaviour",
            ["operation"],
            registry=registry,
        )
        self.feedback_total = Counter(
            "adaptive_sql_feedback_total",
            "Feedback items by rating",
            ["rating"],
            registry=registry,
        )
        self.enabled = True

        # Port 0 records metrics without exposing an HTTP endpoint.
        if config.prometheus_port:
            try:
                start_http_server(config.prometheus_port, registry=registry)
                logger.info(
                    "Prometheus metrics: http://localhost:%d/metrics", config.prometheus_port
                )
            except OSError as e:
                logger.warning(
                    "Could not start metrics endpoint on port %d: %s", config.prometheus_port, e
                )

    def record_generation(self, status: str, latency_seconds: float):
        if not self.enabled:
            return
        self.generations_total.labels(status=status).inc()
        self.generation_latency.observe(latency_seconds)

    def record_degradation(self, operation: str):
        if not self.enabled:
            return
        self.degradations_total.labels(operation=operation).inc()

    def record_feedback(self, rating: int):
        if not self.enabled:
            return
        self.feedback_total.labels(rating=str(rating)).inc()


_logger_instance: Optional[StructuredLogger] = None
_metrics_instance: Optional[MetricsCollector] = None


def get_logger(config=None) -> StructuredLogger:
    """Return the global ``StructuredLogger`` singleton.

    *config* only has an effect on the first call.
    """
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = StructuredLogger("adaptive_sql.events", config)
    return _logger_instance


def get_metrics(config=None) -> MetricsCollector:
    """Return the global ``MetricsCollector`` singleton.

    *config* only has an effect on the first call.
    """
    global _metrics_instance
    if _metrics_instance is None:
        _metrics_instance = MetricsCollector(config)
    return _metrics_instance


def initialize_observability(config=None) -> Tuple[StructuredLogger, MetricsCollector]:
    """Set up logging and metrics from an ``ObservabilityConfig``.

    Attaches the rotating file handler under ``config.log_dir`` when
    ``config.log_to_file`` is set.

    Returns:
        Tuple of ``(StructuredLogger, MetricsCollector)``.
    """
    if config is not None and config.log_to_file:
        setup_file_logging(config.log_dir, log_format=config.log_format)
    return get_logger(config), get_metrics(config)
