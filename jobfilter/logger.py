"""
Structured logging system for the filtering engine.

Provides centralized logging with console and file outputs, plus
metrics tracking for classifier calls, chunk outcomes and persistence.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring filter runs.
    """

    def __init__(
        self,
        name: str = "jobfilter",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()
        self.logger.propagate = False

        self.metrics = self._empty_metrics()

        if enable_console:
            # stderr keeps stdout clean for the JSON response
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"jobfilter_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    @staticmethod
    def _empty_metrics() -> dict:
        return {
            "classifier_calls": 0,
            "chunks_dispatched": 0,
            "chunks_succeeded": 0,
            "chunks_failed": 0,
            "retries": 0,
            "errors_by_type": {},
            "outcomes": {"accepted": 0, "rejected": 0, "errored": 0},
            "persist_failures": 0,
        }

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_classifier_call(self):
        self.metrics["classifier_calls"] += 1

    def record_retry(self, error_type: str):
        """Record a retried failure, keyed by its classified kind."""
        self.metrics["retries"] += 1
        self._count_error(error_type)

    def record_chunk_dispatched(self):
        self.metrics["chunks_dispatched"] += 1

    def record_chunk_success(self):
        self.metrics["chunks_succeeded"] += 1

    def record_chunk_failure(self, error_type: str):
        self.metrics["chunks_failed"] += 1
        self._count_error(error_type)

    def record_outcomes(self, accepted: int, rejected: int, errored: int):
        self.metrics["outcomes"]["accepted"] += accepted
        self.metrics["outcomes"]["rejected"] += rejected
        self.metrics["outcomes"]["errored"] += errored

    def record_persist_failure(self):
        self.metrics["persist_failures"] += 1

    def _count_error(self, error_type: str):
        errors = self.metrics["errors_by_type"]
        errors[error_type] = errors.get(error_type, 0) + 1

    def get_metrics(self) -> dict:
        """Return current metrics, including the chunk success rate."""
        metrics_copy = json.loads(json.dumps(self.metrics))
        dispatched = metrics_copy["chunks_dispatched"]
        if dispatched > 0:
            metrics_copy["chunk_success_rate"] = round(
                metrics_copy["chunks_succeeded"] / dispatched, 3
            )
        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()
        outcomes = metrics["outcomes"]

        self.info("=== Filter Run Metrics ===")
        self.info(f"Classifier Calls: {metrics['classifier_calls']} (retries: {metrics['retries']})")
        self.info(
            f"Chunks: {metrics['chunks_succeeded']}/{metrics['chunks_dispatched']} succeeded, "
            f"{metrics['chunks_failed']} failed"
        )
        self.info(
            f"Outcomes: {outcomes['accepted']} accepted, {outcomes['rejected']} rejected, "
            f"{outcomes['errored']} errored"
        )
        if metrics["persist_failures"]:
            self.info(f"Persist Failures: {metrics['persist_failures']}")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")

    def reset_metrics(self):
        self.metrics = self._empty_metrics()


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "jobfilter",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
