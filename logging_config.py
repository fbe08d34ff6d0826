"""
Logging configuration for CareMatch API
Provides structured logging for production monitoring
"""

import logging
import json
import os
import sys
from datetime import datetime, timezone


# Extra fields copied from LogRecord into the JSON payload when present
STRUCTURED_FIELDS = (
    "request_id",
    "provider_id",
    "lat",
    "lon",
    "algorithm",
    "metric",
    "score",
    "candidate_count",
    "cell_count",
    "duration",
    "operation",
    "error_type",
)


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = None, json_format: bool = None) -> None:
    """
    Set up logging configuration for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL);
               defaults to the LOG_LEVEL environment variable
        json_format: Whether to use JSON formatting for structured logs;
                     defaults to the LOG_JSON environment variable
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if json_format is None:
        json_format = os.getenv("LOG_JSON", "true").lower() in ("1", "true", "yes")

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logging.getLogger("carematch").setLevel(numeric_level)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(f"carematch.{name}")


def log_match_calculation(logger: logging.Logger, request_id: str, algorithm: str,
                          candidate_count: int, best_score: float = None,
                          **kwargs):
    """
    Log a completed provider ranking.

    Args:
        logger: Logger instance
        request_id: Request being matched
        algorithm: Scoring algorithm used
        candidate_count: Number of providers ranked
        best_score: Score of the top candidate, if any
        **kwargs: Additional fields to log
    """
    extra = {
        "request_id": request_id,
        "algorithm": algorithm,
        "candidate_count": candidate_count,
        **kwargs
    }
    if best_score is not None:
        extra["score"] = best_score
        logger.info(f"Ranked {candidate_count} providers for {request_id} "
                    f"({algorithm}), best {best_score:.3f}", extra=extra)
    else:
        logger.info(f"No providers to rank for {request_id} ({algorithm})", extra=extra)


def log_aggregation(logger: logging.Logger, metric: str, cell_count: int,
                    request_count: int, provider_count: int, **kwargs):
    """
    Log a demand grid aggregation.

    Args:
        logger: Logger instance
        metric: Demand metric computed
        cell_count: Number of non-empty cells returned
        request_count: Requests aggregated
        provider_count: Providers aggregated
        **kwargs: Additional fields to log
    """
    extra = {
        "metric": metric,
        "cell_count": cell_count,
        **kwargs
    }
    logger.info(f"Aggregated {request_count} requests / {provider_count} providers "
                f"into {cell_count} cells ({metric})", extra=extra)


def log_error(logger: logging.Logger, error_type: str, message: str,
              request_id: str = None, **kwargs):
    """
    Log an error with structured data.

    Args:
        logger: Logger instance
        error_type: Type of error (e.g., "validation", "store", "settlement")
        message: Error message
        request_id: Optional request ID for tracing
        **kwargs: Additional fields to log
    """
    extra = {
        "error_type": error_type,
        **kwargs
    }
    if request_id:
        extra["request_id"] = request_id

    logger.error(message, extra=extra)


def log_performance(logger: logging.Logger, operation: str, duration: float,
                    request_id: str = None, **kwargs):
    """
    Log performance metrics.

    Args:
        logger: Logger instance
        operation: Name of the operation
        duration: Duration in seconds
        request_id: Optional request ID for tracing
        **kwargs: Additional fields to log
    """
    extra = {
        "operation": operation,
        "duration": duration,
        **kwargs
    }
    if request_id:
        extra["request_id"] = request_id

    logger.debug(f"Performance: {operation} took {duration:.4f}s", extra=extra)
