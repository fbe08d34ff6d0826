"""
Error handling for CareMatch
Exception hierarchy for validation and store failures, plus fallback helpers
"""

from typing import Any, Callable, Optional
from functools import wraps

from logging_config import get_logger

logger = get_logger(__name__)

# Message shown to patients when matching fails for a reason they cannot fix
USER_FACING_MATCH_ERROR = "Unable to find a match at this time"
NO_COVERAGE_MESSAGE = "No providers available in your area"


class CareMatchError(Exception):
    """Base exception for CareMatch errors."""
    pass


class ValidationError(CareMatchError):
    """Input rejected before any computation starts."""
    pass


class InvalidCoordinatesError(ValidationError):
    """Latitude or longitude outside the valid range."""
    def __init__(self, message: str, lat: Any = None, lon: Any = None):
        super().__init__(message)
        self.lat = lat
        self.lon = lon


class InvalidBoundsError(ValidationError):
    """Bounding box is malformed (south > north, west > east, or out of range)."""
    pass


class InvalidConfigurationError(ValidationError):
    """A tuning parameter (grid size, radius, weights) is out of range."""
    pass


class NotFoundError(CareMatchError):
    """Entity missing from the store."""
    def __init__(self, message: str, entity: str, entity_id: Optional[str] = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(CareMatchError):
    """Request status change that the lifecycle does not allow."""
    def __init__(self, message: str, current: Optional[str] = None, requested: Optional[str] = None):
        super().__init__(message)
        self.current = current
        self.requested = requested


def with_fallback(fallback_value: Any, log_error: bool = True):
    """
    Decorator to provide fallback values when functions fail.

    Only meant for bookkeeping (telemetry, stats); scoring and validation
    errors must propagate.

    Args:
        fallback_value: Value to return if function fails
        log_error: Whether to log the error
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log_error:
                    logger.warning(f"Function {func.__name__} failed: {e}. Using fallback.")
                return fallback_value
        return wrapper
    return decorator


def error_status_code(error: CareMatchError) -> int:
    """
    Map a CareMatch error to an HTTP status code.

    Args:
        error: Raised CareMatch error

    Returns:
        HTTP status code
    """
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, InvalidTransitionError):
        return 409
    return 500
