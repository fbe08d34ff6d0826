"""
Data Sources Package
Geo primitives, error types, storage and telemetry shared by the matching core
"""

from . import error_handling
from . import utils

__all__ = ['error_handling', 'utils']
