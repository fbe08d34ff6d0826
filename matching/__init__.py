"""
Matching Package
Provider ranking and demand aggregation for CareMatch
"""

from . import models
from . import scoring
from . import demand

__all__ = [
    'models',
    'scoring',
    'demand',
]
