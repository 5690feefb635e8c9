"""
Utility Modules
===============
Shared utilities for bearing math and atomic file writes.
"""

from .geo import initial_bearing, average_bearing, get_bounds
from .files import write_atomic, read_json, write_json

__all__ = [
    'initial_bearing',
    'average_bearing',
    'get_bounds',
    'write_atomic',
    'read_json',
    'write_json',
]
