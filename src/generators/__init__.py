"""
Generators package.
Contains HTML preview generators for the override data.
"""

from .base import BaseGenerator
from .stops_map import StopsMapGenerator

__all__ = [
    'BaseGenerator',
    'StopsMapGenerator',
]
