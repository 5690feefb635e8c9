"""
Data Modules
============
Source definitions, ID normalization, the override table merge engine and the
API prefetchers that produce static fallback data.
"""

from .sources import Source, SOURCES, get_source, default_source, owner_of
from .ids import to_internal_id, to_api_id, route_schedule_key
from .override_table import OverrideTable, ConfigurationError
from .merge import merge_stops, apply_bearings, MergeReport

__all__ = [
    'Source',
    'SOURCES',
    'get_source',
    'default_source',
    'owner_of',
    'to_internal_id',
    'to_api_id',
    'route_schedule_key',
    'OverrideTable',
    'ConfigurationError',
    'merge_stops',
    'apply_bearings',
    'MergeReport',
]
