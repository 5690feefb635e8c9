"""
ID Normalizer
=============
Deterministic mapping between upstream API identifiers and internal IDs.

    API format      Internal format
    ----------      ---------------
    1:811           811       (default source)
    1:123 / 2:123   r123      (rustavi)
    1:R826          rR826     (rustavi route)
    1:R826_1:01     rR826_1:01  (schedule/polyline key)

Malformed input (non-string or empty) is handed back unchanged so a batch
job never stops on a bad upstream record.
"""

import re
from typing import Optional, Sequence

from .sources import Source

_LEADING_DIGITS = re.compile(r'^\d+')


def match_namespace(value: str, prefixes: Sequence[str]) -> Optional[str]:
    """Return the first namespace prefix (in rule order) that value starts with."""
    for prefix in prefixes:
        if value.startswith(prefix):
            return prefix
    return None


def to_internal_id(api_id, source: Source, prefixes: Optional[Sequence[str]] = None):
    """
    Convert an upstream API ID to the internal ID namespace.

    Args:
        api_id: Upstream identifier, optionally a composite "<id>_<suffix>" key.
        source: Source the identifier came from.
        prefixes: Namespace rules to try. Defaults to all of the source's
            namespace prefixes.

    Returns:
        The internal ID. IDs with no recognised namespace prefix come back
        unchanged.
    """
    if not api_id or not isinstance(api_id, str):
        return api_id
    if prefixes is None:
        prefixes = source.namespace_prefixes

    head, sep, suffix = api_id.partition('_')
    prefix = match_namespace(head, prefixes)
    if prefix is None or len(head) == len(prefix):
        return api_id

    return source.internal_prefix + source.separator + head[len(prefix):] + sep + suffix


def to_internal_route_id(api_id, source: Source):
    """Route IDs are only ever emitted in the primary namespace."""
    return to_internal_id(api_id, source, prefixes=source.namespace_prefixes[:1])


def strip_internal_prefix(internal_id: str, source: Source) -> str:
    if source.has_internal_prefix(internal_id):
        return internal_id[len(source.internal_prefix + source.separator):]
    return internal_id


def to_api_id(internal_id, source: Source):
    """
    Restore the upstream API ID for an internal ID.

    The result always uses the source's primary namespace, so an ID that
    originally came from a secondary namespace is restored as primary.
    Already-namespaced input is not prefixed twice.
    """
    if not internal_id or not isinstance(internal_id, str):
        return internal_id

    api_id = strip_internal_prefix(internal_id, source)

    prefix = match_namespace(api_id, source.namespace_prefixes)
    if prefix is not None:
        api_id = api_id[len(prefix):]

    return source.primary_prefix + api_id


def numeric_suffix(internal_id: str, source: Source) -> int:
    """
    Leading number after the internal prefix, used for sorting.

    'r145' -> 145, 'rR826' -> 0, '811' -> 811.
    """
    if not isinstance(internal_id, str):
        return 0
    match = _LEADING_DIGITS.match(strip_internal_prefix(internal_id, source))
    return int(match.group(0)) if match else 0


# ============================================================================
# ROUTE SCHEDULE KEYS
# ============================================================================

def safe_pattern_suffix(pattern_suffix: str) -> str:
    """Make a pattern suffix usable as a map key ('0:01,1:01' -> '0_01-1_01')."""
    return pattern_suffix.replace(':', '_').replace(',', '-')


def route_schedule_key(route_id: str, pattern_suffix: str) -> str:
    """Key for one (route, pattern) schedule/polyline pair."""
    return f"{route_id}_{safe_pattern_suffix(pattern_suffix)}"


def normalize_schedule_key(key, source: Source):
    """Normalize the route part of a schedule key; the suffix is kept as-is."""
    return to_internal_route_id(key, source)
