"""
Prefetched Data Normalizer
==========================
Rewrites a source's prefetched JSON snapshots into internal IDs, so the static
fallback files match what the web app derives from live API responses.

    Stops:  "1:123"  -> "r123"
    Routes: "1:R826" -> "rR826"
    Keys:   "1:R826_1_01" -> "rR826_1_01"
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from ..config import DATA_DIR, LOCALES
from ..utils.files import read_json, write_json
from .ids import normalize_schedule_key, to_internal_id, to_internal_route_id
from .sources import Source

logger = logging.getLogger(__name__)


@dataclass
class NormalizeReport:
    """Per-file counts of rewritten identifiers."""

    files: Dict[str, Dict[str, int]] = field(default_factory=dict)
    skipped: list = field(default_factory=list)

    def record(self, filename: str, **counts: int) -> None:
        self.files[filename] = counts

    @property
    def total(self) -> int:
        return sum(sum(c.values()) for c in self.files.values())


class _Counter:
    """Applies one ID rule and counts how many values it changed."""

    def __init__(self, rule):
        self.rule = rule
        self.changed = 0

    def __call__(self, value):
        new_value = self.rule(value)
        if new_value != value:
            self.changed += 1
        return new_value


# ============================================================================
# PER-DOCUMENT TRANSFORMS (pure, operate on parsed JSON)
# ============================================================================

def normalize_stops(stops: list, source: Source) -> int:
    stop_id = _Counter(lambda v: to_internal_id(v, source))
    for stop in stops:
        if isinstance(stop, dict) and 'id' in stop:
            stop['id'] = stop_id(stop['id'])
    return stop_id.changed


def normalize_routes(routes: list, source: Source) -> Dict[str, int]:
    route_id = _Counter(lambda v: to_internal_route_id(v, source))
    stop_id = _Counter(lambda v: to_internal_id(v, source))

    for route in routes:
        if not isinstance(route, dict):
            continue
        if 'id' in route:
            route['id'] = route_id(route['id'])
        if isinstance(route.get('stops'), list):
            route['stops'] = [stop_id(sid) for sid in route['stops']]

    return {'routes': route_id.changed, 'stops': stop_id.changed}


def normalize_route_details(details: dict, source: Source):
    """
    Returns:
        (new details dict keyed by internal route ID, counts)
    """
    route_id = _Counter(lambda v: to_internal_route_id(v, source))
    stop_id = _Counter(lambda v: to_internal_id(v, source))
    result = {}

    for key, data in details.items():
        new_key = route_id(key)
        if isinstance(data, dict):
            if data.get('id'):
                data['id'] = to_internal_route_id(data['id'], source)

            for pattern in data.get('patterns') or []:
                for end in ('firstStop', 'lastStop'):
                    stop = pattern.get(end) if isinstance(pattern, dict) else None
                    if isinstance(stop, dict) and stop.get('id'):
                        stop['id'] = stop_id(stop['id'])

            stops_of_patterns = data.get('_stopsOfPatterns')
            if isinstance(stops_of_patterns, list):
                for entry in stops_of_patterns:
                    stop = entry.get('stop') if isinstance(entry, dict) else None
                    if isinstance(stop, dict) and stop.get('id'):
                        stop['id'] = stop_id(stop['id'])

        result[new_key] = data

    return result, {'routes': route_id.changed, 'stops': stop_id.changed}


def normalize_keyed(mapping: dict, source: Source):
    """Schedules and polylines share the "<route>_<suffix>" key format."""
    key = _Counter(lambda v: normalize_schedule_key(v, source))
    result = {key(k): v for k, v in mapping.items()}
    return result, key.changed


# ============================================================================
# FILE DRIVER
# ============================================================================

class SourceNormalizer:
    """
    Normalizes every prefetched file of one source in place.

    Usage:
        report = SourceNormalizer(get_source('rustavi')).run()
    """

    def __init__(self, source: Source, data_dir: Optional[Path] = None, locales=LOCALES):
        self.source = source
        self.data_dir = Path(data_dir) if data_dir else DATA_DIR
        self.locales = list(locales)
        self.report = NormalizeReport()

    def _path(self, filename: str) -> Optional[Path]:
        path = self.data_dir / filename
        if not path.exists():
            logger.info(f"Skipping {filename} - not found")
            self.report.skipped.append(filename)
            return None
        logger.info(f"Processing {filename}...")
        return path

    def run(self) -> NormalizeReport:
        sid = self.source.id
        for locale in self.locales:
            self.process_stops(f"{sid}_stops_{locale}.json")
        for locale in self.locales:
            self.process_routes(f"{sid}_routes_{locale}.json")
        for locale in self.locales:
            self.process_route_details(f"{sid}_routes_details_{locale}.json")
        self.process_keyed(f"{sid}_schedules.json")
        self.process_keyed(f"{sid}_polylines.json")
        return self.report

    def process_stops(self, filename: str) -> None:
        path = self._path(filename)
        if path is None:
            return
        stops = read_json(path)
        changed = normalize_stops(stops, self.source)
        write_json(path, stops)
        self.report.record(filename, stops=changed)
        logger.info(f"  Normalized {changed} stop IDs")

    def process_routes(self, filename: str) -> None:
        path = self._path(filename)
        if path is None:
            return
        routes = read_json(path)
        counts = normalize_routes(routes, self.source)
        write_json(path, routes)
        self.report.record(filename, **counts)
        logger.info(f"  Normalized {counts['routes']} route IDs, {counts['stops']} stop references")

    def process_route_details(self, filename: str) -> None:
        path = self._path(filename)
        if path is None:
            return
        details, counts = normalize_route_details(read_json(path), self.source)
        write_json(path, details)
        self.report.record(filename, **counts)
        logger.info(f"  Normalized {counts['routes']} route IDs, {counts['stops']} stop IDs")

    def process_keyed(self, filename: str) -> None:
        path = self._path(filename)
        if path is None:
            return
        mapping, changed = normalize_keyed(read_json(path), self.source)
        write_json(path, mapping)
        self.report.record(filename, keys=changed)
        logger.info(f"  Normalized {changed} keys")
