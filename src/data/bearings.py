"""
Stop Bearings
=============
Derives a display rotation for each stop from the direction buses leave it in.

For each route the ordered stop list is walked pair by pair; the bearing from
a stop to the next one is recorded against the stop. A stop served by several
routes gets the circular mean of all its bearings, rounded to whole degrees.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional

from ..config import BEARING_BATCH_DELAY, BEARING_BATCH_SIZE
from ..utils.geo import average_bearing, initial_bearing
from .api_client import APIError, TransitAPIClient
from .ids import to_internal_id
from .sources import Source

logger = logging.getLogger(__name__)


def _coords(stop) -> Optional[tuple]:
    if not isinstance(stop, dict):
        return None
    lat, lon = stop.get('lat'), stop.get('lon')
    if not lat or not lon:
        return None
    return lat, lon


def collect_stop_bearings(route_stops: Iterable[dict], into: Dict[str, List[float]]) -> int:
    """
    Record the bearing from every stop to the next one along a route.

    Pairs missing coordinates or sharing identical coordinates are skipped,
    as are stops without an id.

    Returns:
        Number of bearings recorded.
    """
    stops = list(route_stops)
    count = 0
    for current, following in zip(stops, stops[1:]):
        start, end = _coords(current), _coords(following)
        stop_id = current.get('id') if start is not None else None
        if not stop_id or end is None or start == end:
            continue
        into[stop_id].append(initial_bearing(start[0], start[1], end[0], end[1]))
        count += 1
    return count


def average_stop_bearings(stop_bearings: Mapping[str, List[float]]) -> Dict[str, int]:
    """Circular mean per stop, rounded to an integer in [0, 360)."""
    result = {}
    for stop_id, bearings in stop_bearings.items():
        if not bearings:
            continue
        result[stop_id] = round(average_bearing(bearings)) % 360
    return result


def compute_bearings(client: TransitAPIClient, batch_size: int = BEARING_BATCH_SIZE) -> Dict[str, int]:
    """
    Fetch every route's stops and compute bearings keyed by internal stop ID.

    Routes that fail to load are logged and skipped.
    """
    source: Source = client.source
    routes = client.routes('en')
    logger.info(f"Found {len(routes)} routes.")

    stop_bearings: Dict[str, List[float]] = defaultdict(list)
    successful = 0

    for start in range(0, len(routes), batch_size):
        batch = routes[start:start + batch_size]
        for route in batch:
            try:
                stops = client.route_stops(route['id'])
            except (APIError, KeyError) as e:
                logger.debug(f"Failed to process route {route.get('shortName', route.get('id'))}: {e}")
                continue
            if isinstance(stops, list) and len(stops) > 1:
                collect_stop_bearings(stops, stop_bearings)
                successful += 1

        logger.info(f"Processed {min(start + batch_size, len(routes))}/{len(routes)} routes (Success: {successful})...")
        time.sleep(BEARING_BATCH_DELAY)

    logger.info("Calculating average bearings...")
    averaged = average_stop_bearings(stop_bearings)
    return {to_internal_id(stop_id, source): bearing for stop_id, bearing in averaged.items()}
