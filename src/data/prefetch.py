"""
Static Fallback Prefetcher
==========================
Snapshots a source's stops, routes, route details, schedules and polylines
into JSON files the web app loads when the live API is unavailable.

Output files (in DATA_DIR):
    {source}_stops_{locale}.json
    {source}_routes_{locale}.json
    {source}_routes_details_{locale}.json
    {source}_schedules.json        keyed by "<routeId>_<safePatternSuffix>"
    {source}_polylines.json        same keys
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import DATA_DIR, LOCALE_DELAY, LOCALES, PATTERN_DELAY, ROUTE_DELAY
from ..utils.files import write_json
from .api_client import APIError, TransitAPIClient
from .ids import route_schedule_key

logger = logging.getLogger(__name__)


def unique_pattern_suffixes(details: dict) -> List[str]:
    """Pattern suffixes of a route, first-seen order, duplicates dropped."""
    suffixes = []
    for pattern in details.get('patterns') or []:
        suffix = pattern.get('patternSuffix') if isinstance(pattern, dict) else None
        if suffix and suffix not in suffixes:
            suffixes.append(suffix)
    return suffixes


def collect_pattern_stop_ids(stops_of_patterns: Any) -> List[str]:
    """
    Stop IDs from a stops-of-patterns response, in first-seen order.

    The API returns either a flat list of `{stop: {...}}` / `{stops: [...]}`
    entries or an object with a `patterns` list.
    """
    ids: List[str] = []

    def add(stop):
        if isinstance(stop, dict) and stop.get('id') and stop['id'] not in ids:
            ids.append(stop['id'])

    if isinstance(stops_of_patterns, list):
        for item in stops_of_patterns:
            if not isinstance(item, dict):
                continue
            if isinstance(item.get('stop'), dict) and item['stop'].get('id'):
                add(item['stop'])
            else:
                for stop in item.get('stops') or []:
                    add(stop)
    elif isinstance(stops_of_patterns, dict):
        for pattern in stops_of_patterns.get('patterns') or []:
            for stop in pattern.get('stops') or []:
                add(stop)
    return ids


class Prefetcher:
    """
    Fetches and writes the static fallback snapshot for one source.

    Usage:
        with TransitAPIClient(source) as client:
            Prefetcher(client).run()
    """

    def __init__(self, client: TransitAPIClient, output_dir: Optional[Path] = None, locales=LOCALES):
        self.client = client
        self.source = client.source
        self.output_dir = Path(output_dir) if output_dir else DATA_DIR
        self.locales = list(locales)

        self.data: Dict[str, Dict[str, Any]] = {
            locale: {'stops': [], 'routes': [], 'details': {}} for locale in self.locales
        }
        self.schedules: Dict[str, Any] = {}
        self.polylines: Dict[str, Any] = {}

    def run(self) -> Dict[str, Path]:
        logger.info(f"--- Processing Source: {self.source.id.upper()} ---")
        self.fetch_lists()
        self.fetch_route_data()
        return self.save()

    # ========================================================================
    # FETCH
    # ========================================================================

    def fetch_lists(self) -> None:
        """Stops and routes for every locale."""
        for locale in self.locales:
            for kind in ('stops', 'routes'):
                try:
                    logger.info(f"Fetching {kind} [{locale}] from {self.client.v2}/{kind}...")
                    items = getattr(self.client, kind)(locale)
                    self.data[locale][kind] = items
                    logger.info(f"  Got {len(items)} {kind} for [{locale}]")
                except APIError as e:
                    logger.error(f"Error fetching {kind} for {self.source.id} [{locale}]: {e}")
            time.sleep(LOCALE_DELAY)

    def fetch_route_data(self) -> None:
        guide_routes = self.data[self.locales[0]]['routes'] if self.locales else []
        logger.info(f"Processing {len(guide_routes)} routes for details/schedules...")

        for index, route in enumerate(guide_routes):
            if index % 5 == 0:
                logger.info(f"[{self.source.id}] Processing {index}/{len(guide_routes)}...")
            route_id = route.get('id')
            if not route_id:
                continue
            for locale in self.locales:
                try:
                    self.fetch_route(route_id, locale, with_schedules=(locale == self.locales[0]))
                except APIError as e:
                    logger.warning(f"Error processing route {route_id} [{locale}]: {e}")
            time.sleep(ROUTE_DELAY)

    def fetch_route(self, route_id: str, locale: str, with_schedules: bool = False) -> None:
        """
        Details, stops-of-patterns and (once per route) schedules/polylines.

        Raises:
            APIError: if the route details themselves cannot be fetched.
        """
        details = self.client.route_details(route_id, locale)
        self.data[locale]['details'][route_id] = details

        suffixes = unique_pattern_suffixes(details)
        if not suffixes:
            return

        try:
            stops_of_patterns = self.client.stops_of_patterns(route_id, suffixes, locale)
            details['_stopsOfPatterns'] = stops_of_patterns
            target = next((r for r in self.data[locale]['routes'] if r.get('id') == route_id), None)
            if target is not None:
                target['stops'] = collect_pattern_stop_ids(stops_of_patterns)
        except APIError as e:
            logger.debug(f"No stops-of-patterns for {route_id} [{locale}]: {e}")

        if not with_schedules:
            return

        for suffix in suffixes:
            key = route_schedule_key(route_id, suffix)
            try:
                self.schedules[key] = self.client.schedule(route_id, suffix, locale)
            except APIError as e:
                logger.debug(f"No schedule for {key}: {e}")
            try:
                self.polylines[key] = self.client.polylines(route_id, [suffix])
            except APIError as e:
                logger.debug(f"No polyline for {key}: {e}")
            time.sleep(PATTERN_DELAY)

    # ========================================================================
    # SAVE
    # ========================================================================

    def save(self) -> Dict[str, Path]:
        sid = self.source.id
        written = {}
        for locale in self.locales:
            bucket = self.data[locale]
            for name, data in (
                (f"{sid}_stops_{locale}.json", bucket['stops']),
                (f"{sid}_routes_{locale}.json", bucket['routes']),
                (f"{sid}_routes_details_{locale}.json", bucket['details']),
            ):
                written[name] = write_json(self.output_dir / name, data)
            logger.info(f"Saved {locale} files for {sid}")

        written[f"{sid}_schedules.json"] = write_json(self.output_dir / f"{sid}_schedules.json", self.schedules)
        written[f"{sid}_polylines.json"] = write_json(self.output_dir / f"{sid}_polylines.json", self.polylines)
        logger.info(f"Saved detailed data for {sid}: {len(self.schedules)} schedules, {len(self.polylines)} polylines")
        return written
