"""
Override Table Population
=========================
Rebuilds the routes and stops override tables from the live API while keeping
every curated `*_override` value.

Each override cell is resolved as:

    existing CSV value  >  JSON config override  >  empty

Rows of a source that was not fetched, or whose fetch came back empty, are
written back unchanged. Rows of a fetched source that the API no longer lists
are dropped.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from ..config import ID_COLUMN, LOCALES, ROTATION_COLUMN, ROUTE_DELAY
from ..utils.files import read_json
from .api_client import APIError, TransitAPIClient
from .ids import to_internal_id, to_internal_route_id
from .merge import format_value, sort_rows
from .override_table import OverrideTable
from .sources import SOURCES, Source, default_source, owner_of

logger = logging.getLogger(__name__)

# Override columns exist for 'ru' even though the API has no Russian data
OVERRIDE_LOCALES = ('en', 'ka', 'ru')

ROUTE_COLUMNS = [
    'id', 'shortName', 'shortName_override',
    'isLoop',
    'longName_en', 'longName_en_override',
    'longName_ka', 'longName_ka_override',
    'longName_ru_override',
    'dest0_en', 'dest0_en_override',
    'dest0_ka', 'dest0_ka_override',
    'dest0_ru_override',
    'dest1_en', 'dest1_en_override',
    'dest1_ka', 'dest1_ka_override',
    'dest1_ru_override',
]

STOP_COLUMNS = [
    'id',
    'name_en', 'name_en_override',
    'name_ka', 'name_ka_override',
    'name_ru_override',
    'lat', 'lat_override',
    'lon', 'lon_override',
    'rotation', 'rotation_override',
    'mergeParent', 'hubTarget',
]


@dataclass
class PopulateReport:
    """Counters from rebuilding one table."""

    table: str
    rebuilt: List[str] = field(default_factory=list)
    matched: int = 0
    added: int = 0
    dropped: int = 0
    passthrough: int = 0
    malformed: int = 0
    total_rows: int = 0

    def summary(self) -> str:
        rebuilt = ', '.join(self.rebuilt) or 'nothing'
        return (
            f"[{self.table}] rebuilt {rebuilt}: {self.matched} existing, {self.added} new, "
            f"{self.dropped} dropped; passthrough {self.passthrough} (malformed {self.malformed}), "
            f"total {self.total_rows}"
        )


# ============================================================================
# JSON CONFIG OVERRIDES
# ============================================================================

def load_overrides_config(paths: Iterable[Path]) -> dict:
    """Read the first overrides config that exists; {} when there is none."""
    for path in paths:
        path = Path(path)
        if path.exists():
            logger.info(f"Loading overrides config from {path}")
            return read_json(path)
    logger.info("No overrides config found")
    return {}


def lookup_keys(internal_id: str, api_id: str) -> Tuple[str, ...]:
    """Keys a config entry may be filed under: internal ID, API ID, bare ID."""
    return tuple(dict.fromkeys((internal_id, api_id, api_id.split(':')[-1])))


def _config_entry(mapping, keys: Sequence[str]):
    if not isinstance(mapping, Mapping):
        return None
    for key in keys:
        if key in mapping:
            return mapping[key]
    return None


def _nested(data, *path):
    """Walk dicts and lists; list indexes may also be filed as string keys."""
    for key in path:
        if isinstance(data, list):
            data = data[key] if isinstance(key, int) and 0 <= key < len(data) else None
        elif isinstance(data, Mapping):
            data = data[key] if key in data else data.get(str(key))
        else:
            return None
    return data


def _first(*values) -> str:
    """First value that renders as a non-blank cell."""
    for value in values:
        text = format_value(value)
        if text.strip():
            return text
    return ''


def find_hub(hubs, keys: Sequence[str]) -> Optional[str]:
    """ID of the first hub group listing one of keys as a member."""
    if not isinstance(hubs, Mapping):
        return None
    for hub_id, members in hubs.items():
        if any(member in keys for member in members or []):
            return hub_id
    return None


# ============================================================================
# API COLLECTION
# ============================================================================

def route_destinations(details) -> dict:
    """
    Headsigns of a route's first two patterns.

    A route whose first pattern starts and ends at the same stop is a loop;
    its return destination falls back to that stop's name.
    """
    result = {'dest0': '', 'dest1': '', 'is_loop': False}
    patterns = details.get('patterns') if isinstance(details, Mapping) else None
    if not isinstance(patterns, list) or not patterns:
        return result

    first = patterns[0] if isinstance(patterns[0], Mapping) else {}
    result['dest0'] = first.get('headsign') or ''
    first_stop = first.get('firstStop') or {}
    last_stop = first.get('lastStop') or {}
    if first_stop.get('id') and first_stop.get('id') == last_stop.get('id'):
        result['is_loop'] = True
        result['dest1'] = first_stop.get('name') or ''

    if len(patterns) > 1 and isinstance(patterns[1], Mapping) and patterns[1].get('headsign'):
        result['dest1'] = patterns[1]['headsign']
    return result


def _fetch_localized(fetch: Callable[[str], list], kind: str, source: Source,
                     locales: Sequence[str], build: Callable[[dict, str, str], dict],
                     name_field: str, id_rule) -> Dict[str, dict]:
    """
    Merge one list endpoint across locales, keyed by internal ID.

    The first locale defines the set of items; later locales only add their
    `<name_field>_<locale>` value. A failure on the first locale yields {}.
    """
    items: Dict[str, dict] = {}
    for index, locale in enumerate(locales):
        try:
            payload = fetch(locale)
        except APIError as e:
            logger.error(f"Error fetching {kind} for {source.id} [{locale}]: {e}")
            if index == 0:
                return {}
            continue

        for raw in payload or []:
            if not isinstance(raw, Mapping) or not raw.get('id'):
                continue
            api_id = str(raw['id'])
            internal_id = id_rule(api_id, source)
            if index == 0:
                items[internal_id] = build(raw, internal_id, api_id)
            if internal_id in items:
                items[internal_id][f'{name_field}_{locale}'] = raw.get(name_field)
    return items


def fetch_routes(client: TransitAPIClient, locales: Sequence[str] = LOCALES) -> List[dict]:
    """
    Route list in every locale plus destinations from the v3 route details.

    Returns:
        One dict per route with internal `id`, upstream `api_id`,
        `shortName`, `longName_<locale>`, `dest0_<locale>`, `dest1_<locale>`
        and `isLoop`. Empty when the route list cannot be fetched.
    """
    source = client.source
    routes = _fetch_localized(
        client.routes, 'routes', source, locales,
        lambda raw, internal_id, api_id: {'id': internal_id, 'api_id': api_id, 'shortName': raw.get('shortName')},
        'longName', to_internal_route_id,
    )

    logger.info(f"Fetching destinations for {len(routes)} {source.id} routes...")
    for processed, route in enumerate(routes.values(), start=1):
        for index, locale in enumerate(locales):
            try:
                details = client.route_details(route['api_id'], locale)
            except APIError as e:
                logger.debug(f"No details for {route['api_id']} [{locale}]: {e}")
                continue
            destinations = route_destinations(details)
            route[f'dest0_{locale}'] = destinations['dest0']
            route[f'dest1_{locale}'] = destinations['dest1']
            if index == 0 and destinations['is_loop']:
                route['isLoop'] = True

        if processed % 20 == 0:
            logger.info(f"  Processed {processed}/{len(routes)} routes...")
        time.sleep(ROUTE_DELAY)

    return list(routes.values())


def fetch_stops(client: TransitAPIClient, locales: Sequence[str] = LOCALES) -> List[dict]:
    """
    Stop list in every locale.

    Returns:
        One dict per stop with internal `id`, upstream `api_id`,
        `name_<locale>`, `lat`, `lon` and the API `rotation` (bearing or 0).
    """
    source = client.source
    stops = _fetch_localized(
        client.stops, 'stops', source, locales,
        lambda raw, internal_id, api_id: {
            'id': internal_id,
            'api_id': api_id,
            'lat': raw.get('lat'),
            'lon': raw.get('lon'),
            'rotation': raw.get('bearing') or 0,
        },
        'name', to_internal_id,
    )
    logger.info(f"Fetched {len(stops)} {source.id} stops")
    return list(stops.values())


# ============================================================================
# ROW BUILDING
# ============================================================================

def build_route_row(route: Mapping, csv_row: Mapping, override) -> Dict[str, str]:
    """One routes-table row: fresh API values, overrides resolved by precedence."""
    row = {
        ID_COLUMN: route['id'],
        'shortName': route.get('shortName'),
        'shortName_override': _first(csv_row.get('shortName_override'), _nested(override, 'shortName')),
        'isLoop': 'true' if route.get('isLoop') else '',
    }
    for locale in OVERRIDE_LOCALES:
        if f'longName_{locale}' in route:
            row[f'longName_{locale}'] = route[f'longName_{locale}']
        row[f'longName_{locale}_override'] = _first(
            csv_row.get(f'longName_{locale}_override'), _nested(override, 'longName', locale)
        )
    for direction in (0, 1):
        for locale in OVERRIDE_LOCALES:
            column = f'dest{direction}_{locale}'
            if column in route:
                row[column] = route[column]
            row[f'{column}_override'] = _first(
                csv_row.get(f'{column}_override'),
                _nested(override, 'destinations', direction, 'headsign', locale),
            )
    return {column: format_value(value) for column, value in row.items()}


def build_stop_row(
    stop: Mapping,
    csv_row: Mapping,
    stops_config: Mapping,
    bearings: Optional[Mapping[str, float]] = None,
) -> Dict[str, str]:
    """
    One stops-table row: fresh API values, overrides resolved by precedence.

    Rotation is the API bearing, replaced by the computed bearing when there
    is one, replaced in turn by a config `bearing`. `rotation_override` only
    ever comes from the existing CSV.
    """
    keys = lookup_keys(stop['id'], stop['api_id'])
    override = _config_entry(stops_config.get('overrides'), keys) or {}

    row = {ID_COLUMN: stop['id']}
    for locale in OVERRIDE_LOCALES:
        if f'name_{locale}' in stop:
            row[f'name_{locale}'] = stop[f'name_{locale}']
        row[f'name_{locale}_override'] = _first(
            csv_row.get(f'name_{locale}_override'), _nested(override, 'name', locale)
        )
    for coordinate in ('lat', 'lon'):
        row[coordinate] = stop.get(coordinate)
        row[f'{coordinate}_override'] = _first(csv_row.get(f'{coordinate}_override'), _nested(override, coordinate))

    rotation = stop.get('rotation') or 0
    if bearings and stop['id'] in bearings:
        rotation = bearings[stop['id']]
    if _nested(override, 'bearing') is not None:
        rotation = override['bearing']
    row[ROTATION_COLUMN] = rotation
    row['rotation_override'] = csv_row.get('rotation_override')

    row['mergeParent'] = _first(csv_row.get('mergeParent'), _config_entry(stops_config.get('merges'), keys))
    row['hubTarget'] = _first(csv_row.get('hubTarget'), find_hub(stops_config.get('hubs'), keys))
    return {column: format_value(value) for column, value in row.items()}


# ============================================================================
# TABLE ASSEMBLY
# ============================================================================

def route_owner(route_id: str, sources: Sequence[Source] = SOURCES) -> Source:
    """
    Source of a routes-table row.

    Internal route IDs keep the upstream letter ('R826' vs 'rR826'), so the
    internal prefix is matched case-sensitively.
    """
    for source in sources:
        if not source.is_default and route_id.startswith(source.internal_prefix + source.separator):
            return source
    return default_source(sources)


def _frame(records: Iterable[Mapping], columns: Sequence[str]) -> pd.DataFrame:
    return pd.DataFrame(
        [{column: record.get(column) or '' for column in columns} for record in records],
        columns=list(columns),
        dtype=str,
    )


def _assemble(
    name: str,
    existing: Optional[OverrideTable],
    canonical_columns: Sequence[str],
    fetched: Mapping[str, List[dict]],
    build_row: Callable[[dict, Mapping], Dict[str, str]],
    owner: Callable[[str], Source],
    identity: Callable[[str, Source], str],
    sources: Sequence[Source],
) -> Tuple[OverrideTable, PopulateReport]:
    report = PopulateReport(table=name)

    columns = list(existing.columns) if existing is not None else []
    columns += [c for c in canonical_columns if c not in columns]
    if existing is not None and len(columns) == len(existing.columns):
        header_line = existing.header_line
    else:
        header_line = ','.join(columns)
    table = OverrideTable(header_line, [])

    by_source: Dict[str, List[Dict[str, str]]] = {source.id: [] for source in sources}
    index: Dict[str, Dict[str, str]] = {}
    malformed: List[str] = []
    if existing is not None:
        existing.require(ID_COLUMN)
        for row in existing.rows:
            if row.values is None:
                malformed.append(row.line)
                continue
            record = dict(zip(existing.columns, row.values))
            row_source = owner(record[ID_COLUMN])
            by_source.setdefault(row_source.id, []).append(record)
            index[identity(record[ID_COLUMN], row_source)] = record

    lines: List[str] = []
    for source in sources:
        items = fetched.get(source.id)
        if not items:
            if source.id in fetched:
                logger.warning(f"No {name} fetched for {source.id}; keeping its existing rows")
            kept = by_source.get(source.id, [])
            report.passthrough += len(kept)
            lines.extend(table.format_lines(_frame(kept, columns)))
            continue

        report.rebuilt.append(source.id)
        built, seen = [], set()
        for item in items:
            if item['id'] in seen:
                continue
            if owner(item['id']).id != source.id:
                logger.warning(f"Skipping {item['api_id']!r}: not in the {source.id} namespace")
                continue
            seen.add(item['id'])

            csv_row = index.get(item['id'])
            if csv_row is None:
                report.added += 1
                csv_row = {}
            else:
                report.matched += 1
            row = build_row(item, csv_row)
            # Columns this tool does not manage are carried over as-is
            for column in columns:
                row.setdefault(column, csv_row.get(column, ''))
            built.append(row)

        stale = [r for r in by_source.get(source.id, []) if identity(r[ID_COLUMN], source) not in seen]
        if stale:
            logger.info(f"Dropping {len(stale)} {source.id} {name} no longer listed upstream")
            report.dropped += len(stale)
        lines.extend(table.format_lines(sort_rows(_frame(built, columns), source)))

    lines.extend(malformed)
    report.malformed = len(malformed)
    report.passthrough += len(malformed)

    result = table.with_lines(lines)
    report.total_rows = result.row_count
    logger.info(report.summary())
    return result, report


def populate_routes(
    existing: Optional[OverrideTable],
    fetched: Mapping[str, List[dict]],
    routes_config: Optional[Mapping] = None,
    sources: Sequence[Source] = SOURCES,
) -> Tuple[OverrideTable, PopulateReport]:
    """
    Rebuild the routes override table.

    Args:
        existing: Current routes table, or None to start a new one.
        fetched: Source id -> `fetch_routes` output. Sources missing here, or
            mapped to an empty list, keep their existing rows.
        routes_config: Parsed routes config (`{"routeOverrides": {...}}`).
        sources: All configured sources, used to decide row ownership.

    Returns:
        (new table, report). The input table is not modified.
    """
    overrides = (routes_config or {}).get('routeOverrides') or {}

    def build(route, csv_row):
        override = _config_entry(overrides, lookup_keys(route['id'], route['api_id'])) or {}
        return build_route_row(route, csv_row, override)

    return _assemble(
        'routes', existing, ROUTE_COLUMNS, fetched, build,
        owner=lambda row_id: route_owner(row_id, sources),
        identity=to_internal_route_id,
        sources=sources,
    )


def populate_stops(
    existing: Optional[OverrideTable],
    fetched: Mapping[str, List[dict]],
    stops_config: Optional[Mapping] = None,
    bearings: Optional[Mapping[str, float]] = None,
    sources: Sequence[Source] = SOURCES,
) -> Tuple[OverrideTable, PopulateReport]:
    """
    Rebuild the stops override table.

    Args:
        existing: Current stops table, or None to start a new one.
        fetched: Source id -> `fetch_stops` output.
        stops_config: Parsed stops config (`overrides`, `merges`, `hubs`).
        bearings: Internal ID -> computed bearing.
        sources: All configured sources, used to decide row ownership.

    Returns:
        (new table, report). The input table is not modified.
    """
    stops_config = stops_config or {}
    return _assemble(
        'stops', existing, STOP_COLUMNS, fetched,
        lambda stop, csv_row: build_stop_row(stop, csv_row, stops_config, bearings),
        owner=lambda row_id: owner_of(row_id, sources),
        identity=to_internal_id,
        sources=sources,
    )
