#!/usr/bin/env python3
"""
Transit Map Data Toolkit - Unified CLI
======================================
Prefetch, normalize and merge the static data behind the Tbilisi/Rustavi
transit map.

Usage:
    python main.py prefetch [--source SOURCE | --all]
    python main.py normalize [--source SOURCE]
    python main.py bearings [--source SOURCE]
    python main.py update-bearings
    python main.py merge --source SOURCE [--dry-run]
    python main.py populate [--source SOURCE] [--only routes|stops]
    python main.py restore-id ID [ID ...] [--source SOURCE]
    python main.py generate
    python main.py info

Examples:
    python main.py prefetch --source rustavi
    python main.py normalize --source rustavi
    python main.py merge --source rustavi
    python main.py populate --only stops
"""

import argparse
import logging
import sys
from pathlib import Path

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(message)s'
)
logger = logging.getLogger(__name__)


def print_header(title: str) -> None:
    """Print a styled header."""
    print("\n" + "=" * 60)
    print(f"  {title}")
    print("=" * 60)


def _selected_sources(args):
    from src.data.sources import SOURCES, get_source

    if getattr(args, 'all', False):
        return list(SOURCES)
    return [get_source(args.source)]


def _load_bearings(path: Path) -> dict:
    from src.utils.files import read_json

    if not path.exists():
        logger.warning(f"Bearing lookup not found at {path}; new stops get rotation 0")
        return {}
    return read_json(path)


def cmd_prefetch(args) -> None:
    """Snapshot API data into static fallback files."""
    from src.data.api_client import TransitAPIClient
    from src.data.prefetch import Prefetcher
    from src.config import DATA_DIR

    print_header("Prefetching Static Fallback Data")

    output_dir = Path(args.output_dir) if args.output_dir else DATA_DIR
    for source in _selected_sources(args):
        print(f"\n🔧 Fetching {source.id}...")
        with TransitAPIClient(source) as client:
            written = Prefetcher(client, output_dir=output_dir).run()
        print(f"   ✅ Wrote {len(written)} files to {output_dir}")


def cmd_normalize(args) -> None:
    """Rewrite prefetched files into internal IDs."""
    from src.data.normalize import SourceNormalizer
    from src.data.sources import get_source

    source = get_source(args.source)
    print_header(f"Normalizing {source.id.title()} Data Files")

    report = SourceNormalizer(source, data_dir=args.data_dir).run()
    print(f"\n   ✅ {len(report.files)} files processed, {report.total} IDs rewritten")
    if report.skipped:
        print(f"   ⚠️  Missing: {', '.join(report.skipped)}")


def cmd_bearings(args) -> None:
    """Compute stop bearings from route geometry."""
    from src.data.api_client import TransitAPIClient
    from src.data.bearings import compute_bearings
    from src.data.sources import get_source
    from src.utils.files import write_json
    from src.config import BEARINGS_FILE

    source = get_source(args.source)
    print_header(f"Computing Stop Bearings ({source.id})")

    with TransitAPIClient(source) as client:
        bearings = compute_bearings(client)

    output = Path(args.output) if args.output else BEARINGS_FILE
    write_json(output, bearings)
    print(f"\n   ✅ Saved bearings for {len(bearings)} stops to {output}")


def cmd_update_bearings(args) -> None:
    """Write computed bearings into the override table's rotation column."""
    from src.data.merge import apply_bearings
    from src.data.override_table import OverrideTable

    print_header("Updating Rotations")

    table_path = Path(args.table)
    table = OverrideTable.load(table_path)
    bearings = _load_bearings(Path(args.bearings))

    updated_table, updated = apply_bearings(table, bearings)
    rows = updated_table.save(table_path)
    print(f"\n   ✅ {updated} rotations updated, {rows} rows written")


def cmd_merge(args) -> None:
    """Merge a fresh upstream stop list into the override table."""
    from src.data.merge import merge_stops
    from src.data.override_table import OverrideTable
    from src.data.sources import get_source
    from src.utils.files import read_json
    from src.config import DATA_DIR, DEFAULT_NAME_LOCALE

    source = get_source(args.source)
    print_header(f"Merging {source.id.title()} Stops")

    table_path = Path(args.table)
    stops_path = Path(args.stops) if args.stops else DATA_DIR / f"{source.id}_stops_{DEFAULT_NAME_LOCALE}.json"
    if not stops_path.exists():
        raise FileNotFoundError(f"Upstream stop list not found: {stops_path}")

    table = OverrideTable.load(table_path)
    upstream = read_json(stops_path)
    bearings = _load_bearings(Path(args.bearings))

    merged, report = merge_stops(table, upstream, source, bearings)
    print(f"\n   {report.summary()}")

    if args.dry_run:
        print("   ℹ️  Dry run, table not written")
        return

    rows = merged.save(table_path)
    print(f"   ✅ Wrote {rows} stops to {table_path}")


def _load_optional_table(path: Path):
    from src.data.override_table import OverrideTable

    if not path.exists():
        logger.info(f"{path.name} not found, starting a new table")
        return None
    return OverrideTable.load(path)


def cmd_populate(args) -> None:
    """Rebuild the override tables from the API, keeping curated overrides."""
    from src.data.api_client import TransitAPIClient
    from src.data.populate import (
        fetch_routes,
        fetch_stops,
        load_overrides_config,
        populate_routes,
        populate_stops,
    )
    from src.data.sources import SOURCES, get_source
    from src.config import ROUTES_CONFIG_FILES, STOPS_CONFIG_FILES

    print_header("Populating Override Tables")

    sources = [get_source(args.source)] if args.source else list(SOURCES)
    tables = [args.only] if args.only else ['routes', 'stops']
    fetched = {name: {} for name in tables}

    for source in sources:
        print(f"\n🔧 Fetching {source.id}...")
        with TransitAPIClient(source) as client:
            if 'routes' in fetched:
                fetched['routes'][source.id] = fetch_routes(client)
            if 'stops' in fetched:
                fetched['stops'][source.id] = fetch_stops(client)

    outputs = []
    if 'routes' in fetched:
        path = Path(args.routes_table)
        table, report = populate_routes(
            _load_optional_table(path), fetched['routes'], load_overrides_config(ROUTES_CONFIG_FILES)
        )
        outputs.append((path, table, report))
    if 'stops' in fetched:
        path = Path(args.stops_table)
        table, report = populate_stops(
            _load_optional_table(path),
            fetched['stops'],
            load_overrides_config(STOPS_CONFIG_FILES),
            _load_bearings(Path(args.bearings)),
        )
        outputs.append((path, table, report))

    for path, table, report in outputs:
        print(f"\n   {report.summary()}")
        if args.dry_run:
            print(f"   ℹ️  Dry run, {path.name} not written")
            continue
        rows = table.save(path)
        print(f"   ✅ Wrote {rows} rows to {path}")


def cmd_restore_id(args) -> None:
    """Show how IDs map between the API and internal namespaces."""
    from src.data.ids import to_api_id, to_internal_id
    from src.data.sources import get_source

    source = get_source(args.source)
    print_header(f"{source.id.title()} ID Mapping")

    for value in args.ids:
        print(f"  {value:<14} internal -> {to_internal_id(value, source):<14} api -> {to_api_id(value, source)}")


def cmd_generate(args) -> None:
    """Generate the stops preview map."""
    from src.data.override_table import OverrideTable
    from src.generators import StopsMapGenerator

    print_header("Stops Map Generator")

    generator = StopsMapGenerator(OverrideTable.load(args.table))
    output_path = generator.save(args.output)
    file_size = output_path.stat().st_size / (1024 * 1024)
    print(f"\n   ✅ Saved: {output_path.name} ({file_size:.2f} MB)")


def cmd_info(args) -> None:
    """Show override table information."""
    from collections import Counter

    from src.data.override_table import OverrideTable
    from src.data.sources import owner_of

    print_header("Override Table Info")

    table = OverrideTable.load(args.table)
    print(f"\n📁 Table: {args.table}")
    print(f"   Columns:   {', '.join(table.columns)}")
    print(f"   Overrides: {', '.join(table.override_columns) or '-'}")

    per_source = Counter(owner_of(row_id).id for row_id in table.ids())
    print("\n📊 Rows per source:")
    for source_id, count in sorted(per_source.items()):
        print(f"   {source_id:<10} {count:,}")
    print(f"   {'malformed':<10} {len(table.malformed_rows):,}")


def main(argv=None) -> int:
    from src.config import BEARINGS_FILE, OVERRIDES_FILE, ROUTES_OVERRIDES_FILE
    from src.data.override_table import ConfigurationError
    from src.data.sources import SOURCES

    source_ids = [s.id for s in SOURCES]

    parser = argparse.ArgumentParser(
        description='Transit Map Data Toolkit - prefetch, normalize and merge stop data',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Prefetch command
    prefetch_parser = subparsers.add_parser('prefetch', help='Snapshot API data into static JSON files')
    prefetch_parser.add_argument('--source', choices=source_ids, default='tbilisi', help='Source to fetch')
    prefetch_parser.add_argument('--all', action='store_true', help='Fetch every configured source')
    prefetch_parser.add_argument('--output-dir', help='Directory for the JSON files')
    prefetch_parser.set_defaults(func=cmd_prefetch)

    # Normalize command
    normalize_parser = subparsers.add_parser('normalize', help='Rewrite prefetched files into internal IDs')
    normalize_parser.add_argument('--source', choices=source_ids, default='rustavi')
    normalize_parser.add_argument('--data-dir', help='Directory holding the prefetched files')
    normalize_parser.set_defaults(func=cmd_normalize)

    # Bearings command
    bearings_parser = subparsers.add_parser('bearings', help='Compute stop bearings from route geometry')
    bearings_parser.add_argument('--source', choices=source_ids, default='tbilisi')
    bearings_parser.add_argument('--output', help=f'Output JSON (default: {BEARINGS_FILE.name})')
    bearings_parser.set_defaults(func=cmd_bearings)

    # Update-bearings command
    update_parser = subparsers.add_parser('update-bearings', help='Write bearings into the rotation column')
    update_parser.add_argument('--table', default=str(OVERRIDES_FILE))
    update_parser.add_argument('--bearings', default=str(BEARINGS_FILE))
    update_parser.set_defaults(func=cmd_update_bearings)

    # Merge command
    merge_parser = subparsers.add_parser('merge', help='Merge upstream stops into the override table')
    merge_parser.add_argument('--source', choices=source_ids, default='rustavi')
    merge_parser.add_argument('--table', default=str(OVERRIDES_FILE))
    merge_parser.add_argument('--stops', help='Upstream stop list JSON (default: <source>_stops_en.json)')
    merge_parser.add_argument('--bearings', default=str(BEARINGS_FILE))
    merge_parser.add_argument('--dry-run', action='store_true', help='Report without writing')
    merge_parser.set_defaults(func=cmd_merge)

    # Populate command
    populate_parser = subparsers.add_parser('populate', help='Rebuild override tables from the API, keeping overrides')
    populate_parser.add_argument('--source', choices=source_ids, help='Only this source (default: all)')
    populate_parser.add_argument('--only', choices=['routes', 'stops'], help='Rebuild a single table')
    populate_parser.add_argument('--routes-table', default=str(ROUTES_OVERRIDES_FILE))
    populate_parser.add_argument('--stops-table', default=str(OVERRIDES_FILE))
    populate_parser.add_argument('--bearings', default=str(BEARINGS_FILE))
    populate_parser.add_argument('--dry-run', action='store_true', help='Report without writing')
    populate_parser.set_defaults(func=cmd_populate)

    # Restore-id command
    restore_parser = subparsers.add_parser('restore-id', help='Show API/internal ID mapping')
    restore_parser.add_argument('ids', nargs='+')
    restore_parser.add_argument('--source', choices=source_ids, default='rustavi')
    restore_parser.set_defaults(func=cmd_restore_id)

    # Generate command
    gen_parser = subparsers.add_parser('generate', help='Generate the stops preview map')
    gen_parser.add_argument('--table', default=str(OVERRIDES_FILE))
    gen_parser.add_argument('--output', help='Output HTML path')
    gen_parser.set_defaults(func=cmd_generate)

    # Info command
    info_parser = subparsers.add_parser('info', help='Show override table information')
    info_parser.add_argument('--table', default=str(OVERRIDES_FILE))
    info_parser.set_defaults(func=cmd_info)

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        args.func(args)
    except (ConfigurationError, FileNotFoundError) as e:
        logger.error(f"❌ {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
