"""
Override Merge Engine
=====================
Reconciles a source's rows in the override table with a fresh upstream stop
list.

One pass over the source's rows:
  1. group rows by canonical internal ID, so a legacy "2:123" row and an
     "r123" row are recognised as the same stop;
  2. reconcile each group: the namespaced row survives (freshest name and
     coordinates) and inherits `rotation` from the canonical row when its own
     is empty;
  3. append upstream stops the table has never seen;
  4. sort by numeric ID suffix.

Rows of other sources and malformed lines are passed through in their
original order ahead of the source's rows. Running the merge on its own
output changes nothing.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import pandas as pd

from ..config import DEFAULT_NAME_LOCALE, ID_COLUMN, ROTATION_COLUMN
from .ids import numeric_suffix, to_internal_id
from .override_table import OverrideTable, parse_line
from .sources import SOURCES, Source, owner_of

logger = logging.getLogger(__name__)

# Columns copied forward from the canonical row onto the surviving row
CARRY_FORWARD_COLUMNS = (ROTATION_COLUMN,)


@dataclass
class MergeReport:
    """Counters from one merge run."""

    source_id: str
    merged: int = 0
    kept: int = 0
    added: int = 0
    duplicates: int = 0
    skipped_upstream: int = 0
    malformed: int = 0
    passthrough: int = 0
    total_rows: int = 0

    def summary(self) -> str:
        return (
            f"[{self.source_id}] merged {self.merged}, kept {self.kept}, added {self.added}, "
            f"passthrough {self.passthrough} (malformed {self.malformed}), total {self.total_rows}"
        )


def format_value(value) -> str:
    """Render an upstream value as a CSV cell ('' for missing, 45.0 -> '45')."""
    if value is None or isinstance(value, bool):
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return ' '.join(str(value).splitlines())


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, float) and pd.isna(value)) or not str(value).strip()


def _belongs_to(row_id: str, source: Source, sources: Sequence[Source]) -> bool:
    owner = owner_of(row_id, sources)
    return owner is not None and owner.id == source.id


# ============================================================================
# GROUPING / RECONCILIATION
# ============================================================================

def reconcile_rows(frame: pd.DataFrame, source: Source, report: Optional[MergeReport] = None) -> pd.DataFrame:
    """
    Collapse rows that refer to the same stop under different namespaces.

    Args:
        frame: The source's rows, string-typed, one column per header field.
        source: Source whose ID rules define the identity key.
        report: Optional counters to update.

    Returns:
        DataFrame with one row per canonical internal ID, IDs canonicalised.
    """
    if frame.empty:
        return frame.copy()

    work = frame.copy()
    work['_identity'] = work[ID_COLUMN].map(lambda v: to_internal_id(v, source))
    work['_legacy'] = work[ID_COLUMN] != work['_identity']

    survivors = []
    for identity, group in work.groupby('_identity', sort=False):
        legacy = group[group['_legacy']]
        canonical = group[~group['_legacy']]

        if len(legacy) > 1 or len(canonical) > 1:
            logger.warning(f"Duplicate rows for {identity}: {', '.join(group[ID_COLUMN])}; keeping the last")
            if report:
                report.duplicates += len(group) - (1 if legacy.empty or canonical.empty else 2)

        if not legacy.empty:
            survivor = legacy.iloc[-1].copy()
            if not canonical.empty:
                donor = canonical.iloc[-1]
                for column in CARRY_FORWARD_COLUMNS:
                    if _is_blank(survivor[column]):
                        survivor[column] = donor[column]
                if report:
                    report.merged += 1
            elif report:
                report.kept += 1
        else:
            survivor = canonical.iloc[-1].copy()
            if report:
                report.kept += 1

        survivor[ID_COLUMN] = identity
        survivors.append(survivor.to_dict())

    return pd.DataFrame(survivors, columns=frame.columns, dtype=str)


# ============================================================================
# NEW UPSTREAM STOPS
# ============================================================================

def _name_column(columns: Sequence[str], locale: str) -> Optional[str]:
    for candidate in (f"name_{locale}", 'name'):
        if candidate in columns:
            return candidate
    return None


def build_new_row(
    columns: Sequence[str],
    internal_id: str,
    record: Mapping,
    rotation,
    name_locale: str = DEFAULT_NAME_LOCALE,
) -> Dict[str, str]:
    """A fresh table row for an upstream stop; every override column is empty."""
    row = {column: '' for column in columns}
    row[ID_COLUMN] = internal_id

    name_column = _name_column(columns, name_locale)
    if name_column:
        row[name_column] = format_value(record.get('name'))
    for field in ('lat', 'lon'):
        if field in row:
            row[field] = format_value(record.get(field))

    row[ROTATION_COLUMN] = format_value(rotation)
    return row


def append_new_stops(
    frame: pd.DataFrame,
    upstream_records: Iterable[Mapping],
    source: Source,
    bearings: Optional[Mapping[str, float]] = None,
    sources: Sequence[Source] = SOURCES,
    name_locale: str = DEFAULT_NAME_LOCALE,
    report: Optional[MergeReport] = None,
    existing_ids: Iterable[str] = (),
) -> pd.DataFrame:
    """
    Append upstream stops whose internal ID is not in frame yet.

    existing_ids holds IDs already present elsewhere in the table (e.g. on
    malformed lines) that must not be added again.
    """
    bearings = bearings or {}
    seen = set(existing_ids)
    if not frame.empty:
        seen.update(frame[ID_COLUMN])
    new_rows = []

    for record in upstream_records:
        if not isinstance(record, Mapping):
            logger.warning(f"Skipping upstream record that is not an object: {record!r}")
            if report:
                report.skipped_upstream += 1
            continue

        internal_id = to_internal_id(record.get('id'), source)
        if not internal_id or not isinstance(internal_id, str):
            logger.warning(f"Skipping upstream record without an id: {dict(record)!r}")
            if report:
                report.skipped_upstream += 1
            continue
        if not _belongs_to(internal_id, source, sources):
            logger.warning(f"Skipping upstream stop {record.get('id')!r}: not in the {source.id} namespace")
            if report:
                report.skipped_upstream += 1
            continue
        if internal_id in seen:
            continue

        seen.add(internal_id)
        rotation = bearings.get(internal_id) or 0
        new_rows.append(build_new_row(frame.columns, internal_id, record, rotation, name_locale))

    if report:
        report.added += len(new_rows)
    if not new_rows:
        return frame

    added = pd.DataFrame(new_rows, columns=frame.columns, dtype=str)
    if frame.empty:
        return added
    return pd.concat([frame, added], ignore_index=True)


def sort_rows(frame: pd.DataFrame, source: Source) -> pd.DataFrame:
    """Ascending by numeric ID suffix; non-numeric suffixes count as 0."""
    if frame.empty:
        return frame
    work = frame.copy()
    work['_suffix'] = work[ID_COLUMN].map(lambda v: numeric_suffix(v, source))
    work = work.sort_values(['_suffix', ID_COLUMN], kind='mergesort')
    return work.drop(columns='_suffix').reset_index(drop=True)


# ============================================================================
# ENTRY POINTS
# ============================================================================

def merge_stops(
    table: OverrideTable,
    upstream_records: Iterable[Mapping],
    source: Source,
    bearings: Optional[Mapping[str, float]] = None,
    sources: Sequence[Source] = SOURCES,
    name_locale: str = DEFAULT_NAME_LOCALE,
) -> Tuple[OverrideTable, MergeReport]:
    """
    Merge an upstream stop list into the override table for one source.

    Args:
        table: Existing override table.
        upstream_records: Upstream stops `{id, name?, lat?, lon?}` in API IDs.
        source: Source the upstream stops come from.
        bearings: Internal ID -> degrees, used for new rows only.
        sources: All configured sources, used to decide row ownership.
        name_locale: Locale whose name column receives upstream names.

    Returns:
        (new table, report). The input table is not modified.

    Raises:
        ConfigurationError: if the header lacks `id` or `rotation`.
    """
    table.require(ID_COLUMN, ROTATION_COLUMN)
    id_index = table.column_index[ID_COLUMN]
    report = MergeReport(source_id=source.id)

    passthrough: List[str] = []
    source_values: List[List[str]] = []
    malformed_ids: Set[str] = set()

    for row in table.rows:
        if row.values is None:
            logger.warning(
                f"Line {row.line_number}: expected {len(table.columns)} fields, passing through unchanged"
            )
            report.malformed += 1
            passthrough.append(row.line)
            fields = parse_line(row.line)
            stray_id = fields[id_index].strip() if id_index < len(fields) else ''
            if stray_id:
                malformed_ids.update((stray_id, to_internal_id(stray_id, source)))
        elif _belongs_to(row.values[id_index], source, sources):
            source_values.append(row.values)
        else:
            passthrough.append(row.line)

    report.passthrough = len(passthrough)
    logger.info(f"Found {len(source_values)} {source.id} rows, {len(passthrough)} other rows")

    frame = reconcile_rows(table.to_frame(source_values), source, report)
    frame = append_new_stops(
        frame, upstream_records, source, bearings, sources, name_locale, report, existing_ids=malformed_ids
    )
    frame = sort_rows(frame, source)

    merged = table.with_lines(passthrough + table.format_lines(frame))
    report.total_rows = merged.row_count
    logger.info(report.summary())
    return merged, report


def apply_bearings(table: OverrideTable, bearings: Mapping[str, float]) -> Tuple[OverrideTable, int]:
    """
    Overwrite `rotation` for every row whose ID has a computed bearing.

    Rows without a bearing and malformed lines are written back verbatim.

    Returns:
        (new table, number of rows updated)
    """
    table.require(ID_COLUMN, ROTATION_COLUMN)
    id_index = table.column_index[ID_COLUMN]
    rotation_index = table.column_index[ROTATION_COLUMN]

    lines = []
    updated = 0
    for row in table.rows:
        if row.values is None or row.values[id_index] not in bearings:
            lines.append(row.line)
            continue
        values = list(row.values)
        values[rotation_index] = format_value(bearings[row.values[id_index]])
        lines.extend(table.format_lines(table.to_frame([values])))
        updated += 1

    logger.info(f"Updated rotation for {updated} existing stops")
    return table.with_lines(lines), updated
