"""
Override Table
==============
Row-oriented CSV store of stops plus manual `<field>_override` columns.

Columns are positional on disk but always resolved by header name here.
Rows whose field count does not match the header are kept as raw lines and
written back untouched.
"""

import csv
import io
import logging
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Union

import pandas as pd

from ..config import ID_COLUMN, OVERRIDE_SUFFIX
from ..utils.files import write_atomic

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """The table is structurally unusable (no header, missing mandatory column)."""


class TableRow(NamedTuple):
    """One data line. `values` is None when the line is malformed."""

    line_number: int
    line: str
    values: Optional[List[str]]


def parse_line(line: str) -> List[str]:
    return next(csv.reader([line]))


class OverrideTable:
    """
    In-memory override table.

    Usage:
        table = OverrideTable.load(OVERRIDES_FILE)
        table.require('id', 'rotation')
        for row in table.rows:
            ...
        table.save(OVERRIDES_FILE)
    """

    def __init__(self, header_line: str, lines: Sequence[str]):
        self.header_line = header_line
        self.columns: List[str] = parse_line(header_line) if header_line.strip() else []
        self.column_index: Dict[str, int] = {name: i for i, name in enumerate(self.columns)}
        self.lines: List[str] = list(lines)
        self._rows: Optional[List[TableRow]] = None

    # ========================================================================
    # CONSTRUCTION / PERSISTENCE
    # ========================================================================

    @classmethod
    def from_text(cls, text: str) -> 'OverrideTable':
        # Spreadsheet exports often start with a UTF-8 byte order mark
        if text.startswith('\ufeff'):
            text = text[1:]
        raw = [line.rstrip('\r') for line in text.split('\n')]
        if not raw or not raw[0].strip():
            raise ConfigurationError("Override table has no header row")
        lines = [line for line in raw[1:] if line.strip()]
        return cls(raw[0], lines)

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'OverrideTable':
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Override table not found: {path}")
        logger.info(f"Loading override table from {path}")
        table = cls.from_text(path.read_text(encoding='utf-8'))
        logger.info(f"  Loaded {len(table.lines):,} rows, {len(table.columns)} columns")
        return table

    def to_text(self) -> str:
        return '\n'.join([self.header_line] + self.lines) + '\n'

    @property
    def row_count(self) -> int:
        return len(self.lines)

    def save(self, path: Union[str, Path]) -> int:
        """Replace the file at path with this table. Returns the row count."""
        write_atomic(path, self.to_text())
        logger.info(f"Wrote {self.row_count:,} rows to {path}")
        return self.row_count

    def with_lines(self, lines: Iterable[str]) -> 'OverrideTable':
        """New table with the same header and the given data lines."""
        return OverrideTable(self.header_line, list(lines))

    # ========================================================================
    # COLUMNS
    # ========================================================================

    def require(self, *columns: str) -> None:
        """Raise ConfigurationError unless every column is in the header."""
        missing = [c for c in columns if c not in self.column_index]
        if missing:
            raise ConfigurationError(
                f"Override table is missing required column(s): {', '.join(missing)}"
            )

    def index_of(self, column: str) -> int:
        self.require(column)
        return self.column_index[column]

    @property
    def override_columns(self) -> List[str]:
        return [c for c in self.columns if c.endswith(OVERRIDE_SUFFIX)]

    # ========================================================================
    # ROWS
    # ========================================================================

    @property
    def rows(self) -> List[TableRow]:
        if self._rows is None:
            self._rows = [self._parse_row(n, line) for n, line in enumerate(self.lines, start=2)]
        return self._rows

    def _parse_row(self, line_number: int, line: str) -> TableRow:
        values = parse_line(line)
        if len(values) != len(self.columns):
            return TableRow(line_number, line, None)
        return TableRow(line_number, line, values)

    @property
    def malformed_rows(self) -> List[TableRow]:
        return [r for r in self.rows if r.values is None]

    def records(self) -> List[Dict[str, str]]:
        """Well-formed rows as column-name mappings."""
        return [dict(zip(self.columns, r.values)) for r in self.rows if r.values is not None]

    def ids(self) -> List[str]:
        idx = self.index_of(ID_COLUMN)
        return [r.values[idx] for r in self.rows if r.values is not None]

    # ========================================================================
    # DATAFRAME BRIDGE
    # ========================================================================

    def to_frame(self, values: Optional[Sequence[Sequence[str]]] = None) -> pd.DataFrame:
        """
        Build a string-typed DataFrame from row values.

        Args:
            values: Positional row values. Defaults to every well-formed row.
        """
        if values is None:
            values = [r.values for r in self.rows if r.values is not None]
        return pd.DataFrame(list(values), columns=self.columns, dtype=str)

    def format_lines(self, frame: pd.DataFrame) -> List[str]:
        """Serialize a DataFrame back to positional CSV lines in header order."""
        if frame.empty:
            return []
        buffer = io.StringIO()
        frame[self.columns].to_csv(buffer, index=False, header=False, lineterminator='\n')
        return buffer.getvalue().rstrip('\n').split('\n')


def effective_value(record: Dict[str, str], field: str) -> str:
    """The manual override for field when present and non-empty, else the fetched value."""
    override = (record.get(field + OVERRIDE_SUFFIX) or '').strip()
    if override:
        return override
    return record.get(field) or ''
