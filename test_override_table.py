"""Tests for src/data/override_table.py — CSV parsing, column lookup, atomic save."""

import os
from unittest.mock import patch

import pytest

from src.data.override_table import ConfigurationError, OverrideTable, effective_value

HEADER = "id,name_en,name_en_override,lat,lon,rotation,rotation_override"


def make_table(*lines, header=HEADER):
    return OverrideTable.from_text("\n".join([header, *lines]) + "\n")


class TestParsing:
    def test_columns_resolved_by_name(self):
        table = make_table("1,A,,41.7,44.8,90,")
        assert table.column_index['rotation'] == 5
        assert table.records()[0]['rotation'] == '90'

    def test_blank_lines_dropped(self):
        table = make_table("1,A,,41.7,44.8,90,", "", "   ", "2,B,,41.7,44.8,0,")
        assert table.row_count == 2

    def test_crlf_line_endings(self):
        table = OverrideTable.from_text(HEADER + "\r\n1,A,,1,2,3,\r\n")
        assert table.records()[0]['rotation_override'] == ''
        assert table.lines == ["1,A,,1,2,3,"]

    def test_quoted_field_with_comma(self):
        table = make_table('1,"Rustaveli, Ave",,1,2,3,')
        assert table.records()[0]['name_en'] == 'Rustaveli, Ave'
        assert table.malformed_rows == []

    def test_short_row_is_malformed(self):
        table = make_table("1,A,,1,2", "2,B,,1,2,3,")
        assert [r.line for r in table.malformed_rows] == ["1,A,,1,2"]
        assert table.malformed_rows[0].line_number == 2
        assert table.ids() == ['2']

    def test_byte_order_mark_stripped(self):
        table = OverrideTable.from_text("\ufeff" + HEADER + "\n1,A,,1,2,3,\n")
        assert table.columns[0] == 'id'
        table.require('id', 'rotation')
        assert table.ids() == ['1']
        assert not table.to_text().startswith("\ufeff")

    def test_empty_text_rejected(self):
        with pytest.raises(ConfigurationError):
            OverrideTable.from_text("")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            OverrideTable.load(tmp_path / "nope.csv")


class TestColumns:
    def test_require_passes(self):
        make_table().require('id', 'rotation')

    def test_require_reports_missing(self):
        table = make_table(header="id,name_en")
        with pytest.raises(ConfigurationError, match="rotation"):
            table.require('id', 'rotation')

    def test_override_columns(self):
        assert make_table().override_columns == ['name_en_override', 'rotation_override']


class TestFrameBridge:
    def test_round_trip_preserves_text(self):
        table = make_table('1,"Rustaveli, Ave",,41.7,44.8,90,', "2,B,,41.7,44.8,,")
        assert table.format_lines(table.to_frame()) == table.lines

    def test_empty_frame(self):
        table = make_table()
        assert table.format_lines(table.to_frame([])) == []


class TestSave:
    def test_trailing_newline_and_count(self, tmp_path):
        path = tmp_path / "stops.csv"
        table = make_table("1,A,,1,2,3,", "2,B,,1,2,3,")
        assert table.save(path) == 2
        assert path.read_text(encoding='utf-8') == f"{HEADER}\n1,A,,1,2,3,\n2,B,,1,2,3,\n"

    def test_load_save_round_trip(self, tmp_path):
        path = tmp_path / "stops.csv"
        text = f"{HEADER}\n1,A,,1,2,3,\nbroken,row\n"
        path.write_text(text, encoding='utf-8')
        OverrideTable.load(path).save(path)
        assert path.read_text(encoding='utf-8') == text

    def test_failed_write_keeps_old_file(self, tmp_path):
        path = tmp_path / "stops.csv"
        path.write_text("old contents\n", encoding='utf-8')

        with patch("src.utils.files.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                make_table("1,A,,1,2,3,").save(path)

        assert path.read_text(encoding='utf-8') == "old contents\n"
        assert os.listdir(tmp_path) == ["stops.csv"]


class TestEffectiveValue:
    def test_override_wins(self):
        assert effective_value({'lat': '1', 'lat_override': '2'}, 'lat') == '2'

    def test_blank_override_ignored(self):
        assert effective_value({'lat': '1', 'lat_override': '  '}, 'lat') == '1'

    def test_missing_columns(self):
        assert effective_value({}, 'lat') == ''
