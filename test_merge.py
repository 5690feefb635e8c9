"""Tests for src/data/merge.py — override table merge engine."""

import pytest

from src.data.merge import apply_bearings, format_value, merge_stops
from src.data.override_table import ConfigurationError, OverrideTable
from src.data.sources import get_source

COLUMNS = [
    'id', 'name_en', 'name_en_override', 'name_ka', 'name_ka_override', 'name_ru_override',
    'lat', 'lat_override', 'lon', 'lon_override', 'rotation', 'rotation_override',
    'mergeParent', 'hubTarget',
]
HEADER = ",".join(COLUMNS)


def row(stop_id, name="", lat="", lon="", rotation="", columns=COLUMNS, **extra):
    values = {c: "" for c in columns}
    values.update(id=stop_id, name_en=name, lat=lat, lon=lon, rotation=rotation, **extra)
    return ",".join(values[c] for c in columns)


def make_table(*lines, header=HEADER):
    return OverrideTable.from_text("\n".join([header, *lines]) + "\n")


def records_by_id(table):
    return {r['id']: r for r in table.records()}


@pytest.fixture
def rustavi():
    return get_source('rustavi')


@pytest.fixture
def tbilisi():
    return get_source('tbilisi')


# ---------------------------------------------------------------------------
# Legacy namespace reconciliation
# ---------------------------------------------------------------------------

class TestReconciliation:
    def test_rotation_carried_forward(self, rustavi):
        table = make_table(
            row("r123", name="Old name", lat="41.50", lon="45.00", rotation="45"),
            row("2:123", name="Fresh name", lat="41.51", lon="45.01"),
        )
        merged, report = merge_stops(table, [], rustavi)

        records = records_by_id(merged)
        assert list(records) == ["r123"]
        assert records["r123"]["rotation"] == "45"
        assert report.merged == 1

    def test_secondary_row_fields_win(self, rustavi):
        table = make_table(
            row("r123", name="Old name", lat="41.50", rotation="45"),
            row("2:123", name="Fresh name", lat="41.51"),
        )
        merged, _ = merge_stops(table, [], rustavi)
        record = records_by_id(merged)["r123"]
        assert record["name_en"] == "Fresh name"
        assert record["lat"] == "41.51"

    def test_survivor_rotation_kept_when_present(self, rustavi):
        table = make_table(
            row("r123", rotation="45"),
            row("2:123", rotation="90"),
        )
        merged, _ = merge_stops(table, [], rustavi)
        assert records_by_id(merged)["r123"]["rotation"] == "90"

    def test_only_rotation_is_copied(self, rustavi):
        table = make_table(
            row("r123", rotation="45", name_en_override="Manual"),
            row("2:123", name="Fresh"),
        )
        merged, _ = merge_stops(table, [], rustavi)
        assert records_by_id(merged)["r123"]["name_en_override"] == ""

    def test_canonical_only_row_kept(self, rustavi):
        line = row("r7", name="Seven", rotation="10")
        merged, report = merge_stops(make_table(line), [], rustavi)
        assert merged.lines == [line]
        assert report.kept == 1

    def test_legacy_only_row_renamed(self, rustavi):
        merged, _ = merge_stops(make_table(row("2:8", name="Eight")), [], rustavi)
        assert merged.lines == [row("r8", name="Eight")]

    def test_duplicate_rows_collapse(self, rustavi):
        table = make_table(row("r9", rotation="1"), row("r9", rotation="2"))
        merged, report = merge_stops(table, [], rustavi)
        assert merged.ids() == ["r9"]
        assert report.duplicates == 1


# ---------------------------------------------------------------------------
# Partitioning and ordering
# ---------------------------------------------------------------------------

class TestPartitionAndOrder:
    def test_other_rows_first_in_original_order(self, rustavi):
        table = make_table(
            row("811", name="Tbilisi A"),
            row("r2"),
            row("900", name="Tbilisi B"),
            row("2:1"),
        )
        merged, report = merge_stops(table, [], rustavi)
        assert merged.ids() == ["811", "900", "r1", "r2"]
        assert merged.lines[:2] == [row("811", name="Tbilisi A"), row("900", name="Tbilisi B")]
        assert report.passthrough == 2

    def test_numeric_sort(self, rustavi):
        table = make_table(row("r10"), row("r2"), row("rR826"), row("r1"))
        merged, _ = merge_stops(table, [], rustavi)
        assert merged.ids() == ["rR826", "r1", "r2", "r10"]

    def test_default_source_merge(self, tbilisi):
        table = make_table(row("r5"), row("1:812", name="Legacy"), row("811"))
        merged, _ = merge_stops(table, [], tbilisi)
        assert merged.ids() == ["r5", "811", "812"]
        assert records_by_id(merged)["812"]["name_en"] == "Legacy"

    def test_primary_namespace_rows_left_to_default_source(self, rustavi):
        table = make_table(row("1:5"), row("r6"))
        merged, _ = merge_stops(table, [], rustavi)
        assert merged.ids() == ["1:5", "r6"]


# ---------------------------------------------------------------------------
# New upstream stops
# ---------------------------------------------------------------------------

class TestNewStops:
    def test_append_with_bearing(self, rustavi):
        upstream = [{"id": "1:500", "name": "New Stop", "lat": 41.5, "lon": 45.0}]
        merged, report = merge_stops(make_table(), upstream, rustavi, bearings={"r500": 270})

        record = records_by_id(merged)["r500"]
        assert record["name_en"] == "New Stop"
        assert record["lat"] == "41.5"
        assert record["lon"] == "45"
        assert record["rotation"] == "270"
        assert all(record[c] == "" for c in COLUMNS if c.endswith("_override"))
        assert report.added == 1

    def test_rotation_defaults_to_zero(self, rustavi):
        merged, _ = merge_stops(make_table(), [{"id": "1:501"}], rustavi, bearings={})
        assert records_by_id(merged)["r501"]["rotation"] == "0"

    def test_missing_fields_become_empty(self, rustavi):
        merged, _ = merge_stops(make_table(), [{"id": "2:502"}], rustavi)
        record = records_by_id(merged)["r502"]
        assert record["name_en"] == ""
        assert record["lat"] == ""
        assert record["lon"] == ""

    def test_existing_stop_not_duplicated(self, rustavi):
        line = row("r500", name="Curated", rotation="15")
        merged, report = merge_stops(make_table(line), [{"id": "1:500", "name": "Upstream"}], rustavi)
        assert merged.lines == [line]
        assert report.added == 0

    def test_legacy_row_counts_as_existing(self, rustavi):
        table = make_table(row("2:500", name="Legacy"))
        merged, _ = merge_stops(table, [{"id": "1:500"}], rustavi)
        assert merged.ids() == ["r500"]

    def test_both_namespaces_upstream_add_once(self, rustavi):
        upstream = [{"id": "1:7", "name": "Seven"}, {"id": "2:7", "name": "Seven again"}]
        merged, _ = merge_stops(make_table(), upstream, rustavi)
        assert merged.ids() == ["r7"]
        assert records_by_id(merged)["r7"]["name_en"] == "Seven"

    def test_foreign_and_broken_records_skipped(self, rustavi):
        upstream = [{"id": "abc"}, {"name": "no id"}, "not a dict", {"id": "1:3"}]
        merged, report = merge_stops(make_table(), upstream, rustavi)
        assert merged.ids() == ["r3"]
        assert report.skipped_upstream == 3

    def test_name_with_comma_quoted(self, rustavi):
        merged, _ = merge_stops(make_table(), [{"id": "1:4", "name": "Station, North"}], rustavi)
        assert records_by_id(merged)["r4"]["name_en"] == "Station, North"


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------

class TestInvariants:
    def test_idempotent_through_disk(self, rustavi, tmp_path):
        path = tmp_path / "stops_overrides.csv"
        path.write_text("\n".join([
            HEADER,
            row("811", name="Tbilisi"),
            row("r123", rotation="45"),
            row("2:123", name="Fresh", lat="41.5"),
            row("r10"),
            "broken,row",
            '2:2,"Quoted ""name"", here"' + "," * 12,
        ]), encoding='utf-8')
        upstream = [{"id": "1:123"}, {"id": "1:999", "name": "Brand new", "lat": 41.1, "lon": 45.2}]
        bearings = {"r999": 180.0}

        first, _ = merge_stops(OverrideTable.load(path), upstream, rustavi, bearings)
        first.save(path)
        first_text = path.read_text(encoding='utf-8')

        second, report = merge_stops(OverrideTable.load(path), upstream, rustavi, bearings)
        second.save(path)

        assert path.read_text(encoding='utf-8') == first_text
        assert first_text.endswith("\n")
        assert report.added == 0
        assert report.merged == 0

    def test_ids_unique(self, rustavi):
        table = make_table(row("r1"), row("2:1"), row("2:2"), row("r3"), row("2:3"))
        upstream = [{"id": "1:1"}, {"id": "2:2"}, {"id": "1:4"}]
        merged, _ = merge_stops(table, upstream, rustavi)
        ids = merged.ids()
        assert len(ids) == len(set(ids)) == 4

    def test_input_table_unchanged(self, rustavi):
        table = make_table(row("2:1"), row("r1", rotation="5"))
        before = list(table.lines)
        merge_stops(table, [{"id": "1:2"}], rustavi)
        assert table.lines == before

    def test_column_positions_resolved_by_header(self, rustavi):
        columns = ['rotation', 'name_en', 'id', 'lat', 'lon']
        header = ",".join(columns)
        table = make_table(
            row("r1", rotation="33", columns=columns),
            row("2:1", name="Fresh", columns=columns),
            header=header,
        )
        merged, _ = merge_stops(table, [], rustavi)
        assert merged.lines == ["33,Fresh,r1,,"]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TestErrors:
    def test_missing_rotation_column(self, rustavi):
        table = make_table("r1,A", header="id,name_en")
        with pytest.raises(ConfigurationError):
            merge_stops(table, [], rustavi)

    def test_missing_id_column(self, rustavi):
        table = make_table("A,0", header="name_en,rotation")
        with pytest.raises(ConfigurationError):
            merge_stops(table, [], rustavi)

    def test_malformed_rows_pass_through(self, rustavi):
        table = make_table("r1,too,short", row("r2"), "2:3,also,short")
        merged, report = merge_stops(table, [], rustavi)
        assert merged.lines == ["r1,too,short", "2:3,also,short", row("r2")]
        assert report.malformed == 2

    def test_upstream_stop_on_malformed_line_not_added_again(self, rustavi):
        table = make_table("r1,too,short", header="id,name_en,lat,lon,rotation")
        merged, report = merge_stops(table, [{"id": "1:1", "name": "One"}], rustavi)
        assert merged.lines == ["r1,too,short"]
        assert report.added == 0

    def test_legacy_id_on_malformed_line_not_added_again(self, rustavi):
        table = make_table("2:5,short", row("r6"))
        merged, _ = merge_stops(table, [{"id": "1:5"}, {"id": "1:7"}], rustavi)
        assert merged.ids() == ["r6", "r7"]
        assert merged.lines[0] == "2:5,short"


# ---------------------------------------------------------------------------
# apply_bearings
# ---------------------------------------------------------------------------

class TestApplyBearings:
    def test_updates_matching_rows(self):
        table = make_table(row("811", rotation="0"), row("r5", rotation="10"), row("900", rotation="7"))
        updated_table, updated = apply_bearings(table, {"811": 90, "r5": 12.0, "nope": 1})
        records = records_by_id(updated_table)
        assert updated == 2
        assert records["811"]["rotation"] == "90"
        assert records["r5"]["rotation"] == "12"
        assert records["900"]["rotation"] == "7"

    def test_malformed_rows_untouched(self):
        table = make_table("811,short")
        updated_table, updated = apply_bearings(table, {"811": 90})
        assert updated == 0
        assert updated_table.lines == ["811,short"]


class TestFormatValue:
    @pytest.mark.parametrize("value, expected", [
        (None, ""),
        (0, "0"),
        (45.0, "45"),
        (41.7151, "41.7151"),
        ("two\nlines", "two lines"),
    ])
    def test_format(self, value, expected):
        assert format_value(value) == expected
