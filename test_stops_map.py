"""Tests for src/generators/stops_map.py — override table preview map."""

from src.data.override_table import OverrideTable
from src.generators.stops_map import StopsMapGenerator, stop_marker_data

HEADER = "id,name_en,name_en_override,lat,lat_override,lon,rotation,mergeParent"


def make_table(*lines):
    return OverrideTable.from_text("\n".join([HEADER, *lines]) + "\n")


class TestStopMarkerData:
    def test_overrides_win(self):
        record = {
            "id": "r5", "name_en": "Fetched", "name_en_override": "Manual",
            "lat": "41.5", "lat_override": "41.6", "lon": "45.0", "rotation": "90", "mergeParent": "",
        }
        marker = stop_marker_data(record)
        assert marker["name"] == "Manual"
        assert marker["lat"] == 41.6
        assert marker["lon"] == 45.0
        assert marker["rotation"] == 90.0

    def test_name_falls_back_to_id(self):
        marker = stop_marker_data({"id": "811", "lat": "41.7", "lon": "44.8", "rotation": ""})
        assert marker["name"] == "811"
        assert marker["rotation"] is None

    def test_no_coordinates(self):
        assert stop_marker_data({"id": "811", "lat": "", "lon": "44.8"}) is None
        assert stop_marker_data({"id": "811", "lat": "n/a", "lon": "44.8"}) is None


class TestStopsMapGenerator:
    def test_generate_contains_stops(self):
        table = make_table(
            "811,Freedom Square,,41.6938,,44.8015,45,",
            "r12,Rustavi Bus Station,,41.5491,,44.9935,,811",
            "900,No Position,,,,,0,",
        )
        generator = StopsMapGenerator(table)
        html = generator.generate()

        assert "Freedom Square" in html
        assert "Rustavi Bus Station" in html
        assert "Merges into: 811" in html
        assert "No Position" not in html
        assert generator.skipped == 1

    def test_layers_per_source(self):
        table = make_table("811,A,,41.7,,44.8,0,", "r1,B,,41.5,,45.0,0,", "2:2,C,,41.5,,45.1,0,")
        layers = StopsMapGenerator(table)._build_layers()
        assert [s["id"] for s in layers["tbilisi"]] == ["811"]
        assert [s["id"] for s in layers["rustavi"]] == ["r1", "2:2"]

    def test_save_writes_html(self, tmp_path):
        table = make_table("811,A,,41.7,,44.8,0,")
        path = StopsMapGenerator(table).save(tmp_path / "map.html")
        assert path.exists()
        assert "<html>" in path.read_text(encoding='utf-8').lower()
