"""Tests for src/data/prefetch.py — static fallback snapshots."""

import json
from unittest.mock import MagicMock, patch

import pytest

from src.data.api_client import APIError
from src.data.prefetch import Prefetcher, collect_pattern_stop_ids, unique_pattern_suffixes
from src.data.sources import get_source


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("src.data.prefetch.time.sleep"):
        yield


@pytest.fixture
def client():
    c = MagicMock()
    c.source = get_source('rustavi')
    c.v2 = c.source.api_base
    c.stops.side_effect = lambda locale: [{"id": "1:1", "name": f"Stop [{locale}]"}]
    c.routes.side_effect = lambda locale: [{"id": "1:R1"}]
    c.route_details.side_effect = lambda route_id, locale: {
        "id": route_id,
        "patterns": [{"patternSuffix": "0:01"}, {"patternSuffix": "1:01"}, {"patternSuffix": "0:01"}],
    }
    c.stops_of_patterns.return_value = [{"stop": {"id": "1:1"}}, {"stop": {"id": "1:2"}}]
    c.schedule.return_value = {"weekdays": []}
    c.polylines.return_value = {"0:01": "encoded"}
    return c


class TestHelpers:
    def test_unique_pattern_suffixes(self):
        details = {"patterns": [{"patternSuffix": "0:01"}, {}, {"patternSuffix": "0:01"}, {"patternSuffix": "1:01"}]}
        assert unique_pattern_suffixes(details) == ["0:01", "1:01"]

    def test_unique_pattern_suffixes_without_patterns(self):
        assert unique_pattern_suffixes({}) == []

    def test_collect_from_flat_list(self):
        payload = [{"stop": {"id": "1:1"}}, {"stops": [{"id": "1:2"}, {"id": "1:1"}]}]
        assert collect_pattern_stop_ids(payload) == ["1:1", "1:2"]

    def test_collect_from_patterns_object(self):
        payload = {"patterns": [{"stops": [{"id": "1:3"}]}, {"stops": [{"id": "1:4"}]}]}
        assert collect_pattern_stop_ids(payload) == ["1:3", "1:4"]

    def test_collect_from_unknown_shape(self):
        assert collect_pattern_stop_ids(None) == []


class TestPrefetcher:
    def test_run_writes_every_file(self, client, tmp_path):
        written = Prefetcher(client, output_dir=tmp_path, locales=["en", "ka"]).run()

        assert set(written) == {
            "rustavi_stops_en.json", "rustavi_routes_en.json", "rustavi_routes_details_en.json",
            "rustavi_stops_ka.json", "rustavi_routes_ka.json", "rustavi_routes_details_ka.json",
            "rustavi_schedules.json", "rustavi_polylines.json",
        }
        stops_ka = json.loads((tmp_path / "rustavi_stops_ka.json").read_text(encoding='utf-8'))
        assert stops_ka == [{"id": "1:1", "name": "Stop [ka]"}]

    def test_schedules_keyed_by_safe_suffix(self, client, tmp_path):
        Prefetcher(client, output_dir=tmp_path, locales=["en", "ka"]).run()

        schedules = json.loads((tmp_path / "rustavi_schedules.json").read_text(encoding='utf-8'))
        polylines = json.loads((tmp_path / "rustavi_polylines.json").read_text(encoding='utf-8'))
        assert set(schedules) == {"1:R1_0_01", "1:R1_1_01"}
        assert set(polylines) == {"1:R1_0_01", "1:R1_1_01"}
        # Only fetched on the first locale
        assert client.schedule.call_count == 2

    def test_routes_get_stop_lists(self, client, tmp_path):
        prefetcher = Prefetcher(client, output_dir=tmp_path, locales=["en"])
        prefetcher.run()
        assert prefetcher.data["en"]["routes"][0]["stops"] == ["1:1", "1:2"]
        assert "_stopsOfPatterns" in prefetcher.data["en"]["details"]["1:R1"]

    def test_failed_route_does_not_stop_run(self, client, tmp_path):
        client.route_details.side_effect = APIError("HTTP 500", status=500)
        prefetcher = Prefetcher(client, output_dir=tmp_path, locales=["en"])
        written = prefetcher.run()

        assert prefetcher.data["en"]["details"] == {}
        assert json.loads(written["rustavi_schedules.json"].read_text(encoding='utf-8')) == {}

    def test_failed_list_leaves_empty_list(self, client, tmp_path):
        client.stops.side_effect = APIError("HTTP 503", status=503)
        Prefetcher(client, output_dir=tmp_path, locales=["en"]).run()
        assert json.loads((tmp_path / "rustavi_stops_en.json").read_text(encoding='utf-8')) == []

    def test_missing_schedule_skipped(self, client, tmp_path):
        client.schedule.side_effect = APIError("HTTP 404", status=404)
        prefetcher = Prefetcher(client, output_dir=tmp_path, locales=["en"])
        prefetcher.run()
        assert prefetcher.schedules == {}
        assert set(prefetcher.polylines) == {"1:R1_0_01", "1:R1_1_01"}
