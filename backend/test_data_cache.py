"""Tests for data_cache (loading and station-position enrichment)."""

import json

import httpx
import pytest

from data_cache import (
    DataCache,
    DataLoadError,
    _parse_gapeka,
    _parse_stations,
    enrich_train_paths,
)
from timetable_models import PathStop, Station, Train

STATIONS = {
    "data": [
        {"cd": "GMR", "nm": "GAMBIR", "pos": [-6.1767, 106.8306]},
        {"cd": "BD", "nm": "BANDUNG", "pos": [-6.9140, 107.6024]},
        {"cd": "TNG", "nm": "TANGERANG"},
        {"cd": "BAD", "nm": "BAD", "pos": [200, 0]},
        {"nm": "NO CODE", "pos": [0, 0]},
    ]
}

GAPEKA = {
    "data": [
        {
            "tr_id": 19,
            "tr_cd": "19",
            "tr_name": "ARGO PARAHYANGAN",
            "st_cd_start": "GMR",
            "st_cd_end": "BD",
            "paths": [
                {"st_cd": "GMR", "arriv_ms": None, "depart_ms": 18000000},
                {"st_cd": "XXX", "arriv_ms": 19000000, "depart_ms": 19100000},
                {"st_cd": "BD", "arriv_ms": 28800000, "depart_ms": None, "pos": [-6.0, 107.0]},
            ],
        },
        {"tr_cd": "no id"},
        {
            "tr_id": "20",
            "paths": [
                {"st_cd": "BD", "arriv_ms": None, "depart_ms": "36000000"},
                {"st_cd": "GMR", "arriv_ms": 90000000, "depart_ms": None},
                {"arriv_ms": 1},
            ],
        },
    ]
}

ROUTES = {"data": [{"name": "GMR-BD", "paths": [{"pos": [[-6.1, 106.8], [-6.9, 107.6]]}]}]}


def write_dataset(directory, stations=STATIONS, gapeka=GAPEKA, routes=ROUTES):
    for name, payload in (
        ("stations.json", stations),
        ("gapeka.json", gapeka),
        ("route-path.json", routes),
    ):
        if payload is not None:
            (directory / name).write_text(json.dumps(payload), encoding="utf-8")


def find_train(trains, train_id):
    return next(t for t in trains if t.id == train_id)


# =============================================================================
# Parsing
# =============================================================================


class TestParseStations:
    def test_skips_rows_without_code_or_position(self):
        stations = _parse_stations(STATIONS)

        assert sorted(stations) == ["BD", "GMR"]
        assert stations["GMR"] == Station("GMR", "GAMBIR", (-6.1767, 106.8306))

    def test_accepts_bare_list(self):
        stations = _parse_stations([{"cd": "GMR", "pos": [-6.1, 106.8]}])
        assert stations["GMR"].name == "GMR"

    def test_rejects_unexpected_shape(self):
        with pytest.raises(DataLoadError):
            _parse_stations({"stations": []})


class TestParseGapeka:
    def test_parses_trains_and_stops(self):
        trains = _parse_gapeka(GAPEKA)

        assert [t.id for t in trains] == ["19", "20"]
        first = trains[0]
        assert first.code == "19"
        assert first.name == "ARGO PARAHYANGAN"
        assert first.paths[0] == PathStop("GMR", None, 18000000, None)
        assert first.paths[2].position == (-6.0, 107.0)

    def test_defaults_and_invalid_offsets(self):
        second = _parse_gapeka(GAPEKA)[1]

        assert second.code == "20"
        assert second.start_station_code == "BD"
        assert second.end_station_code == "GMR"
        # stop without st_cd is dropped
        assert len(second.paths) == 2
        assert second.paths[0].departure_ms == 36000000
        # outside one day
        assert second.paths[1].arrival_ms is None

    def test_infinite_offsets_are_treated_as_missing(self):
        gapeka = {"data": [
            {"tr_id": "1", "paths": [
                {"st_cd": "GMR", "depart_ms": float("inf")},
                {"st_cd": "BD", "arriv_ms": "1e400"},
            ]},
            {"tr_id": "2", "paths": [
                {"st_cd": "BD", "depart_ms": float("nan")},
                {"st_cd": "GMR", "arriv_ms": 3600000},
            ]},
        ]}

        trains = _parse_gapeka(gapeka)

        assert [t.id for t in trains] == ["1", "2"]
        assert trains[0].paths[0].departure_ms is None
        assert trains[0].paths[1].arrival_ms is None
        assert trains[1].paths[0].departure_ms is None
        assert trains[1].paths[1].arrival_ms == 3600000

    def test_infinity_literal_in_file_does_not_stop_loading(self, tmp_path):
        gapeka = {"data": [
            {"tr_id": "1", "paths": [
                {"st_cd": "GMR", "depart_ms": float("inf")},
                {"st_cd": "BD", "arriv_ms": 28800000},
            ]},
            {"tr_id": "2", "paths": [
                {"st_cd": "BD", "depart_ms": 36000000},
                {"st_cd": "GMR", "arriv_ms": 50000000},
            ]},
        ]}
        write_dataset(tmp_path, gapeka=gapeka)
        assert "Infinity" in (tmp_path / "gapeka.json").read_text(encoding="utf-8")
        cache = DataCache(tmp_path)

        errors = cache.load_all()

        assert errors == []
        assert [t.id for t in cache.trains] == ["1", "2"]
        assert cache.trains[0].paths[0].departure_ms is None


# =============================================================================
# Enrichment
# =============================================================================


class TestEnrichTrainPaths:
    @pytest.fixture
    def stations(self):
        return _parse_stations(STATIONS)

    def test_fills_missing_positions(self, stations):
        trains = _parse_gapeka(GAPEKA)

        filled = enrich_train_paths(trains, stations)

        assert filled == 3
        assert trains[0].paths[0].position == stations["GMR"].position

    def test_keeps_existing_position(self, stations):
        trains = _parse_gapeka(GAPEKA)
        enrich_train_paths(trains, stations)
        assert trains[0].paths[2].position == (-6.0, 107.0)

    def test_unknown_station_is_left_without_position(self, stations):
        trains = _parse_gapeka(GAPEKA)
        enrich_train_paths(trains, stations)
        assert trains[0].paths[1].position is None

    def test_is_idempotent(self, stations):
        once = _parse_gapeka(GAPEKA)
        twice = _parse_gapeka(GAPEKA)

        enrich_train_paths(once, stations)
        enrich_train_paths(twice, stations)
        assert enrich_train_paths(twice, stations) == 0

        assert [[s.position for s in t.paths] for t in once] == [
            [s.position for s in t.paths] for t in twice
        ]

    def test_empty_inputs(self):
        train = Train("1", "1", "", "A", "B", [PathStop("A", None, 0)])
        assert enrich_train_paths([train], {}) == 0
        assert enrich_train_paths([], {}) == 0


# =============================================================================
# DataCache
# =============================================================================


class TestDataCacheLocal:
    def test_load_all(self, tmp_path):
        write_dataset(tmp_path)
        cache = DataCache(tmp_path)

        errors = cache.load_all()

        assert errors == []
        assert len(cache.stations) == 2
        assert len(cache.trains) == 2
        assert len(cache.routes) == 1
        assert find_train(cache.trains, "19").paths[0].position == cache.stations["GMR"].position

    def test_missing_file_continues_with_partial_data(self, tmp_path):
        write_dataset(tmp_path, gapeka=None)
        cache = DataCache(tmp_path)

        errors = cache.load_all()

        assert len(errors) == 1
        assert "gapeka.json" in errors[0]
        assert cache.trains == []
        assert len(cache.stations) == 2
        assert cache.load_errors == errors

    def test_invalid_json_is_reported(self, tmp_path):
        write_dataset(tmp_path)
        (tmp_path / "stations.json").write_text("{not json", encoding="utf-8")
        cache = DataCache(tmp_path)

        errors = cache.load_all()

        assert len(errors) == 1
        assert cache.stations == {}
        # trains still load, just without positions
        assert find_train(cache.trains, "19").paths[0].position is None

    def test_strict_raises(self, tmp_path):
        cache = DataCache(tmp_path)
        with pytest.raises(DataLoadError):
            cache.load_all(strict=True)

    def test_empty_directory_gives_empty_engine_data(self, tmp_path):
        cache = DataCache(tmp_path)
        errors = cache.load_all()

        assert len(errors) == 3
        assert cache.stations == {}
        assert cache.trains == []
        assert cache.routes == []


class TestDataCacheRemote:
    def make_client(self, payloads):
        def handler(request):
            name = request.url.path.rsplit("/", 1)[-1]
            if name not in payloads:
                return httpx.Response(404)
            return httpx.Response(200, json=payloads[name])

        return httpx.Client(transport=httpx.MockTransport(handler))

    def test_fetches_from_base_url(self, tmp_path):
        client = self.make_client({
            "stations.json": STATIONS,
            "gapeka.json": GAPEKA,
            "route-path.json": ROUTES,
        })
        cache = DataCache(tmp_path, base_url="https://example.test/data/", http_client=client)

        assert cache.load_all() == []
        assert len(cache.trains) == 2
        assert len(cache.stations) == 2

    def test_http_error_is_recorded(self, tmp_path):
        client = self.make_client({"stations.json": STATIONS, "route-path.json": ROUTES})
        cache = DataCache(tmp_path, base_url="https://example.test/data", http_client=client)

        errors = cache.load_all()

        assert len(errors) == 1
        assert "gapeka.json" in errors[0]
        assert cache.trains == []
