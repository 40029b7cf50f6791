"""Tests for station_schedule."""

from station_schedule import effective_arrival, schedules_at, train_schedule
from timetable_models import DAY_MS, PathStop, Station, Train


def make_train(train_id, stops, name=None):
    paths = [PathStop(code, arr, dep) for code, arr, dep in stops]
    return Train(
        id=train_id,
        code=f"KA{train_id}",
        name=name or f"TRAIN {train_id}",
        start_station_code=paths[0].station_code,
        end_station_code=paths[-1].station_code,
        paths=paths,
    )


class TestEffectiveArrival:
    def test_before_noon_is_next_day(self):
        assert effective_arrival(600_000) == 600_000 + DAY_MS
        assert effective_arrival(43_199_999) == 43_199_999 + DAY_MS

    def test_noon_and_later_unchanged(self):
        assert effective_arrival(43_200_000) == 43_200_000
        assert effective_arrival(85_800_000) == 85_800_000


class TestSchedulesAt:
    def test_late_evening_sorts_before_early_morning(self):
        trains = [
            make_train("1", [("A", None, 0), ("S", 600_000, 660_000), ("B", 1_200_000, None)]),
            make_train("2", [("A", None, 80_000_000), ("S", 85_800_000, 85_900_000), ("B", 86_000_000, None)]),
        ]

        records = schedules_at(trains, "S")

        assert [r.arrival for r in records] == [85_800_000, 600_000]
        assert [r.train_id for r in records] == ["2", "1"]

    def test_displayed_values_are_untouched(self):
        trains = [make_train("1", [("A", None, 0), ("S", 600_000, 660_000)])]

        record = schedules_at(trains, "S")[0]

        assert record.arrival == 600_000
        assert record.departure == 660_000

    def test_record_fields(self):
        trains = [make_train("7", [("GMR", None, 30_000_000), ("CN", 39_900_000, 40_200_000), ("SBI", 60_000_000, None)], name="ARGO BROMO ANGGREK")]

        record = schedules_at(trains, "CN")[0]

        assert record.train_code == "KA7"
        assert record.train_name == "ARGO BROMO ANGGREK"
        assert record.from_terminus == "GMR"
        assert record.to_terminus == "SBI"

    def test_missing_offset_substituted_with_other(self):
        trains = [
            make_train("1", [("S", None, 50_000_000), ("B", 55_000_000, None)]),
            make_train("2", [("A", None, 50_000_000), ("S", 60_000_000, None)]),
        ]

        records = schedules_at(trains, "S")

        assert (records[0].arrival, records[0].departure) == (50_000_000, 50_000_000)
        assert (records[1].arrival, records[1].departure) == (60_000_000, 60_000_000)

    def test_both_offsets_missing_is_skipped(self):
        trains = [make_train("1", [("A", None, 50_000_000), ("S", None, None), ("B", 55_000_000, None)])]
        assert schedules_at(trains, "S") == []

    def test_ties_keep_timetable_order(self):
        trains = [
            make_train(str(i), [("A", None, 50_000_000), ("S", 60_000_000, 60_000_000)])
            for i in range(3)
        ]
        assert [r.train_id for r in schedules_at(trains, "S")] == ["0", "1", "2"]

    def test_train_visiting_station_twice(self):
        trains = [make_train("1", [("S", None, 50_000_000), ("A", 51_000_000, 51_100_000), ("S", 52_000_000, None)])]
        assert len(schedules_at(trains, "S")) == 2

    def test_unknown_station(self):
        trains = [make_train("1", [("A", None, 0), ("B", 1, None)])]
        assert schedules_at(trains, "NOPE") == []


class TestTrainSchedule:
    def test_uses_station_names_when_known(self):
        train = make_train("1", [("GMR", None, 30_000_000), ("XXX", 31_000_000, 31_100_000)])
        stations = {"GMR": Station("GMR", "GAMBIR", (-6.17, 106.83))}

        stops = train_schedule(train, stations)

        assert [s.station_name for s in stops] == ["GAMBIR", "XXX"]
        assert stops[0].arrival is None
        assert stops[0].departure == 30_000_000
