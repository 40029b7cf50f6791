# backend/station_schedule.py
"""
駅ごとの発着時刻表・列車ごとの停車駅一覧を組み立てる。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional

from timetable_models import DAY_MS, Station, Train

# これより前（正午前）の到着は「翌日の運行」として並べ替える
NOON_MS = 43_200_000


@dataclass(frozen=True)
class ScheduleRecord:
    """駅時刻表の1行"""
    train_id: str
    train_code: str
    train_name: str
    arrival: int
    departure: int
    from_terminus: str
    to_terminus: str


@dataclass(frozen=True)
class TrainStopRecord:
    """列車時刻表の1行"""
    station_code: str
    station_name: str
    arrival: Optional[int]
    departure: Optional[int]


def effective_arrival(arrival: int) -> int:
    """
    並べ替え用の到着時刻。

    正午前の到着は +1日 して扱い、夕方〜翌朝を1つの連続した運行日として並べる。
    表示用の値は変えない。
    """
    if arrival < NOON_MS:
        return arrival + DAY_MS
    return arrival


def schedules_at(trains: Iterable[Train], station_code: str) -> List[ScheduleRecord]:
    """
    指定駅に停車する全列車の発着時刻を、運行日順に並べて返す。

    - 到着・発車の片方しか無い場合は、もう片方の値で補う（始発・終着駅）。
    - 両方無い停車はスキップする。
    """
    records: List[ScheduleRecord] = []

    for train in trains:
        for stop in train.paths:
            if stop.station_code != station_code:
                continue

            arrival = stop.arrival_ms
            departure = stop.departure_ms
            if arrival is None and departure is None:
                continue
            if arrival is None:
                arrival = departure
            if departure is None:
                departure = arrival

            records.append(
                ScheduleRecord(
                    train_id=train.id,
                    train_code=train.code,
                    train_name=train.name,
                    arrival=arrival,
                    departure=departure,
                    from_terminus=train.start_station_code,
                    to_terminus=train.end_station_code,
                )
            )

    # sort は安定なので、同時刻の列車は元の順序のまま
    records.sort(key=lambda r: effective_arrival(r.arrival))
    return records


def train_schedule(train: Train, stations: Mapping[str, Station]) -> List[TrainStopRecord]:
    """列車の停車駅一覧（駅名付き）。駅マスタに無い駅はコードをそのまま表示する"""
    result: List[TrainStopRecord] = []
    for stop in train.paths:
        station = stations.get(stop.station_code)
        result.append(
            TrainStopRecord(
                station_code=stop.station_code,
                station_name=station.name if station else stop.station_code,
                arrival=stop.arrival_ms,
                departure=stop.departure_ms,
            )
        )
    return result
