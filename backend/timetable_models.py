# backend/timetable_models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

# 1日分のミリ秒
DAY_MS = 86_400_000

LatLng = Tuple[float, float]


@dataclass(frozen=True)
class Station:
    """駅マスタの1件（stations.json の1行）"""

    # 例: "GMR"
    code: str
    # 例: "GAMBIR"
    name: str
    # (lat, lng)
    position: LatLng


@dataclass
class PathStop:
    """1駅分の到着・発車時刻情報（0時からのミリ秒）"""

    station_code: str
    # 0〜86_399_999。終着・始発駅では片方が無いことがある
    arrival_ms: Optional[int]
    departure_ms: Optional[int]
    # 読み込み時点では無いことがある。enrich_train_paths() で駅マスタから補完する
    position: Optional[LatLng] = None


@dataclass
class Train:
    """1本の列車の時刻表（GAPEKA の1行）"""

    # 例: "7"（tr_id）
    id: str
    # 例: "7"（tr_cd、画面表示用の列車番号）
    code: str
    # 例: "ARGO BROMO ANGGREK"
    name: str

    start_station_code: str
    end_station_code: str

    # 停車駅のリスト（走行順。時刻の数値順とは限らない）
    paths: List[PathStop] = field(default_factory=list)

    @property
    def first_stop(self) -> Optional[PathStop]:
        return self.paths[0] if self.paths else None

    @property
    def last_stop(self) -> Optional[PathStop]:
        return self.paths[-1] if self.paths else None
