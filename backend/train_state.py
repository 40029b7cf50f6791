# backend/train_state.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional, Tuple, Union

from timetable_models import DAY_MS, PathStop, Train
from time_source import format_ms

logger = logging.getLogger(__name__)

PositionStatus = Literal["stopped", "moving", "waiting", "inactive"]


# ============================================================================
# Dataclass 定義（位置の判定結果）
# ============================================================================

@dataclass(frozen=True)
class Stopped:
    """駅に停車中"""
    station_code: str
    lat: float
    lng: float

    status: PositionStatus = "stopped"

    @property
    def detail(self) -> str:
        return self.station_code


@dataclass(frozen=True)
class Moving:
    """駅間を走行中。ratio は 0.0〜1.0（from 駅発車からの進捗）"""
    from_station_code: str
    to_station_code: str
    ratio: float
    lat: float
    lng: float

    status: PositionStatus = "moving"

    @property
    def detail(self) -> str:
        return f"{self.from_station_code}-{self.to_station_code}"


@dataclass(frozen=True)
class Waiting:
    """始発駅で発車待ち"""
    station_code: str
    lat: float
    lng: float

    status: PositionStatus = "waiting"

    @property
    def detail(self) -> str:
        return self.station_code


@dataclass(frozen=True)
class Inactive:
    """運行していない（座標なし）"""

    status: PositionStatus = "inactive"

    @property
    def detail(self) -> None:
        return None


INACTIVE = Inactive()

Position = Union[Stopped, Moving, Waiting, Inactive]


# ============================================================================
# 時刻の正規化
# ============================================================================

def is_overnight(train: Train) -> bool:
    """
    日跨ぎ列車かどうか。

    終着駅の到着時刻が始発駅の発車時刻より数値的に小さい場合、
    0時を跨いで運行しているとみなす。
    """
    if len(train.paths) < 2:
        return False

    first_dep = train.paths[0].departure_ms
    last_arr = train.paths[-1].arrival_ms
    if first_dep is None or last_arr is None:
        return False
    return last_arr < first_dep


def _unroll_offsets(paths: List[PathStop]) -> List[Tuple[Optional[int], Optional[int]]]:
    """
    走行順に到着・発車時刻を並べ、時刻が前より小さくなったら
    日付を跨いだとみなして以降すべてに +1日 する。

    戻り値は paths と同じ長さの [(arrival, departure), ...]。
    時刻の無い項目は None のまま（日跨ぎ判定の起点にもならない）。
    """
    result: List[Tuple[Optional[int], Optional[int]]] = []

    day_offset = 0
    prev: int | None = None

    for stop in paths:
        unrolled: List[Optional[int]] = []
        for value in (stop.arrival_ms, stop.departure_ms):
            if value is None:
                unrolled.append(None)
                continue
            if prev is not None and value + day_offset < prev:
                day_offset += DAY_MS
            shifted = value + day_offset
            unrolled.append(shifted)
            prev = shifted
        result.append((unrolled[0], unrolled[1]))

    return result


# ============================================================================
# メイン関数
# ============================================================================

def _match_window(
    paths: List[PathStop],
    offsets: List[Tuple[Optional[int], Optional[int]]],
    tc: int,
) -> Optional[Position]:
    """
    1つの候補時刻 tc について、各区間 (curr, next) を先頭から走査する。

    - 停車: curr.arrival <= tc <= curr.departure（両端を含む）
    - 走行: curr.departure < tc < next.arrival（線形補間）
    - 座標が欠けている区間は「一致しない」として次へ進む。
    """
    for i in range(len(paths) - 1):
        curr = paths[i]
        nxt = paths[i + 1]
        curr_arr, curr_dep = offsets[i]
        next_arr, _ = offsets[i + 1]

        # 停車判定（到着=発車のゼロ秒停車もここで拾う）
        if curr_arr is not None and curr_dep is not None and curr_arr <= tc <= curr_dep:
            if curr.position is not None:
                lat, lng = curr.position
                return Stopped(curr.station_code, lat, lng)
            continue

        # 走行判定
        if curr_dep is None or next_arr is None:
            continue
        if not (curr_dep < tc < next_arr):
            continue
        if curr.position is None or nxt.position is None:
            continue

        ratio = (tc - curr_dep) / (next_arr - curr_dep)
        lat0, lng0 = curr.position
        lat1, lng1 = nxt.position
        return Moving(
            from_station_code=curr.station_code,
            to_station_code=nxt.station_code,
            ratio=ratio,
            lat=lat0 + (lat1 - lat0) * ratio,
            lng=lng0 + (lng1 - lng0) * ratio,
        )

    return None


def resolve_position(train: Train, t: int) -> Position:
    """
    指定時刻 t（0時からのミリ秒）における列車の位置と状態を返す。

    - 停車駅が2未満の列車は常に INACTIVE。
    - 候補時刻 [t, t + 1日, t - 1日] の順に評価し、最初に一致したものを返す。
      深夜0時を跨ぐ列車を前日夜・翌朝どちらから見ても正しく扱える。
    - どれにも一致しない場合、t が始発駅の発車前なら Waiting、それ以外は INACTIVE。

    不正データで例外は投げない（該当区間が一致しないだけ）。
    """
    paths = train.paths
    if paths is None or len(paths) < 2:
        return INACTIVE

    offsets = _unroll_offsets(paths)

    for tc in (t, t + DAY_MS, t - DAY_MS):
        state = _match_window(paths, offsets, tc)
        if state is not None:
            return state

    first = paths[0]
    if (
        first.departure_ms is not None
        and t < first.departure_ms
        and first.position is not None
    ):
        lat, lng = first.position
        return Waiting(first.station_code, lat, lng)

    return INACTIVE


def resolve_all(trains: Iterable[Train], t: int) -> List[Tuple[Train, Position]]:
    """
    全列車の状態をまとめて計算し、運行中（INACTIVE 以外）の列車だけを返す。

    1本の列車で例外が起きても他の列車の計算は止めない。
    """
    result: List[Tuple[Train, Position]] = []
    failed = 0

    for train in trains:
        try:
            state = resolve_position(train, t)
        except Exception as e:
            logger.warning(
                "Failed to resolve position for train %s at t=%d: %s",
                getattr(train, "id", "?"),
                t,
                e,
            )
            failed += 1
            continue

        if not isinstance(state, Inactive):
            result.append((train, state))

    if failed > 0:
        logger.info("Skipped %d trains due to errors", failed)

    return result


# ============================================================================
# デバッグ用関数
# ============================================================================

def debug_dump_trains_at(trains: List[Train], t: int, limit: int = 10) -> None:
    """
    指定時刻における列車状態をコンソールにダンプするデバッグ用関数。
    """
    states = resolve_all(trains, t)

    print("\n" + "=" * 60)
    print(f"時刻: {format_ms(t)} ({t} ms)")
    print(f"運行列車数: {len(states)} / {len(trains)}")
    print("=" * 60 + "\n")

    for i, (train, s) in enumerate(states[:limit], 1):
        if isinstance(s, Moving):
            print(
                f"{i:2d}. KA {train.code:>6s} "
                f"{s.from_station_code} → {s.to_station_code} "
                f"({s.ratio * 100:5.1f}%)"
            )
        elif isinstance(s, Stopped):
            print(f"{i:2d}. KA {train.code:>6s} [停車] {s.station_code}")
        elif isinstance(s, Waiting):
            print(f"{i:2d}. KA {train.code:>6s} [発車待ち] {s.station_code}")

    if len(states) > limit:
        print(f"\n... 他 {len(states) - limit} 本\n")
