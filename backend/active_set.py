# backend/active_set.py
"""
地図上の列車マーカーの管理。

毎 tick、運行中の列車一覧と前回描画したマーカーを突き合わせて
「新規作成 / 位置更新 / 削除」を描画先（MarkerSurface）に指示する。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol

from timetable_models import Train
from train_state import Position, PositionStatus, resolve_all

logger = logging.getLogger(__name__)


# ============================================================================
# Data Models
# ============================================================================

@dataclass
class RenderedMarker:
    """描画済みマーカー1件（ActiveSetTracker だけが持つ）"""
    train_id: str
    last_position: Position
    last_status: PositionStatus


@dataclass(frozen=True)
class PositionReport:
    """描画先に渡す1列車分の位置情報"""
    train_id: str
    train_code: str
    lat: float
    lng: float
    status: PositionStatus
    detail: Optional[str]

    @classmethod
    def from_position(cls, train: Train, position: Position) -> "PositionReport":
        return cls(
            train_id=train.id,
            train_code=train.code,
            lat=position.lat,
            lng=position.lng,
            status=position.status,
            detail=position.detail,
        )


@dataclass
class TickResult:
    """1回の tick の差分"""
    time_ms: int
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    reports: List[PositionReport] = field(default_factory=list)


# ============================================================================
# 描画先
# ============================================================================

class MarkerSurface(Protocol):
    """マーカーの描画先（地図など）"""

    def create_marker(self, report: PositionReport) -> None: ...

    def update_marker(self, report: PositionReport) -> None: ...

    def remove_marker(self, train_id: str) -> None: ...


class SnapshotSurface:
    """
    メモリ上に最新のマーカー状態を保持するだけの描画先。
    HTTP API はここから現在の列車位置を返す。
    """

    def __init__(self) -> None:
        self.markers: Dict[str, PositionReport] = {}

    def create_marker(self, report: PositionReport) -> None:
        self.markers[report.train_id] = report

    def update_marker(self, report: PositionReport) -> None:
        self.markers[report.train_id] = report

    def remove_marker(self, train_id: str) -> None:
        self.markers.pop(train_id, None)

    def snapshot(self) -> List[PositionReport]:
        return sorted(self.markers.values(), key=lambda r: r.train_code)


# ============================================================================
# ActiveSetTracker
# ============================================================================

class ActiveSetTracker:
    """
    列車ID ごとに「なし → 運行中 → なし」の状態を管理する。

    tick() の後は、保持しているマーカーの ID 集合が
    その時刻の運行中列車の ID 集合と必ず一致する。
    """

    def __init__(self, surface: MarkerSurface) -> None:
        self.surface = surface
        self._markers: Dict[str, RenderedMarker] = {}

    @property
    def marker_ids(self) -> set[str]:
        return set(self._markers)

    def get_marker(self, train_id: str) -> RenderedMarker | None:
        return self._markers.get(train_id)

    def _collect_active(self, trains: Iterable[Train], t: int) -> Dict[str, tuple[Train, Position]]:
        active: Dict[str, tuple[Train, Position]] = {}

        # 同一IDの列車は最初のものだけ描画する
        for train, position in resolve_all(trains, t):
            active.setdefault(train.id, (train, position))

        return active

    def tick(self, trains: Iterable[Train], t: int) -> TickResult:
        result = TickResult(time_ms=t)
        active = self._collect_active(trains, t)

        # 1) 新規 / 更新
        for train_id, (train, position) in active.items():
            report = PositionReport.from_position(train, position)
            result.reports.append(report)

            marker = self._markers.get(train_id)
            if marker is None:
                self.surface.create_marker(report)
                self._markers[train_id] = RenderedMarker(
                    train_id=train_id,
                    last_position=position,
                    last_status=position.status,
                )
                result.created.append(train_id)
            else:
                self.surface.update_marker(report)
                marker.last_position = position
                marker.last_status = position.status
                result.updated.append(train_id)

        # 2) 運行を終えた列車のマーカーを削除
        for train_id in list(self._markers):
            if train_id not in active:
                self.surface.remove_marker(train_id)
                del self._markers[train_id]
                result.removed.append(train_id)

        if result.created or result.removed:
            logger.debug(
                "Tick t=%d: %d active (+%d / -%d)",
                t,
                len(self._markers),
                len(result.created),
                len(result.removed),
            )

        return result

    def clear(self) -> None:
        """全マーカーを描画先から削除する（エンジン停止時など）"""
        for train_id in list(self._markers):
            self.surface.remove_marker(train_id)
        self._markers.clear()
