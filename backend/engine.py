# backend/engine.py
"""
シミュレーションエンジン

時刻表・駅マスタ・時刻・マーカーの状態をインスタンスに持ち、
1秒ごとの tick で列車マーカーを更新する。
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from active_set import ActiveSetTracker, MarkerSurface, SnapshotSurface, TickResult
from station_schedule import ScheduleRecord, TrainStopRecord, schedules_at, train_schedule
from time_source import TimeSource
from timetable_models import Station, Train

logger = logging.getLogger(__name__)


class TickHandle:
    """
    定期 tick のハンドル。start() で開始、stop() で確実に停止する。
    """

    def __init__(self, engine: "SimulationEngine", interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"Tick interval must be positive, got {interval}")
        self.engine = engine
        self.interval = interval
        self._task: asyncio.Task | None = None
        self._stopped = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("Tick loop started (interval=%.2fs)", self.interval)

    async def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                self.engine.tick()
            except Exception:
                # 1回の tick の失敗でループは止めない
                logger.exception("Tick failed")
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopped.set()
        try:
            await self._task
        finally:
            self._task = None
        logger.info("Tick loop stopped")


class SimulationEngine:
    def __init__(
        self,
        trains: List[Train],
        stations: Dict[str, Station],
        time_source: TimeSource | None = None,
        surface: MarkerSurface | None = None,
    ) -> None:
        self.trains = trains
        self.stations = stations
        self.time_source = time_source or TimeSource()
        self.surface = surface if surface is not None else SnapshotSurface()
        self.tracker = ActiveSetTracker(self.surface)

        self._trains_by_id: Dict[str, Train] = {}
        for train in trains:
            # 同一IDが重複する場合は最初のものを使用
            if train.id in self._trains_by_id:
                logger.warning("Duplicate train id %s in GAPEKA, keeping the first", train.id)
                continue
            self._trains_by_id[train.id] = train

        self.last_tick: Optional[TickResult] = None

    def tick(self) -> TickResult:
        # 時刻は tick ごとに1回だけ読む
        now = self.time_source.now()
        self.last_tick = self.tracker.tick(self.trains, now)
        return self.last_tick

    def start(self, interval: float = 1.0) -> TickHandle:
        """実行中のイベントループ上で tick を開始し、そのハンドルを返す"""
        handle = TickHandle(self, interval)
        handle.start()
        return handle

    # ------------------------------------------------------------------
    # 時刻操作（変更後すぐに再描画する）
    # ------------------------------------------------------------------

    def set_override(self, ms: int) -> TickResult:
        self.time_source.set_override(ms)
        return self.tick()

    def set_override_hhmm(self, time_str: str) -> TickResult:
        self.time_source.set_override_hhmm(time_str)
        return self.tick()

    def clear_override(self) -> TickResult:
        self.time_source.clear_override()
        return self.tick()

    # ------------------------------------------------------------------
    # 時刻表
    # ------------------------------------------------------------------

    def get_train(self, train_id: str) -> Train | None:
        return self._trains_by_id.get(train_id)

    def schedules_at(self, station_code: str) -> List[ScheduleRecord]:
        return schedules_at(self.trains, station_code)

    def train_schedule(self, train_id: str) -> List[TrainStopRecord] | None:
        train = self.get_train(train_id)
        if train is None:
            return None
        return train_schedule(train, self.stations)
