# backend/time_source.py
"""
シミュレーション時刻の管理。

「現在時刻」を 0時からのミリ秒として返す。ユーザーが時刻を指定した場合は
その値（override）を優先する。
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from zoneinfo import ZoneInfo

from timetable_models import DAY_MS

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Jakarta"


# ============================================================================
# 時間系ユーティリティ
# ============================================================================

def ms_since_midnight(dt: datetime) -> int:
    """
    指定時刻の 0時からの経過ミリ秒を返す（秒未満は切り捨て）。

    例:
      - 00:00:00 → 0
      - 08:45:00 → 31_500_000
      - 23:59:59 → 86_399_000
    """
    return (dt.hour * 3600 + dt.minute * 60 + dt.second) * 1000


def parse_hhmm_to_ms(time_str: str) -> int:
    """
    "HH:MM" または "HH:MM:SS" 形式の文字列を 0時からのミリ秒に変換する。
    不正な形式の場合は ValueError を発生させる。
    """
    if not time_str:
        raise ValueError("Empty time string")

    parts = time_str.strip().split(":")
    if len(parts) == 2:
        h, m = parts
        s = "0"
    elif len(parts) == 3:
        h, m, s = parts
    else:
        raise ValueError(f"Invalid time format: {time_str} (expected HH:MM or HH:MM:SS)")

    try:
        hour = int(h)
        minute = int(m)
        second = int(s)
    except ValueError as e:
        raise ValueError(f"Invalid time components in '{time_str}': {e}")

    if not (0 <= hour <= 23):
        raise ValueError(f"Invalid hour {hour} in '{time_str}' (must be 0-23)")
    if not (0 <= minute <= 59):
        raise ValueError(f"Invalid minute {minute} in '{time_str}' (must be 0-59)")
    if not (0 <= second <= 59):
        raise ValueError(f"Invalid second {second} in '{time_str}' (must be 0-59)")

    return (hour * 3600 + minute * 60 + second) * 1000


def format_ms(ms: Optional[int]) -> str:
    """
    ミリ秒を "HH:MM:SS" に整形する。表示専用なので 1日で折り返す。
    None の場合は "--:--:--"。
    """
    if ms is None:
        return "--:--:--"
    ms = ms % DAY_MS
    h = ms // 3_600_000
    m = (ms % 3_600_000) // 60_000
    s = (ms % 60_000) // 1000
    return f"{h:02d}:{m:02d}:{s:02d}"


# ============================================================================
# TimeSource
# ============================================================================

class TimeSource:
    """
    シミュレーション時刻の供給元。

    - override が設定されていればその値をそのまま返す（1日で折り返さない）。
    - 未設定なら壁時計（指定タイムゾーン）の 0時からのミリ秒を返す。
    """

    def __init__(
        self,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.tz = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(self.tz))
        self._override_ms: int | None = None

    @property
    def override(self) -> int | None:
        return self._override_ms

    def now(self) -> int:
        if self._override_ms is not None:
            return self._override_ms

        dt = self._clock()
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=self.tz)
        else:
            dt = dt.astimezone(self.tz)
        return ms_since_midnight(dt)

    def set_override(self, ms: int) -> None:
        # bool は int のサブクラスなので明示的に弾く
        if isinstance(ms, bool) or not isinstance(ms, int):
            raise ValueError(f"Override must be an integer number of ms, got {ms!r}")
        if ms < 0:
            raise ValueError(f"Override must be non-negative, got {ms}")

        self._override_ms = ms
        logger.info("Simulation time pinned to %s (%d ms)", format_ms(ms), ms)

    def set_override_hhmm(self, time_str: str) -> int:
        """UI の "HH:MM" 入力で時刻を固定する。設定したミリ秒を返す。"""
        ms = parse_hhmm_to_ms(time_str)
        self.set_override(ms)
        return ms

    def clear_override(self) -> None:
        if self._override_ms is not None:
            logger.info("Simulation time override cleared, back to wall clock")
        self._override_ms = None
