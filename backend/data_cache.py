# backend/data_cache.py
from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx

from config import GAPEKA_FILE, ROUTES_FILE, STATIONS_FILE
from timetable_models import DAY_MS, LatLng, PathStop, Station, Train

logger = logging.getLogger(__name__)


class DataLoadError(Exception):
    """データセットの取得・パースに失敗した"""


def _parse_position(raw: Any) -> Optional[LatLng]:
    """
    [lat, lng] 形式の座標をタプルに変換する。
    不正な値（欠損・範囲外・NaN）の場合は None を返す。
    """
    if not isinstance(raw, (list, tuple)) or len(raw) < 2:
        return None
    try:
        lat = float(raw[0])
        lng = float(raw[1])
    except (TypeError, ValueError):
        return None

    if math.isnan(lat) or math.isnan(lng):
        return None
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lng <= 180.0):
        return None
    return (lat, lng)


def _parse_offset(raw: Any) -> Optional[int]:
    """
    0時からのミリ秒を int に変換する。
    欠損・不正値・1日の範囲外は None（その時刻は「無い」扱い）。
    """
    if raw is None or raw == "" or isinstance(raw, bool):
        return None
    try:
        number = float(raw)
    except (TypeError, ValueError):
        return None
    # Infinity / NaN は int に変換できない
    if not math.isfinite(number):
        return None
    value = int(number)
    if not (0 <= value < DAY_MS):
        return None
    return value


def _unwrap_rows(raw_data: Any, name: str) -> List[Dict[str, Any]]:
    """{"data": [...]} 形式と素の配列の両方を受け付ける"""
    if isinstance(raw_data, dict):
        raw_data = raw_data.get("data")
    if not isinstance(raw_data, list):
        raise DataLoadError(f"{name}: expected a list or an object with a 'data' list")
    return raw_data


def _parse_stations(raw_data: Any) -> Dict[str, Station]:
    """
    stations.json を {駅コード: Station} に変換する。
    座標の無い駅はスキップし、警告ログを出す。
    """
    stations: Dict[str, Station] = {}
    skipped_count = 0

    for idx, row in enumerate(_unwrap_rows(raw_data, STATIONS_FILE)):
        if not isinstance(row, dict):
            skipped_count += 1
            continue

        code = row.get("cd")
        if not code:
            logger.warning("Station at index %d has no 'cd', skipping", idx)
            skipped_count += 1
            continue

        position = _parse_position(row.get("pos"))
        if position is None:
            skipped_count += 1
            continue

        stations[str(code)] = Station(
            code=str(code),
            name=str(row.get("nm") or code),
            position=position,
        )

    if skipped_count > 0:
        logger.warning("Skipped %d stations without a usable code or position", skipped_count)

    return stations


def _parse_path_stops(raw_paths: Iterable[Any], train_id: str) -> List[PathStop]:
    """
    raw_paths: [{"st_cd": ..., "arriv_ms": ..., "depart_ms": ..., "pos": [lat, lng] 省略可}, ...]
    を PathStop のリストに変換する。時刻の日跨ぎ補正はここでは行わない。
    """
    stops: List[PathStop] = []

    for i, row in enumerate(raw_paths):
        if not isinstance(row, dict):
            continue

        station_code = row.get("st_cd")
        if not station_code:
            logger.warning("Train %s path row %d has no 'st_cd', skipping", train_id, i)
            continue

        arrival_ms = _parse_offset(row.get("arriv_ms"))
        departure_ms = _parse_offset(row.get("depart_ms"))
        if row.get("arriv_ms") is not None and arrival_ms is None:
            logger.warning(
                "Train %s stop %d (%s): invalid arriv_ms %r",
                train_id, i, station_code, row.get("arriv_ms"),
            )
        if row.get("depart_ms") is not None and departure_ms is None:
            logger.warning(
                "Train %s stop %d (%s): invalid depart_ms %r",
                train_id, i, station_code, row.get("depart_ms"),
            )

        stops.append(
            PathStop(
                station_code=str(station_code),
                arrival_ms=arrival_ms,
                departure_ms=departure_ms,
                position=_parse_position(row.get("pos")),
            )
        )

    return stops


def _validate_train_data(train: Train) -> List[str]:
    """
    列車データの簡易妥当性チェック。
    問題があれば warning メッセージのリストを返す。
    """
    warnings: List[str] = []

    if len(train.paths) < 2:
        warnings.append(f"too few stops: {len(train.paths)}")

    if train.paths:
        if train.paths[0].station_code != train.start_station_code:
            warnings.append(
                f"first stop {train.paths[0].station_code} != st_cd_start {train.start_station_code}"
            )
        if train.paths[-1].station_code != train.end_station_code:
            warnings.append(
                f"last stop {train.paths[-1].station_code} != st_cd_end {train.end_station_code}"
            )

    return warnings


def _parse_gapeka(raw_data: Any) -> List[Train]:
    """
    gapeka.json の配列を Train リストに変換する。
    不正なデータはスキップし、警告ログを出す。

    NOTE:
      - 停車駅が2未満の列車もリストには残す（シミュレーション上は常に運休扱い）。
      - st_cd_start / st_cd_end が無い場合は paths の先頭・末尾の駅を使う。
    """
    trains: List[Train] = []
    skipped_count = 0

    for idx, row in enumerate(_unwrap_rows(raw_data, GAPEKA_FILE)):
        if not isinstance(row, dict):
            skipped_count += 1
            continue

        train_id = row.get("tr_id")
        if train_id is None or train_id == "":
            logger.warning("Train at index %d has no 'tr_id', skipping", idx)
            skipped_count += 1
            continue
        train_id = str(train_id)

        raw_paths = row.get("paths") or []
        if not isinstance(raw_paths, list):
            logger.warning("Train %s has a non-list 'paths', treating as empty", train_id)
            raw_paths = []

        paths = _parse_path_stops(raw_paths, train_id)

        start_code = row.get("st_cd_start") or (paths[0].station_code if paths else "")
        end_code = row.get("st_cd_end") or (paths[-1].station_code if paths else "")

        train = Train(
            id=train_id,
            code=str(row.get("tr_cd") or train_id),
            name=str(row.get("tr_name") or ""),
            start_station_code=str(start_code),
            end_station_code=str(end_code),
            paths=paths,
        )

        warnings = _validate_train_data(train)
        if warnings:
            logger.warning("Train %s validation warnings: %s", train_id, "; ".join(warnings))

        trains.append(train)

    if skipped_count > 0:
        logger.warning("Skipped %d GAPEKA rows due to errors", skipped_count)

    return trains


def enrich_train_paths(trains: Iterable[Train], stations: Mapping[str, Station]) -> int:
    """
    座標の無い停車駅に、駅マスタの座標を補完する。

    - 既に座標を持つ停車駅は変更しない（何度呼んでも結果は同じ）。
    - 駅マスタに無い駅コードは座標なしのまま残す（その区間は位置計算されない）。

    Returns:
        補完した停車駅の数
    """
    filled = 0
    missing_codes: set[str] = set()

    for train in trains:
        for stop in train.paths:
            if stop.position is not None:
                continue
            station = stations.get(stop.station_code)
            if station is None:
                missing_codes.add(stop.station_code)
                continue
            stop.position = station.position
            filled += 1

    if missing_codes:
        logger.warning(
            "Missing positions for %d station codes used in GAPEKA (first 10): %s",
            len(missing_codes),
            sorted(missing_codes)[:10],
        )

    logger.info("Enriched %d path stops with station positions", filled)
    return filled


class DataCache:
    def __init__(
        self,
        data_dir: Path,
        base_url: str | None = None,
        http_timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.base_url = base_url.rstrip("/") if base_url else None
        self.http_timeout = http_timeout
        self._http_client = http_client

        self.stations: Dict[str, Station] = {}
        self.trains: List[Train] = []
        self.routes: List[Any] = []

        # load_all() で発生したエラー（呼び出し元に報告する）
        self.load_errors: List[str] = []

    def _fetch_json(self, rel_path: str) -> Any:
        url = f"{self.base_url}/{rel_path}"
        try:
            if self._http_client is not None:
                resp = self._http_client.get(url)
            else:
                resp = httpx.get(url, timeout=self.http_timeout)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as e:
            raise DataLoadError(f"Failed to fetch {url}: {e}") from e
        except ValueError as e:
            raise DataLoadError(f"Invalid JSON from {url}: {e}") from e

    def _load_json(self, rel_path: str) -> Any:
        if self.base_url:
            return self._fetch_json(rel_path)

        path = self.data_dir / rel_path
        if not path.exists():
            raise DataLoadError(f"JSON file not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise DataLoadError(f"Failed to read {path}: {e}") from e

    def _record_error(self, e: DataLoadError, strict: bool) -> None:
        logger.error("%s", e)
        self.load_errors.append(str(e))
        if strict:
            raise e

    def load_all(self, strict: bool = False) -> List[str]:
        """
        駅マスタ・GAPEKA・路線形状を読み込み、停車駅の座標を補完する。

        読み込みに失敗したデータセットは空のまま続行し、エラー内容を返す
        （strict=True の場合は最初のエラーで DataLoadError を送出する）。
        """
        self.load_errors = []

        # 1) 駅マスタ
        try:
            self.stations = _parse_stations(self._load_json(STATIONS_FILE))
        except DataLoadError as e:
            self.stations = {}
            self._record_error(e, strict)
        logger.info("Loaded %d stations", len(self.stations))

        # 2) GAPEKA
        try:
            self.trains = _parse_gapeka(self._load_json(GAPEKA_FILE))
        except DataLoadError as e:
            self.trains = []
            self._record_error(e, strict)
        logger.info("Loaded %d GAPEKA trains", len(self.trains))

        # 3) 路線形状（地図表示用にそのまま保持）
        try:
            self.routes = _unwrap_rows(self._load_json(ROUTES_FILE), ROUTES_FILE)
        except DataLoadError as e:
            self.routes = []
            self._record_error(e, strict)
        logger.info("Loaded %d route paths", len(self.routes))

        # 4) 停車駅の座標補完
        enrich_train_paths(self.trains, self.stations)

        if self.load_errors:
            logger.warning(
                "Data loaded with %d error(s); continuing with partial data",
                len(self.load_errors),
            )
        return self.load_errors

