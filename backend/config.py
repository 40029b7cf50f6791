# backend/config.py
"""
エンジン設定モジュール

環境変数（.env）からデータ置き場・タイムゾーン・tick 間隔などを読み込む。
"""
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

BASE_DIR = Path(__file__).resolve().parent.parent  # lintaska/
DEFAULT_DATA_DIR = BASE_DIR / "data"

# データセットのファイル名（data_dir / base_url からの相対パス）
STATIONS_FILE = "stations.json"
GAPEKA_FILE = "gapeka.json"
ROUTES_FILE = "route-path.json"


class EngineConfig(BaseModel):
    """シミュレーションエンジンの設定"""
    data_dir: Path = DEFAULT_DATA_DIR
    # 指定された場合は data_dir ではなくこの URL からデータを取得する
    data_base_url: Optional[str] = None
    timezone: str = "Asia/Jakarta"
    tick_seconds: float = Field(default=1.0, gt=0)
    http_timeout: float = Field(default=10.0, gt=0)
    frontend_urls: List[str] = ["http://localhost:3000"]


def _split_origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def load_config() -> EngineConfig:
    """
    環境変数から EngineConfig を組み立てる。
    未設定の項目はデフォルト値を使う。
    """
    load_dotenv()

    values = {}

    data_dir = os.getenv("LINTASKA_DATA_DIR", "").strip()
    if data_dir:
        values["data_dir"] = Path(data_dir)

    base_url = os.getenv("LINTASKA_DATA_BASE_URL", "").strip()
    if base_url:
        values["data_base_url"] = base_url

    timezone = os.getenv("LINTASKA_TIMEZONE", "").strip()
    if timezone:
        values["timezone"] = timezone

    tick = os.getenv("LINTASKA_TICK_SECONDS", "").strip()
    if tick:
        values["tick_seconds"] = float(tick)

    timeout = os.getenv("LINTASKA_HTTP_TIMEOUT", "").strip()
    if timeout:
        values["http_timeout"] = float(timeout)

    origins = _split_origins(os.getenv("FRONTEND_URLS", ""))
    if origins:
        values["frontend_urls"] = origins

    return EngineConfig(**values)
