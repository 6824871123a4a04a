"""設定モジュール: 環境変数・定数定義."""

import os
from pathlib import Path

from dotenv import load_dotenv

# .env はリポジトリルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- Supabase ---
# 接続時に検証する（import 時には要求しない）
SUPABASE_URL: str = os.environ.get("SUPABASE_URL", "")
SUPABASE_SECRET_KEY: str = os.environ.get("SUPABASE_SECRET_KEY", "")
SUPABASE_SCHEMA: str = os.environ.get("SUPABASE_SCHEMA", "public")

KEYWORDS_TABLE = "pascal_keywords"
RANKINGS_TABLE = "pascal_daily_rankings"

# --- インポート設定 ---
KEYWORD_BATCH_SIZE = 50  # 並行 upsert する件数
RANKING_BATCH_SIZE = 100  # 1 リクエストあたりの順位レコード数
QUERY_PAGE_SIZE = 1000  # PostgREST の最大返却行数

# --- 文字コード ---
LEGACY_ENCODING = "cp932"  # Pascal CSV の既定 (Shift_JIS)
FALLBACK_ENCODING = "utf-8"
# 正しく読めた CSV のヘッダーに含まれる文字列（ASCII は誤判定するので使わない）
ENCODING_MARKERS = ("キーワード", "順位取得", "月間検索数")

# --- グラフ表示 ---
OUT_OF_RANGE_RANK = 101  # 圏外の表示用値
AXIS_MARGIN = 5
DEFAULT_AXIS_RANGE = (1, 100)

# --- ログ ---
LOG_DIR = _PROJECT_ROOT / "logs"
LOG_DIR.mkdir(exist_ok=True)
