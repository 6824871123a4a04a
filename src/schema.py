"""ヘッダー行の解析モジュール.

Pascal CSV は固定カラム（ID・キーワード等）の並びが保証されず、
日付カラムの数も出力期間によって変わる。ヘッダー行から一度だけ
ColumnMapping を作り、データ行の解析ではそれだけを参照する。
"""

from __future__ import annotations

import logging
import re
from datetime import date

from src.errors import SchemaError
from src.models import ColumnMapping

logger = logging.getLogger(__name__)

# フィールド名 -> ヘッダーに含まれる文字列（日本語ラベル, 英語ラベル）
# 1 つのカラムは上から順に最初に一致したフィールドにだけ対応し、
# 同じフィールドに複数カラムが一致した場合は左側のカラムを採用する
FIELD_LABELS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("pascal_id", ("Pascal ID", "ID")),
    ("keyword_text", ("キーワード", "keyword")),
    ("monthly_search_volume", ("月間検索数", "search volume")),
    ("domain_url", ("ドメイン", "domain")),
    ("site_name", ("サイト名", "site")),
    ("rank_type", ("順位取得", "rank type")),
    ("area", ("エリア", "area")),
    ("device_type", ("種別", "device")),
    ("landing_page", ("ランディング", "landing")),
)

REQUIRED_FIELDS = ("pascal_id", "keyword_text")

# 上から順に試し、最初に一致したもので日付とする
DATE_PATTERNS = (
    re.compile(r"(\d{4})年(\d{1,2})月(\d{1,2})日"),
    re.compile(r"(\d{4})/(\d{1,2})/(\d{1,2})"),
    re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})"),
)


def parse_date_header(cell: str) -> str | None:
    """ヘッダーセルから日付を取り出し YYYY-MM-DD で返す.

    "2025年1月1日" / "2025/1/1" / "2025-1-1" に対応。
    日付でない、または暦上存在しない日付なら None。
    """
    for pattern in DATE_PATTERNS:
        m = pattern.search(cell)
        if not m:
            continue
        year, month, day = (int(g) for g in m.groups())
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            logger.warning("存在しない日付のカラムを無視: %r", cell)
            return None
    return None


def map_header(headers: list[str]) -> ColumnMapping:
    """ヘッダー行からカラム対応表を作る.

    Raises:
        SchemaError: ID・キーワード列が見つからない、または日付列が 0 件。
    """
    fields: dict[str, int] = {}
    date_columns: list[tuple[int, str]] = []

    for index, raw in enumerate(headers):
        cell = raw.strip()
        if not cell:
            continue

        iso_date = parse_date_header(cell)
        if iso_date is not None:
            date_columns.append((index, iso_date))
            continue

        name = _match_field(cell)
        if name is not None and name not in fields:
            fields[name] = index

    missing = [name for name in REQUIRED_FIELDS if name not in fields]
    if missing:
        raise SchemaError(f"必須カラムが見つかりません: {', '.join(missing)}")
    if not date_columns:
        raise SchemaError("日付カラムが見つかりません (形式: YYYY年M月D日)")

    mapping = ColumnMapping(fields=fields, date_columns=tuple(date_columns))
    first, last = mapping.date_range
    logger.info(
        "ヘッダー解析: 固定カラム %d 件, 日付カラム %d 件 (%s 〜 %s)",
        len(fields), len(date_columns), first, last,
    )
    return mapping


def _match_field(cell: str) -> str | None:
    """ラベルを部分一致（大文字小文字無視）で照合する."""
    lowered = cell.casefold()
    for name, labels in FIELD_LABELS:
        if any(label.casefold() in lowered for label in labels):
            return name
    return None
