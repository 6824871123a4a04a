"""Pascal CSV のデータ行解析モジュール.

1 行 = 1 キーワード設定、日付カラム 1 列 = その日の順位。
不正な行は警告を出してスキップし、インポート全体は止めない。
"""

from __future__ import annotations

import csv
import logging
import re

from src.errors import EmptyInputError, SchemaError
from src.models import ColumnMapping, DailyRank, KeywordRecord, ParsedExport, RowSkipped
from src.schema import map_header

logger = logging.getLogger(__name__)

# 圏外を表すセル値
NOT_RANKED_VALUES = ("", "-")

OPTIONAL_TEXT_FIELDS = (
    "domain_url",
    "site_name",
    "rank_type",
    "area",
    "device_type",
    "landing_page",
)

VALIDATION_SAMPLE_ROWS = 3

# 半角数字のみ（int() は全角数字や "1_0" も受け付けてしまう）
_INT_PATTERN = re.compile(r"[+-]?[0-9]+")


def read_rows(text: str) -> list[tuple[int, list[str] | None]]:
    """CSV テキストを (行番号, セルリスト) に分割する.

    行番号はファイル上の物理行 (1 始まり)。空行は除くが番号は詰めない。
    Pascal CSV はセル内改行を含まないので 1 行ずつ読む。
    CSV として読めない行はセルリストを None にして返す。
    """
    rows: list[tuple[int, list[str] | None]] = []
    # 文字化けしたテキストに NUL が混ざると csv モジュールがエラーにする
    for line_number, line in enumerate(text.replace("\x00", "").splitlines(), start=1):
        if not line.strip():
            continue
        try:
            cells = next(csv.reader([line]))
        except csv.Error as e:
            logger.warning("Row %d: CSV として読めません (%s)", line_number, e)
            rows.append((line_number, None))
            continue
        if any(c.strip() for c in cells):
            rows.append((line_number, [c.strip() for c in cells]))
    return rows


def read_header(row: tuple[int, list[str] | None]) -> list[str]:
    """先頭行をヘッダーとして取り出す.

    Raises:
        SchemaError: ヘッダー行が CSV として読めない場合。
    """
    row_number, cells = row
    if cells is None:
        raise SchemaError(f"Row {row_number}: ヘッダー行を CSV として読めません")
    return cells


def parse_export(text: str) -> ParsedExport:
    """CSV テキスト全体を解析する.

    Raises:
        EmptyInputError: ヘッダーとデータ行が揃っていない場合。
        SchemaError: ヘッダーから必須カラムを特定できない場合。
    """
    rows = read_rows(text)
    if len(rows) < 2:
        raise EmptyInputError("CSV にはヘッダー行と 1 行以上のデータ行が必要です")

    mapping = map_header(read_header(rows[0]))
    return parse_rows(rows[1:], mapping)


def parse_rows(rows: list[tuple[int, list[str] | None]], mapping: ColumnMapping) -> ParsedExport:
    """ヘッダーを除いたデータ行を解析する."""
    result = ParsedExport(mapping=mapping)

    for row_number, values in rows:
        if values is None:
            parsed = RowSkipped(row_number, "Unreadable CSV row")
        else:
            parsed = parse_row(values, mapping, row_number)
        if isinstance(parsed, RowSkipped):
            logger.warning("%s, skipping", parsed)
            result.skipped.append(parsed)
            continue
        result.keywords.append(parsed)
        result.rankings.extend(parse_rankings(values, mapping, parsed.pascal_id))

    logger.info(
        "CSV 解析完了: キーワード %d 件, 順位 %d 件, スキップ %d 行",
        len(result.keywords), len(result.rankings), len(result.skipped),
    )
    return result


def parse_row(values: list[str], mapping: ColumnMapping, row_number: int) -> KeywordRecord | RowSkipped:
    """1 行からキーワード設定を取り出す. 不正な行は RowSkipped を返す."""
    if len(values) < mapping.required_width:
        return RowSkipped(row_number, "Insufficient columns")

    fields = mapping.fields
    pascal_id = _parse_int(values[fields["pascal_id"]])
    if pascal_id is None:
        return RowSkipped(row_number, "Invalid Pascal ID")

    keyword_text = values[fields["keyword_text"]]
    if not keyword_text:
        return RowSkipped(row_number, "Empty keyword")

    record = KeywordRecord(pascal_id=pascal_id, keyword_text=keyword_text)

    if "monthly_search_volume" in fields:
        # "1,200" のような桁区切りも許容
        volume = values[fields["monthly_search_volume"]].replace(",", "")
        if volume not in NOT_RANKED_VALUES:
            record.monthly_search_volume = _parse_int(volume)

    for name in OPTIONAL_TEXT_FIELDS:
        if name in fields:
            setattr(record, name, values[fields[name]] or None)

    return record


def parse_rankings(values: list[str], mapping: ColumnMapping, pascal_id: int) -> list[DailyRank]:
    """日付カラムから順位を取り出す. 空欄・"-"・0 以下・数値以外は圏外として何も返さない."""
    rankings: list[DailyRank] = []
    for index, day in mapping.date_columns:
        cell = values[index] if index < len(values) else ""
        if cell in NOT_RANKED_VALUES:
            continue
        rank = _parse_int(cell)
        if rank is None or rank <= 0:
            continue
        rankings.append(DailyRank(pascal_id=pascal_id, date=day, rank=rank))
    return rankings


def validate_export(text: str) -> list[str]:
    """インポート前の簡易チェック. 問題点のリストを返す（空なら問題なし）."""
    rows = read_rows(text)
    if len(rows) < 2:
        return ["CSV must contain at least header and one data row"]

    errors: list[str] = []
    headers: list[str] = []
    try:
        headers = read_header(rows[0])
        map_header(headers)
    except SchemaError as e:
        errors.append(str(e))

    for row_number, values in rows[1:1 + VALIDATION_SAMPLE_ROWS]:
        if values is None or len(values) < len(headers) * 0.5:
            errors.append(f"Row {row_number}: Insufficient data")

    return errors


def _parse_int(value: str) -> int | None:
    value = value.strip()
    if not _INT_PATTERN.fullmatch(value):
        return None
    return int(value)
