"""Pascal CSV インポート: 取り込み処理の本体.

処理フロー:
  1. 検証: 文字コード判定、ヘッダー解析
  2. 解析: データ行からキーワード設定と日次順位を取り出す
  3. キーワード登録: 50 件ずつ並行 upsert し、pascal_id -> uuid を得る
  4. 順位登録: キーワードごとに 100 件ずつ順番に upsert
  5. 集計: 件数とエラーを ImportResult にまとめる

1〜2 で失敗した場合のみ例外を送出する（DB には何も書いていない）。
3 以降の失敗は errors に積んで処理を続け、部分成功として返す。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator, Protocol

from src.config import KEYWORD_BATCH_SIZE, RANKING_BATCH_SIZE
from src.encoding import decode_export
from src.errors import EmptyInputError, PersistenceUnavailable
from src.models import DailyRank, ImportResult, KeywordRecord
from src.parser import VALIDATION_SAMPLE_ROWS, parse_rows, read_header, read_rows
from src.schema import map_header

logger = logging.getLogger(__name__)

# (現在のステージ, 全ステージ数, メッセージ)
ProgressCallback = Callable[[int, int, str], None]

TOTAL_STAGES = 5


class RankingStore(Protocol):
    """インポートが必要とする永続化の操作."""

    async def upsert_keyword(self, keyword: KeywordRecord) -> str: ...

    async def bulk_upsert_rankings(self, records: list[dict]) -> list[dict]: ...


@dataclass
class StageOutcome:
    """ステージ 1 つ分の結果."""

    done: int = 0
    errors: list[str] = field(default_factory=list)
    halted: bool = False  # 接続断で残りのバッチを打ち切った


class _Progress:
    """進捗通知. 通知先の失敗は取り込み結果に影響させない."""

    def __init__(self, callback: ProgressCallback | None):
        self._callback = callback

    def __call__(self, stage: int, message: str) -> None:
        logger.debug("[%d/%d] %s", stage, TOTAL_STAGES, message)
        if self._callback is None:
            return
        try:
            self._callback(stage, TOTAL_STAGES, message)
        except Exception:
            logger.warning("進捗通知に失敗", exc_info=True)


async def import_export(
    data: bytes,
    store: RankingStore,
    progress: ProgressCallback | None = None,
) -> ImportResult:
    """Pascal CSV のバイト列を取り込む.

    Raises:
        EncodingError: 復号できない入力。
        SchemaError: 必須カラムまたは日付カラムがない。
        EmptyInputError: データ行がない、または有効なキーワードが 0 件。
    """
    report = _Progress(progress)

    report(1, "CSV形式を検証中...")
    text = decode_export(data)
    rows = read_rows(text)
    if len(rows) < 2:
        raise EmptyInputError("CSV にはヘッダー行と 1 行以上のデータ行が必要です")
    mapping = map_header(read_header(rows[0]))
    _warn_short_sample_rows(rows)

    report(2, "CSVデータを解析中...")
    parsed = parse_rows(rows[1:], mapping)
    if not parsed.keywords:
        raise EmptyInputError("CSV に有効なキーワードがありません")

    grouped, collapsed = group_rankings(parsed.rankings)
    result = ImportResult(
        total_keywords=len(parsed.keywords),
        total_rankings=sum(len(by_date) for by_date in grouped.values()),
        warnings=[str(s) for s in parsed.skipped],
    )
    if collapsed:
        result.warnings.append(f"重複した順位 {collapsed} 件は後の行の値を採用")

    report(3, f"{result.total_keywords}件のキーワードを登録中...")
    keyword_ids, keyword_stage = await import_keywords(parsed.keywords, store, report)

    report(4, f"{result.total_rankings}件の順位データを処理中...")
    ranking_stage = await import_rankings(grouped, keyword_ids, store, report)

    result.imported_keywords = keyword_stage.done
    result.imported_rankings = ranking_stage.done
    result.errors.extend(keyword_stage.errors + ranking_stage.errors)

    report(5, "インポート完了")
    if result.success:
        logger.info("インポート成功: %s", result.summary)
    else:
        logger.warning("インポート部分成功: %s, エラー %d 件", result.summary, len(result.errors))
    return result


async def import_keywords(
    keywords: list[KeywordRecord],
    store: RankingStore,
    report: Callable[[int, str], None],
) -> tuple[dict[int, str], StageOutcome]:
    """キーワードを KEYWORD_BATCH_SIZE 件ずつ並行 upsert する.

    バッチ内の 1 件の失敗は他の件に影響しない。バッチ同士は順番に実行する。

    Returns:
        (pascal_id -> uuid, ステージ結果)。失敗したキーワードは対応表に入らない。
    """
    keyword_ids: dict[int, str] = {}
    outcome = StageOutcome()
    processed = 0

    for batch in keyword_batches(keywords, KEYWORD_BATCH_SIZE):
        results = await asyncio.gather(
            *(store.upsert_keyword(k) for k in batch), return_exceptions=True
        )
        for keyword, res in zip(batch, results):
            if isinstance(res, Exception):
                msg = f"Failed to import keyword Pascal ID {keyword.pascal_id}: {res}"
                logger.error(msg)
                outcome.errors.append(msg)
                if isinstance(res, PersistenceUnavailable):
                    outcome.halted = True
            elif isinstance(res, BaseException):
                raise res
            else:
                keyword_ids[keyword.pascal_id] = res
                outcome.done += 1
                logger.debug("キーワード登録: %d -> %s", keyword.pascal_id, res)

        processed += len(batch)
        report(3, f"キーワード {processed}/{len(keywords)} 登録完了")

        if outcome.halted:
            remaining = len(keywords) - processed
            msg = f"Supabase に接続できないため残り {remaining} 件のキーワード登録を中断"
            logger.error(msg)
            outcome.errors.append(msg)
            break

    return keyword_ids, outcome


async def import_rankings(
    grouped: dict[int, dict[str, int]],
    keyword_ids: dict[int, str],
    store: RankingStore,
    report: Callable[[int, str], None],
) -> StageOutcome:
    """キーワードごとに順位を RANKING_BATCH_SIZE 件ずつ順番に upsert する.

    キーワード登録に失敗した pascal_id の順位はスキップしてエラーに記録する。
    """
    outcome = StageOutcome()
    total = len(grouped)

    for position, (pascal_id, by_date) in enumerate(grouped.items(), start=1):
        keyword_id = keyword_ids.get(pascal_id)
        if keyword_id is None:
            msg = f"Keyword not found for Pascal ID {pascal_id}, skipping {len(by_date)} rankings"
            logger.error(msg)
            outcome.errors.append(msg)
            continue

        records = [
            {"pascal_keyword_id": keyword_id, "date": day, "rank": rank}
            for day, rank in by_date.items()
        ]
        for number, batch in enumerate(_chunks(records, RANKING_BATCH_SIZE), start=1):
            try:
                await store.bulk_upsert_rankings(batch)
            except PersistenceUnavailable as e:
                msg = f"Supabase に接続できないため順位登録を中断 (Pascal ID {pascal_id}): {e}"
                logger.error(msg)
                outcome.errors.append(msg)
                outcome.halted = True
                return outcome
            except Exception as e:
                msg = f"Failed to import rankings for Pascal ID {pascal_id} (batch {number}): {e}"
                logger.error(msg)
                outcome.errors.append(msg)
            else:
                outcome.done += len(batch)
            report(4, f"順位データ {position}/{total} キーワード: バッチ {number} 完了")

    return outcome


def group_rankings(rankings: list[DailyRank]) -> tuple[dict[int, dict[str, int]], int]:
    """順位を pascal_id ごとにまとめる. 同じ日付が重複した場合は後の値を採用する.

    Returns:
        (pascal_id -> {date: rank}, 重複でまとめた件数)
    """
    grouped: dict[int, dict[str, int]] = {}
    collapsed = 0
    for r in rankings:
        by_date = grouped.setdefault(r.pascal_id, {})
        if r.date in by_date:
            collapsed += 1
        by_date[r.date] = r.rank
    return grouped, collapsed


def keyword_batches(keywords: list[KeywordRecord], size: int) -> Iterator[list[KeywordRecord]]:
    """キーワードを size 件ずつに分ける.

    同じ pascal_id を 1 バッチに入れない。並行 upsert の順序は保証されないため、
    重複行は別バッチにして後の行が確実に後から書き込まれるようにする。
    """
    batch: list[KeywordRecord] = []
    seen: set[int] = set()
    for keyword in keywords:
        if len(batch) >= size or keyword.pascal_id in seen:
            yield batch
            batch, seen = [], set()
        batch.append(keyword)
        seen.add(keyword.pascal_id)
    if batch:
        yield batch


def _chunks(items: list, size: int) -> Iterator[list]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _warn_short_sample_rows(rows: list[tuple[int, list[str] | None]]) -> None:
    """先頭のデータ行がヘッダーの半分未満のカラム数なら警告する."""
    width = len(read_header(rows[0]))
    for row_number, values in rows[1:1 + VALIDATION_SAMPLE_ROWS]:
        if values is not None and len(values) < width * 0.5:
            logger.warning("Row %d: カラム数がヘッダーの半分未満 (%d/%d)", row_number, len(values), width)
