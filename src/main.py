"""Pascal 順位 CSV インポート: メインエントリーポイント.

コマンド:
  import FILE       CSV を Supabase に取り込む
  inspect FILE      DB に書き込まずに CSV の解析結果を表示する
  chart PASCAL_ID   キーワードの順位推移を集計して表示する

  python -m src.main import ranking_202406.csv
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from datetime import date, datetime
from pathlib import Path
from typing import Sequence

from src.aggregation import aggregate
from src.config import LOG_DIR
from src.db import connect
from src.encoding import decode_export
from src.errors import RankImportError
from src.importer import import_export
from src.models import Granularity
from src.parser import parse_export, validate_export
from src.periods import PERIOD_NAMES, resolve_period
from src.scale import axis_range

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_ABORTED = 2


def setup_logging() -> None:
    """ロギングの初期設定."""
    log_file = LOG_DIR / f"importer_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pascal-rank", description="Pascal 順位 CSV インポート")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_import = subparsers.add_parser("import", help="CSV を Supabase に取り込む")
    p_import.add_argument("file", type=Path)

    p_inspect = subparsers.add_parser("inspect", help="CSV の解析結果を表示する（DB 書き込みなし）")
    p_inspect.add_argument("file", type=Path)

    p_chart = subparsers.add_parser("chart", help="キーワードの順位推移を表示する")
    p_chart.add_argument("pascal_id", type=int)
    p_chart.add_argument(
        "--granularity",
        choices=[g.value for g in Granularity],
        default=Granularity.DAILY.value,
    )
    p_chart.add_argument("--period", choices=[*PERIOD_NAMES, "all_time"], default="past_1_month")
    p_chart.add_argument("--start", type=date.fromisoformat, help="開始日 YYYY-MM-DD（--period より優先）")
    p_chart.add_argument("--end", type=date.fromisoformat, help="終了日 YYYY-MM-DD")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI を実行し、終了コードを返す."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "chart":
        _check_date_range(parser, args)
    setup_logging()

    try:
        if args.command == "import":
            return asyncio.run(run_import(args.file))
        if args.command == "inspect":
            return run_inspect(args.file)
        return asyncio.run(run_chart(args))
    except RankImportError as e:
        logger.error("中断: %s", e)
        return EXIT_ABORTED


async def run_import(path: Path) -> int:
    """CSV ファイルを取り込む."""
    logger.info("=== インポート 開始: %s ===", path)
    start_time = time.time()

    store = await connect()
    result = await import_export(path.read_bytes(), store, _print_progress)

    for message in result.warnings:
        logger.warning(message)
    for message in result.errors:
        logger.error(message)

    elapsed = time.time() - start_time
    logger.info("=== インポート 完了 ===")
    logger.info("%s, エラー: %d 件, 所要時間: %.1f 秒", result.summary, len(result.errors), elapsed)
    return EXIT_OK if result.success else EXIT_PARTIAL


def run_inspect(path: Path) -> int:
    """DB に書き込まずに CSV を解析して結果を表示する."""
    text = decode_export(path.read_bytes())

    problems = validate_export(text)
    for problem in problems:
        print(f"NG: {problem}")
    if problems:
        return EXIT_ABORTED

    parsed = parse_export(text)
    first, last = parsed.mapping.date_range
    print(f"固定カラム: {dict(parsed.mapping.fields)}")
    print(f"日付カラム: {len(parsed.mapping.date_columns)} 列 ({first} 〜 {last})")
    for index, day in parsed.mapping.date_columns:
        print(f"  Column {index}: {day}")
    print(f"キーワード: {len(parsed.keywords)} 件")
    print(f"順位: {len(parsed.rankings)} 件")
    print(f"スキップ: {len(parsed.skipped)} 行")
    for skipped in parsed.skipped:
        print(f"  {skipped}")
    return EXIT_OK


async def run_chart(args: argparse.Namespace) -> int:
    """キーワードの順位を取得・集計して 1 バケット 1 行で表示する."""
    store = await connect()
    keyword = await store.get_keyword_by_pascal_id(args.pascal_id)
    if keyword is None:
        logger.error("Pascal ID %d のキーワードが登録されていません", args.pascal_id)
        return EXIT_ABORTED

    if args.start:
        start, end = args.start, args.end
    elif args.period == "all_time":
        stored = await store.ranking_date_range()
        if stored is None:
            logger.warning("順位データがありません")
            return EXIT_OK
        start, end = (date.fromisoformat(d) for d in stored)
    else:
        start, end = resolve_period(args.period)

    points = await store.query_rankings(keyword["id"], start.isoformat(), end.isoformat())
    series = aggregate(points, args.granularity, start, end)

    print(f"{keyword['keyword_text']} ({args.granularity}, {start} 〜 {end})")
    for p in series:
        if p.is_out_of_range:
            print(f"{p.date}  圏外")
        elif p.count > 1:
            print(f"{p.date}  {p.rank}位 (最高 {p.min_rank} / 最低 {p.max_rank}, {p.count} 日)")
        else:
            print(f"{p.date}  {p.rank}位")
    low, high = axis_range(series)
    print(f"縦軸: {low} 〜 {high}")
    return EXIT_OK


def _check_date_range(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """--start と --end は両方指定するか、どちらも指定しない."""
    if (args.start is None) != (args.end is None):
        parser.error("--start と --end は両方指定してください")
    if args.start and args.end < args.start:
        parser.error("--end は --start 以降の日付を指定してください")


def _print_progress(current: int, total: int, message: str) -> None:
    print(f"[{current}/{total}] {message}")


if __name__ == "__main__":
    sys.exit(main())
