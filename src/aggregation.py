"""順位の時系列集計モジュール.

DB には順位が付いた日しか保存されていない（圏外の日は行が無い）。
グラフ用に、指定期間のすべての日・週・月に 1 点ずつ値を埋めた
系列を作る。データの無いバケットは圏外 (OUT_OF_RANGE_RANK) とする。
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta
from typing import Iterable

from src.config import OUT_OF_RANGE_RANK
from src.models import AggregatedPoint, Granularity, RankPoint


def week_start(day: date) -> date:
    """その日を含む週の月曜日."""
    return day - timedelta(days=day.weekday())


def month_start(day: date) -> date:
    return day.replace(day=1)


def bucket_starts(granularity: Granularity, start: date, end: date) -> list[date]:
    """期間をカバーするバケットの先頭日を順に返す."""
    if granularity == Granularity.DAILY:
        return [start + timedelta(days=i) for i in range((end - start).days + 1)]

    if granularity == Granularity.WEEKLY:
        keys = []
        current = week_start(start)
        while current <= end:
            keys.append(current)
            current += timedelta(days=7)
        return keys

    keys = []
    current = month_start(start)
    while current <= end:
        keys.append(current)
        if current.month == 12:
            current = current.replace(year=current.year + 1, month=1)
        else:
            current = current.replace(month=current.month + 1)
    return keys


def bucket_of(granularity: Granularity, day: date) -> date:
    if granularity == Granularity.WEEKLY:
        return week_start(day)
    if granularity == Granularity.MONTHLY:
        return month_start(day)
    return day


def aggregate(
    points: Iterable[RankPoint],
    granularity: Granularity | str,
    start: date | str,
    end: date | str,
) -> list[AggregatedPoint]:
    """順位を日次・週次・月次の連続した系列にする.

    Args:
        points: 期間内の順位（日付順でなくてもよい）
        granularity: "daily" / "weekly" / "monthly"
        start: 期間の開始日（含む）
        end: 期間の終了日（含む）

    Returns:
        バケットごとに 1 点。週次の先頭は月曜日、月次は 1 日。
        週次・月次の rank は平均値（四捨五入）。
    """
    granularity = Granularity(granularity)
    start, end = _as_date(start), _as_date(end)
    if end < start:
        raise ValueError(f"終了日が開始日より前です: {start} 〜 {end}")

    grouped: dict[date, list[int]] = {}
    for p in points:
        if not p.rank or p.rank <= 0:
            continue
        grouped.setdefault(bucket_of(granularity, _as_date(p.date)), []).append(p.rank)

    series = []
    for key in bucket_starts(granularity, start, end):
        ranks = grouped.get(key)
        if not ranks:
            series.append(_out_of_range(key))
        elif granularity == Granularity.DAILY:
            rank = ranks[0]
            series.append(AggregatedPoint(
                date=key.isoformat(), rank=rank, avg_rank=rank, min_rank=rank,
                max_rank=rank, count=1, is_out_of_range=False,
            ))
        else:
            avg = _round_half_up(sum(ranks) / len(ranks))
            series.append(AggregatedPoint(
                date=key.isoformat(), rank=avg, avg_rank=avg, min_rank=min(ranks),
                max_rank=max(ranks), count=len(ranks), is_out_of_range=False,
            ))
    return series


def _out_of_range(key: date) -> AggregatedPoint:
    return AggregatedPoint(
        date=key.isoformat(),
        rank=None,
        avg_rank=OUT_OF_RANGE_RANK,
        min_rank=OUT_OF_RANGE_RANK,
        max_rank=OUT_OF_RANGE_RANK,
        count=0,
        is_out_of_range=True,
    )


def _round_half_up(value: float) -> int:
    # round() は偶数丸めなので使わない
    return int(math.floor(value + 0.5))


def _as_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])
