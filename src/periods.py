"""グラフ表示期間のプリセット."""

from __future__ import annotations

import calendar
from datetime import date, timedelta

MONTHS_BACK = {
    "past_1_month": 1,
    "past_3_months": 3,
    "past_6_months": 6,
    "past_1_year": 12,
}

PERIOD_NAMES = ("this_week", "last_week", *MONTHS_BACK)


def resolve_period(name: str, today: date | None = None) -> tuple[date, date]:
    """プリセット名から (開始日, 終了日) を求める.

    this_week は今週月曜〜今日、last_week は先週の月曜〜日曜。
    past_* は N か月前の同日〜今日（月末を超える日は月末に丸める）。
    """
    today = today or date.today()

    if name == "this_week":
        return today - timedelta(days=today.weekday()), today
    if name == "last_week":
        last_sunday = today - timedelta(days=today.weekday() + 1)
        return last_sunday - timedelta(days=6), last_sunday
    if name in MONTHS_BACK:
        return _months_before(today, MONTHS_BACK[name]), today

    raise ValueError(f"不明な期間: {name} (指定可能: {', '.join(PERIOD_NAMES)})")


def _months_before(day: date, months: int) -> date:
    total = day.year * 12 + (day.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))
