"""グラフ縦軸（順位）の表示範囲."""

from __future__ import annotations

from typing import Sequence

from src.config import AXIS_MARGIN, DEFAULT_AXIS_RANGE
from src.models import AggregatedPoint


def axis_range(series: Sequence[AggregatedPoint]) -> tuple[int, int]:
    """順位軸の (下限, 上限) を返す.

    上限は圏外を除いた最大順位 + AXIS_MARGIN。圏外しか無い場合は
    DEFAULT_AXIS_RANGE（圏外の 101 を軸に出さない）。
    """
    ranks = [p.rank for p in series if not p.is_out_of_range and p.rank is not None]
    if not ranks:
        return DEFAULT_AXIS_RANGE
    return DEFAULT_AXIS_RANGE[0], max(ranks) + AXIS_MARGIN
