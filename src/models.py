"""データモデル定義."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from src.config import OUT_OF_RANGE_RANK


@dataclass
class KeywordRecord:
    """CSV の 1 行から得られるキーワード設定 (pascal_keywords の 1 行)."""

    pascal_id: int  # Pascal が採番する数値 ID（自然キー）
    keyword_text: str
    monthly_search_volume: int | None = None  # 月間検索数（月平均）
    domain_url: str | None = None
    site_name: str | None = None
    rank_type: str | None = None  # 順位取得 (ドメイン一致/完全一致など)
    area: str | None = None
    device_type: str | None = None  # 種別 (PC/SP)
    landing_page: str | None = None  # ランディングページ（最新日付）

    def to_row(self) -> dict:
        """upsert 用の dict に変換する."""
        return {
            "pascal_id": self.pascal_id,
            "keyword_text": self.keyword_text,
            "monthly_search_volume": self.monthly_search_volume,
            "domain_url": self.domain_url,
            "site_name": self.site_name,
            "rank_type": self.rank_type,
            "area": self.area,
            "device_type": self.device_type,
            "landing_page": self.landing_page,
        }


@dataclass(frozen=True)
class DailyRank:
    """1 キーワード × 1 日の順位. 圏外の日はレコード自体を作らない."""

    pascal_id: int
    date: str  # YYYY-MM-DD
    rank: int  # 1 以上


@dataclass(frozen=True)
class RankPoint:
    """DB から読み出した順位 (日付昇順で返る)."""

    date: str  # YYYY-MM-DD
    rank: int


@dataclass(frozen=True)
class RowSkipped:
    """スキップしたデータ行."""

    row_number: int  # ファイル上の行番号 (1 始まり、空行も数える)
    reason: str

    def __str__(self) -> str:
        return f"Row {self.row_number}: {self.reason}"


@dataclass(frozen=True)
class ColumnMapping:
    """ヘッダー行から一度だけ解決するカラム対応表."""

    fields: Mapping[str, int]  # 固定フィールド名 -> 列番号
    date_columns: tuple[tuple[int, str], ...]  # (列番号, YYYY-MM-DD) の列順

    def __post_init__(self):
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))
        object.__setattr__(self, "date_columns", tuple(self.date_columns))

    @property
    def required_width(self) -> int:
        """データ行に必要な最小カラム数. 日付列は途中で切れていてもよい."""
        return max(self.fields.values()) + 1

    @property
    def date_range(self) -> tuple[str, str]:
        dates = sorted(d for _, d in self.date_columns)
        return dates[0], dates[-1]


@dataclass
class ParsedExport:
    """CSV 解析結果."""

    mapping: ColumnMapping
    keywords: list[KeywordRecord] = field(default_factory=list)
    rankings: list[DailyRank] = field(default_factory=list)
    skipped: list[RowSkipped] = field(default_factory=list)


@dataclass
class ImportResult:
    """インポート結果. errors が空なら success."""

    total_keywords: int = 0
    imported_keywords: int = 0
    total_rankings: int = 0
    imported_rankings: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def summary(self) -> str:
        return (
            f"Keywords: {self.imported_keywords}/{self.total_keywords}, "
            f"Rankings: {self.imported_rankings}/{self.total_rankings}"
        )


class Granularity(str, Enum):
    """グラフの集計単位."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class AggregatedPoint:
    """グラフ 1 点分の集計値. rank が None なら圏外."""

    date: str  # バケットの先頭日 YYYY-MM-DD
    rank: int | None
    avg_rank: int
    min_rank: int
    max_rank: int
    count: int
    is_out_of_range: bool

    @property
    def plot_rank(self) -> int:
        """描画用の値. 圏外は OUT_OF_RANGE_RANK."""
        return OUT_OF_RANGE_RANK if self.rank is None else self.rank
