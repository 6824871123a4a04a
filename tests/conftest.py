"""テスト共通のフィクスチャ."""

from __future__ import annotations

import asyncio

import pytest

from src.errors import EntityUpsertError, FactUpsertError, PersistenceUnavailable

JA_HEADER = (
    "Pascal ID,キーワード,月間検索数（月平均）,ドメイン,サイト名,順位取得,エリア,種別,"
    "ランディングページ（最新日付）,2025年1月1日,2025年1月2日,2025年1月3日"
)


def make_csv(*rows: str, header: str = JA_HEADER, encoding: str = "cp932") -> bytes:
    """ヘッダーとデータ行から CSV のバイト列を作る."""
    return "\r\n".join([header, *rows]).encode(encoding)


class MemoryStore:
    """Supabase の代わりにメモリ上で upsert を再現するストア."""

    def __init__(self):
        self.keywords: dict[int, dict] = {}
        self.rankings: dict[tuple[str, str], int] = {}
        self.keyword_calls: list[int] = []
        self.ranking_batches: list[int] = []
        self.failing_keywords: set[int] = set()
        self.failing_ranking_ids: set[str] = set()
        self.keywords_unavailable = False
        self.rankings_unavailable = False
        self.in_flight = 0
        self.max_in_flight = 0

    async def upsert_keyword(self, keyword):
        self.keyword_calls.append(keyword.pascal_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.keywords_unavailable:
                raise PersistenceUnavailable("connection refused")
            if keyword.pascal_id in self.failing_keywords:
                raise EntityUpsertError(keyword.pascal_id, "duplicate key value")
            existing = self.keywords.get(keyword.pascal_id)
            keyword_id = existing["id"] if existing else f"uuid-{keyword.pascal_id}"
            self.keywords[keyword.pascal_id] = {"id": keyword_id, **keyword.to_row()}
            return keyword_id
        finally:
            self.in_flight -= 1

    async def bulk_upsert_rankings(self, records):
        await asyncio.sleep(0)
        self.ranking_batches.append(len(records))
        if self.rankings_unavailable:
            raise PersistenceUnavailable("timeout")
        if any(r["pascal_keyword_id"] in self.failing_ranking_ids for r in records):
            raise FactUpsertError("invalid input syntax")
        for r in records:
            self.rankings[(r["pascal_keyword_id"], r["date"])] = r["rank"]
        return records


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()
