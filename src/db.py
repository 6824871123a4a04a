"""Supabase データベース操作モジュール.

テーブル:
  pascal_keywords      : キーワード設定（pascal_id で一意）
  pascal_daily_rankings: 日次順位（(pascal_keyword_id, date) で一意）

書き込みはすべて upsert なので、同じ CSV を何度取り込んでも重複しない。
クライアントは呼び出し側で生成して渡す（モジュール共有の状態は持たない）。
"""

from __future__ import annotations

import logging

import httpx
from supabase import AsyncClient, PostgrestAPIError, acreate_client

from src.config import (
    KEYWORDS_TABLE,
    QUERY_PAGE_SIZE,
    RANKINGS_TABLE,
    SUPABASE_SCHEMA,
    SUPABASE_SECRET_KEY,
    SUPABASE_URL,
)
from src.errors import ConfigError, EntityUpsertError, FactUpsertError, PersistenceError, PersistenceUnavailable
from src.models import KeywordRecord, RankPoint

logger = logging.getLogger(__name__)


async def connect(url: str = SUPABASE_URL, key: str = SUPABASE_SECRET_KEY) -> SupabaseGateway:
    """環境変数の接続情報から SupabaseGateway を作る."""
    if not url or not key:
        raise ConfigError("SUPABASE_URL と SUPABASE_SECRET_KEY を設定してください")
    client = await acreate_client(url, key)
    return SupabaseGateway(client)


class SupabaseGateway:
    """順位データの永続化窓口."""

    def __init__(self, client: AsyncClient, schema: str = SUPABASE_SCHEMA):
        self._client = client
        self._schema = schema

    def _table(self, name: str):
        """指定スキーマのテーブルを参照する."""
        return self._client.schema(self._schema).table(name)

    async def upsert_keyword(self, keyword: KeywordRecord) -> str:
        """キーワード設定を pascal_id をキーに upsert し、行の id (uuid) を返す.

        Raises:
            EntityUpsertError: Supabase がエラーを返した場合。
            PersistenceUnavailable: Supabase に到達できない場合。
        """
        try:
            resp = await (
                self._table(KEYWORDS_TABLE)
                .upsert(keyword.to_row(), on_conflict="pascal_id")
                .execute()
            )
        except PostgrestAPIError as e:
            raise EntityUpsertError(keyword.pascal_id, e.message or str(e)) from e
        except httpx.TransportError as e:
            raise PersistenceUnavailable(f"Supabase 接続失敗: {e}") from e

        if not resp.data:
            raise EntityUpsertError(keyword.pascal_id, "upsert の結果が空です")
        return resp.data[0]["id"]

    async def bulk_upsert_rankings(self, records: list[dict]) -> list[dict]:
        """順位レコードを (pascal_keyword_id, date) をキーに一括 upsert する.

        Args:
            records: [{"pascal_keyword_id", "date", "rank"}, ...]

        Returns:
            書き込まれた行。
        """
        if not records:
            return []
        try:
            resp = await (
                self._table(RANKINGS_TABLE)
                .upsert(records, on_conflict="pascal_keyword_id,date")
                .execute()
            )
        except PostgrestAPIError as e:
            raise FactUpsertError(e.message or str(e)) from e
        except httpx.TransportError as e:
            raise PersistenceUnavailable(f"Supabase 接続失敗: {e}") from e
        logger.debug("%s に %d 件 upsert", RANKINGS_TABLE, len(records))
        return resp.data or []

    async def query_rankings(
        self, keyword_id: str, start_date: str | None = None, end_date: str | None = None
    ) -> list[RankPoint]:
        """キーワードの順位を日付昇順で取得する. 1000 行ごとにページングする."""
        points: list[RankPoint] = []
        offset = 0
        while True:
            query = (
                self._table(RANKINGS_TABLE)
                .select("date, rank")
                .eq("pascal_keyword_id", keyword_id)
            )
            if start_date:
                query = query.gte("date", start_date)
            if end_date:
                query = query.lte("date", end_date)
            resp = await self._run(
                query.order("date").range(offset, offset + QUERY_PAGE_SIZE - 1)
            )
            rows = resp.data or []
            # 旧データには rank が NULL の行が残っている
            points.extend(RankPoint(date=r["date"], rank=r["rank"]) for r in rows if r.get("rank"))
            if len(rows) < QUERY_PAGE_SIZE:
                break
            offset += QUERY_PAGE_SIZE
        return points

    async def list_keywords(self) -> list[dict]:
        """全キーワード設定をキーワード順に取得する."""
        resp = await self._run(self._table(KEYWORDS_TABLE).select("*").order("keyword_text"))
        return resp.data or []

    async def get_keyword(self, keyword_id: str) -> dict | None:
        resp = await self._run(self._table(KEYWORDS_TABLE).select("*").eq("id", keyword_id).limit(1))
        return resp.data[0] if resp.data else None

    async def get_keyword_by_pascal_id(self, pascal_id: int) -> dict | None:
        resp = await self._run(
            self._table(KEYWORDS_TABLE).select("*").eq("pascal_id", pascal_id).limit(1)
        )
        return resp.data[0] if resp.data else None

    async def latest_rank(self, keyword_id: str) -> RankPoint | None:
        """キーワードの最新日の順位."""
        resp = await self._run(
            self._table(RANKINGS_TABLE)
            .select("date, rank")
            .eq("pascal_keyword_id", keyword_id)
            .order("date", desc=True)
            .limit(1)
        )
        if not resp.data:
            return None
        row = resp.data[0]
        return RankPoint(date=row["date"], rank=row["rank"]) if row.get("rank") else None

    async def ranking_date_range(self) -> tuple[str, str] | None:
        """DB 内の順位データの最古日と最新日."""
        first = await self._run(self._table(RANKINGS_TABLE).select("date").order("date").limit(1))
        last = await self._run(
            self._table(RANKINGS_TABLE).select("date").order("date", desc=True).limit(1)
        )
        if not first.data or not last.data:
            return None
        return first.data[0]["date"], last.data[0]["date"]

    async def list_keywords_with_latest_rank(self) -> list[dict]:
        """一覧表示用: キーワード設定に最新順位 (current_rank) を付けて返す."""
        keywords = await self.list_keywords()
        for keyword in keywords:
            latest = await self.latest_rank(keyword["id"])
            keyword["current_rank"] = latest.rank if latest else None
        return keywords

    async def _run(self, query):
        """読み出しクエリを実行する."""
        try:
            return await query.execute()
        except PostgrestAPIError as e:
            raise PersistenceError(e.message or str(e)) from e
        except httpx.TransportError as e:
            raise PersistenceUnavailable(f"Supabase 接続失敗: {e}") from e
