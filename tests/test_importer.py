"""importer モジュールのユニットテスト."""

import asyncio

import pytest

from conftest import make_csv
from src.errors import EmptyInputError, EncodingError, SchemaError
from src.importer import TOTAL_STAGES, group_rankings, import_export, keyword_batches
from src.models import DailyRank, KeywordRecord


def _run(data, store, progress=None):
    return asyncio.run(import_export(data, store, progress))


def _rows(count: int) -> list[str]:
    return [f"{i},キーワード{i},,,,,,,,{i % 90 + 1},-,{i % 7 + 1}" for i in range(1, count + 1)]


class TestImportExport:
    """import_export のテスト."""

    def test_import(self, store):
        """キーワードと順位がすべて登録されること."""
        data = make_csv(
            "101,太陽光発電,2400,example.com,サンプル,ドメイン一致,東京都,PC,https://example.com/,3,-,5",
            "102,蓄電池,,,,,,SP,,,12,",
        )
        result = _run(data, store)

        assert result.success
        assert result.errors == []
        assert (result.total_keywords, result.imported_keywords) == (2, 2)
        assert (result.total_rankings, result.imported_rankings) == (3, 3)
        assert result.summary == "Keywords: 2/2, Rankings: 3/3"
        assert store.keywords[101]["keyword_text"] == "太陽光発電"
        assert store.keywords[102]["device_type"] == "SP"
        assert store.rankings == {
            ("uuid-101", "2025-01-01"): 3,
            ("uuid-101", "2025-01-03"): 5,
            ("uuid-102", "2025-01-02"): 12,
        }

    def test_reimport_is_idempotent(self, store):
        """同じ CSV を 2 回取り込んでも件数が増えないこと."""
        data = make_csv(*_rows(5))
        _run(data, store)
        keywords, rankings = dict(store.keywords), dict(store.rankings)

        result = _run(data, store)

        assert result.success
        assert store.keywords == keywords
        assert store.rankings == rankings

    def test_reimport_overwrites_rank(self, store):
        _run(make_csv("101,foo,,,,,,,,3,,"), store)
        _run(make_csv("101,foo,,,,,,,,8,,"), store)
        assert store.rankings == {("uuid-101", "2025-01-01"): 8}

    def test_duplicate_rows_last_write_wins(self, store):
        """同じ ID の行が複数あれば後の行の内容が残ること."""
        data = make_csv("7,foo,,,,,,,,1,2,", "7,bar,,,,,,,,,9,4")
        result = _run(data, store)

        assert result.success
        assert store.keyword_calls == [7, 7]
        assert store.keywords[7]["keyword_text"] == "bar"
        assert store.rankings == {
            ("uuid-7", "2025-01-01"): 1,
            ("uuid-7", "2025-01-02"): 9,
            ("uuid-7", "2025-01-03"): 4,
        }
        assert result.total_rankings == 3
        assert any("重複" in w for w in result.warnings)

    def test_skipped_rows_are_warnings(self, store):
        data = make_csv("abc,foo,,,,,,,,1,,", "8,bar,,,,,,,,1,,")
        result = _run(data, store)

        assert result.success
        assert result.warnings == ["Row 2: Invalid Pascal ID"]
        assert result.total_keywords == 1

    def test_keyword_failure_is_partial(self, store):
        """キーワード 1 件の失敗は他に影響せず、その順位だけスキップされること."""
        store.failing_keywords.add(2)
        result = _run(make_csv(*_rows(3)), store)

        assert not result.success
        assert result.imported_keywords == 2
        assert set(store.keywords) == {1, 3}
        assert len(result.errors) == 2
        assert "Pascal ID 2" in result.errors[0]
        assert "Keyword not found for Pascal ID 2" in result.errors[1]
        assert result.imported_rankings == 4
        assert result.total_rankings == 6

    def test_ranking_batch_failure_is_partial(self, store):
        store.failing_ranking_ids.add("uuid-1")
        result = _run(make_csv(*_rows(2)), store)

        assert not result.success
        assert result.imported_keywords == 2
        assert result.imported_rankings == 2
        assert "Failed to import rankings for Pascal ID 1" in result.errors[0]

    def test_keyword_batches_run_concurrently(self, store):
        """キーワードは 50 件ずつ並行に、バッチ同士は順番に登録されること."""
        result = _run(make_csv(*_rows(120)), store)

        assert result.imported_keywords == 120
        assert store.max_in_flight == 50

    def test_ranking_batches(self, store):
        """順位は 1 リクエスト 100 件以下に分割されること."""
        header = "ID,キーワード," + ",".join(f"2025-{m}-{d}" for m in (1, 2, 3, 4) for d in range(1, 29))
        row = "1,foo," + ",".join("3" for _ in range(112))
        result = _run(make_csv(row, header=header), store)

        assert result.imported_rankings == 112
        assert store.ranking_batches == [100, 12]

    def test_keywords_unavailable_halts_stage(self, store):
        """接続断ならキーワード登録の残りバッチを打ち切ること."""
        store.keywords_unavailable = True
        result = _run(make_csv(*_rows(60)), store)

        assert not result.success
        assert len(store.keyword_calls) == 50
        assert result.imported_keywords == 0
        assert result.imported_rankings == 0
        assert store.ranking_batches == []
        assert any("残り 10 件" in e for e in result.errors)

    def test_rankings_unavailable_halts_stage(self, store):
        store.rankings_unavailable = True
        result = _run(make_csv(*_rows(3)), store)

        assert not result.success
        assert result.imported_keywords == 3
        assert store.ranking_batches == [2]
        assert len(result.errors) == 1

    def test_progress(self, store):
        """進捗は (ステージ, 5, メッセージ) で 1〜5 の順に通知されること."""
        calls = []
        _run(make_csv(*_rows(3)), store, lambda *args: calls.append(args))

        stages = [stage for stage, _, _ in calls]
        assert stages == sorted(stages)
        assert set(stages) == {1, 2, 3, 4, 5}
        assert all(total == TOTAL_STAGES for _, total, _ in calls)
        assert calls[-1][2] == "インポート完了"

    def test_progress_per_ranking_batch(self, store):
        """順位登録の進捗はバッチごとに通知されること."""
        header = "ID,キーワード," + ",".join(f"2025-{m}-{d}" for m in (1, 2, 3, 4) for d in range(1, 29))
        rows = ["1,foo," + ",".join("3" for _ in range(112)), "2,bar," + ",".join("5" for _ in range(112))]
        calls = []
        _run(make_csv(*rows, header=header), store, lambda *args: calls.append(args))

        batch_reports = [msg for stage, _, msg in calls if stage == 4 and "バッチ" in msg]
        assert store.ranking_batches == [100, 12, 100, 12]
        assert len(batch_reports) == 4

    def test_broken_progress_callback(self, store):
        """進捗通知の失敗はインポートに影響しないこと."""
        def broken(*args):
            raise RuntimeError("ui closed")

        result = _run(make_csv(*_rows(2)), store, broken)
        assert result.success

    def test_utf8_file(self, store):
        result = _run(make_csv("101,foo,,,,,,,,1,,", encoding="utf-8"), store)
        assert result.success
        assert store.keywords[101]["keyword_text"] == "foo"

    def test_bare_cr_does_not_abort(self, store):
        """行の途中に CR があってもインポートが例外で止まらないこと."""
        result = _run("ID,キーワード,2025/1/1\n7,fo\ro,5\n8,bar,3\n".encode("cp932"), store)

        assert result.success
        assert set(store.keywords) == {7, 8}
        assert result.warnings == ["Row 3: Invalid Pascal ID"]

    def test_overlong_field_does_not_abort(self, store):
        """CSV として読めない行はスキップして残りを取り込むこと."""
        data = make_csv("7,foo,,,,,,,,1,,", "8,\"" + "a" * 200000)
        result = _run(data, store)

        assert result.success
        assert set(store.keywords) == {7}
        assert result.warnings == ["Row 3: Unreadable CSV row"]

    def test_empty_input(self, store):
        with pytest.raises(EmptyInputError):
            _run(b"", store)
        assert store.keyword_calls == []

    def test_no_valid_keywords(self, store):
        with pytest.raises(EmptyInputError):
            _run(make_csv("abc,foo,,,,,,,,1,,", ",bar,,,,,,,,1,,"), store)
        assert store.keyword_calls == []

    def test_schema_error(self, store):
        with pytest.raises(SchemaError):
            _run(make_csv("1,foo", header="ID,キーワード"), store)
        assert store.keyword_calls == []

    def test_encoding_error(self, store):
        with pytest.raises(EncodingError):
            _run("ID,キーワード,2025/1/1\n1,foo,1", store)


class TestKeywordBatches:
    """keyword_batches のテスト."""

    def test_split_by_size(self):
        keywords = [KeywordRecord(pascal_id=i, keyword_text="k") for i in range(5)]
        sizes = [len(b) for b in keyword_batches(keywords, 2)]
        assert sizes == [2, 2, 1]

    def test_duplicate_id_starts_new_batch(self):
        """同じ pascal_id は同じバッチに入らないこと."""
        keywords = [KeywordRecord(pascal_id=i, keyword_text="k") for i in (1, 2, 1, 3)]
        batches = [[k.pascal_id for k in b] for b in keyword_batches(keywords, 50)]
        assert batches == [[1, 2], [1, 3]]


class TestGroupRankings:
    """group_rankings のテスト."""

    def test_group(self):
        rankings = [
            DailyRank(1, "2025-01-01", 3),
            DailyRank(2, "2025-01-01", 4),
            DailyRank(1, "2025-01-02", 5),
            DailyRank(1, "2025-01-01", 6),
        ]
        grouped, collapsed = group_rankings(rankings)

        assert grouped == {1: {"2025-01-01": 6, "2025-01-02": 5}, 2: {"2025-01-01": 4}}
        assert collapsed == 1
