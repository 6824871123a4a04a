"""例外定義.

インポートを中断するのは EncodingError / SchemaError / EmptyInputError のみ。
PersistenceError 系は取り込み処理の中で集計され、結果の errors に載る。
"""

from __future__ import annotations


class RankImportError(Exception):
    """順位インポート処理の基底例外."""


class ConfigError(RankImportError):
    """接続設定が不足している."""


class EncodingError(RankImportError):
    """バイト列をテキストに復号できない."""


class SchemaError(RankImportError):
    """ヘッダーから必須カラムまたは日付カラムを特定できない."""


class EmptyInputError(RankImportError):
    """空ファイル、データ行なし、または有効なキーワードが 0 件."""


class PersistenceError(RankImportError):
    """Supabase への書き込み・読み込みの失敗."""


class EntityUpsertError(PersistenceError):
    """キーワード 1 件の upsert 失敗."""

    def __init__(self, pascal_id: int, message: str):
        self.pascal_id = pascal_id
        super().__init__(f"Pascal ID {pascal_id}: {message}")


class FactUpsertError(PersistenceError):
    """順位レコード 1 バッチの upsert 失敗."""


class PersistenceUnavailable(PersistenceError):
    """Supabase に到達できない. 現在のステージの残りバッチを打ち切る."""
