"""CSV バイト列の文字コード判定モジュール.

判定戦略:
  1. Shift_JIS (cp932) で復号し、既知のヘッダー文字列を含むか確認（主戦略）
  2. UTF-8 で復号（フォールバック）

あくまで推定であり、壊れたファイルは文字化けしたテキストとして返る。
後段の行スキップで吸収する前提。
"""

from __future__ import annotations

import logging

from src.config import ENCODING_MARKERS, FALLBACK_ENCODING, LEGACY_ENCODING
from src.errors import EncodingError

logger = logging.getLogger(__name__)


def decode_export(data: bytes) -> str:
    """CSV ファイルのバイト列をテキストに復号する.

    Raises:
        EncodingError: バイト列以外が渡された場合。
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise EncodingError(f"バイト列ではありません: {type(data).__name__}")
    raw = bytes(data)

    legacy_text = _try_decode(raw, LEGACY_ENCODING)
    if legacy_text is not None and _looks_valid(legacy_text):
        logger.debug("%s で復号", LEGACY_ENCODING)
        return legacy_text

    logger.info("%s での復号結果が不正。%s にフォールバック", LEGACY_ENCODING, FALLBACK_ENCODING)
    # utf-8-sig は BOM 付き UTF-8 も受け付ける
    text = _try_decode(raw, f"{FALLBACK_ENCODING}-sig")
    if text is not None:
        return text

    if legacy_text is not None:
        # UTF-8 としては不正だが Shift_JIS としては読めている
        logger.warning("マーカー文字列なし。%s の復号結果を採用", LEGACY_ENCODING)
        return legacy_text

    logger.warning("どの文字コードでも正しく復号できません。置換文字で復号します")
    return raw.decode(FALLBACK_ENCODING, errors="replace")


def _try_decode(raw: bytes, encoding: str) -> str | None:
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError:
        return None


def _looks_valid(text: str) -> bool:
    """復号結果に既知のヘッダー文字列が含まれるか."""
    return any(marker in text for marker in ENCODING_MARKERS)
