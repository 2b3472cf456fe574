"""推論サービスの自由文応答から JSON を取り出すアダプタ.

応答は ```json フェンスや前後の説明文を含むことがあるため、
厳密パース → 最初に見つかった妥当なオブジェクト → 未検出 の順にフォールバックする。
構造化出力APIに切り替える場合はこのモジュールだけを差し替えればよい。
"""

import json
import re
from collections.abc import Iterable
from typing import Any, cast

from src.logger import get_logger
from src.model.models import (
    BurstAnalysis,
    BurstAnalysisPayload,
    Confidence,
    FocusDetectPayload,
    FocusDetectResult,
)

log = get_logger("parser")

FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)
MAX_SEARCH_KEYWORDS = 5


def _strip_fences(text: str) -> str:
    return FENCE_PATTERN.sub("", text).strip()


def _matches(obj: Any, required: Iterable[str]) -> bool:
    return isinstance(obj, dict) and all(key in obj for key in required)


def extract_json_object(text: str, required: Iterable[str] = ()) -> dict[str, Any] | None:
    """Return the first JSON object in ``text`` that has every ``required`` key."""
    required = tuple(required)
    cleaned = _strip_fences(text)
    if not cleaned:
        return None

    try:
        whole = json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    else:
        if _matches(whole, required):
            return cast("dict[str, Any]", whole)

    decoder = json.JSONDecoder()
    start = cleaned.find("{")
    while start != -1:
        try:
            candidate, _ = decoder.raw_decode(cleaned, start)
        except json.JSONDecodeError:
            candidate = None
        if _matches(candidate, required):
            return cast("dict[str, Any]", candidate)
        start = cleaned.find("{", start + 1)
    return None


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_focus_result(text: str | None) -> FocusDetectResult:
    """フォーカス判定の応答を解析する。使えない応答はすべて未検出扱い."""
    if not text:
        return FocusDetectResult.missed()

    data = extract_json_object(text, required=("detected",))
    if data is None:
        log.warning("Focus reply had no usable JSON: %s", text[:200])
        return FocusDetectResult.missed()

    payload = cast("FocusDetectPayload", data)
    if payload.get("detected") is not True:
        return FocusDetectResult.missed()

    # Anything other than "high" is shown as medium.
    raw_confidence = str(payload.get("confidence", "")).strip().lower()
    confidence = Confidence.HIGH if raw_confidence == "high" else Confidence.MEDIUM

    keywords = payload.get("searchKeywords")
    search_keywords = None
    if isinstance(keywords, list):
        search_keywords = [k.strip() for k in keywords if isinstance(k, str) and k.strip()]
        search_keywords = search_keywords[:MAX_SEARCH_KEYWORDS] or None

    return FocusDetectResult(
        detected=True,
        confidence=confidence,
        theme=_optional_str(payload.get("theme")),
        observation=_optional_str(payload.get("observation")),
        insight=_optional_str(payload.get("insight")),
        offer=_optional_str(payload.get("offer")),
        installed_capability=_optional_str(payload.get("installedCapability")),
        search_keywords=search_keywords,
    )


def parse_burst_analysis(text: str | None) -> BurstAnalysis | None:
    if not text:
        return None

    data = extract_json_object(text, required=("confidence",))
    if data is None:
        log.warning("Burst reply had no usable JSON: %s", text[:200])
        return None

    payload = cast("BurstAnalysisPayload", data)
    raw_confidence = str(payload["confidence"]).strip().lower()
    try:
        confidence = Confidence(raw_confidence)
    except ValueError:
        confidence = Confidence.LOW

    return BurstAnalysis(
        confidence=confidence,
        observation=_optional_str(payload.get("observation")) or "",
        suggestion=_optional_str(payload.get("suggestion")) or "",
    )
