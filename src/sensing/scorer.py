"""Heuristic "burst" score over a short window of behavior events.

Six independent rules add points; the total is compared against a
threshold derived from the user's sensitivity.
"""

import math
from collections.abc import Sequence
from enum import Enum

from src.model.models import BehaviorEvent, BehaviorEventKind

BASE_THRESHOLD = 5
MIN_THRESHOLD = 2
SENSITIVITY_RANGE = (0.5, 2.0)

RAPID_SPAN_SECONDS = 30.0

APP_SWITCH_MIN = 4
APP_SWITCH_POINTS = 3
CLIPBOARD_MIN = 3
CLIPBOARD_POINTS = 3
CLIPBOARD_SIMILAR_POINTS = 2
DWELL_MIN = 2
DWELL_POINTS = 2
TAB_SWITCH_MIN = 3
TAB_SWITCH_POINTS = 2
FILE_OP_MIN = 2
FILE_OP_POINTS = 2


class ContentType(Enum):
    CHINESE = "chinese"
    ENGLISH = "english"
    NUMERIC = "numeric"
    MIXED = "mixed"


def _is_han(ch: str) -> bool:
    return "\u4e00" <= ch <= "\u9fff"


def classify_content(text: str) -> ContentType:
    """文字種の過半数で内容を分類する（どれも過半数でなければ mixed）."""
    stripped = text.strip()
    if not stripped:
        return ContentType.MIXED

    han = sum(1 for ch in stripped if _is_han(ch))
    letters = sum(1 for ch in stripped if ch.isalpha() and not _is_han(ch))
    digits = sum(1 for ch in stripped if ch.isdigit())

    half = len(stripped) / 2
    if han > half:
        return ContentType.CHINESE
    if letters > half:
        return ContentType.ENGLISH
    if digits > half:
        return ContentType.NUMERIC
    return ContentType.MIXED


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _of_kind(events: Sequence[BehaviorEvent], *kinds: BehaviorEventKind) -> list[BehaviorEvent]:
    return [e for e in events if e.kind in kinds]


def _recent_span_within(events: list[BehaviorEvent], count: int) -> bool:
    if len(events) < count:
        return False
    recent = events[-count:]
    return recent[-1].timestamp - recent[0].timestamp <= RAPID_SPAN_SECONDS


class Scorer:
    """Stateless rule engine; only the sensitivity is mutable."""

    def __init__(self, sensitivity: float = 1.0) -> None:
        self._sensitivity = 1.0
        self.sensitivity = sensitivity

    @property
    def sensitivity(self) -> float:
        return self._sensitivity

    @sensitivity.setter
    def sensitivity(self, value: float) -> None:
        low, high = SENSITIVITY_RANGE
        self._sensitivity = min(max(value, low), high)

    @staticmethod
    def threshold_for(sensitivity: float) -> int:
        low, high = SENSITIVITY_RANGE
        clamped = min(max(sensitivity, low), high)
        return max(MIN_THRESHOLD, _round_half_up(BASE_THRESHOLD / clamped))

    @property
    def threshold(self) -> int:
        return self.threshold_for(self._sensitivity)

    def score(self, events: Sequence[BehaviorEvent]) -> int:
        return (
            self.score_app_switching(events)
            + self.score_clipboard_frequency(events)
            + self.score_clipboard_similarity(events)
            + self.score_dwell(events)
            + self.score_tab_switching(events)
            + self.score_file_ops(events)
        )

    def should_trigger(self, events: Sequence[BehaviorEvent]) -> bool:
        return self.score(events) >= self.threshold

    # --- rules ---------------------------------------------------------

    def score_app_switching(self, events: Sequence[BehaviorEvent]) -> int:
        switches = _of_kind(events, BehaviorEventKind.APP_SWITCH)
        return APP_SWITCH_POINTS if _recent_span_within(switches, APP_SWITCH_MIN) else 0

    def score_clipboard_frequency(self, events: Sequence[BehaviorEvent]) -> int:
        clips = _of_kind(events, BehaviorEventKind.CLIPBOARD)
        return CLIPBOARD_POINTS if _recent_span_within(clips, CLIPBOARD_MIN) else 0

    def score_clipboard_similarity(self, events: Sequence[BehaviorEvent]) -> int:
        clips = _of_kind(events, BehaviorEventKind.CLIPBOARD)
        if len(clips) < CLIPBOARD_MIN:
            return 0

        details = [e.detail for e in clips[-CLIPBOARD_MIN:]]
        lengths = [len(d) for d in details]
        avg = sum(lengths) / len(lengths)
        length_consistent = avg > 0 and all(
            avg * 0.5 <= length <= avg * 1.5 for length in lengths
        )
        type_consistent = len({classify_content(d) for d in details}) == 1
        return CLIPBOARD_SIMILAR_POINTS if length_consistent and type_consistent else 0

    def score_dwell(self, events: Sequence[BehaviorEvent]) -> int:
        # Count dwell/click since the most recent app switch.
        ordered = sorted(events, key=lambda e: e.timestamp)
        dwells = 0
        for event in reversed(ordered):
            if event.kind is BehaviorEventKind.APP_SWITCH:
                break
            if event.kind in (BehaviorEventKind.DWELL, BehaviorEventKind.CLICK):
                dwells += 1
        return DWELL_POINTS if dwells >= DWELL_MIN else 0

    def score_tab_switching(self, events: Sequence[BehaviorEvent]) -> int:
        tabs = _of_kind(events, BehaviorEventKind.TAB_SWITCH)
        return TAB_SWITCH_POINTS if _recent_span_within(tabs, TAB_SWITCH_MIN) else 0

    def score_file_ops(self, events: Sequence[BehaviorEvent]) -> int:
        ops = _of_kind(events, BehaviorEventKind.FILE_OP)
        return FILE_OP_POINTS if len(ops) >= FILE_OP_MIN else 0
