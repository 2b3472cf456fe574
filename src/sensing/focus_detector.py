"""Sustained-focus detection.

Each tick runs up to three layers, cheapest first:

1. pre-screen: is any single application showing enough title churn?
2. timeline + objective metrics built from the same window
3. a semantic judgment by the external reasoning service

Layer 3 is only paid for when layers 1 and 2 found a candidate.  After a
completed cycle the next one waits for a cooldown whose length depends on
whether the cycle was a hit or a miss.
"""

import threading
import time
from collections import Counter
from collections.abc import Callable, Sequence

from src.api.services.prompts import build_focus_prompt
from src.api.services.response_parser import parse_focus_result
from src.config import (
    COOLDOWN_DETECTED_RANGE,
    COOLDOWN_MISSED_RANGE,
    WINDOW_MINUTES_RANGE,
    SensingConfig,
    clamp,
)
from src.logger import get_logger
from src.model.models import (
    TITLE_KINDS,
    BehaviorEvent,
    BehaviorEventKind,
    Capability,
    FocusDetectResult,
    ObjectiveMetrics,
    PreScreenResult,
    TabSnapshot,
    TimelineEntry,
)
from src.sensing.interfaces import (
    CapabilitySearchBackend,
    EventSource,
    ReasoningBackend,
    SnapshotSource,
)

log = get_logger("focus")

INITIAL_COOLDOWN_SECONDS = 120.0
MAX_TIMELINE_ENTRIES = 15
MAX_SUGGESTED_CAPABILITIES = 3
SEARCH_LIMIT = 5


def _never() -> bool:
    return False


# pre-screen profiles
SNAPSHOT_MIN_TITLE_EVENTS = 3
SNAPSHOT_MIN_TABS = 4
NO_SNAPSHOT_MIN_TITLE_EVENTS = 4
MIN_DISTINCT_TITLES = 2


class FocusDetector:
    """Three-layer focus detection pipeline with single-flight and cooldown."""

    def __init__(
        self,
        events: EventSource,
        snapshots: SnapshotSource,
        reasoning: ReasoningBackend,
        capability_search: CapabilitySearchBackend | None = None,
        capabilities: Sequence[Capability] = (),
        config: SensingConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._events = events
        self._snapshots = snapshots
        self._reasoning = reasoning
        self._capability_search = capability_search
        self.capabilities = list(capabilities)
        self._clock = clock

        self.detection_window_minutes = 5.0
        self.cooldown_detected_minutes = 10.0
        self.cooldown_missed_minutes = 2.0
        self.strictness = 1
        self.snapshot_max_age = 300.0
        self.apply_config(config or SensingConfig())

        self.last_detect_time = float("-inf")
        self.last_cooldown_seconds = INITIAL_COOLDOWN_SECONDS
        self._cycle_lock = threading.Lock()

    # --- settings ------------------------------------------------------

    def apply_config(self, config: SensingConfig) -> None:
        self.detection_window_minutes = clamp(
            config.detection_window_minutes, *WINDOW_MINUTES_RANGE
        )
        self.cooldown_detected_minutes = clamp(
            config.cooldown_detected_minutes, *COOLDOWN_DETECTED_RANGE
        )
        self.cooldown_missed_minutes = clamp(
            config.cooldown_missed_minutes, *COOLDOWN_MISSED_RANGE
        )
        self.strictness = int(clamp(config.strictness, 0, 2))
        self.snapshot_max_age = config.snapshot_max_age

    def reset(self) -> None:
        """クールダウンを初期状態に戻す."""
        self.last_detect_time = float("-inf")
        self.last_cooldown_seconds = INITIAL_COOLDOWN_SECONDS

    @property
    def window_seconds(self) -> float:
        return self.detection_window_minutes * 60

    @property
    def is_analyzing(self) -> bool:
        return self._cycle_lock.locked()

    def cooldown_passed(self) -> bool:
        return self._clock() - self.last_detect_time > self.last_cooldown_seconds

    # --- cycle ---------------------------------------------------------

    def tick(
        self, is_cancelled: Callable[[], bool] | None = None
    ) -> FocusDetectResult | None:
        """Run one cycle; returns a result only when something was detected.

        ``is_cancelled`` is polled before each external call; once it returns
        True the cycle ends without a result and without touching the cooldown.
        """
        if not self._cycle_lock.acquire(blocking=False):
            log.info("tick: skipped (analyzing)")
            return None
        try:
            return self._run_cycle(is_cancelled or _never)
        finally:
            self._cycle_lock.release()

    def _run_cycle(self, is_cancelled: Callable[[], bool]) -> FocusDetectResult | None:
        if not self.cooldown_passed():
            log.debug("tick: cooling down (%.0fs)", self.last_cooldown_seconds)
            return None

        events = self._events.snapshot(self.window_seconds)

        # Layer 1
        pre = self.pre_screen(events)
        if not pre.triggered:
            log.debug("tick: pre-screen not triggered (%d events)", len(events))
            return None
        log.info("Pre-screen passed: app=%s id=%s", pre.trigger_app, pre.application_id)

        # Layer 2
        timeline = self.build_timeline(events)
        if not timeline:
            return None
        snapshot = self._snapshot_for(pre.application_id)
        metrics = self.compute_metrics(timeline, pre.trigger_app, snapshot, events)
        log.info(
            "Metrics: revisit=%d tabRatio=%.0f%% clipRel=%d focus=%.0f%%",
            metrics.revisit_count,
            metrics.browsed_tab_ratio * 100,
            metrics.clipboard_relevance,
            metrics.trigger_app_focus * 100,
        )

        # Layer 3
        if is_cancelled():
            log.info("tick: cancelled before judgment")
            return None
        detected = False
        try:
            result = self.judge(timeline, snapshot, metrics, is_cancelled)
            detected = result.detected
        finally:
            self._record_outcome(detected=detected)

        if not detected:
            log.info("Not detected")
            return None
        log.info(
            "Detected: conf=%s theme=%s",
            result.confidence.value if result.confidence else "?",
            result.theme,
        )
        return result

    def _record_outcome(self, *, detected: bool) -> None:
        self.last_detect_time = self._clock()
        minutes = self.cooldown_detected_minutes if detected else self.cooldown_missed_minutes
        self.last_cooldown_seconds = minutes * 60

    def _snapshot_for(self, application_id: str) -> TabSnapshot | None:
        if not application_id:
            return None
        return self._snapshots.get(application_id, self.snapshot_max_age)

    def _in_window(self, events: Sequence[BehaviorEvent]) -> list[BehaviorEvent]:
        cutoff = self._clock() - self.window_seconds
        return [e for e in events if e.timestamp >= cutoff]

    # --- layer 1 -------------------------------------------------------

    def pre_screen(self, events: Sequence[BehaviorEvent]) -> PreScreenResult:
        """タイトル変化が多いアプリを1つ選ぶ（見つからなければ triggered=False）."""
        by_app: dict[str, list[BehaviorEvent]] = {}
        for event in self._in_window(events):
            if event.kind in TITLE_KINDS and event.context:
                by_app.setdefault(event.context, []).append(event)

        for app, app_events in by_app.items():
            distinct_titles = {e.detail for e in app_events}
            application_id = self._snapshots.lookup_application_id(
                app, self.snapshot_max_age
            )
            snapshot = self._snapshot_for(application_id)

            # snapshot and no-snapshot profiles use different minimums
            if snapshot is not None:
                qualifies = (
                    len(app_events) >= SNAPSHOT_MIN_TITLE_EVENTS
                    and len(distinct_titles) >= MIN_DISTINCT_TITLES
                    and len(snapshot.tabs) >= SNAPSHOT_MIN_TABS
                )
            else:
                qualifies = (
                    len(app_events) >= NO_SNAPSHOT_MIN_TITLE_EVENTS
                    and len(distinct_titles) >= MIN_DISTINCT_TITLES
                )
            if qualifies:
                return PreScreenResult(
                    triggered=True, trigger_app=app, application_id=application_id
                )

        return PreScreenResult(triggered=False)

    # --- layer 2 -------------------------------------------------------

    def build_timeline(self, events: Sequence[BehaviorEvent]) -> list[TimelineEntry]:
        timeline: list[TimelineEntry] = []
        seen_titles: set[str] = set()
        current_title: str | None = None

        for event in sorted(self._in_window(events), key=lambda e: e.timestamp):
            if event.kind in TITLE_KINDS:
                if event.detail == current_title:
                    continue
                timeline.append(
                    TimelineEntry(
                        timestamp=event.timestamp,
                        app=event.context or "",
                        title=event.detail,
                        is_revisit=event.detail in seen_titles,
                    )
                )
                seen_titles.add(event.detail)
                current_title = event.detail
            elif event.kind in (BehaviorEventKind.DWELL, BehaviorEventKind.CLICK):
                if timeline and event.detail and timeline[-1].ax_context is None:
                    timeline[-1].ax_context = event.detail
            elif event.kind is BehaviorEventKind.CLIPBOARD:
                if timeline and event.detail and timeline[-1].clipboard_content is None:
                    timeline[-1].clipboard_content = event.detail

        return timeline[-MAX_TIMELINE_ENTRIES:]

    def compute_metrics(
        self,
        timeline: Sequence[TimelineEntry],
        trigger_app: str,
        tab_snapshot: TabSnapshot | None,
        events: Sequence[BehaviorEvent],
    ) -> ObjectiveMetrics:
        title_counts = Counter(entry.title for entry in timeline)
        revisit_count = sum(1 for count in title_counts.values() if count >= 2)

        browsed_tab_ratio = 0.0
        if tab_snapshot is not None and tab_snapshot.tabs:
            browsed = sum(1 for tab in tab_snapshot.tabs if tab.title in title_counts)
            browsed_tab_ratio = browsed / len(tab_snapshot.tabs)

        titles = [entry.title.lower() for entry in timeline]
        clipboard_relevance = 0
        for entry in timeline:
            if not entry.clipboard_content:
                continue
            clip = entry.clipboard_content.lower()
            if any(clip in title or title in clip for title in titles):
                clipboard_relevance += 1

        title_events = [e for e in self._in_window(events) if e.kind in TITLE_KINDS]
        trigger_events = [e for e in title_events if (e.context or "") == trigger_app]
        trigger_app_focus = len(trigger_events) / len(title_events) if title_events else 0.0

        return ObjectiveMetrics(
            revisit_count=revisit_count,
            browsed_tab_ratio=browsed_tab_ratio,
            clipboard_relevance=clipboard_relevance,
            trigger_app_focus=trigger_app_focus,
        )

    # --- layer 3 -------------------------------------------------------

    def judge(
        self,
        timeline: Sequence[TimelineEntry],
        tab_snapshot: TabSnapshot | None,
        metrics: ObjectiveMetrics,
        is_cancelled: Callable[[], bool] | None = None,
    ) -> FocusDetectResult:
        prompt = build_focus_prompt(
            timeline, tab_snapshot, metrics, self.capabilities, self.strictness
        )
        reply = self._reasoning.complete(prompt)
        result = parse_focus_result(reply)
        if result.detected and not (is_cancelled and is_cancelled()):
            self._enrich_offer(result)
        return result

    def _enrich_offer(self, result: FocusDetectResult) -> None:
        if result.search_keywords and self._capability_search is not None:
            found = self._capability_search.search(result.search_keywords, limit=SEARCH_LIMIT)
            if found:
                names = ", ".join(c.name for c in found[:MAX_SUGGESTED_CAPABILITIES])
                result.offer = f"{result.offer or ''} (suggested capabilities: {names})".strip()

        skill = result.installed_capability
        if skill and result.offer and skill not in result.offer:
            result.offer = f"Try {skill}. {result.offer}"
