"""Runs the fast (burst) and slow (focus) detection loops.

Both loops share the event buffer and the snapshot cache but are otherwise
independent: each has its own daemon thread ticking on its own period, its
own single-flight flag, and its own cooldown.  Cycles are executed on a
small thread pool so a slow reasoning call in one loop never delays the
other.  Every result goes to a single ``on_result`` observer.
"""

import re
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor

from src.api.services.prompts import build_burst_prompt
from src.api.services.response_parser import parse_burst_analysis
from src.config import SensingConfig
from src.logger import get_logger
from src.model.models import (
    BehaviorEvent,
    BehaviorEventKind,
    Capability,
    Confidence,
    SensingResult,
)
from src.sensing.focus_detector import FocusDetector
from src.sensing.interfaces import (
    CapabilitySearchBackend,
    EventSource,
    ReasoningBackend,
    ResultObserver,
    SnapshotSource,
)
from src.sensing.scorer import Scorer

log = get_logger("orchestrator")

APP_KEYWORDS = (
    "excel",
    "chrome",
    "safari",
    "finder",
    "mail",
    "slack",
    "keynote",
    "pages",
    "numbers",
    "vscode",
    "xcode",
    "notion",
    "figma",
    "sketch",
    "terminal",
    "iterm",
)
MAX_KEYWORDS = 3
TABLE_PATTERN = re.compile(r"(\w+,){2,}")
STOP_JOIN_TIMEOUT = 5.0


def compress_events(events: Sequence[BehaviorEvent], max_count: int) -> list[BehaviorEvent]:
    """イベント数を max_count 以下に間引く（直近分は必ず残す）."""
    if len(events) <= max_count:
        return list(events)
    keep_recent = min(10, max_count // 3)
    keep_earlier = max_count - keep_recent
    earlier = list(events[: len(events) - keep_recent])
    stride = max(1, len(earlier) // keep_earlier)
    sampled = earlier[::stride][:keep_earlier]
    return sampled + list(events[len(events) - keep_recent :])


def extract_keywords(events: Sequence[BehaviorEvent]) -> list[str]:
    """Derive up to three capability-search keywords from recent events."""
    keywords: list[str] = []

    def add(keyword: str) -> None:
        if keyword not in keywords:
            keywords.append(keyword)

    for event in events:
        kind = event.kind
        if kind is BehaviorEventKind.CLIPBOARD:
            if "http://" in event.detail or "https://" in event.detail:
                add("web")
            if "\t" in event.detail or TABLE_PATTERN.search(event.detail):
                add("table")
        elif kind in (BehaviorEventKind.TAB_SWITCH, BehaviorEventKind.TAB_SNAPSHOT):
            add("browser")
        elif kind is BehaviorEventKind.FILE_OP:
            add("file")
        else:
            text = f"{event.detail} {event.context or ''}".lower()
            for app in APP_KEYWORDS:
                if app in text:
                    add(app)
    return keywords[:MAX_KEYWORDS]


class SensingOrchestrator:
    """Owns both detection loops and the outward result channel."""

    def __init__(
        self,
        events: EventSource,
        snapshots: SnapshotSource,
        reasoning: ReasoningBackend,
        on_result: ResultObserver,
        capability_search: CapabilitySearchBackend | None = None,
        capabilities: Sequence[Capability] = (),
        config: SensingConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or SensingConfig()
        self._events = events
        self._reasoning = reasoning
        self._capability_search = capability_search
        self.capabilities = list(capabilities)
        self._on_result = on_result
        self._clock = clock

        self.scorer = Scorer(self.config.sensitivity)
        self.focus_detector = FocusDetector(
            events,
            snapshots,
            reasoning,
            capability_search=capability_search,
            capabilities=self.capabilities,
            config=self.config,
            clock=clock,
        )

        self._burst_lock = threading.Lock()
        self._last_burst_time = float("-inf")
        self._emit_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._generation = 0
        self._running = False
        self._started_once = False
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._executor: ThreadPoolExecutor | None = None

    # --- settings ------------------------------------------------------

    @property
    def sensitivity(self) -> float:
        return self.scorer.sensitivity

    @sensitivity.setter
    def sensitivity(self, value: float) -> None:
        self.scorer.sensitivity = value
        self.config.sensitivity = self.scorer.sensitivity

    def apply_config(self, config: SensingConfig) -> None:
        self.config = config
        self.scorer.sensitivity = config.sensitivity
        self.focus_detector.apply_config(config)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_analyzing(self) -> bool:
        return self._burst_lock.locked()

    # --- lifecycle -----------------------------------------------------

    def start(self) -> None:
        with self._state_lock:
            if self._running:
                return
            self._running = True
            self._started_once = True
            self._generation += 1
            self._stop_event = threading.Event()
            self._executor = ThreadPoolExecutor(
                max_workers=2, thread_name_prefix="sensing-cycle"
            )
            loops = [("burst-loop", self.config.burst_period_seconds, self.evaluate)]
            if self.config.focus_enabled:
                loops.append(("focus-loop", self.config.focus_period_seconds, self.focus_tick))
            self._threads = [
                threading.Thread(
                    target=self._run_loop,
                    args=(period, tick, self._stop_event),
                    name=name,
                    daemon=True,
                )
                for name, period, tick in loops
            ]
            for thread in self._threads:
                thread.start()
        log.info(
            "Sensing started (sensitivity=%.2f threshold=%d focus=%s)",
            self.scorer.sensitivity,
            self.scorer.threshold,
            self.config.focus_enabled,
        )

    def stop(self) -> None:
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            self._generation += 1
            self._stop_event.set()
            threads, self._threads = self._threads, []
            executor, self._executor = self._executor, None

        for thread in threads:
            thread.join(timeout=STOP_JOIN_TIMEOUT)
        self._reasoning.cancel()
        if self._capability_search is not None:
            self._capability_search.cancel()
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

        self._last_burst_time = float("-inf")
        self.focus_detector.reset()
        log.info("Sensing stopped")

    def _run_loop(
        self, period: float, tick: Callable[[], object], stop_event: threading.Event
    ) -> None:
        while not stop_event.wait(period):
            try:
                tick()
            except Exception:
                log.exception("Loop tick failed")

    def _submit(self, fn: Callable[[int], None]) -> Future[None] | None:
        with self._state_lock:
            executor = self._executor
            generation = self._generation
            stopped = self._started_once and not self._running
        if stopped:
            # a loop tick that raced stop(); never start new work
            return None
        if executor is None:
            # not started: run inline (used by tests and one-shot callers)
            future: Future[None] = Future()
            try:
                fn(generation)
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(None)
            return future
        try:
            return executor.submit(fn, generation)
        except RuntimeError:
            # executor shut down between the lookup and the submit
            return None

    # --- fast loop -----------------------------------------------------

    def evaluate(self) -> Future[None] | None:
        """Fast-loop tick: score the short window and maybe analyze it."""
        if self._burst_lock.locked():
            return None
        if self._clock() - self._last_burst_time < self.config.burst_cooldown_seconds:
            return None

        events = self._events.snapshot(self.config.burst_score_window_seconds)
        score = self.scorer.score(events)
        if score > 0:
            log.debug(
                "score=%d threshold=%d events=%d", score, self.scorer.threshold, len(events)
            )
        if score < self.scorer.threshold:
            return None

        if not self._burst_lock.acquire(blocking=False):
            return None
        log.info("Burst threshold reached (score=%d), analyzing", score)
        future = self._submit(self._analyze_burst)
        if future is None:
            self._burst_lock.release()
        else:
            future.add_done_callback(self._release_if_cancelled)
        return future

    def _release_if_cancelled(self, future: Future[None]) -> None:
        # a cycle cancelled by stop() never reached its finally block
        if future.cancelled():
            self._burst_lock.release()

    def _analyze_burst(self, generation: int) -> None:
        try:
            if generation != self._generation:
                return
            events = self._events.snapshot(self.config.burst_analysis_window_seconds)
            compressed = compress_events(events, self.config.burst_max_events)
            keywords = extract_keywords(compressed)

            related: list[Capability] = []
            if keywords and self._capability_search is not None:
                log.info("Keywords: %s", ", ".join(keywords))
                related = self._capability_search.search(
                    keywords, timeout=self.config.burst_search_timeout
                )
            if generation != self._generation:
                return

            prompt = build_burst_prompt(compressed, [*related, *self.capabilities])
            analysis = parse_burst_analysis(self._reasoning.complete(prompt))
            if analysis is None:
                return
            log.info(
                "Burst analysis: confidence=%s observation=%s",
                analysis.confidence.value,
                analysis.observation,
            )
            if analysis.confidence is Confidence.LOW:
                return

            self._emit(
                generation,
                SensingResult(
                    source="burst",
                    confidence=analysis.confidence,
                    observation=analysis.observation,
                    offer=analysis.suggestion,
                    display_text=analysis.suggestion,
                    created_at=self._clock(),
                ),
            )
        except Exception:
            log.exception("Burst analysis failed")
        finally:
            if generation == self._generation:
                self._last_burst_time = self._clock()
            self._burst_lock.release()

    # --- slow loop -----------------------------------------------------

    def focus_tick(self) -> Future[None] | None:
        """Slow-loop tick: run one focus detection cycle."""
        if self.focus_detector.is_analyzing:
            log.debug("focus tick skipped (analyzing)")
            return None
        return self._submit(self._run_focus_cycle)

    def _run_focus_cycle(self, generation: int) -> None:
        if generation != self._generation:
            return
        try:
            result = self.focus_detector.tick(
                is_cancelled=lambda: generation != self._generation
            )
        except Exception:
            log.exception("Focus detection cycle failed")
            return
        if generation != self._generation:
            # stop() already reset the cooldown; do not let this run re-arm it
            self.focus_detector.reset()
            return
        if result is None:
            return

        display_text = result.display_text(
            show_observation=self.config.show_observation,
            show_insight=self.config.show_insight,
            show_offer=self.config.show_offer,
        )
        if not display_text:
            return

        self._emit(
            generation,
            SensingResult(
                source="focus",
                confidence=(
                    Confidence.HIGH if result.confidence is Confidence.HIGH else Confidence.MEDIUM
                ),
                observation=result.observation or "",
                offer=result.offer or "",
                display_text=display_text,
                theme=result.theme,
                insight=result.insight,
                created_at=self._clock(),
            ),
        )

    # --- output --------------------------------------------------------

    def _emit(self, generation: int, result: SensingResult) -> None:
        with self._emit_lock:
            if generation != self._generation:
                log.info("Dropping %s result from a stopped run", result.source)
                return
            try:
                self._on_result(result)
            except Exception:
                log.exception("Result observer raised")
