import threading
import time
from collections import deque
from collections.abc import Callable

from src.logger import get_logger
from src.model.models import BehaviorEvent, BehaviorEventKind

log = get_logger("buffer")

DEFAULT_MAX_EVENTS = 400
DEFAULT_MAX_AGE = 600.0


class EventBuffer:
    """Bounded, time-windowed log of behavior events.

    Producers on independent threads call :meth:`append`; the detection loops
    read consistent copies through :meth:`snapshot`.  Both bounds are enforced
    on every append.
    """

    def __init__(
        self,
        max_events: int = DEFAULT_MAX_EVENTS,
        max_age: float = DEFAULT_MAX_AGE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_events = max_events
        self.max_age = max_age
        self._clock = clock
        self._events: deque[BehaviorEvent] = deque()
        self._lock = threading.Lock()

    def append(self, event: BehaviorEvent) -> None:
        log.debug("%s", event.describe())
        with self._lock:
            self._events.append(event)
            self._trim()

    def snapshot(self, last_seconds: float) -> list[BehaviorEvent]:
        """直近 ``last_seconds`` 秒のイベントを到着順でコピーして返す."""
        cutoff = self._clock() - min(last_seconds, self.max_age)
        with self._lock:
            return [e for e in self._events if e.timestamp >= cutoff]

    def recent_clipboards(self, count: int) -> list[BehaviorEvent]:
        with self._lock:
            clips = [e for e in self._events if e.kind is BehaviorEventKind.CLIPBOARD]
        return clips[-count:] if count > 0 else []

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def _trim(self) -> None:
        cutoff = self._clock() - self.max_age
        while self._events and self._events[0].timestamp < cutoff:
            self._events.popleft()
        # a late producer may hand in an event that is already expired
        if self._events and self._events[-1].timestamp < cutoff:
            self._events.pop()
        while len(self._events) > self.max_events:
            self._events.popleft()
