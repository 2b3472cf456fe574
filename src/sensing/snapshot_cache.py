import threading
import time
from collections.abc import Callable, Iterable

from src.model.models import TabInfo, TabSnapshot

DEFAULT_MAX_AGE = 300.0


class SnapshotCache:
    """アプリごとの最新タブ一覧を保持するTTLキャッシュ.

    書き込みは ``application_id`` 単位で丸ごと上書き（履歴なし）。
    期限切れは読み出し時に判定するだけで、掃除はしない。
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._cache: dict[str, TabSnapshot] = {}
        self._lock = threading.Lock()

    def store(self, app_name: str, application_id: str, tabs: Iterable[TabInfo]) -> TabSnapshot:
        snapshot = TabSnapshot(
            app_name=app_name,
            application_id=application_id,
            tabs=tuple(tabs),
            captured_at=self._clock(),
        )
        with self._lock:
            self._cache[application_id] = snapshot
        return snapshot

    def get(self, application_id: str, max_age: float = DEFAULT_MAX_AGE) -> TabSnapshot | None:
        with self._lock:
            snapshot = self._cache.get(application_id)
        if snapshot is None or self._clock() - snapshot.captured_at > max_age:
            return None
        return snapshot

    def all_valid(self, max_age: float = DEFAULT_MAX_AGE) -> list[TabSnapshot]:
        now = self._clock()
        with self._lock:
            snapshots = list(self._cache.values())
        return [s for s in snapshots if now - s.captured_at <= max_age]

    def lookup_application_id(self, app_name: str, max_age: float = DEFAULT_MAX_AGE) -> str:
        """表示名からアプリIDを逆引きする（見つからなければ空文字）."""
        for snapshot in self.all_valid(max_age):
            if snapshot.app_name == app_name:
                return snapshot.application_id
        return ""

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
