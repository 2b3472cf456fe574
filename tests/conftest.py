from unittest.mock import Mock

import pytest

from src.model.models import BehaviorEvent, BehaviorEventKind, Capability
from src.sensing.buffer import EventBuffer
from src.sensing.snapshot_cache import SnapshotCache

BASE_TIME = 1_700_000_000.0


class FakeClock:
    """手動で進める時計."""

    def __init__(self, now: float = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubReasoning:
    """決まった応答を返す推論サービスのスタブ"""

    def __init__(self, reply: str | None = None) -> None:
        self.reply = reply
        self.prompts: list[str] = []
        self.cancelled = 0

    def complete(self, prompt: str) -> str | None:
        self.prompts.append(prompt)
        return self.reply

    def cancel(self) -> None:
        self.cancelled += 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def buffer(clock):
    """テスト用のイベントバッファ"""
    return EventBuffer(clock=clock)


@pytest.fixture
def snapshots(clock):
    return SnapshotCache(clock=clock)


@pytest.fixture
def reasoning():
    return StubReasoning()


@pytest.fixture
def capability_search():
    """能力検索のモック（デフォルトは該当なし）"""
    mock = Mock()
    mock.search = Mock(return_value=[])
    return mock


@pytest.fixture
def found_capabilities():
    return [
        Capability("stock-watch", "Track stock prices"),
        Capability("sheet-export", "Export tables"),
        Capability("news-digest", "Summarize news"),
        Capability("pdf-tools", "Merge PDFs"),
    ]


@pytest.fixture
def make_event(clock):
    """現在時刻からのオフセットでイベントを作るヘルパー"""

    def _make(
        kind: BehaviorEventKind,
        detail: str,
        context: str | None = None,
        offset: float = 0.0,
    ) -> BehaviorEvent:
        return BehaviorEvent(clock() + offset, kind, detail, context)

    return _make
