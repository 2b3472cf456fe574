import threading

import pytest

from src.model.models import BehaviorEvent, BehaviorEventKind
from src.sensing.buffer import EventBuffer


class TestEventBuffer:
    """イベントバッファのテスト"""

    def test_append_and_snapshot_keep_arrival_order(self, buffer, make_event):
        """到着順で取り出せる"""
        first = make_event(BehaviorEventKind.CLICK, "a", offset=-5)
        second = make_event(BehaviorEventKind.CLICK, "b", offset=-1)
        buffer.append(first)
        buffer.append(second)

        assert buffer.snapshot(60) == [first, second]
        assert len(buffer) == 2

    def test_snapshot_only_returns_recent_window(self, buffer, make_event):
        old = make_event(BehaviorEventKind.CLICK, "old", offset=-90)
        new = make_event(BehaviorEventKind.CLICK, "new", offset=-10)
        buffer.append(old)
        buffer.append(new)

        assert buffer.snapshot(60) == [new]
        assert buffer.snapshot(120) == [old, new]

    def test_snapshot_is_a_copy(self, buffer, make_event):
        buffer.append(make_event(BehaviorEventKind.CLICK, "a"))
        snap = buffer.snapshot(60)
        snap.clear()
        assert len(buffer.snapshot(60)) == 1

    def test_count_bound_drops_oldest(self, clock):
        """件数上限を超えたら古いものから捨てる"""
        buf = EventBuffer(max_events=3, clock=clock)
        for i in range(5):
            buf.append(BehaviorEvent(clock() + i * 0.1, BehaviorEventKind.CLICK, f"e{i}"))

        assert [e.detail for e in buf.snapshot(600)] == ["e2", "e3", "e4"]

    def test_age_bound_evicts_expired_events(self, buffer, clock, make_event):
        """600秒より古いイベントは次の追加時に消える"""
        buffer.append(make_event(BehaviorEventKind.CLICK, "old"))
        clock.advance(601)
        buffer.append(make_event(BehaviorEventKind.CLICK, "new"))

        assert [e.detail for e in buffer.snapshot(600)] == ["new"]
        assert len(buffer) == 1

    def test_late_expired_event_is_not_kept(self, buffer, make_event):
        buffer.append(make_event(BehaviorEventKind.CLICK, "stale", offset=-700))
        assert len(buffer) == 0

    def test_snapshot_window_is_capped_at_max_age(self, clock):
        buf = EventBuffer(max_age=100.0, clock=clock)
        buf.append(BehaviorEvent(clock() - 50, BehaviorEventKind.CLICK, "in"))
        clock.advance(60)

        # 110 秒前のイベントは max_age を超えているので含まれない
        assert buf.snapshot(1000) == []

    def test_recent_clipboards(self, buffer, make_event):
        for i in range(4):
            buffer.append(make_event(BehaviorEventKind.CLIPBOARD, f"clip{i}", offset=i))
            buffer.append(make_event(BehaviorEventKind.CLICK, f"click{i}", offset=i))

        assert [e.detail for e in buffer.recent_clipboards(2)] == ["clip2", "clip3"]
        assert buffer.recent_clipboards(0) == []

    def test_clear(self, buffer, make_event):
        buffer.append(make_event(BehaviorEventKind.CLICK, "a"))
        buffer.clear()
        assert len(buffer) == 0

    @pytest.mark.parametrize("producers", [4, 8])
    def test_concurrent_appends_keep_every_event(self, clock, producers):
        """複数スレッドから同時に追加しても欠けない"""
        buf = EventBuffer(max_events=10_000, clock=clock)
        per_thread = 200

        def produce(n: int) -> None:
            for i in range(per_thread):
                buf.append(BehaviorEvent(clock(), BehaviorEventKind.CLICK, f"{n}-{i}"))

        threads = [threading.Thread(target=produce, args=(n,)) for n in range(producers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        events = buf.snapshot(600)
        assert len(events) == producers * per_thread
        assert len({e.detail for e in events}) == producers * per_thread

    def test_snapshot_while_writers_append(self, clock):
        """書き込み中に読んでも到着順の一貫したコピーが得られる"""
        buf = EventBuffer(max_events=10_000, clock=clock)
        per_thread = 300
        writers_done = threading.Event()
        errors: list[Exception] = []
        seen_sizes: list[int] = []

        def produce(n: int) -> None:
            for i in range(per_thread):
                buf.append(BehaviorEvent(clock(), BehaviorEventKind.CLICK, f"{n}-{i}"))

        def read() -> None:
            try:
                while not writers_done.is_set():
                    snap = buf.snapshot(600)
                    # 各スレッドの分は追加した順に並んでいる
                    for n in range(3):
                        own = [
                            int(e.detail.split("-")[1])
                            for e in snap
                            if e.detail.startswith(f"{n}-")
                        ]
                        assert own == sorted(own)
                    seen_sizes.append(len(snap))
            except AssertionError as e:
                errors.append(e)

        reader = threading.Thread(target=read)
        writers = [threading.Thread(target=produce, args=(n,)) for n in range(3)]
        reader.start()
        for t in writers:
            t.start()
        for t in writers:
            t.join()
        writers_done.set()
        reader.join(5)

        assert errors == []
        assert seen_sizes == sorted(seen_sizes)
        assert len(buf.snapshot(600)) == 3 * per_thread
