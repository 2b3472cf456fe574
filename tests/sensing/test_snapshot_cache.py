from src.model.models import TabInfo


class TestSnapshotCache:
    """タブスナップショットキャッシュのテスト"""

    def test_store_and_get(self, snapshots, clock):
        stored = snapshots.store("Browser", "com.example.browser", [TabInfo("a", True)])
        got = snapshots.get("com.example.browser")

        assert got is stored
        assert got.captured_at == clock()
        assert got.tabs == (TabInfo("a", True),)

    def test_store_replaces_previous_snapshot(self, snapshots):
        snapshots.store("Browser", "id", [TabInfo("a")])
        snapshots.store("Browser", "id", [TabInfo("b"), TabInfo("c")])

        assert [t.title for t in snapshots.get("id").tabs] == ["b", "c"]
        assert len(snapshots) == 1

    def test_get_expires_lazily(self, snapshots, clock):
        snapshots.store("Browser", "id", [TabInfo("a")])
        clock.advance(300)
        assert snapshots.get("id") is not None
        clock.advance(1)
        assert snapshots.get("id") is None
        # 期限切れでもエントリ自体は残る
        assert len(snapshots) == 1

    def test_get_with_custom_max_age(self, snapshots, clock):
        snapshots.store("Browser", "id", [TabInfo("a")])
        clock.advance(61)
        assert snapshots.get("id", max_age=60) is None

    def test_unknown_id(self, snapshots):
        assert snapshots.get("missing") is None

    def test_lookup_application_id(self, snapshots, clock):
        snapshots.store("Browser", "com.example.browser", [TabInfo("a")])
        assert snapshots.lookup_application_id("Browser") == "com.example.browser"
        assert snapshots.lookup_application_id("Editor") == ""

        clock.advance(400)
        assert snapshots.lookup_application_id("Browser") == ""

    def test_all_valid(self, snapshots, clock):
        snapshots.store("Old", "old", [])
        clock.advance(200)
        snapshots.store("New", "new", [])
        clock.advance(150)

        assert [s.application_id for s in snapshots.all_valid()] == ["new"]
