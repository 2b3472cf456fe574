import pytest

from src.api.services.prompts import build_burst_prompt, build_focus_prompt, format_timeline
from src.model.models import (
    BehaviorEvent,
    BehaviorEventKind,
    Capability,
    ObjectiveMetrics,
    TabInfo,
    TabSnapshot,
    TimelineEntry,
)

METRICS = ObjectiveMetrics(
    revisit_count=1, browsed_tab_ratio=0.5, clipboard_relevance=0, trigger_app_focus=1.0
)


@pytest.fixture
def timeline(clock):
    return [
        TimelineEntry(clock(), "Browser", "StockA", ax_context="Price chart"),
        TimelineEntry(clock() + 60, "Browser", "StockB", clipboard_content="StockB"),
        TimelineEntry(clock() + 120, "Browser", "StockA", is_revisit=True),
    ]


class TestFocusPrompt:
    """フォーカス判定プロンプトのテスト"""

    def test_timeline_annotations(self, timeline):
        text = format_timeline(timeline)
        assert "[Browser] StockA\n" in text
        assert "-> AX: Price chart" in text
        assert '-> copied: "StockB"' in text
        assert text.rstrip().endswith("StockA  <- revisit")

    def test_tab_snapshot_section(self, timeline):
        snapshot = TabSnapshot(
            "Browser", "id", (TabInfo("StockA", True), TabInfo("Mail")), captured_at=0.0
        )
        prompt = build_focus_prompt(timeline, snapshot, METRICS, [])
        assert "--- Browser all tabs (2 total) ---" in prompt
        assert "1. StockA  [browsed]  [current]" in prompt
        assert "2. Mail\n" in prompt

    @pytest.mark.parametrize(
        ("strictness", "phrase"),
        [(0, "at least one"), (1, "at least two"), (2, "at least three")],
    )
    def test_strictness_changes_requirement(self, timeline, strictness, phrase):
        prompt = build_focus_prompt(timeline, None, METRICS, [], strictness)
        assert f"{phrase} of the following objective metrics met" in prompt
        assert "all tabs" not in prompt

    def test_installed_capabilities_listed(self, timeline):
        prompt = build_focus_prompt(
            timeline, None, METRICS, [Capability("stock-watch", "Track prices")]
        )
        assert "--- Installed capabilities ---\n- stock-watch: Track prices" in prompt
        assert '{"detected":false}' in prompt


class TestBurstPrompt:
    def test_events_and_capabilities(self, clock):
        events = [BehaviorEvent(clock(), BehaviorEventKind.APP_SWITCH, "Excel → Chrome")]
        prompt = build_burst_prompt(events, [Capability("sheet-export", "Export tables")])

        assert "appSwitch: Excel → Chrome" in prompt
        assert "--- Related capabilities ---\n- sheet-export: Export tables" in prompt
        assert "recommend it in your suggestion" in prompt

    def test_without_capabilities(self):
        prompt = build_burst_prompt([])
        assert "Related capabilities" not in prompt
        assert '"confidence": "high|medium|low"' in prompt
