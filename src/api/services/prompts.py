from collections.abc import Sequence
from datetime import datetime

from src.model.models import (
    BehaviorEvent,
    Capability,
    ObjectiveMetrics,
    TabSnapshot,
    TimelineEntry,
)

# strictness -> number of objective metrics a "high" verdict needs
HIGH_REQUIREMENT = {
    0: "at least one of the following objective metrics",
    1: "at least two of the following objective metrics",
    2: "at least three of the following objective metrics",
}

CAPABILITIES_TEXT = (
    "Read/write files, run scripts (Python/Node/Shell), operate browsers,\n"
    "read email, send messages, extract web content, search the web."
)


def _clock(ts: float, fmt: str = "%H:%M") -> str:
    return datetime.fromtimestamp(ts).strftime(fmt)


def _percent(ratio: float) -> str:
    return f"{ratio * 100:.0f}%"


def format_timeline(timeline: Sequence[TimelineEntry]) -> str:
    lines: list[str] = []
    for entry in timeline:
        revisit = "  <- revisit" if entry.is_revisit else ""
        lines.append(f"{_clock(entry.timestamp)} [{entry.app}] {entry.title}{revisit}")
        if entry.ax_context:
            lines.append(f"      -> AX: {entry.ax_context}")
        if entry.clipboard_content:
            lines.append(f'      -> copied: "{entry.clipboard_content}"')
    return "\n".join(lines)


def format_tab_snapshot(snapshot: TabSnapshot, timeline: Sequence[TimelineEntry]) -> str:
    visited = {entry.title for entry in timeline}
    lines = [f"--- {snapshot.app_name} all tabs ({len(snapshot.tabs)} total) ---"]
    for i, tab in enumerate(snapshot.tabs, start=1):
        browsed = "  [browsed]" if tab.title in visited else ""
        current = "  [current]" if tab.is_active else ""
        lines.append(f"{i}. {tab.title}{browsed}{current}")
    return "\n".join(lines)


def format_metrics(metrics: ObjectiveMetrics) -> str:
    return "\n".join(
        [
            "--- Objective Metrics ---",
            f"- Revisit count: {metrics.revisit_count}",
            f"- Browsed tab ratio: {_percent(metrics.browsed_tab_ratio)}",
            f"- Clipboard relevance: {metrics.clipboard_relevance}",
            f"- Trigger app focus: {_percent(metrics.trigger_app_focus)}",
        ]
    )


def format_capabilities(capabilities: Sequence[Capability], heading: str) -> str:
    if not capabilities:
        return ""
    lines = [f"--- {heading} ---"]
    lines.extend(f"- {c.name}: {c.description}" for c in capabilities)
    return "\n".join(lines)


def build_focus_prompt(
    timeline: Sequence[TimelineEntry],
    tab_snapshot: TabSnapshot | None,
    metrics: ObjectiveMetrics,
    capabilities: Sequence[Capability],
    strictness: int = 1,
) -> str:
    """フォーカス判定（第3層）用のプロンプトを組み立てる."""
    sections = [
        "[FOCUS-DETECT] Determine if the user is sustained-focusing on a topic "
        "and whether you can help.",
        "--- Browsing Timeline ---\n" + format_timeline(timeline),
    ]
    if tab_snapshot is not None:
        sections.append(format_tab_snapshot(tab_snapshot, timeline))
    sections.append(format_metrics(metrics))

    installed = format_capabilities(capabilities, "Installed capabilities")
    if installed:
        sections.append(installed)
    sections.append(
        "--- Your capabilities ---\n"
        + CAPABILITIES_TEXT
        + "\nInstalled capabilities above are tools you can use right now."
    )

    requirement = HIGH_REQUIREMENT.get(strictness, HIGH_REQUIREMENT[1])
    sections.append(
        f"""--- Confidence criteria ---
high (ALL must be true):
1. A specific, nameable subject is identified (e.g. one company, not "stocks")
2. A specific actionable suggestion is possible
3. {requirement} met: revisit>=1 | tabRatio>=40% | clipRelevance>=1 | appFocus>=60%

medium: the topic direction is clear but not specific enough, or help needs more info.
detected:false: scattered content, no theme, a theme you cannot help with, or no metric met.

--- Capability recommendation ---
- Only set installedCapability if it DIRECTLY solves the user's topic
- Otherwise provide searchKeywords (specific capabilities, not generic operations)
- installedCapability and searchKeywords can coexist

--- Response format (strict JSON only) ---
Limits: theme<=30 chars, observation<=200, insight<=120, offer<=200.
No psychological analysis, emotional judgment or motive speculation.

{{"detected":true,"confidence":"high|medium","theme":"...","observation":"...","insight":"...","offer":"...","installedCapability":"name","searchKeywords":["kw1","kw2"]}}

No theme or cannot help:
{{"detected":false}}"""
    )
    return "\n\n".join(sections)


def build_burst_prompt(
    events: Sequence[BehaviorEvent],
    capabilities: Sequence[Capability] = (),
) -> str:
    """短時間の反復操作（高速ループ）判定用のプロンプト."""
    lines = [
        "You are analyzing a user's desktop behavior to detect repetitive patterns "
        "and offer proactive help.",
        "Below is a timeline of recent user actions. Analyze for repetitive patterns.",
        "",
        "--- Timeline ---",
    ]
    lines.extend(f"[{_clock(e.timestamp, '%H:%M:%S')}] {e.describe()}" for e in events)

    related = format_capabilities(capabilities, "Related capabilities")
    if related:
        lines.extend(["", related])

    lines.extend(["", "--- Your capabilities ---", CAPABILITIES_TEXT.replace("\n", " ")])
    if capabilities:
        lines.append(
            "If a listed capability is relevant, recommend it in your suggestion. "
            "Otherwise, suggest based on your own capabilities."
        )
    lines.extend(
        [
            "",
            "Respond with JSON only:",
            '{"confidence": "high|medium|low", "observation": "what pattern you '
            'detected", "suggestion": "how you can help"}',
            "",
            "Rules:",
            "- confidence=high: clear repetitive pattern that could be automated",
            "- confidence=medium: likely pattern, user might benefit from help",
            "- confidence=low: no clear pattern or too little data",
            "- observation: one concise sentence describing what the user is doing",
            "- suggestion: one sentence of specific, actionable help",
        ]
    )
    return "\n".join(lines)
