__all__ = [
    "BehaviorEvent",
    "BehaviorEventKind",
    "BurstAnalysis",
    "BurstAnalysisPayload",
    "Capability",
    "Confidence",
    "FocusDetectPayload",
    "FocusDetectResult",
    "ObjectiveMetrics",
    "PreScreenResult",
    "SensingResult",
    "TITLE_KINDS",
    "TabInfo",
    "TabSnapshot",
    "TimelineEntry",
]


import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TypedDict


class BehaviorEventKind(Enum):
    """行動イベントの種類."""

    APP_SWITCH = "appSwitch"
    WINDOW_TITLE = "windowTitle"
    CLIPBOARD = "clipboard"
    CLICK = "click"
    DWELL = "dwell"
    COPY = "copy"
    TAB_SWITCH = "tabSwitch"
    TAB_SNAPSHOT = "tabSnapshot"
    FILE_OP = "fileOp"


TITLE_KINDS = frozenset({BehaviorEventKind.WINDOW_TITLE, BehaviorEventKind.TAB_SWITCH})


@dataclass(frozen=True)
class BehaviorEvent:
    """プロデューサーから届く1件の行動イベント（不変）."""

    timestamp: float
    kind: BehaviorEventKind
    detail: str
    context: str | None = None

    def describe(self) -> str:
        ctx = f" ({self.context})" if self.context else ""
        return f"{self.kind.value}: {self.detail}{ctx}"


@dataclass(frozen=True)
class TabInfo:
    title: str
    is_active: bool = False


@dataclass(frozen=True)
class TabSnapshot:
    """Point-in-time capture of one application's open tabs."""

    app_name: str
    application_id: str
    tabs: tuple[TabInfo, ...]
    captured_at: float


@dataclass
class TimelineEntry:
    """One visit in the focus timeline (rebuilt every cycle)."""

    timestamp: float
    app: str
    title: str
    ax_context: str | None = None
    clipboard_content: str | None = None
    is_revisit: bool = False


@dataclass(frozen=True)
class ObjectiveMetrics:
    revisit_count: int
    browsed_tab_ratio: float
    clipboard_relevance: int
    trigger_app_focus: float


@dataclass(frozen=True)
class PreScreenResult:
    triggered: bool
    trigger_app: str = ""
    application_id: str = ""


class Confidence(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class Capability:
    """An installed or searchable capability (skill) the assistant can use."""

    name: str
    description: str = ""


@dataclass
class FocusDetectResult:
    """フォーカス検出サイクルの結果."""

    detected: bool
    confidence: Confidence | None = None
    theme: str | None = None
    observation: str | None = None
    insight: str | None = None
    offer: str | None = None
    installed_capability: str | None = None
    search_keywords: list[str] | None = None

    @classmethod
    def missed(cls) -> "FocusDetectResult":
        return cls(detected=False)

    def display_text(
        self,
        *,
        show_observation: bool = True,
        show_insight: bool = True,
        show_offer: bool = True,
    ) -> str | None:
        """Compose the enabled, non-empty sections or return None."""
        parts: list[str] = []
        if show_observation and self.observation:
            parts.append(f"Observation\n{self.observation}")
        if show_insight and self.insight:
            parts.append(f"Insight\n{self.insight}")
        if show_offer and self.offer:
            parts.append(f"Action\n{self.offer}")
        return "\n\n".join(parts) if parts else None


@dataclass(frozen=True)
class BurstAnalysis:
    """Reply of the fast-loop (short burst) judgment."""

    confidence: Confidence
    observation: str
    suggestion: str


@dataclass(frozen=True)
class SensingResult:
    """外部コールバックへ渡す検出結果."""

    source: str  # "burst" or "focus"
    confidence: Confidence
    observation: str
    offer: str
    display_text: str
    theme: str | None = None
    insight: str | None = None
    created_at: float = field(default_factory=time.time)


class FocusDetectPayload(TypedDict, total=False):
    """推論サービスが返すフォーカス判定JSON."""

    detected: bool
    confidence: str  # "high" or "medium"
    theme: str
    observation: str
    insight: str
    offer: str
    installedCapability: str
    searchKeywords: list[str]


class BurstAnalysisPayload(TypedDict):
    confidence: str  # "high", "medium", "low"
    observation: str
    suggestion: str
