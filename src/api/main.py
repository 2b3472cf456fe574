"""FastAPI app exposing the FocusSense ingest endpoints.

Producers (window/tab/clipboard watchers) post behavior events and tab
snapshots here; the sensing orchestrator started with the app consumes
them and the latest results can be polled from ``/results``.
"""

import time
from collections import deque
from dataclasses import asdict, replace
from typing import Any

from fastapi import FastAPI, Request
from pydantic import BaseModel, field_validator

from src.api.services.capabilities import filter_capabilities, load_installed_capabilities
from src.api.services.capability_search import CapabilitySearchService
from src.api.services.llm import create_reasoning_service
from src.config import SensingConfig, load_config, parse_strictness
from src.logger import get_logger
from src.model.models import BehaviorEvent, BehaviorEventKind, SensingResult, TabInfo
from src.sensing.buffer import EventBuffer
from src.sensing.orchestrator import SensingOrchestrator
from src.sensing.snapshot_cache import SnapshotCache

log = get_logger("api")

MAX_RESULTS = 50


# --- Pydanticモデル定義 ---


class EventIn(BaseModel):
    """行動イベントの受信モデル."""

    kind: BehaviorEventKind
    detail: str
    context: str | None = None
    timestamp: float | None = None  # 省略時は受信時刻


class TabIn(BaseModel):
    title: str
    is_active: bool = False


class SnapshotIn(BaseModel):
    """タブスナップショットの受信モデル."""

    app_name: str
    application_id: str
    tabs: list[TabIn]

    @field_validator("app_name", "application_id")
    @classmethod
    def must_not_be_empty(cls, v: str) -> str:
        """名前とIDが空でないこと"""
        if not v or not v.strip():
            msg = "must not be empty"
            raise ValueError(msg)
        return v


class SettingsUpdate(BaseModel):
    """検出設定の部分更新."""

    sensitivity: float | None = None
    strictness: int | str | None = None
    detection_window_minutes: float | None = None
    cooldown_detected_minutes: float | None = None
    cooldown_missed_minutes: float | None = None
    show_observation: bool | None = None
    show_insight: bool | None = None
    show_offer: bool | None = None

    @field_validator("strictness")
    @classmethod
    def strictness_must_be_known(cls, v: int | str | None) -> int | None:
        if v is None:
            return None
        level = parse_strictness(str(v))
        if level not in (0, 1, 2):
            msg = "strictness must be relaxed, normal or strict"
            raise ValueError(msg)
        return level


def result_to_dict(result: SensingResult) -> dict[str, Any]:
    data = asdict(result)
    data["confidence"] = result.confidence.value
    return data


def create_app(
    buffer: EventBuffer | None = None,
    snapshots: SnapshotCache | None = None,
    orchestrator: SensingOrchestrator | None = None,
    config: SensingConfig | None = None,
) -> FastAPI:
    """アプリケーションを組み立てる（テストでは部品を差し替えられる）."""
    app = FastAPI(
        title="FocusSense",
        description="Burst and sustained-focus detection over desktop activity",
    )
    app.state.buffer = buffer or EventBuffer()
    app.state.snapshots = snapshots or SnapshotCache()
    app.state.config = config
    app.state.orchestrator = orchestrator
    app.state.results = deque(maxlen=MAX_RESULTS)

    def record_result(result: SensingResult) -> None:
        app.state.results.append(result)
        log.info("Result (%s/%s): %s", result.source, result.confidence.value, result.observation)

    # --- アプリケーションのライフサイクルイベント ---

    # Deprecated on_event usage is temporarily retained for simplicity.
    @app.on_event("startup")  # pyright: ignore[reportDeprecated]
    async def startup_event() -> None:
        """起動時にセンシングを開始する."""
        if app.state.orchestrator is None:
            cfg = app.state.config or load_config()
            app.state.config = cfg
            reasoning = create_reasoning_service(timeout=cfg.reasoning_timeout)
            log.info("Reasoning service available: %s", reasoning.is_available())
            app.state.orchestrator = SensingOrchestrator(
                app.state.buffer,
                app.state.snapshots,
                reasoning,
                on_result=record_result,
                capability_search=CapabilitySearchService(
                    command=cfg.search_command, timeout=cfg.search_timeout
                ),
                capabilities=load_installed_capabilities(cfg.skills_dir),
                config=cfg,
            )
        app.state.orchestrator.start()

    @app.on_event("shutdown")  # pyright: ignore[reportDeprecated]
    async def shutdown_event() -> None:
        if app.state.orchestrator is not None:
            app.state.orchestrator.stop()

    # --- APIエンドポイント定義 ---

    @app.post("/events")
    async def ingest_event(event: EventIn, request: Request) -> dict[str, Any]:
        """行動イベントをバッファに追加する."""
        buf: EventBuffer = request.app.state.buffer
        buf.append(
            BehaviorEvent(
                timestamp=event.timestamp if event.timestamp is not None else time.time(),
                kind=event.kind,
                detail=event.detail,
                context=event.context,
            )
        )
        return {"ok": True, "buffered": len(buf)}

    @app.post("/snapshots")
    async def store_snapshot(snapshot: SnapshotIn, request: Request) -> dict[str, Any]:
        """タブ一覧を保存し、tabSnapshot イベントも記録する."""
        cache: SnapshotCache = request.app.state.snapshots
        stored = cache.store(
            snapshot.app_name,
            snapshot.application_id,
            [TabInfo(title=t.title, is_active=t.is_active) for t in snapshot.tabs],
        )
        request.app.state.buffer.append(
            BehaviorEvent(
                timestamp=stored.captured_at,
                kind=BehaviorEventKind.TAB_SNAPSHOT,
                detail=snapshot.app_name,
                context=snapshot.application_id,
            )
        )
        return {"ok": True, "tabs": len(stored.tabs)}

    @app.get("/status")
    async def get_current_status(request: Request) -> dict[str, Any]:
        """現在のシステム状態を取得する."""
        orch: SensingOrchestrator | None = request.app.state.orchestrator
        status: dict[str, Any] = {
            "running": False,
            "buffered_events": len(request.app.state.buffer),
            "cached_snapshots": len(request.app.state.snapshots),
            "results": len(request.app.state.results),
        }
        if orch is not None:
            status.update(
                {
                    "running": orch.is_running,
                    "burst_analyzing": orch.is_analyzing,
                    "focus_analyzing": orch.focus_detector.is_analyzing,
                    "sensitivity": orch.sensitivity,
                    "threshold": orch.scorer.threshold,
                    "focus_enabled": orch.config.focus_enabled,
                }
            )
        return status

    @app.get("/results")
    async def get_results(request: Request) -> dict[str, Any]:
        return {"results": [result_to_dict(r) for r in request.app.state.results]}

    @app.post("/settings")
    async def update_settings(req: SettingsUpdate, request: Request) -> dict[str, Any]:
        """検出設定を更新する（範囲外の値は丸められる）."""
        orch: SensingOrchestrator | None = request.app.state.orchestrator
        current = orch.config if orch is not None else (request.app.state.config or SensingConfig())
        changes = {k: v for k, v in req.model_dump().items() if v is not None}
        updated = replace(current, **changes)  # __post_init__ clamps again
        request.app.state.config = updated
        if orch is not None:
            orch.apply_config(updated)
        log.info("Settings updated: %s", changes)
        return {"ok": True, "settings": asdict(updated)}

    @app.get("/capabilities")
    async def get_capabilities(request: Request, q: str = "") -> dict[str, Any]:
        orch: SensingOrchestrator | None = request.app.state.orchestrator
        capabilities = orch.capabilities if orch is not None else []
        return {"capabilities": [asdict(c) for c in filter_capabilities(capabilities, q)]}

    return app


app = create_app()
