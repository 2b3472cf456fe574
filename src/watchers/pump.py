import time
from collections.abc import Callable
from typing import Any

import requests

from src.logger import get_logger
from src.model.models import BehaviorEvent, BehaviorEventKind

log = get_logger("pump")

# HTTP status codes
HTTP_OK = 200

WindowSample = dict[str, str | None]

BROWSER_APPS = ("chrome", "safari", "firefox", "edge", "arc", "opera", "brave")


def is_browser(app: str) -> bool:
    name = app.lower()
    return any(browser in name for browser in BROWSER_APPS)


class EventPump:
    """前面ウィンドウのサンプルを行動イベントに変換してAPIに送信するクラス.

    サンプルの取得方法（OSごとのキャプチャ）は ``sampler`` として外から渡す。
    """

    def __init__(
        self,
        sampler: Callable[[], WindowSample],
        api_url: str = "http://localhost:5577",
        interval: float = 1.0,
    ) -> None:
        self.sampler = sampler
        self.api_url = api_url.rstrip("/")
        self.interval = interval
        self.running = False
        self.last_app: str | None = None
        self.last_title: str | None = None
        self.stats = {"events_sent": 0, "errors_total": 0}

    def to_events(self, sample: WindowSample, now: float | None = None) -> list[BehaviorEvent]:
        """前回のサンプルとの差分からイベントを作る."""
        ts = time.time() if now is None else now
        app = sample.get("active_app")
        title = sample.get("title") or ""
        if not app:
            return []

        events: list[BehaviorEvent] = []
        if self.last_app is not None and app != self.last_app:
            events.append(
                BehaviorEvent(ts, BehaviorEventKind.APP_SWITCH, f"{self.last_app} → {app}", title)
            )
        elif self.last_title and title and title != self.last_title and is_browser(app):
            events.append(
                BehaviorEvent(
                    ts, BehaviorEventKind.TAB_SWITCH, f"{self.last_title} → {title}", app
                )
            )
        if title and (app != self.last_app or title != self.last_title):
            events.append(BehaviorEvent(ts, BehaviorEventKind.WINDOW_TITLE, title, app))

        self.last_app = app
        self.last_title = title
        return events

    def send_event(self, event: BehaviorEvent) -> bool:
        """イベントデータをAPIに送信

        Returns:
            bool: 送信成功時True

        """
        payload: dict[str, Any] = {
            "kind": event.kind.value,
            "detail": event.detail,
            "context": event.context,
            "timestamp": event.timestamp,
        }
        try:
            response = requests.post(f"{self.api_url}/events", json=payload, timeout=5)
        except requests.RequestException as e:
            self.stats["errors_total"] += 1
            log.warning("API送信エラー: %s", e)
            return False

        ok = int(getattr(response, "status_code", 0)) == HTTP_OK
        if ok:
            self.stats["events_sent"] += 1
        else:
            self.stats["errors_total"] += 1
            log.warning("API送信エラー: HTTP %s", response.status_code)
        return ok

    def check_api_availability(self) -> bool:
        """APIの可用性をチェック."""
        try:
            response = requests.get(f"{self.api_url}/status", timeout=3)
        except requests.RequestException:
            return False
        return int(getattr(response, "status_code", 0)) == HTTP_OK

    def run_once(self) -> int:
        """1回のサンプリング・送信を行い、送信できたイベント数を返す."""
        try:
            sample = self.sampler()
        except Exception:
            log.exception("サンプル取得エラー")
            self.stats["errors_total"] += 1
            return 0
        return sum(1 for event in self.to_events(sample) if self.send_event(event))

    def run_continuous(self) -> None:
        self.running = True
        if not self.check_api_availability():
            log.warning("APIが利用できません。送信は失敗する可能性があります。")
        while self.running:
            start = time.time()
            self.run_once()
            time.sleep(max(0.0, self.interval - (time.time() - start)))

    def stop(self) -> None:
        self.running = False
        log.info(
            "イベントポンプを停止 (送信: %d, エラー: %d)",
            self.stats["events_sent"],
            self.stats["errors_total"],
        )
