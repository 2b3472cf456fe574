import json
import os
import threading
import time
from typing import Any

import requests

from src.logger import get_logger

log = get_logger("llm")

HTTP_OK = 200
DEFAULT_TIMEOUT = 30.0


class ReasoningService:
    """OpenAI互換APIクライアント（テキストを渡してテキストを受け取るだけ）.

    応答はSSEでストリーミング受信する。タイムアウトまたは :meth:`cancel` の
    時点でレスポンスを閉じ、実行中のリクエストを強制的に打ち切る。
    失敗はすべて ``None`` として返し、呼び出し側に例外を投げない。
    """

    def __init__(
        self,
        base_url: str,
        model_name: str,
        timeout: float = DEFAULT_TIMEOUT,
        api_key: str | None = None,
    ) -> None:
        """初期化

        Args:
        base_url: OpenAI互換APIのベースURL（例: http://127.0.0.1:1234）
        model_name: 使用するモデル名
        timeout: 1回の推論全体のタイムアウト(秒)
        api_key: Bearerトークン（不要なら None）

        """
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.timeout = timeout
        self.api_key = api_key
        self.chat_url = f"{self.base_url}/v1/chat/completions"

        self.system_prompt = """
You watch a user's desktop activity and decide whether you can proactively help.
Reply with exactly one JSON object in the format requested by the user message.
Do not speculate about emotions or motives.
""".strip()

        # 最後のAPI呼び出し時刻（レート制限用）
        self.last_call_time: float = 0.0
        self.min_call_interval = 1.0  # 最小呼び出し間隔（秒）
        self._rate_lock = threading.Lock()

        self._active: set[requests.Response] = set()
        self._active_lock = threading.Lock()
        # cancel() bumps this so calls still connecting can notice it
        self._cancel_epoch = 0

    def is_available(self) -> bool:
        """推論サービスが利用可能かチェック."""
        try:
            response = requests.get(
                f"{self.base_url}/v1/models", headers=self._headers(), timeout=5
            )
        except requests.RequestException:
            return False
        else:
            status_code: int = response.status_code
            return status_code == HTTP_OK

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _rate_limit(self) -> None:
        """レート制限を適用."""
        with self._rate_lock:
            now = time.time()
            elapsed = now - self.last_call_time
            if elapsed < self.min_call_interval:
                time.sleep(self.min_call_interval - elapsed)
            self.last_call_time = time.time()

    def cancel(self) -> None:
        """実行中のリクエストをすべて打ち切る."""
        with self._active_lock:
            self._cancel_epoch += 1
            active = list(self._active)
        for response in active:
            response.close()
        if active:
            log.info("Cancelled %d in-flight reasoning request(s)", len(active))

    def complete(self, prompt: str) -> str | None:
        """プロンプトを送り、応答テキスト全体を返す（失敗時は None）."""
        self._rate_limit()

        payload: dict[str, Any] = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.2,
            "stream": True,
        }

        with self._active_lock:
            epoch = self._cancel_epoch

        try:
            response = requests.post(
                self.chat_url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
                stream=True,
            )
        except requests.exceptions.Timeout:
            log.warning("Reasoning request timed out")
            return None
        except requests.RequestException as e:
            log.warning("Reasoning request failed: %s", e)
            return None

        with self._active_lock:
            cancelled = epoch != self._cancel_epoch
            if not cancelled:
                self._active.add(response)
        if cancelled:
            response.close()
            log.info("Reasoning request cancelled while connecting")
            return None
        deadline = threading.Timer(self.timeout, response.close)
        deadline.daemon = True
        deadline.start()
        try:
            if response.status_code != HTTP_OK:
                log.warning("Reasoning request returned HTTP %s", response.status_code)
                return None
            text = self._read_content(response)
        except (requests.RequestException, OSError, AttributeError, ValueError) as e:
            # closing the response from another thread surfaces here
            log.warning("Reasoning response aborted: %s", e)
            return None
        finally:
            deadline.cancel()
            with self._active_lock:
                self._active.discard(response)
            response.close()

        return text or None

    def _read_content(self, response: requests.Response) -> str:
        content_type = response.headers.get("Content-Type", "")
        if "text/event-stream" not in content_type:
            data = response.json()
            try:
                return str(data["choices"][0]["message"]["content"]).strip()
            except (KeyError, IndexError, TypeError):
                return ""

        chunks: list[str] = []
        for raw_line in response.iter_lines():
            line = (
                raw_line.decode("utf-8", errors="replace")
                if isinstance(raw_line, bytes)
                else raw_line
            )
            if not line.startswith("data:"):
                continue
            data = line[len("data:") :].strip()
            if data == "[DONE]":
                break
            try:
                chunk = json.loads(data)
                delta = chunk["choices"][0].get("delta", {}).get("content")
            except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
                continue
            if isinstance(delta, str):
                chunks.append(delta)
        return "".join(chunks).strip()


# 便利関数
def create_reasoning_service(
    base_url: str | None = None,
    model_name: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> ReasoningService:
    """推論サービスのファクトリ関数.

    環境変数で設定（必須）:
    - LLM_URL: OpenAI互換APIのベースURL（例: http://127.0.0.1:1234）
    - LLM_MODEL: 使用するモデル名
    任意:
    - LLM_API_KEY: Bearerトークン
    """
    resolved_base = base_url or os.getenv("LLM_URL")
    resolved_model = model_name or os.getenv("LLM_MODEL")
    if not resolved_base or not resolved_model:
        msg = "LLM_URL and LLM_MODEL must be set (e.g., in .env.local)."
        raise RuntimeError(msg)
    return ReasoningService(
        base_url=resolved_base,
        model_name=resolved_model,
        timeout=timeout,
        api_key=os.getenv("LLM_API_KEY") or None,
    )
