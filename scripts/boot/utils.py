"""起動・停止スクリプトの共通部品."""

import logging
import time
from pathlib import Path

import requests
from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = REPO_ROOT / "log"
API_PID_FILE = REPO_ROOT / "api_server.pid"

API_HOST = "127.0.0.1"
API_PORT = 5577

HTTP_OK_MIN = 200
HTTP_OK_MAX = 400

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger("focus_sense.boot")


def api_url(path: str = "") -> str:
    return f"http://{API_HOST}:{API_PORT}{path}"


def http_ok(url: str, timeout: float = 2.5) -> bool:
    """URL が 2xx/3xx を返せば True（http(s) 以外は常に False）."""
    if not url.lower().startswith(("http://", "https://")):
        return False
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException:
        return False
    return HTTP_OK_MIN <= resp.status_code < HTTP_OK_MAX


def wait_until_ok(url: str, timeout: float, interval: float = 1.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if http_ok(url):
            return True
        time.sleep(interval)
    return False


def read_pid(path: Path) -> int | None:
    try:
        return int(path.read_text(encoding="ascii").strip())
    except (OSError, ValueError):
        return None


def load_local_env() -> None:
    load_dotenv(dotenv_path=REPO_ROOT / ".env.local", override=True)
