#!/usr/bin/env python3
import os
import subprocess
import sys
from pathlib import Path

from scripts.boot.utils import (
    API_HOST,
    API_PID_FILE,
    API_PORT,
    LOG_DIR,
    REPO_ROOT,
    api_url,
    http_ok,
    load_local_env,
    logger,
    wait_until_ok,
)

STARTUP_WAIT_SECONDS = 30
REQUIRED_ENV = ("LLM_URL", "LLM_MODEL")


def background_popen(
    cmd: list[str], stdout_path: Path, stderr_path: Path, env: dict[str, str]
) -> subprocess.Popen[bytes]:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    with (
        stdout_path.open("ab", buffering=0) as stdout_f,
        stderr_path.open("ab", buffering=0) as stderr_f,
    ):
        return subprocess.Popen(  # noqa: S603
            cmd,
            cwd=str(REPO_ROOT),
            stdout=stdout_f,
            stderr=stderr_f,
            env=env,
            start_new_session=True,
        )


def start_api(env: dict[str, str]) -> bool:
    uvicorn_cmd = [sys.executable, "-m", "uvicorn", "src.api.main:app"]
    proc = background_popen(
        [*uvicorn_cmd, "--port", str(API_PORT), "--host", API_HOST],
        stdout_path=LOG_DIR / "api.log",
        stderr_path=LOG_DIR / "api.err.log",
        env=env,
    )
    API_PID_FILE.write_text(str(proc.pid), encoding="ascii")
    if not wait_until_ok(api_url("/status"), STARTUP_WAIT_SECONDS):
        logger.warning("FocusSense API is not responding; see ./log/api.err.log")
        return False
    logger.info(f"API Server: {api_url()} started (PID {proc.pid})")
    return True


def check_reasoning_service(llm_url: str) -> None:
    # 推論サービス自体は起動しない（外部に任せる）
    if http_ok(f"{llm_url}/v1/models"):
        logger.info(f"Reasoning service: {llm_url} is reachable")
    else:
        logger.warning(f"Reasoning service {llm_url} is not reachable; detection will miss")


def main() -> int:
    os.chdir(REPO_ROOT)

    logger.info("================ FocusSense starting up... ===============")

    load_local_env()
    missing = [name for name in REQUIRED_ENV if not os.environ.get(name)]
    if missing:
        logger.error(f"Missing environment variables: {', '.join(missing)} (.env.local)")
        return 1

    check_reasoning_service(os.environ["LLM_URL"].rstrip("/"))
    if not start_api(os.environ.copy()):
        return 1

    logger.info("Logs: ./log/api.log, ./log/sensing.log")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
