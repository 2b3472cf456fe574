#!/usr/bin/env python3
import os
from pathlib import Path

import psutil

from scripts.boot.utils import API_PID_FILE, REPO_ROOT, logger, read_pid

TERMINATE_TIMEOUT = 10


def stop_by_pid_file(path: Path) -> None:
    """pid ファイルのプロセスを終了させ、ファイルを消す."""
    pid = read_pid(path)
    if pid is None:
        logger.info(f"No usable pid file at {path.name}; nothing to stop")
        path.unlink(missing_ok=True)
        return

    try:
        proc = psutil.Process(pid)
        proc.terminate()
        try:
            proc.wait(timeout=TERMINATE_TIMEOUT)
        except psutil.TimeoutExpired:
            logger.warning(f"PID {pid} did not exit; killing it")
            proc.kill()
    except psutil.NoSuchProcess:
        logger.info(f"PID {pid} was already stopped")
    else:
        logger.info(f"Stopped PID {pid}")
    path.unlink(missing_ok=True)


def main() -> int:
    os.chdir(REPO_ROOT)

    logger.info("============== FocusSense stopping ================")
    stop_by_pid_file(API_PID_FILE)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
