import contextlib
import shutil
import subprocess
import threading

from src.logger import get_logger
from src.model.models import Capability

log = get_logger("capability_search")

DEFAULT_LIMIT = 5
DEFAULT_TIMEOUT = 3.0


def parse_search_output(output: str) -> list[Capability]:
    """``name v1.0.0  Description text  (score)`` 形式の行を解析する."""
    results: list[Capability] = []
    for line in output.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("-"):
            continue
        columns = [c.strip() for c in trimmed.split("  ") if c.strip()]
        if len(columns) < 2:
            continue
        name = columns[0].split(" ")[0]
        description = columns[1].split("(")[0].strip()
        if name:
            results.append(Capability(name=name, description=description))
    return results


class CapabilitySearchService:
    """Search the community capability registry through its CLI.

    The CLI is run with a hard timeout; the child process is killed when it
    expires or when :meth:`cancel` is called.  Any failure yields an empty list.
    """

    def __init__(
        self,
        command: str = "clawhub",
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.command = command
        self.timeout = timeout
        self._active: set[subprocess.Popen[str]] = set()
        self._active_lock = threading.Lock()

    def is_available(self) -> bool:
        return shutil.which(self.command) is not None

    def cancel(self) -> None:
        """実行中の検索プロセスをすべて強制終了する."""
        with self._active_lock:
            active = list(self._active)
        for proc in active:
            with contextlib.suppress(OSError):
                proc.kill()
        if active:
            log.info("Killed %d running capability search(es)", len(active))

    def search(
        self,
        keywords: list[str],
        limit: int = DEFAULT_LIMIT,
        timeout: float | None = None,
    ) -> list[Capability]:
        query = " ".join(k.strip() for k in keywords if k.strip())
        if not query:
            return []

        try:
            proc = subprocess.Popen(  # noqa: S603
                [self.command, "search", "--limit", str(limit), query],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            log.warning("Capability search unavailable: %s", e)
            return []

        with self._active_lock:
            self._active.add(proc)
        try:
            stdout, _ = proc.communicate(timeout=self.timeout if timeout is None else timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
            log.warning("Capability search timed out: %r", query)
            return []
        finally:
            with self._active_lock:
                self._active.discard(proc)

        if proc.returncode != 0:
            log.warning("Capability search exited with %s for %r", proc.returncode, query)
            return []

        results = parse_search_output(stdout or "")[:limit]
        log.info("Capability search %r -> %s", query, [c.name for c in results])
        return results
