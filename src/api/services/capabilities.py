"""Installed capabilities (skills) discovered on disk.

Each capability lives in ``<skills_dir>/<name>/SKILL.md``; its description
is the first line of prose near the top of that file.
"""

from pathlib import Path

from src.logger import get_logger
from src.model.models import Capability

log = get_logger("capabilities")

DESCRIPTION_SCAN_LINES = 10


def _first_prose_line(text: str) -> str:
    for line in text.splitlines()[:DESCRIPTION_SCAN_LINES]:
        trimmed = line.strip()
        if trimmed and not trimmed.startswith(("#", ">", "---")):
            return trimmed
    return ""


def load_installed_capabilities(skills_dir: str | Path) -> list[Capability]:
    root = Path(skills_dir)
    if not root.is_dir():
        return []

    capabilities: list[Capability] = []
    for entry in sorted(root.iterdir()):
        skill_md = entry / "SKILL.md"
        if not skill_md.is_file():
            continue
        try:
            content = skill_md.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            log.warning("Skipping unreadable %s", skill_md)
            continue
        capabilities.append(
            Capability(name=entry.name, description=_first_prose_line(content))
        )

    log.info("Loaded %d installed capabilities from %s", len(capabilities), root)
    return capabilities


def filter_capabilities(capabilities: list[Capability], query: str) -> list[Capability]:
    """名前の部分一致で絞り込む（大文字小文字は無視）."""
    if not query:
        return list(capabilities)
    q = query.lower()
    return [c for c in capabilities if q in c.name.lower()]
