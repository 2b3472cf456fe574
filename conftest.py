"""Pytest configuration.

Ensures that the repository root is importable so that ``src`` and
``scripts`` resolve as namespace packages when tests are executed.  Without
this adjustment the default ``sys.path`` configured by ``pytest`` omits the
project root which results in ``ModuleNotFoundError`` during collection.
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
