from __future__ import annotations

import os
from pathlib import Path

# Plots run headless; keep matplotlib caches inside the project tree.
_ROOT = Path(__file__).resolve().parents[1]
(_ROOT / ".mpl_cache").mkdir(parents=True, exist_ok=True)
(_ROOT / ".cache").mkdir(parents=True, exist_ok=True)
os.environ.setdefault("MPLCONFIGDIR", str(_ROOT / ".mpl_cache"))
os.environ.setdefault("XDG_CACHE_HOME", str(_ROOT / ".cache"))

from .engine import ForecastBundle, ForecastEngine  # noqa: E402

__version__ = "0.1.0"

__all__ = ["ForecastBundle", "ForecastEngine", "__version__"]
