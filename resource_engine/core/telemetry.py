from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np


class TelemetrySource:
    """Supplies the operating variation applied to sheddable loads in forecasts."""

    def load_variation(self, load_id: str, step: int) -> float:
        raise NotImplementedError


class RandomTelemetrySource(TelemetrySource):
    def __init__(self, seed: Optional[int] = None, low: float = 0.8, high: float = 1.2) -> None:
        if low > high:
            raise ValueError(f"Invalid variation bounds: low={low} > high={high}")
        self._rng = np.random.default_rng(seed)
        self.low = float(low)
        self.high = float(high)

    def load_variation(self, load_id: str, step: int) -> float:
        return float(self._rng.uniform(self.low, self.high))


@dataclass
class NominalTelemetrySource(TelemetrySource):
    factor: float = 1.0

    def load_variation(self, load_id: str, step: int) -> float:
        return float(self.factor)


def build_telemetry_source(cfg: dict) -> TelemetrySource:
    kind = str(cfg.get("source", "random"))
    if kind == "random":
        seed = cfg.get("seed")
        return RandomTelemetrySource(
            seed=None if seed is None else int(seed),
            low=float(cfg.get("variation_low", 0.8)),
            high=float(cfg.get("variation_high", 1.2)),
        )
    if kind == "nominal":
        return NominalTelemetrySource(factor=float(cfg.get("nominal_factor", 1.0)))
    raise ValueError(f"Unsupported telemetry source: {kind}")
