from __future__ import annotations

from typing import Dict, Mapping, Optional


class ConfidenceModel:
    """Scores a (trigger, action) decision on a 0-100 scale."""

    def score(self, trigger: str, action: Optional[str] = None) -> float:
        raise NotImplementedError


class FixedConfidenceModel(ConfidenceModel):
    """Constant lookup keyed by ``trigger:action``, then ``trigger``."""

    def __init__(self, table: Mapping[str, float], default: float = 50.0) -> None:
        self._table: Dict[str, float] = {str(k): float(v) for k, v in table.items()}
        self.default = float(default)

    def score(self, trigger: str, action: Optional[str] = None) -> float:
        if action is not None:
            key = f"{trigger}:{action}"
            if key in self._table:
                return self._table[key]
        return self._table.get(trigger, self.default)


POWER_CONFIDENCE: Dict[str, float] = {
    "low_soc:emergency_mode": 95.0,
    "low_soc:shed_load": 90.0,
    "low_soc:switch_battery_bank": 88.0,
    "thermal_runaway:isolate_bank": 98.0,
    "solar_storm:shed_load": 85.0,
    "solar_storm:activate_backup": 92.0,
    "load_spike:shed_load": 80.0,
}

THERMAL_CONFIDENCE: Dict[str, float] = {
    "solar_flare": 88.0,
    "component_overheat": 92.0,
    "deep_space_cooling": 85.0,
}


def build_confidence_model(defaults: Mapping[str, float], overrides: Optional[Mapping[str, float]] = None) -> FixedConfidenceModel:
    table = dict(defaults)
    table.update(dict(overrides or {}))
    return FixedConfidenceModel(table)
