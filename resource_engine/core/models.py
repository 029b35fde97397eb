from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple


Clock = Callable[[], datetime]

HEALTH_STATES = ("nominal", "caution", "warning", "critical")
MISSION_PHASES = ("launch", "transit", "orbital", "landing", "surface", "emergency")

# Catalog vocabularies, shared by the domain models and config validation.
COMPONENT_LOCATIONS = ("sun_facing", "anti_sun", "earth_facing", "deep_space", "internal")
COMPONENT_CRITICALITIES = ("low", "medium", "high", "mission_critical")
ACTUATOR_TYPES = ("radiator", "heater", "heat_pipe", "shield", "louver")
ACTION_PRIORITIES = ("low", "medium", "high", "critical")
ACTIVITY_TYPES = ("science", "maintenance", "navigation", "communication", "safety", "calibration")
ACTIVITY_STATUSES = ("planned", "ready", "executing", "completed", "cancelled", "failed")
CONSTRAINT_TYPES = ("temporal", "resource", "environmental", "system_state")
CRITERION_OPERATORS = ("greater_than", "less_than", "equals", "between")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(ts: Optional[datetime]) -> Optional[str]:
    if ts is None:
        return None
    return ts.isoformat()


def parse_timestamp(value: Any, reference: datetime) -> datetime:
    """Accept an ISO-8601 string, a datetime, or an hour offset from ``reference``."""
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        # fromisoformat only accepts a trailing "Z" from Python 3.11 on.
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        ts = datetime.fromisoformat(text)
        return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)
    return reference + timedelta(hours=float(value))


@dataclass(frozen=True)
class PredictedSolarFlare:
    flare_class: str
    magnitude: float
    probability: float
    estimated_arrival: datetime
    duration_h: float

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, now: datetime) -> "PredictedSolarFlare":
        if "estimated_arrival" in data:
            arrival = parse_timestamp(data["estimated_arrival"], now)
        else:
            arrival = parse_timestamp(float(data.get("arrival_in_h", 0.0)), now)
        return cls(
            flare_class=str(data.get("class", data.get("flare_class", "C"))).upper(),
            magnitude=float(data.get("magnitude", 1.0)),
            probability=float(data.get("probability", 50.0)),
            estimated_arrival=arrival,
            duration_h=float(data.get("duration_h", 1.0)),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "class": self.flare_class,
            "magnitude": float(self.magnitude),
            "probability": float(self.probability),
            "estimated_arrival": iso(self.estimated_arrival),
            "duration_h": float(self.duration_h),
        }


@dataclass
class EnvironmentSnapshot:
    flare_risk: str = "low"
    solar_wind_speed_kms: float = 400.0
    kp_index: float = 2.0
    predicted_flares: List[PredictedSolarFlare] = field(default_factory=list)
    total_dose: float = 0.0
    dose_rate: float = 0.0
    shielding_effectiveness: float = 100.0
    saa_transit: bool = False
    sun_exposure_pct: Optional[float] = None
    earth_albedo: float = 0.0
    deep_space_view: float = 0.0
    predicted_temp_swing: float = 0.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, now: datetime) -> "EnvironmentSnapshot":
        solar = dict(data.get("solar_activity", {}))
        radiation = dict(data.get("radiation", {}))
        temperature = dict(data.get("temperature", {}))
        flares = [PredictedSolarFlare.from_mapping(f, now=now) for f in solar.get("predicted_flares", [])]
        sun = temperature.get("sun_exposure")
        return cls(
            flare_risk=str(solar.get("flare_risk", "low")),
            solar_wind_speed_kms=float(solar.get("solar_wind_speed", 400.0)),
            kp_index=float(solar.get("kp_index", 2.0)),
            predicted_flares=flares,
            total_dose=float(radiation.get("total_dose", 0.0)),
            dose_rate=float(radiation.get("dose_rate", 0.0)),
            shielding_effectiveness=float(radiation.get("shielding_effectiveness", 100.0)),
            saa_transit=bool(radiation.get("saa_transit", False)),
            sun_exposure_pct=None if sun is None else float(sun),
            earth_albedo=float(temperature.get("earth_albedo", 0.0)),
            deep_space_view=float(temperature.get("deep_space_view", 0.0)),
            predicted_temp_swing=float(temperature.get("predicted_temp_swing", 0.0)),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "solar_activity": {
                "flare_risk": self.flare_risk,
                "solar_wind_speed": float(self.solar_wind_speed_kms),
                "kp_index": float(self.kp_index),
                "predicted_flares": [f.to_mapping() for f in self.predicted_flares],
            },
            "radiation": {
                "total_dose": float(self.total_dose),
                "dose_rate": float(self.dose_rate),
                "shielding_effectiveness": float(self.shielding_effectiveness),
                "saa_transit": bool(self.saa_transit),
            },
            "temperature": {
                "sun_exposure": self.sun_exposure_pct,
                "earth_albedo": float(self.earth_albedo),
                "deep_space_view": float(self.deep_space_view),
                "predicted_temp_swing": float(self.predicted_temp_swing),
            },
        }


@dataclass
class SystemHealthSummary:
    overall: str = "nominal"
    subsystems: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SystemHealthSummary":
        return cls(
            overall=str(data.get("overall", "nominal")),
            subsystems={str(k): str(v) for k, v in dict(data.get("subsystems", {})).items()},
        )


@dataclass
class TrendPoint:
    timestamp: datetime
    value: float
    confidence: float

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "timestamp": iso(self.timestamp),
            "value": float(self.value),
            "confidence": float(self.confidence),
        }


@dataclass(frozen=True)
class ResourceRequirement:
    resource_type: str
    amount: float
    unit: str
    duration_s: float

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "type": self.resource_type,
            "amount": float(self.amount),
            "unit": self.unit,
            "duration_s": float(self.duration_s),
        }


@dataclass(frozen=True)
class ManagementAction:
    """Immutable record of one autonomous decision.

    ``effect`` is expressed in ``effect_unit``: ``power_savings_w`` (negative
    means added generation), ``thermal_w`` or ``priority_delta``.
    """

    action_id: str
    trigger: str
    action: str
    affected_systems: Tuple[str, ...]
    effect: float
    effect_unit: str
    mission_impact: str
    execution_time_s: float
    reversible: bool
    confidence: float
    timestamp: datetime

    @property
    def requires_confirmation(self) -> bool:
        return not self.reversible

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.action_id,
            "trigger": self.trigger,
            "action": self.action,
            "affected_systems": list(self.affected_systems),
            "effect": float(self.effect),
            "effect_unit": self.effect_unit,
            "mission_impact": self.mission_impact,
            "execution_time_s": float(self.execution_time_s),
            "reversible": bool(self.reversible),
            "requires_confirmation": self.requires_confirmation,
            "confidence": float(self.confidence),
            "timestamp": iso(self.timestamp),
        }


@dataclass
class ActionResult:
    success: bool
    status: str
    action: Optional[ManagementAction] = None
    effect: float = 0.0
    time_to_complete_s: float = 0.0

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "success": bool(self.success),
            "status": self.status,
            "action": None if self.action is None else self.action.to_mapping(),
            "effect": float(self.effect),
            "time_to_complete_s": float(self.time_to_complete_s),
        }

