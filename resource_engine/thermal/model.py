from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

from resource_engine.core.models import ACTION_PRIORITIES, iso

STEFAN_BOLTZMANN = 5.67e-8
KELVIN_OFFSET = 273.15

EXPOSURE_FACTORS: Dict[str, float] = {
    "sun_facing": 1.0,
    "earth_facing": 0.3,
    "deep_space": 0.2,
    "anti_sun": 0.1,
    "internal": 0.05,
}

FLARE_BASE_INTENSITY: Dict[str, float] = {
    "A": 1.0,
    "B": 10.0,
    "C": 100.0,
    "M": 1000.0,
    "X": 10000.0,
}

ACTIVATION_STEP_PCT: Dict[str, float] = {
    "low": 10.0,
    "medium": 25.0,
    "high": 50.0,
    "critical": 100.0,
}

ACTION_ACTUATORS: Dict[str, str] = {
    "deploy_radiator": "primary-radiator",
    "activate_heater": "battery-heaters",
    "reorient_spacecraft": "thermal-louvers",
    "reduce_power": "thermal-louvers",
}

DEFAULT_INTERNAL_HEAT_W = 10.0


@dataclass
class ThermalComponent:
    component_id: str
    name: str
    temperature_c: float
    nominal_range_c: Tuple[float, float]
    survival_range_c: Tuple[float, float]
    thermal_mass: float
    location: str
    criticality: str
    coupled_components: Tuple[str, ...] = ()
    internal_heat_w: float = DEFAULT_INTERNAL_HEAT_W

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ThermalComponent":
        nominal = data.get("nominal_range_c", (0.0, 40.0))
        survival = data.get("survival_range_c", (-20.0, 60.0))
        return cls(
            component_id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            temperature_c=float(data.get("temperature_c", 20.0)),
            nominal_range_c=(float(nominal[0]), float(nominal[1])),
            survival_range_c=(float(survival[0]), float(survival[1])),
            thermal_mass=float(data.get("thermal_mass", 100.0)),
            location=str(data.get("location", "internal")),
            criticality=str(data.get("criticality", "medium")),
            coupled_components=tuple(str(c) for c in data.get("coupled_components", ())),
            internal_heat_w=float(data.get("internal_heat_w", DEFAULT_INTERNAL_HEAT_W)),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.component_id,
            "name": self.name,
            "temperature_c": float(self.temperature_c),
            "nominal_range_c": list(self.nominal_range_c),
            "survival_range_c": list(self.survival_range_c),
            "thermal_mass": float(self.thermal_mass),
            "location": self.location,
            "criticality": self.criticality,
            "coupled_components": list(self.coupled_components),
            "internal_heat_w": float(self.internal_heat_w),
        }


@dataclass
class ThermalActuator:
    actuator_id: str
    actuator_type: str
    capacity_w: float
    activation_pct: float
    response_time_s: float
    power_draw_w: float
    reliability_pct: float

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ThermalActuator":
        return cls(
            actuator_id=str(data["id"]),
            actuator_type=str(data.get("type", "radiator")),
            capacity_w=float(data.get("capacity_w", 0.0)),
            activation_pct=float(data.get("activation_pct", 0.0)),
            response_time_s=float(data.get("response_time_s", 0.0)),
            power_draw_w=float(data.get("power_draw_w", 0.0)),
            reliability_pct=float(data.get("reliability_pct", 100.0)),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.actuator_id,
            "type": self.actuator_type,
            "capacity_w": float(self.capacity_w),
            "activation_pct": float(self.activation_pct),
            "response_time_s": float(self.response_time_s),
            "power_draw_w": float(self.power_draw_w),
            "reliability_pct": float(self.reliability_pct),
        }


@dataclass
class ThermalDataPoint:
    timestamp: datetime
    temperature_c: float
    confidence: float


@dataclass
class ComponentThermalImpact:
    component_id: str
    rise_rate_c_per_min: float
    peak_increase_c: float
    minutes_to_nominal_exceed: float
    minutes_to_survival_exceed: float
    confidence: float


@dataclass(frozen=True)
class ThermalAction:
    target: str
    action: str
    priority: str
    execution_time_s: float

    def __post_init__(self) -> None:
        if self.priority not in ACTION_PRIORITIES:
            raise ValueError(f"Unknown thermal action priority: {self.priority}")


@dataclass
class SolarFlareImpact:
    flare_label: str
    magnitude: float
    arrival_time: datetime
    duration_h: float
    component_impacts: List[ComponentThermalImpact]
    radiation_level: float
    recommended_actions: List[ThermalAction]


@dataclass
class ThermalResponse:
    trigger: str
    predicted_temp_rise_c: float
    minutes_to_threshold: float
    automatic_actions: List[ThermalAction]
    manual_recommendations: List[str]
    confidence: float


@dataclass
class ComponentTrend:
    component_id: str
    points: List[ThermalDataPoint]
    nominal_range_c: Tuple[float, float]
    survival_range_c: Tuple[float, float]


@dataclass
class ThermalEvent:
    timestamp: datetime
    event: str
    magnitude_c: float
    duration_s: float
    affected_components: Tuple[str, ...]


@dataclass
class CoolingCapacityPoint:
    timestamp: datetime
    capacity_w: float
    utilization_pct: float


@dataclass
class ThermalForecast:
    horizon_h: float
    component_trends: List[ComponentTrend]
    events: List[ThermalEvent]
    cooling_capacity: List[CoolingCapacityPoint]

    def trend_for(self, component_id: str) -> Optional[ComponentTrend]:
        for trend in self.component_trends:
            if trend.component_id == component_id:
                return trend
        return None

    def trend_rows(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for trend in self.component_trends:
            for point in trend.points:
                rows.append(
                    {
                        "component_id": trend.component_id,
                        "timestamp": iso(point.timestamp),
                        "temperature_c": float(point.temperature_c),
                        "confidence": float(point.confidence),
                        "nominal_max_c": float(trend.nominal_range_c[1]),
                        "survival_max_c": float(trend.survival_range_c[1]),
                    }
                )
        return rows


def default_components() -> List[ThermalComponent]:
    return [
        ThermalComponent(
            "battery-bank-1", "Primary Battery Bank", 15.0, (10.0, 35.0), (-20.0, 60.0), 450.0,
            "internal", "mission_critical", ("power-electronics", "battery-bank-2"), 25.0,
        ),
        ThermalComponent(
            "main-computer", "Main Flight Computer", 22.0, (15.0, 45.0), (-10.0, 70.0), 85.0,
            "internal", "mission_critical", ("power-electronics",), 45.0,
        ),
        ThermalComponent(
            "comms-transmitter", "High Gain Communications", 28.0, (20.0, 55.0), (0.0, 85.0), 125.0,
            "earth_facing", "high", ("antenna-assembly",), 85.0,
        ),
        ThermalComponent(
            "solar-panels", "Solar Panel Array", 45.0, (-100.0, 85.0), (-150.0, 120.0), 350.0,
            "sun_facing", "high", ("power-electronics",), 5.0,
        ),
        ThermalComponent(
            "propulsion-tanks", "Propellant Tanks", 8.0, (5.0, 15.0), (-10.0, 25.0), 890.0,
            "internal", "mission_critical", ("propulsion-lines",), 0.0,
        ),
        ThermalComponent(
            "science-instruments", "Science Instrument Package", 18.0, (15.0, 30.0), (-5.0, 45.0), 165.0,
            "anti_sun", "medium", ("main-computer",), 15.0,
        ),
    ]


def default_actuators() -> List[ThermalActuator]:
    return [
        ThermalActuator("primary-radiator", "radiator", 500.0, 45.0, 30.0, 0.0, 98.5),
        ThermalActuator("emergency-radiator", "radiator", 300.0, 0.0, 45.0, 15.0, 95.0),
        ThermalActuator("battery-heaters", "heater", 150.0, 25.0, 5.0, 85.0, 99.2),
        ThermalActuator("radiation-shield", "shield", 200.0, 0.0, 120.0, 45.0, 96.8),
        ThermalActuator("thermal-louvers", "louver", 180.0, 60.0, 15.0, 8.0, 97.5),
    ]


def flare_intensity(flare_class: str, magnitude: float) -> float:
    return FLARE_BASE_INTENSITY.get(flare_class[:1].upper(), 1.0) * float(magnitude)


def radiative_cooling_w(temperature_c: float, emissivity: float, area_m2: float, background_k: float) -> float:
    temp_k = temperature_c + KELVIN_OFFSET
    return emissivity * STEFAN_BOLTZMANN * area_m2 * (temp_k ** 4 - background_k ** 4)


def limit_margin(temperature_c: float, bounds: Sequence[float]) -> float:
    return min(abs(temperature_c - bounds[0]), abs(temperature_c - bounds[1]))


def classify_temperature(component: ThermalComponent) -> Tuple[str, float]:
    temp = component.temperature_c
    survival = component.survival_range_c
    nominal = component.nominal_range_c
    if temp < survival[0] or temp > survival[1]:
        return "critical", limit_margin(temp, survival)
    if temp < nominal[0] or temp > nominal[1]:
        return "warning", limit_margin(temp, nominal)
    return "nominal", limit_margin(temp, nominal)


def classify_trend(history: Sequence[ThermalDataPoint], window: int, threshold_c: float) -> str:
    if len(history) < 2:
        return "stable"
    recent = list(history)[-window:]
    change = recent[-1].temperature_c - recent[0].temperature_c
    if change > threshold_c:
        return "rising"
    if change < -threshold_c:
        return "falling"
    return "stable"


def new_history(limit: int) -> Deque[ThermalDataPoint]:
    return deque(maxlen=max(1, int(limit)))


def components_from_config(items: Optional[Sequence[Mapping[str, Any]]]) -> List[ThermalComponent]:
    if not items:
        return default_components()
    return [ThermalComponent.from_mapping(item) for item in items]


def actuators_from_config(items: Optional[Sequence[Mapping[str, Any]]]) -> List[ThermalActuator]:
    if not items:
        return default_actuators()
    return [ThermalActuator.from_mapping(item) for item in items]
