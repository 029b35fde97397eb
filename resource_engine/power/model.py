from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

from resource_engine.core.models import TrendPoint, iso

LOAD_CATEGORIES = ("critical", "essential", "operational", "science", "non_essential")
SOURCE_TYPES = ("solar", "rtg", "fuel_cell", "backup")


@dataclass
class BatteryState:
    soc_pct: float
    soh_pct: float
    available_power_w: float
    temperature_c: float
    voltage_v: float
    current_a: float
    cycle_count: int
    predicted_life_h: float
    thermal_runaway_risk_pct: float
    last_calibration: Optional[datetime] = None

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "soc_pct": float(self.soc_pct),
            "soh_pct": float(self.soh_pct),
            "available_power_w": float(self.available_power_w),
            "temperature_c": float(self.temperature_c),
            "voltage_v": float(self.voltage_v),
            "current_a": float(self.current_a),
            "cycle_count": int(self.cycle_count),
            "predicted_life_h": float(self.predicted_life_h),
            "thermal_runaway_risk_pct": float(self.thermal_runaway_risk_pct),
            "last_calibration": iso(self.last_calibration),
        }


STATE_FIELDS = tuple(f.name for f in fields(BatteryState))


@dataclass
class CycleRecord:
    timestamp: datetime
    start_soc_pct: float
    end_soc_pct: float
    depth_of_discharge_pct: float
    average_temperature_c: float
    peak_current_a: float
    energy_transferred_wh: float

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "timestamp": iso(self.timestamp),
            "start_soc_pct": float(self.start_soc_pct),
            "end_soc_pct": float(self.end_soc_pct),
            "depth_of_discharge_pct": float(self.depth_of_discharge_pct),
            "average_temperature_c": float(self.average_temperature_c),
            "peak_current_a": float(self.peak_current_a),
            "energy_transferred_wh": float(self.energy_transferred_wh),
        }


@dataclass
class BatteryBank:
    bank_id: str
    name: str
    capacity_ah: float
    nominal_voltage_v: float
    cell_count: int
    chemistry: str
    temperature_range_c: Tuple[float, float]
    state: BatteryState
    active: bool = False
    isolated: bool = False
    cycle_history: Deque[CycleRecord] = field(default_factory=lambda: deque(maxlen=1000))

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.bank_id,
            "name": self.name,
            "capacity_ah": float(self.capacity_ah),
            "nominal_voltage_v": float(self.nominal_voltage_v),
            "cell_count": int(self.cell_count),
            "chemistry": self.chemistry,
            "temperature_range_c": list(self.temperature_range_c),
            "state": self.state.to_mapping(),
            "active": bool(self.active),
            "isolated": bool(self.isolated),
            "cycle_history": [r.to_mapping() for r in self.cycle_history],
        }


@dataclass(frozen=True)
class PowerProfile:
    startup_w: float
    nominal_w: float
    peak_w: float
    standby_w: float
    startup_time_s: float


@dataclass
class PowerLoad:
    load_id: str
    name: str
    category: str
    current_draw_w: float
    nominal_draw_w: float
    duty_cycle_pct: float
    priority: int
    sheddable: bool
    minimum_runtime_s: float
    profile: PowerProfile

    @property
    def can_shed(self) -> bool:
        return self.sheddable and self.category != "critical"

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.load_id,
            "name": self.name,
            "category": self.category,
            "current_draw_w": float(self.current_draw_w),
            "nominal_draw_w": float(self.nominal_draw_w),
            "duty_cycle_pct": float(self.duty_cycle_pct),
            "priority": int(self.priority),
            "sheddable": bool(self.sheddable),
            "minimum_runtime_s": float(self.minimum_runtime_s),
            "standby_w": float(self.profile.standby_w),
        }


@dataclass
class GenerationSource:
    source_id: str
    name: str
    source_type: str
    current_output_w: float
    maximum_output_w: float
    efficiency_pct: float
    degradation_pct: float
    active: bool

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.source_id,
            "name": self.name,
            "type": self.source_type,
            "current_output_w": float(self.current_output_w),
            "maximum_output_w": float(self.maximum_output_w),
            "efficiency_pct": float(self.efficiency_pct),
            "degradation_pct": float(self.degradation_pct),
            "active": bool(self.active),
        }


@dataclass
class PowerEvent:
    timestamp: datetime
    event: str
    impact_w: float
    duration_s: float

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "timestamp": iso(self.timestamp),
            "event": self.event,
            "impact_w": float(self.impact_w),
            "duration_s": float(self.duration_s),
        }


@dataclass
class BatteryForecastPoint:
    timestamp: datetime
    soc_pct: float
    soh_pct: float
    temperature_c: float
    confidence: float


@dataclass
class PowerForecast:
    horizon_h: float
    bank_id: str
    generation: List[TrendPoint]
    consumption: List[TrendPoint]
    battery: List[BatteryForecastPoint]
    critical_events: List[PowerEvent]

    def rows(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for gen, con, bat in zip(self.generation, self.consumption, self.battery):
            rows.append(
                {
                    "timestamp": iso(gen.timestamp),
                    "generation_w": float(gen.value),
                    "generation_confidence": float(gen.confidence),
                    "consumption_w": float(con.value),
                    "consumption_confidence": float(con.confidence),
                    "net_w": float(gen.value - con.value),
                    "soc_pct": float(bat.soc_pct),
                    "soh_pct": float(bat.soh_pct),
                    "temperature_c": float(bat.temperature_c),
                }
            )
        return rows


def _bank(
    bank_id: str,
    name: str,
    capacity_ah: float,
    cells: int,
    state: Tuple[float, float, float, float, float, float, int, float, float],
    calibrated_days_ago: float,
    now: datetime,
    active: bool,
) -> BatteryBank:
    soc, soh, sop, temp, volts, amps, cycles, life, risk = state
    return BatteryBank(
        bank_id=bank_id,
        name=name,
        capacity_ah=capacity_ah,
        nominal_voltage_v=28.0,
        cell_count=cells,
        chemistry="li_ion",
        temperature_range_c=(-20.0, 60.0),
        state=BatteryState(soc, soh, sop, temp, volts, amps, cycles, life, risk, now - timedelta(days=calibrated_days_ago)),
        active=active,
    )


def default_banks(now: datetime) -> List[BatteryBank]:
    return [
        _bank("primary-bank", "Primary Battery Bank", 100.0, 8,
              (85.5, 96.2, 2800.0, 18.5, 28.4, -15.2, 1247, 8760.0, 2.1), 7, now, True),
        _bank("backup-bank", "Backup Battery Bank", 75.0, 6,
              (92.1, 89.7, 2100.0, 16.8, 28.6, 0.0, 856, 6240.0, 1.3), 14, now, False),
        _bank("emergency-bank", "Emergency Reserve Bank", 50.0, 4,
              (100.0, 98.5, 1400.0, 15.2, 29.2, 0.0, 12, 35040.0, 0.5), 30, now, False),
    ]


def _load(
    load_id: str,
    name: str,
    category: str,
    nominal_w: float,
    duty_pct: float,
    priority: int,
    sheddable: bool,
    min_runtime_s: float,
    profile: Tuple[float, float, float, float, float],
) -> PowerLoad:
    return PowerLoad(
        load_id=load_id,
        name=name,
        category=category,
        current_draw_w=nominal_w,
        nominal_draw_w=nominal_w,
        duty_cycle_pct=duty_pct,
        priority=priority,
        sheddable=sheddable,
        minimum_runtime_s=min_runtime_s,
        profile=PowerProfile(*profile),
    )


def default_loads() -> List[PowerLoad]:
    return [
        _load("flight-computer", "Flight Computer", "critical", 45.0, 100.0, 10, False, 0.0,
              (65.0, 45.0, 85.0, 25.0, 30.0)),
        _load("communications", "Communication System", "critical", 125.0, 85.0, 9, False, 10.0,
              (180.0, 125.0, 250.0, 15.0, 45.0)),
        _load("life-support", "Life Support Systems", "critical", 185.0, 100.0, 10, False, 0.0,
              (220.0, 185.0, 285.0, 85.0, 60.0)),
        _load("navigation", "Navigation & Guidance", "essential", 75.0, 95.0, 8, False, 30.0,
              (95.0, 75.0, 125.0, 35.0, 20.0)),
        _load("thermal-control", "Thermal Control System", "essential", 95.0, 75.0, 7, True, 120.0,
              (120.0, 95.0, 185.0, 25.0, 15.0)),
        _load("science-primary", "Primary Science Instruments", "science", 165.0, 60.0, 6, True, 300.0,
              (200.0, 165.0, 275.0, 45.0, 90.0)),
        _load("science-secondary", "Secondary Science Instruments", "science", 85.0, 40.0, 4, True, 180.0,
              (110.0, 85.0, 145.0, 25.0, 60.0)),
        _load("cameras", "Imaging Cameras", "operational", 55.0, 25.0, 3, True, 30.0,
              (75.0, 55.0, 95.0, 8.0, 10.0)),
        _load("backup-systems", "Backup & Redundant Systems", "non_essential", 35.0, 10.0, 2, True, 0.0,
              (45.0, 35.0, 65.0, 15.0, 20.0)),
    ]


def default_sources() -> List[GenerationSource]:
    return [
        GenerationSource("solar-array", "Solar Panel Array", "solar", 450.0, 600.0, 22.5, 8.2, True),
        GenerationSource("rtg-backup", "Radioisotope Thermoelectric Generator", "rtg", 45.0, 50.0, 7.5, 2.1, False),
    ]


def bank_from_mapping(data: Mapping[str, Any], now: datetime) -> BatteryBank:
    state = dict(data.get("state", {}))
    return BatteryBank(
        bank_id=str(data["id"]),
        name=str(data.get("name", data["id"])),
        capacity_ah=float(data.get("capacity_ah", 100.0)),
        nominal_voltage_v=float(data.get("nominal_voltage_v", 28.0)),
        cell_count=int(data.get("cell_count", 8)),
        chemistry=str(data.get("chemistry", "li_ion")),
        temperature_range_c=tuple(float(x) for x in data.get("temperature_range_c", (-20.0, 60.0))),  # type: ignore[arg-type]
        state=BatteryState(
            soc_pct=float(state.get("soc_pct", 80.0)),
            soh_pct=float(state.get("soh_pct", 95.0)),
            available_power_w=float(state.get("available_power_w", 0.0)),
            temperature_c=float(state.get("temperature_c", 20.0)),
            voltage_v=float(state.get("voltage_v", data.get("nominal_voltage_v", 28.0))),
            current_a=float(state.get("current_a", 0.0)),
            cycle_count=int(state.get("cycle_count", 0)),
            predicted_life_h=float(state.get("predicted_life_h", 0.0)),
            thermal_runaway_risk_pct=float(state.get("thermal_runaway_risk_pct", 0.0)),
            last_calibration=now,
        ),
        active=bool(data.get("active", False)),
        isolated=bool(data.get("isolated", False)),
    )


def load_from_mapping(data: Mapping[str, Any]) -> PowerLoad:
    nominal = float(data.get("nominal_draw_w", 0.0))
    profile = dict(data.get("profile", {}))
    return PowerLoad(
        load_id=str(data["id"]),
        name=str(data.get("name", data["id"])),
        category=str(data.get("category", "operational")),
        current_draw_w=float(data.get("current_draw_w", nominal)),
        nominal_draw_w=nominal,
        duty_cycle_pct=float(data.get("duty_cycle_pct", 100.0)),
        priority=int(data.get("priority", 5)),
        sheddable=bool(data.get("sheddable", False)),
        minimum_runtime_s=float(data.get("minimum_runtime_s", 0.0)),
        profile=PowerProfile(
            startup_w=float(profile.get("startup_w", nominal)),
            nominal_w=float(profile.get("nominal_w", nominal)),
            peak_w=float(profile.get("peak_w", nominal)),
            standby_w=float(profile.get("standby_w", 0.0)),
            startup_time_s=float(profile.get("startup_time_s", 0.0)),
        ),
    )


def source_from_mapping(data: Mapping[str, Any]) -> GenerationSource:
    return GenerationSource(
        source_id=str(data["id"]),
        name=str(data.get("name", data["id"])),
        source_type=str(data.get("type", "solar")),
        current_output_w=float(data.get("current_output_w", 0.0)),
        maximum_output_w=float(data.get("maximum_output_w", 0.0)),
        efficiency_pct=float(data.get("efficiency_pct", 100.0)),
        degradation_pct=float(data.get("degradation_pct", 0.0)),
        active=bool(data.get("active", False)),
    )


def banks_from_config(items: Optional[Sequence[Mapping[str, Any]]], now: datetime) -> List[BatteryBank]:
    if not items:
        return default_banks(now)
    return [bank_from_mapping(item, now) for item in items]


def loads_from_config(items: Optional[Sequence[Mapping[str, Any]]]) -> List[PowerLoad]:
    if not items:
        return default_loads()
    return [load_from_mapping(item) for item in items]


def sources_from_config(items: Optional[Sequence[Mapping[str, Any]]]) -> List[GenerationSource]:
    if not items:
        return default_sources()
    return [source_from_mapping(item) for item in items]
