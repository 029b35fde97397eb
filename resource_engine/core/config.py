from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping


@dataclass
class ThermalSettings:
    forecast_step_s: float = 300.0
    cooling_step_s: float = 1800.0
    emissivity: float = 0.85
    # Effective per-component area; cooling is reported in kW-equivalent units.
    radiating_area_m2: float = 1e-3
    background_temp_k: float = 2.7
    # Catalog thermal mass is in kJ/K.
    heat_capacity_j_per_unit: float = 1000.0
    environmental_heat_w: float = 100.0
    solar_wind_baseline_kms: float = 400.0
    flare_absorption_scale: float = 0.001
    flare_event_scale_c: float = 10.0
    history_limit: int = 1000
    trend_window: int = 5
    trend_threshold_c: float = 2.0
    warning_fraction: float = 0.3
    confidence_ceiling: float = 95.0
    confidence_decay: float = 2.0
    confidence_floor: float = 50.0

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "ThermalSettings":
        d = cls()
        return cls(
            forecast_step_s=float(cfg.get("forecast_step_s", d.forecast_step_s)),
            cooling_step_s=float(cfg.get("cooling_step_s", d.cooling_step_s)),
            emissivity=float(cfg.get("emissivity", d.emissivity)),
            radiating_area_m2=float(cfg.get("radiating_area_m2", d.radiating_area_m2)),
            background_temp_k=float(cfg.get("background_temp_k", d.background_temp_k)),
            heat_capacity_j_per_unit=float(cfg.get("heat_capacity_j_per_unit", d.heat_capacity_j_per_unit)),
            environmental_heat_w=float(cfg.get("environmental_heat_w", d.environmental_heat_w)),
            solar_wind_baseline_kms=float(cfg.get("solar_wind_baseline_kms", d.solar_wind_baseline_kms)),
            flare_absorption_scale=float(cfg.get("flare_absorption_scale", d.flare_absorption_scale)),
            flare_event_scale_c=float(cfg.get("flare_event_scale_c", d.flare_event_scale_c)),
            history_limit=int(cfg.get("history_limit", d.history_limit)),
            trend_window=int(cfg.get("trend_window", d.trend_window)),
            trend_threshold_c=float(cfg.get("trend_threshold_c", d.trend_threshold_c)),
            warning_fraction=float(cfg.get("warning_fraction", d.warning_fraction)),
            confidence_ceiling=float(cfg.get("confidence_ceiling", d.confidence_ceiling)),
            confidence_decay=float(cfg.get("confidence_decay", d.confidence_decay)),
            confidence_floor=float(cfg.get("confidence_floor", d.confidence_floor)),
        )


@dataclass
class PowerSettings:
    forecast_step_s: float = 900.0
    emergency_soc_pct: float = 10.0
    shed_soc_pct: float = 20.0
    min_soc_pct: float = 20.0
    min_soh_pct: float = 80.0
    runaway_temp_c: float = 45.0
    runaway_gain: float = 2.0
    cycle_delta_pct: float = 10.0
    cycle_dod_pct: float = 20.0
    cycle_history_limit: int = 1000
    storm_shed_severity: float = 7.0
    default_sun_exposure_pct: float = 50.0
    solar_wind_baseline_kms: float = 400.0
    solar_wind_span_kms: float = 2000.0
    min_solar_efficiency: float = 0.1
    soh_decay_per_step: float = 0.0001
    soh_floor_pct: float = 50.0
    high_demand_offset_h: float = 6.0
    telemetry_interval_s: float = 30.0
    primary_bank_id: str = "primary-bank"
    backup_bank_id: str = "backup-bank"
    emergency_bank_id: str = "emergency-bank"
    backup_source_id: str = "rtg-backup"

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "PowerSettings":
        d = cls()
        return cls(
            forecast_step_s=float(cfg.get("forecast_step_s", d.forecast_step_s)),
            emergency_soc_pct=float(cfg.get("emergency_soc_pct", d.emergency_soc_pct)),
            shed_soc_pct=float(cfg.get("shed_soc_pct", d.shed_soc_pct)),
            min_soc_pct=float(cfg.get("min_soc_pct", d.min_soc_pct)),
            min_soh_pct=float(cfg.get("min_soh_pct", d.min_soh_pct)),
            runaway_temp_c=float(cfg.get("runaway_temp_c", d.runaway_temp_c)),
            runaway_gain=float(cfg.get("runaway_gain", d.runaway_gain)),
            cycle_delta_pct=float(cfg.get("cycle_delta_pct", d.cycle_delta_pct)),
            cycle_dod_pct=float(cfg.get("cycle_dod_pct", d.cycle_dod_pct)),
            cycle_history_limit=int(cfg.get("cycle_history_limit", d.cycle_history_limit)),
            storm_shed_severity=float(cfg.get("storm_shed_severity", d.storm_shed_severity)),
            default_sun_exposure_pct=float(cfg.get("default_sun_exposure_pct", d.default_sun_exposure_pct)),
            solar_wind_baseline_kms=float(cfg.get("solar_wind_baseline_kms", d.solar_wind_baseline_kms)),
            solar_wind_span_kms=float(cfg.get("solar_wind_span_kms", d.solar_wind_span_kms)),
            min_solar_efficiency=float(cfg.get("min_solar_efficiency", d.min_solar_efficiency)),
            soh_decay_per_step=float(cfg.get("soh_decay_per_step", d.soh_decay_per_step)),
            soh_floor_pct=float(cfg.get("soh_floor_pct", d.soh_floor_pct)),
            high_demand_offset_h=float(cfg.get("high_demand_offset_h", d.high_demand_offset_h)),
            telemetry_interval_s=float(cfg.get("telemetry_interval_s", d.telemetry_interval_s)),
            primary_bank_id=str(cfg.get("primary_bank_id", d.primary_bank_id)),
            backup_bank_id=str(cfg.get("backup_bank_id", d.backup_bank_id)),
            emergency_bank_id=str(cfg.get("emergency_bank_id", d.emergency_bank_id)),
            backup_source_id=str(cfg.get("backup_source_id", d.backup_source_id)),
        )


@dataclass
class SchedulerSettings:
    analysis_window_h: float = 24.0
    slot_s: float = 3600.0
    utilization_step_s: float = 900.0
    capacities: Dict[str, float] = field(
        default_factory=lambda: {"power": 1000.0, "thermal": 500.0, "bandwidth": 8192.0}
    )
    severity_multiplier: float = 1.5
    defer_priority_below: int = 5
    modify_excess_fraction: float = 0.2
    optimization_interval_s: float = 300.0
    escalation_window_h: float = 24.0
    escalation_cooldown_s: float = 300.0
    max_priority: int = 10
    metrics_retention_h: float = 24.0
    metrics_history_limit: int = 1000
    maintenance_interval_days: int = 7
    maintenance_hour_utc: int = 2
    maintenance_duration_s: float = 14400.0

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "SchedulerSettings":
        d = cls()
        capacities = dict(d.capacities)
        capacities.update({str(k): float(v) for k, v in dict(cfg.get("capacities", {})).items()})
        return cls(
            analysis_window_h=float(cfg.get("analysis_window_h", d.analysis_window_h)),
            slot_s=float(cfg.get("slot_s", d.slot_s)),
            utilization_step_s=float(cfg.get("utilization_step_s", d.utilization_step_s)),
            capacities=capacities,
            severity_multiplier=float(cfg.get("severity_multiplier", d.severity_multiplier)),
            defer_priority_below=int(cfg.get("defer_priority_below", d.defer_priority_below)),
            modify_excess_fraction=float(cfg.get("modify_excess_fraction", d.modify_excess_fraction)),
            optimization_interval_s=float(cfg.get("optimization_interval_s", d.optimization_interval_s)),
            escalation_window_h=float(cfg.get("escalation_window_h", d.escalation_window_h)),
            escalation_cooldown_s=float(
                cfg.get("escalation_cooldown_s", cfg.get("optimization_interval_s", d.escalation_cooldown_s))
            ),
            max_priority=int(cfg.get("max_priority", d.max_priority)),
            metrics_retention_h=float(cfg.get("metrics_retention_h", d.metrics_retention_h)),
            metrics_history_limit=int(cfg.get("metrics_history_limit", d.metrics_history_limit)),
            maintenance_interval_days=int(cfg.get("maintenance_interval_days", d.maintenance_interval_days)),
            maintenance_hour_utc=int(cfg.get("maintenance_hour_utc", d.maintenance_hour_utc)),
            maintenance_duration_s=float(cfg.get("maintenance_duration_s", d.maintenance_duration_s)),
        )


@dataclass
class EngineSettings:
    thermal: ThermalSettings = field(default_factory=ThermalSettings)
    power: PowerSettings = field(default_factory=PowerSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    telemetry: Dict[str, Any] = field(default_factory=dict)
    confidence: Dict[str, Dict[str, float]] = field(default_factory=dict)
    component_bank_map: Dict[str, str] = field(default_factory=lambda: {"battery-bank-1": "primary-bank"})

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "EngineSettings":
        engine_cfg = dict(cfg.get("engine", {}))
        bank_map = engine_cfg.get("component_bank_map")
        return cls(
            thermal=ThermalSettings.from_mapping(dict(cfg.get("thermal", {}))),
            power=PowerSettings.from_mapping(dict(cfg.get("power", {}))),
            scheduler=SchedulerSettings.from_mapping(dict(cfg.get("scheduler", {}))),
            telemetry=dict(cfg.get("telemetry", {})),
            confidence={str(k): dict(v) for k, v in dict(cfg.get("confidence", {})).items()},
            component_bank_map=(
                {"battery-bank-1": "primary-bank"}
                if bank_map is None
                else {str(k): str(v) for k, v in dict(bank_map).items()}
            ),
        )
