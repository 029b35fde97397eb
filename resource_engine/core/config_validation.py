from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

from .models import (
    ACTIVITY_STATUSES,
    ACTIVITY_TYPES,
    ACTUATOR_TYPES,
    COMPONENT_CRITICALITIES,
    COMPONENT_LOCATIONS,
    CONSTRAINT_TYPES,
    CRITERION_OPERATORS,
    HEALTH_STATES,
    MISSION_PHASES,
)

THERMAL_TRIGGERS = ("solar_flare", "component_overheat", "deep_space_cooling")


class ConfigValidationError(ValueError):
    pass


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require(cfg: Dict[str, Any], key: str, path: str, errors: List[str]) -> Any:
    if key not in cfg:
        errors.append(f"Missing key: {path}.{key}")
        return None
    return cfg[key]


def _check_positive(cfg: Dict[str, Any], keys: List[str], path: str, errors: List[str]) -> None:
    for key in keys:
        if key not in cfg:
            continue
        value = cfg.get(key)
        if not _is_number(value) or float(value) <= 0.0:
            errors.append(f"{path}.{key} must be > 0")


def _check_percent(cfg: Dict[str, Any], keys: List[str], path: str, errors: List[str]) -> None:
    for key in keys:
        if key not in cfg:
            continue
        value = cfg.get(key)
        if not _is_number(value) or not (0.0 <= float(value) <= 100.0):
            errors.append(f"{path}.{key} must be within [0, 100]")


def _validate_catalog(cfg: Dict[str, Any], key: str, path: str, errors: List[str]) -> None:
    items = cfg.get(key)
    if items is None:
        return
    if not isinstance(items, list):
        errors.append(f"{path}.{key} must be a list")
        return
    seen = set()
    for idx, item in enumerate(items):
        if not isinstance(item, dict) or "id" not in item:
            errors.append(f"{path}.{key}[{idx}] must be a mapping with an id")
            continue
        if item["id"] in seen:
            errors.append(f"{path}.{key}[{idx}] duplicates id {item['id']}")
        seen.add(item["id"])


def _check_choice(item: Dict[str, Any], key: str, allowed: Sequence[str], path: str, errors: List[str]) -> None:
    if key in item and item[key] not in allowed:
        errors.append(f"{path}.{key} must be one of: {', '.join(allowed)}")


def _catalog_items(cfg: Dict[str, Any], key: str) -> List[Tuple[int, Dict[str, Any]]]:
    items = cfg.get(key)
    if not isinstance(items, list):
        return []
    return [(idx, item) for idx, item in enumerate(items) if isinstance(item, dict)]


def _validate_thermal(cfg: Dict[str, Any], errors: List[str]) -> None:
    _check_positive(
        cfg,
        [
            "forecast_step_s",
            "cooling_step_s",
            "radiating_area_m2",
            "heat_capacity_j_per_unit",
            "solar_wind_baseline_kms",
            "history_limit",
            "trend_window",
        ],
        "thermal",
        errors,
    )
    _validate_catalog(cfg, "components", "thermal", errors)
    _validate_catalog(cfg, "actuators", "thermal", errors)
    for idx, item in _catalog_items(cfg, "components"):
        _check_choice(item, "location", COMPONENT_LOCATIONS, f"thermal.components[{idx}]", errors)
        _check_choice(item, "criticality", COMPONENT_CRITICALITIES, f"thermal.components[{idx}]", errors)
    for idx, item in _catalog_items(cfg, "actuators"):
        _check_choice(item, "type", ACTUATOR_TYPES, f"thermal.actuators[{idx}]", errors)
    emissivity = cfg.get("emissivity", 0.85)
    if not _is_number(emissivity) or not (0.0 < float(emissivity) <= 1.0):
        errors.append("thermal.emissivity must be within (0, 1]")
    _check_percent(cfg, ["confidence_ceiling", "confidence_floor"], "thermal", errors)
    ceiling = cfg.get("confidence_ceiling", 95.0)
    floor = cfg.get("confidence_floor", 50.0)
    if _is_number(ceiling) and _is_number(floor) and float(floor) > float(ceiling):
        errors.append("thermal.confidence_floor must be <= thermal.confidence_ceiling")
    warning_fraction = cfg.get("warning_fraction", 0.3)
    if not _is_number(warning_fraction) or not (0.0 <= float(warning_fraction) <= 1.0):
        errors.append("thermal.warning_fraction must be within [0, 1]")


def _validate_power(cfg: Dict[str, Any], errors: List[str]) -> None:
    _check_positive(
        cfg,
        ["forecast_step_s", "telemetry_interval_s", "solar_wind_span_kms", "cycle_history_limit"],
        "power",
        errors,
    )
    for key in ("banks", "loads", "sources"):
        _validate_catalog(cfg, key, "power", errors)
    _check_percent(
        cfg,
        [
            "emergency_soc_pct",
            "shed_soc_pct",
            "min_soc_pct",
            "min_soh_pct",
            "cycle_delta_pct",
            "cycle_dod_pct",
            "default_sun_exposure_pct",
            "soh_floor_pct",
        ],
        "power",
        errors,
    )
    emergency = cfg.get("emergency_soc_pct", 10.0)
    shed = cfg.get("shed_soc_pct", 20.0)
    if _is_number(emergency) and _is_number(shed) and float(emergency) > float(shed):
        errors.append("power.emergency_soc_pct must be <= power.shed_soc_pct")
    min_eff = cfg.get("min_solar_efficiency", 0.1)
    if not _is_number(min_eff) or not (0.0 <= float(min_eff) <= 1.0):
        errors.append("power.min_solar_efficiency must be within [0, 1]")
    severity = cfg.get("storm_shed_severity", 7.0)
    if not _is_number(severity) or not (0.0 <= float(severity) <= 10.0):
        errors.append("power.storm_shed_severity must be within [0, 10]")


def _validate_scheduler(cfg: Dict[str, Any], errors: List[str]) -> None:
    _check_positive(
        cfg,
        [
            "analysis_window_h",
            "slot_s",
            "utilization_step_s",
            "optimization_interval_s",
            "escalation_window_h",
            "metrics_retention_h",
            "metrics_history_limit",
        ],
        "scheduler",
        errors,
    )
    _validate_catalog(cfg, "activities", "scheduler", errors)
    for idx, item in _catalog_items(cfg, "activities"):
        path = f"scheduler.activities[{idx}]"
        _check_choice(item, "type", ACTIVITY_TYPES, path, errors)
        _check_choice(item, "status", ACTIVITY_STATUSES, path, errors)
        for cidx, constraint in _catalog_items(item, "constraints"):
            _check_choice(constraint, "type", CONSTRAINT_TYPES, f"{path}.constraints[{cidx}]", errors)
        for cidx, criterion in _catalog_items(item, "success_criteria"):
            _check_choice(criterion, "operator", CRITERION_OPERATORS, f"{path}.success_criteria[{cidx}]", errors)
    capacities = cfg.get("capacities", {})
    if not isinstance(capacities, dict):
        errors.append("scheduler.capacities must be a mapping")
    else:
        for name, value in capacities.items():
            if not _is_number(value) or float(value) <= 0.0:
                errors.append(f"scheduler.capacities.{name} must be > 0")
    multiplier = cfg.get("severity_multiplier", 1.5)
    if not _is_number(multiplier) or float(multiplier) < 1.0:
        errors.append("scheduler.severity_multiplier must be >= 1")
    max_priority = cfg.get("max_priority", 10)
    if not isinstance(max_priority, int) or not (1 <= int(max_priority) <= 10):
        errors.append("scheduler.max_priority must be an integer within [1, 10]")
    cooldown = cfg.get("escalation_cooldown_s", 300.0)
    if not _is_number(cooldown) or float(cooldown) < 0.0:
        errors.append("scheduler.escalation_cooldown_s must be >= 0")
    hour = cfg.get("maintenance_hour_utc", 2)
    if not isinstance(hour, int) or not (0 <= hour <= 23):
        errors.append("scheduler.maintenance_hour_utc must be an integer within [0, 23]")


def _validate_telemetry(cfg: Dict[str, Any], errors: List[str]) -> None:
    source = cfg.get("source", "random")
    if source not in {"random", "nominal"}:
        errors.append("telemetry.source must be one of: random, nominal")
    low = cfg.get("variation_low", 0.8)
    high = cfg.get("variation_high", 1.2)
    if not _is_number(low) or not _is_number(high):
        errors.append("telemetry.variation_low/variation_high must be numeric")
    elif float(low) > float(high):
        errors.append("telemetry.variation_low must be <= telemetry.variation_high")
    seed = cfg.get("seed")
    if seed is not None and not isinstance(seed, int):
        errors.append("telemetry.seed must be an integer or null")


def _validate_confidence(cfg: Dict[str, Any], errors: List[str]) -> None:
    for section, table in cfg.items():
        if section not in {"power", "thermal"}:
            errors.append(f"confidence.{section} is not a known predictor")
            continue
        if not isinstance(table, dict):
            errors.append(f"confidence.{section} must be a mapping")
            continue
        _check_percent(table, list(table.keys()), f"confidence.{section}", errors)


def _validate_scenario(cfg: Dict[str, Any], errors: List[str]) -> None:
    horizon = _require(cfg, "horizon_h", "scenario", errors)
    if horizon is not None and (not _is_number(horizon) or float(horizon) <= 0.0):
        errors.append("scenario.horizon_h must be > 0")
    phase = cfg.get("mission_phase", "transit")
    if phase not in MISSION_PHASES:
        errors.append(f"scenario.mission_phase must be one of: {', '.join(MISSION_PHASES)}")
    env = cfg.get("environment", {})
    if not isinstance(env, dict):
        errors.append("scenario.environment must be a mapping")
    else:
        solar = env.get("solar_activity", {})
        flares = solar.get("predicted_flares", []) if isinstance(solar, dict) else []
        if not isinstance(flares, list):
            errors.append("scenario.environment.solar_activity.predicted_flares must be a list")
        else:
            for idx, flare in enumerate(flares):
                if not isinstance(flare, dict):
                    errors.append(f"scenario.environment.solar_activity.predicted_flares[{idx}] must be a mapping")
                    continue
                if str(flare.get("class", "")).upper() not in {"A", "B", "C", "M", "X"}:
                    errors.append(f"scenario.environment.solar_activity.predicted_flares[{idx}].class must be A-X")
    health = cfg.get("health", {})
    if not isinstance(health, dict):
        errors.append("scenario.health must be a mapping")
    else:
        _check_choice(health, "overall", HEALTH_STATES, "scenario.health", errors)
        subsystems = health.get("subsystems", {})
        if isinstance(subsystems, dict):
            for name, state in subsystems.items():
                if state not in HEALTH_STATES:
                    errors.append(f"scenario.health.subsystems.{name} must be one of: {', '.join(HEALTH_STATES)}")
    triggers = cfg.get("power_triggers", [])
    if not isinstance(triggers, list):
        errors.append("scenario.power_triggers must be a list")
    else:
        for idx, trig in enumerate(triggers):
            if not isinstance(trig, dict) or "trigger" not in trig:
                errors.append(f"scenario.power_triggers[{idx}] must be a mapping with a trigger")
                continue
            severity = trig.get("severity", 5)
            if not _is_number(severity) or not (0.0 <= float(severity) <= 10.0):
                errors.append(f"scenario.power_triggers[{idx}].severity must be within [0, 10]")
    thermal_triggers = cfg.get("thermal_triggers", [])
    if not isinstance(thermal_triggers, list):
        errors.append("scenario.thermal_triggers must be a list")
    else:
        for idx, trig in enumerate(thermal_triggers):
            if not isinstance(trig, dict) or trig.get("trigger") not in THERMAL_TRIGGERS:
                errors.append(
                    f"scenario.thermal_triggers[{idx}].trigger must be one of: {', '.join(THERMAL_TRIGGERS)}"
                )


def validate_config(cfg: Dict[str, Any]) -> None:
    errors: List[str] = []

    for section in ["thermal", "power", "scheduler"]:
        value = cfg.get(section, {})
        if not isinstance(value, dict):
            errors.append(f"{section} must be a mapping")

    if isinstance(cfg.get("thermal", {}), dict):
        _validate_thermal(cfg.get("thermal", {}), errors)
    if isinstance(cfg.get("power", {}), dict):
        _validate_power(cfg.get("power", {}), errors)
    if isinstance(cfg.get("scheduler", {}), dict):
        _validate_scheduler(cfg.get("scheduler", {}), errors)

    telemetry = cfg.get("telemetry", {})
    if not isinstance(telemetry, dict):
        errors.append("telemetry must be a mapping")
    else:
        _validate_telemetry(telemetry, errors)

    confidence = cfg.get("confidence", {})
    if not isinstance(confidence, dict):
        errors.append("confidence must be a mapping")
    else:
        _validate_confidence(confidence, errors)

    engine = cfg.get("engine", {})
    if not isinstance(engine, dict):
        errors.append("engine must be a mapping")
    else:
        bank_map = engine.get("component_bank_map", {})
        if not isinstance(bank_map, dict):
            errors.append("engine.component_bank_map must be a mapping")

    logging_cfg = cfg.get("logging", {})
    if isinstance(logging_cfg, dict):
        level = str(logging_cfg.get("level", "INFO")).upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            errors.append("logging.level must be a standard logging level name")
    else:
        errors.append("logging must be a mapping")

    if "scenario" in cfg:
        if isinstance(cfg["scenario"], dict):
            _validate_scenario(cfg["scenario"], errors)
        else:
            errors.append("scenario must be a mapping")

    if errors:
        raise ConfigValidationError("Configuration validation failed:\n- " + "\n- ".join(errors))
