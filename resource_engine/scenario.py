from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from resource_engine.core.io import write_csv, write_json
from resource_engine.core.models import (
    ActionResult,
    Clock,
    EnvironmentSnapshot,
    SystemHealthSummary,
    iso,
)
from resource_engine.engine import ForecastEngine
from resource_engine.plots import plot_power_forecast, plot_resource_utilization, plot_thermal_forecast

logger = logging.getLogger(__name__)


def _flare_rows(engine: ForecastEngine, environment: EnvironmentSnapshot) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for flare in environment.predicted_flares:
        impact = engine.thermal.predict_solar_flare_response(flare)
        for component in impact.component_impacts:
            rows.append(
                {
                    "flare": impact.flare_label,
                    "arrival": iso(impact.arrival_time),
                    "component_id": component.component_id,
                    "rise_rate_c_per_min": component.rise_rate_c_per_min,
                    "peak_increase_c": component.peak_increase_c,
                    "minutes_to_nominal_exceed": component.minutes_to_nominal_exceed,
                    "minutes_to_survival_exceed": component.minutes_to_survival_exceed,
                    "confidence": component.confidence,
                }
            )
        for action in impact.recommended_actions:
            engine.thermal.execute_thermal_action(action, trigger="solar_flare")
    return rows


def _apply_telemetry(engine: ForecastEngine, scenario: Mapping[str, Any]) -> None:
    for update in scenario.get("temperature_updates", []):
        engine.update_component_temperature(str(update["component"]), float(update["temperature_c"]))
    for update in scenario.get("battery_updates", []):
        engine.update_battery_state(str(update["bank"]), dict(update.get("state", {})))
    elapsed_s = float(scenario.get("telemetry_elapsed_s", 0.0))
    if elapsed_s > 0.0:
        engine.power.advance_telemetry(elapsed_s)


def _run_triggers(engine: ForecastEngine, scenario: Mapping[str, Any]) -> List[Dict[str, Any]]:
    results: List[Dict[str, Any]] = []
    for entry in scenario.get("thermal_triggers", []):
        response = engine.thermal.generate_thermal_response(
            str(entry["trigger"]),
            float(entry.get("severity", 5.0)),
            tuple(entry.get("components", ())),
        )
        for result in engine.thermal.execute_response(response):
            results.append(dict(result.to_mapping(), predictor="thermal"))
    for entry in scenario.get("power_triggers", []):
        result: ActionResult = engine.power.execute_power_management_action(
            str(entry["trigger"]),
            float(entry.get("severity", 5.0)),
            entry.get("bank"),
        )
        results.append(dict(result.to_mapping(), predictor="power"))
    return results


def run_scenario(
    cfg: Mapping[str, Any],
    output_dir: Path,
    horizon_h: Optional[float] = None,
    clock: Optional[Clock] = None,
) -> Dict[str, Any]:
    output_dir.mkdir(parents=True, exist_ok=True)
    scenario = dict(cfg.get("scenario", {}))
    horizon = float(horizon_h if horizon_h is not None else scenario.get("horizon_h", 24.0))

    engine = ForecastEngine(cfg, clock=clock)
    status_before = engine.status_snapshot()
    environment = EnvironmentSnapshot.from_mapping(dict(scenario.get("environment", {})), now=engine.now())
    health = SystemHealthSummary.from_mapping(dict(scenario.get("health", {})))

    _apply_telemetry(engine, scenario)
    flare_rows = _flare_rows(engine, environment)
    action_results = _run_triggers(engine, scenario)
    escalations = engine.scheduler.run_optimization_pass()
    dependency_conflicts = engine.scheduler.detect_dependency_conflicts()

    forecast_start = engine.now()
    bundle = engine.forecast_bundle(horizon, environment, health)
    status_after = engine.status_snapshot()

    thermal_csv = output_dir / "thermal_forecast.csv"
    power_csv = output_dir / "power_forecast.csv"
    utilization_csv = output_dir / "resource_utilization.csv"
    flare_csv = output_dir / "flare_impacts.csv"
    write_csv(thermal_csv, bundle.thermal.trend_rows())
    write_csv(power_csv, bundle.power.rows())
    write_csv(utilization_csv, bundle.mission.utilization.rows())
    write_csv(flare_csv, flare_rows)

    prediction_json = output_dir / "mission_prediction.json"
    write_json(prediction_json, bundle.mission.to_mapping())
    write_json(output_dir / "power_events.json", [e.to_mapping() for e in bundle.power.critical_events])
    write_json(output_dir / "action_results.json", action_results)
    write_json(
        output_dir / "conflicts.json",
        {
            "resource": status_after["conflicts"],
            "dependency": [c.to_mapping() for c in dependency_conflicts],
        },
    )
    write_json(output_dir / "status_before.json", status_before)
    write_json(output_dir / "status_after.json", status_after)

    thermal_plot = output_dir / "thermal_forecast.png"
    power_plot = output_dir / "power_forecast.png"
    utilization_plot = output_dir / "resource_utilization.png"
    plot_thermal_forecast(bundle.thermal, forecast_start, thermal_plot)
    plot_power_forecast(bundle.power, forecast_start, power_plot)
    plot_resource_utilization(bundle.mission, engine.settings.scheduler.capacities, utilization_plot)

    persisted = engine.persist(output_dir)

    metrics = status_after["schedule"]
    summary = {
        "horizon_h": horizon,
        "mission_phase": status_after["mission_phase"],
        "thermal_overall_status": status_after["thermal"]["overall_status"],
        "emergency_mode": status_after["power"]["emergency_mode"],
        "power_margin_w": status_after["power"]["power_margin_w"],
        "actions_applied": sum(1 for r in action_results if r["success"]),
        "actions_rejected": sum(1 for r in action_results if not r["success"]),
        "priority_escalations": len(escalations),
        "resource_conflicts": len(status_after["conflicts"]),
        "dependency_conflicts": len(dependency_conflicts),
        "mission_events": len(bundle.mission.events),
        "overall_risk": bundle.mission.risk.overall,
        "prediction_confidence": bundle.mission.confidence,
        "schedule_metrics": metrics,
        "persisted_records": persisted,
        "outputs": {
            "thermal_csv": str(thermal_csv),
            "power_csv": str(power_csv),
            "utilization_csv": str(utilization_csv),
            "flare_csv": str(flare_csv),
            "mission_prediction_json": str(prediction_json),
            "thermal_plot": str(thermal_plot),
            "power_plot": str(power_plot),
            "utilization_plot": str(utilization_plot),
        },
    }
    logger.info(
        "Scenario complete: %d actions applied, %d conflicts, overall risk %s",
        summary["actions_applied"],
        summary["resource_conflicts"],
        summary["overall_risk"],
    )
    return summary
