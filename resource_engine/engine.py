from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from resource_engine.core.confidence import POWER_CONFIDENCE, THERMAL_CONFIDENCE, build_confidence_model
from resource_engine.core.config import EngineSettings
from resource_engine.core.io import append_action_log, write_catalog_snapshot
from resource_engine.core.models import Clock, EnvironmentSnapshot, SystemHealthSummary, iso, utc_now
from resource_engine.core.telemetry import TelemetrySource, build_telemetry_source
from resource_engine.power import PowerForecast, PowerManager, banks_from_config, loads_from_config, sources_from_config
from resource_engine.scheduling import ActivityScheduler, MissionPrediction, ScheduleMetrics, activities_from_config
from resource_engine.thermal import ThermalForecast, ThermalForecaster, actuators_from_config, components_from_config

logger = logging.getLogger(__name__)


@dataclass
class ForecastBundle:
    thermal: ThermalForecast
    power: PowerForecast
    mission: MissionPrediction


class ForecastEngine:
    """
    Owns one thermal forecaster, power manager and activity scheduler.

    The predictors never reference each other; the only cross-domain input is
    the thermal-component to battery-bank temperature routing done here.
    """

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        clock: Optional[Clock] = None,
        telemetry: Optional[TelemetrySource] = None,
    ) -> None:
        cfg = dict(config or {})
        self.settings = EngineSettings.from_mapping(cfg)
        self._clock = clock or utc_now
        now = self._clock()

        thermal_cfg = dict(cfg.get("thermal", {}))
        power_cfg = dict(cfg.get("power", {}))
        scheduler_cfg = dict(cfg.get("scheduler", {}))
        confidence = self.settings.confidence

        self.thermal = ThermalForecaster(
            settings=self.settings.thermal,
            components=components_from_config(thermal_cfg.get("components")),
            actuators=actuators_from_config(thermal_cfg.get("actuators")),
            confidence_model=build_confidence_model(THERMAL_CONFIDENCE, confidence.get("thermal")),
            clock=self._clock,
        )
        self.power = PowerManager(
            settings=self.settings.power,
            banks=banks_from_config(power_cfg.get("banks"), now),
            loads=loads_from_config(power_cfg.get("loads")),
            sources=sources_from_config(power_cfg.get("sources")),
            telemetry=telemetry or build_telemetry_source(self.settings.telemetry),
            confidence_model=build_confidence_model(POWER_CONFIDENCE, confidence.get("power")),
            clock=self._clock,
        )
        self.scheduler = ActivityScheduler(
            settings=self.settings.scheduler,
            activities=activities_from_config(scheduler_cfg.get("activities"), now),
            mission_phase=str(dict(cfg.get("scenario", {})).get("mission_phase", "transit")),
            clock=self._clock,
        )

    # Read-only snapshots

    def now(self) -> datetime:
        return self._clock()

    def thermal_status(self) -> Dict[str, Any]:
        return self.thermal.get_thermal_status()

    def power_status(self) -> Dict[str, Any]:
        return self.power.get_power_status()

    def schedule_metrics(self) -> ScheduleMetrics:
        return self.scheduler.get_schedule_metrics()

    def status_snapshot(self) -> Dict[str, Any]:
        return {
            "timestamp": iso(self._clock()),
            "mission_phase": self.scheduler.mission_phase,
            "thermal": self.thermal_status(),
            "power": self.power_status(),
            "schedule": self.schedule_metrics().to_mapping(),
            "conflicts": [c.to_mapping() for c in self.scheduler.conflicts()],
        }

    def forecast_bundle(
        self,
        horizon_h: float,
        environment: Optional[EnvironmentSnapshot] = None,
        health: Optional[SystemHealthSummary] = None,
    ) -> ForecastBundle:
        environment = environment or EnvironmentSnapshot()
        health = health or SystemHealthSummary()
        bundle = ForecastBundle(
            thermal=self.thermal.generate_thermal_forecast(horizon_h, environment),
            power=self.power.generate_power_forecast(horizon_h, environment),
            mission=self.scheduler.generate_mission_prediction(horizon_h, health, environment),
        )
        logger.info(
            "Forecast bundle for %.1f h: %d thermal events, %d power events, %d mission events",
            horizon_h,
            len(bundle.thermal.events),
            len(bundle.power.critical_events),
            len(bundle.mission.events),
        )
        return bundle

    # Telemetry routing

    def update_component_temperature(self, component_id: str, temperature_c: float) -> bool:
        updated = self.thermal.update_component_temperature(component_id, temperature_c)
        bank_id = self.settings.component_bank_map.get(component_id)
        if bank_id is not None:
            forwarded = self.power.update_battery_state(bank_id, {"temperature_c": float(temperature_c)})
            updated = updated or forwarded
        return updated

    def update_battery_state(self, bank_id: str, partial_state: Mapping[str, Any]) -> bool:
        return self.power.update_battery_state(bank_id, partial_state)

    # Background optimization

    async def start(self) -> None:
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()

    # Persistence

    def persist(self, output_dir: Path) -> Dict[str, int]:
        """Write catalog snapshots and append every predictor's action log."""
        output_dir = Path(output_dir)
        counts = {
            "thermal_catalog": write_catalog_snapshot(
                output_dir / "thermal_catalog.jsonl", self.thermal.catalog_records(), "thermal"
            ),
            "power_catalog": write_catalog_snapshot(
                output_dir / "power_catalog.jsonl", self.power.catalog_records(), "power"
            ),
            "activity_catalog": write_catalog_snapshot(
                output_dir / "activity_catalog.jsonl", self.scheduler.catalog_records(), "scheduler"
            ),
        }
        log_path = output_dir / "action_log.jsonl"
        counts["actions"] = (
            append_action_log(log_path, self.thermal.action_log(), "thermal")
            + append_action_log(log_path, self.power.action_history(), "power")
            + append_action_log(log_path, self.scheduler.action_log(), "scheduler")
        )
        logger.info("Persisted engine state to %s (%d actions)", output_dir, counts["actions"])
        return counts
