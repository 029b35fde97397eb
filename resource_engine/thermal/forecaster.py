from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from copy import deepcopy
from datetime import timedelta
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence

from resource_engine.core.confidence import THERMAL_CONFIDENCE, ConfidenceModel, FixedConfidenceModel
from resource_engine.core.config import ThermalSettings
from resource_engine.core.models import (
    ActionResult,
    Clock,
    EnvironmentSnapshot,
    ManagementAction,
    PredictedSolarFlare,
    iso,
    utc_now,
)

from .model import (
    ACTION_ACTUATORS,
    ACTIVATION_STEP_PCT,
    EXPOSURE_FACTORS,
    ComponentThermalImpact,
    ComponentTrend,
    CoolingCapacityPoint,
    SolarFlareImpact,
    ThermalAction,
    ThermalActuator,
    ThermalComponent,
    ThermalDataPoint,
    ThermalEvent,
    ThermalForecast,
    ThermalResponse,
    classify_temperature,
    classify_trend,
    default_actuators,
    default_components,
    flare_intensity,
    new_history,
    radiative_cooling_w,
)

logger = logging.getLogger(__name__)

TRIGGERS = ("solar_flare", "component_overheat", "deep_space_cooling")

MANUAL_RECOMMENDATIONS: Dict[str, List[str]] = {
    "solar_flare": [
        "Monitor component temperatures closely",
        "Prepare for possible emergency radiator deployment",
        "Consider reducing power to non-essential systems",
    ],
    "component_overheat": [
        "Verify component functionality after cooling",
        "Check for thermal coupling effects",
        "Review thermal control system performance",
    ],
    "deep_space_cooling": [
        "Activate component heaters as needed",
        "Monitor battery performance in cold conditions",
        "Verify thermal control system responsiveness",
    ],
}

TEMP_RISE_BASE_C: Dict[str, float] = {
    "solar_flare": 15.0,
    "component_overheat": 10.0,
    "deep_space_cooling": -20.0,
}

ACTION_MISSION_IMPACT: Dict[str, str] = {
    "deploy_radiator": "none",
    "activate_heater": "none",
    "reorient_spacecraft": "minor",
    "reduce_power": "minor",
}

FLARE_CONFIDENCE = 85.0
FLARE_RADIATION_SCALE = 0.1
FLARE_EXPOSED_LOCATIONS = ("sun_facing", "earth_facing")
COOLING_ACTUATOR_TYPES = ("radiator", "louver")


class ThermalForecaster:
    """
    Per-component temperature model with flare impact analysis and
    actuator-driven thermal responses.

    The catalog is owned by the instance; mutation goes through
    ``update_component_temperature`` and ``execute_thermal_action`` under a
    per-instance lock.
    """

    def __init__(
        self,
        settings: Optional[ThermalSettings] = None,
        components: Optional[Sequence[ThermalComponent]] = None,
        actuators: Optional[Sequence[ThermalActuator]] = None,
        confidence_model: Optional[ConfidenceModel] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.settings = settings or ThermalSettings()
        self._clock = clock or utc_now
        self._confidence = confidence_model or FixedConfidenceModel(THERMAL_CONFIDENCE)
        self._components: Dict[str, ThermalComponent] = {
            c.component_id: c for c in (components if components is not None else default_components())
        }
        self._actuators: Dict[str, ThermalActuator] = {
            a.actuator_id: a for a in (actuators if actuators is not None else default_actuators())
        }
        self._history: Dict[str, Deque[ThermalDataPoint]] = {
            cid: new_history(self.settings.history_limit) for cid in self._components
        }
        self._actions: Deque[ManagementAction] = deque(maxlen=1000)
        self._action_ids = itertools.count(1)
        self._lock = threading.RLock()
        self._last_update = self._clock()

    def component(self, component_id: str) -> Optional[ThermalComponent]:
        with self._lock:
            found = self._components.get(component_id)
            return None if found is None else deepcopy(found)

    def actuator(self, actuator_id: str) -> Optional[ThermalActuator]:
        with self._lock:
            found = self._actuators.get(actuator_id)
            return None if found is None else deepcopy(found)

    def action_log(self) -> List[ManagementAction]:
        with self._lock:
            return list(self._actions)

    def environmental_heat_w(self, component: ThermalComponent, environment: EnvironmentSnapshot) -> float:
        exposure = EXPOSURE_FACTORS.get(component.location, 0.0)
        solar_factor = environment.solar_wind_speed_kms / self.settings.solar_wind_baseline_kms
        return exposure * solar_factor * self.settings.environmental_heat_w

    def net_heat_flow_w(self, component: ThermalComponent, temperature_c: float, environment: EnvironmentSnapshot) -> float:
        cooling = radiative_cooling_w(
            temperature_c,
            self.settings.emissivity,
            self.settings.radiating_area_m2,
            self.settings.background_temp_k,
        )
        return self.environmental_heat_w(component, environment) + component.internal_heat_w - cooling

    def _confidence_at(self, step: int) -> float:
        s = self.settings
        return max(s.confidence_floor, s.confidence_ceiling - s.confidence_decay * step)

    def generate_thermal_forecast(self, horizon_h: float, environment: EnvironmentSnapshot) -> ThermalForecast:
        if horizon_h <= 0.0:
            raise ValueError(f"Forecast horizon must be > 0 h, got {horizon_h}")
        with self._lock:
            components = [deepcopy(c) for c in self._components.values()]
            actuators = [deepcopy(a) for a in self._actuators.values()]
        now = self._clock()

        step_s = self.settings.forecast_step_s
        steps = int(horizon_h * 3600.0 // step_s)
        trends: List[ComponentTrend] = []
        for component in components:
            heat_capacity = component.thermal_mass * self.settings.heat_capacity_j_per_unit
            temp = component.temperature_c
            points: List[ThermalDataPoint] = []
            for i in range(steps):
                net = self.net_heat_flow_w(component, temp, environment)
                temp += net * step_s / heat_capacity
                points.append(ThermalDataPoint(now + timedelta(seconds=(i + 1) * step_s), temp, self._confidence_at(i)))
            trends.append(ComponentTrend(component.component_id, points, component.nominal_range_c, component.survival_range_c))

        horizon_end = now + timedelta(hours=horizon_h)
        exposed = tuple(c.component_id for c in components if c.location in FLARE_EXPOSED_LOCATIONS)
        events = [
            ThermalEvent(
                timestamp=flare.estimated_arrival,
                event="flare_impact",
                magnitude_c=flare.magnitude * self.settings.flare_event_scale_c,
                duration_s=flare.duration_h * 3600.0,
                affected_components=exposed,
            )
            for flare in environment.predicted_flares
            if flare.estimated_arrival <= horizon_end
        ]

        cooling: List[CoolingCapacityPoint] = []
        total = sum(a.capacity_w for a in actuators if a.actuator_type in COOLING_ACTUATOR_TYPES)
        used = sum(a.capacity_w * a.activation_pct / 100.0 for a in actuators if a.actuator_type in COOLING_ACTUATOR_TYPES)
        utilization = (used / total) * 100.0 if total > 0.0 else 0.0
        for i in range(int(horizon_h * 3600.0 // self.settings.cooling_step_s)):
            cooling.append(CoolingCapacityPoint(now + timedelta(seconds=i * self.settings.cooling_step_s), total, utilization))

        logger.debug("Thermal forecast: %d components x %d steps, %d events", len(trends), steps, len(events))
        return ThermalForecast(horizon_h=float(horizon_h), component_trends=trends, events=events, cooling_capacity=cooling)

    def _component_flare_impact(self, component: ThermalComponent, intensity: float, duration_h: float) -> ComponentThermalImpact:
        exposure = EXPOSURE_FACTORS.get(component.location, 0.0)
        absorption = intensity * exposure * self.settings.flare_absorption_scale
        rate = absorption / component.thermal_mass * 60.0
        peak = rate * duration_h * 60.0

        def minutes_to_exceed(limit: float) -> float:
            if component.temperature_c >= limit:
                return 0.0
            if rate > 0.0 and component.temperature_c + peak > limit:
                return (limit - component.temperature_c) / rate
            return -1.0

        return ComponentThermalImpact(
            component_id=component.component_id,
            rise_rate_c_per_min=rate,
            peak_increase_c=peak,
            minutes_to_nominal_exceed=minutes_to_exceed(component.nominal_range_c[1]),
            minutes_to_survival_exceed=minutes_to_exceed(component.survival_range_c[1]),
            confidence=FLARE_CONFIDENCE,
        )

    def predict_solar_flare_response(self, flare: PredictedSolarFlare, duration_h: Optional[float] = None) -> SolarFlareImpact:
        duration = flare.duration_h if duration_h is None else float(duration_h)
        intensity = flare_intensity(flare.flare_class, flare.magnitude)
        with self._lock:
            components = [deepcopy(c) for c in self._components.values()]
        impacts = [self._component_flare_impact(c, intensity, duration) for c in components]

        actions: List[ThermalAction] = []
        flare_class = flare.flare_class.upper()
        if flare_class.startswith("M"):
            actions.append(ThermalAction("all_critical", "deploy_radiator", "high", 30.0))
        if flare_class.startswith("X"):
            actions.extend(
                [
                    ThermalAction("all_systems", "deploy_radiator", "critical", 45.0),
                    ThermalAction("radiation_shield", "activate_heater", "critical", 120.0),
                    ThermalAction("non_essential", "reduce_power", "high", 10.0),
                ]
            )
        for impact in impacts:
            if 0.0 < impact.minutes_to_nominal_exceed < 10.0:
                actions.append(ThermalAction(impact.component_id, "deploy_radiator", "critical", 30.0))

        return SolarFlareImpact(
            flare_label=f"{flare_class}{flare.magnitude:g}",
            magnitude=flare.magnitude,
            arrival_time=flare.estimated_arrival,
            duration_h=duration,
            component_impacts=impacts,
            radiation_level=intensity * FLARE_RADIATION_SCALE,
            recommended_actions=actions,
        )

    def generate_thermal_response(
        self,
        trigger: str,
        severity: float,
        affected_components: Sequence[str] = (),
    ) -> ThermalResponse:
        if trigger not in TRIGGERS:
            raise ValueError(f"Unsupported thermal trigger: {trigger}")

        actions: List[ThermalAction] = []
        if trigger == "solar_flare":
            if severity > 5:
                actions.append(ThermalAction("primary-radiator", "deploy_radiator", "high", 30.0))
            if severity > 8:
                actions.append(ThermalAction("emergency-radiator", "deploy_radiator", "critical", 45.0))
        elif trigger == "component_overheat":
            priority = "critical" if severity > 7 else "high"
            for component_id in affected_components:
                actions.append(ThermalAction(str(component_id), "deploy_radiator", priority, 30.0))
        elif severity > 3:
            actions.append(ThermalAction("battery-heaters", "activate_heater", "medium", 5.0))

        return ThermalResponse(
            trigger=trigger,
            predicted_temp_rise_c=TEMP_RISE_BASE_C[trigger] * (severity / 10.0),
            minutes_to_threshold=max(5.0, 30.0 - 5.0 * len(affected_components)),
            automatic_actions=actions,
            manual_recommendations=list(MANUAL_RECOMMENDATIONS[trigger]),
            confidence=self._confidence.score(trigger),
        )

    def execute_thermal_action(self, action: ThermalAction, trigger: str = "manual") -> ActionResult:
        actuator_id = ACTION_ACTUATORS.get(action.action)
        with self._lock:
            actuator = self._actuators.get(actuator_id) if actuator_id is not None else None
            if actuator is None:
                logger.warning("Thermal action %s rejected: actuator not found", action.action)
                return ActionResult(False, f"Actuator not found for action {action.action}")

            step = ACTIVATION_STEP_PCT[action.priority]
            before = actuator.activation_pct
            actuator.activation_pct = min(100.0, before + step)
            applied = actuator.activation_pct - before
            effect = actuator.capacity_w * (applied / 100.0) * (actuator.reliability_pct / 100.0)
            record = ManagementAction(
                action_id=f"thermal-{next(self._action_ids):04d}",
                trigger=trigger,
                action=action.action,
                affected_systems=(actuator.actuator_id,),
                effect=effect,
                effect_unit="thermal_w",
                mission_impact=ACTION_MISSION_IMPACT.get(action.action, "none"),
                execution_time_s=actuator.response_time_s,
                reversible=True,
                confidence=actuator.reliability_pct,
                timestamp=self._clock(),
            )
            self._actions.append(record)
            status = f"{actuator.actuator_type} activated to {actuator.activation_pct:.0f}%"

        logger.info("Thermal action %s -> %s (%s), effect %.1f W", action.action, actuator_id, status, effect)
        return ActionResult(True, status, record, effect, actuator.response_time_s)

    def execute_response(self, response: ThermalResponse) -> List[ActionResult]:
        return [self.execute_thermal_action(a, trigger=response.trigger) for a in response.automatic_actions]

    def update_component_temperature(self, component_id: str, temperature_c: float) -> bool:
        with self._lock:
            component = self._components.get(component_id)
            if component is None:
                logger.warning("Temperature update for unknown component %s ignored", component_id)
                return False
            now = self._clock()
            component.temperature_c = float(temperature_c)
            self._history[component_id].append(ThermalDataPoint(now, float(temperature_c), 100.0))
            self._last_update = now
        return True

    def history(self, component_id: str) -> List[ThermalDataPoint]:
        with self._lock:
            return list(self._history.get(component_id, ()))

    def _overall_status(self, statuses: Iterable[str]) -> str:
        statuses = list(statuses)
        critical = sum(1 for s in statuses if s == "critical")
        warning = sum(1 for s in statuses if s == "warning")
        if critical > 0:
            return "critical"
        if warning > len(statuses) * self.settings.warning_fraction:
            return "warning"
        if warning > 0:
            return "caution"
        return "nominal"

    def get_thermal_status(self) -> Dict[str, Any]:
        with self._lock:
            components: Dict[str, Any] = {}
            for cid, component in self._components.items():
                status, margin = classify_temperature(component)
                components[cid] = {
                    "name": component.name,
                    "temperature_c": component.temperature_c,
                    "status": status,
                    "margin_to_limit_c": margin,
                    "trend": classify_trend(
                        self._history[cid], self.settings.trend_window, self.settings.trend_threshold_c
                    ),
                    "criticality": component.criticality,
                }
            actuators = {
                aid: {
                    "type": a.actuator_type,
                    "activation_pct": a.activation_pct,
                    "capacity_w": a.capacity_w,
                    "reliability_pct": a.reliability_pct,
                }
                for aid, a in self._actuators.items()
            }
            last_update = self._last_update
        return {
            "components": components,
            "actuators": actuators,
            "overall_status": self._overall_status(c["status"] for c in components.values()),
            "last_update": iso(last_update),
        }

    def catalog_records(self) -> List[Dict[str, Any]]:
        with self._lock:
            records = [dict(c.to_mapping(), record="component") for c in self._components.values()]
            records.extend(dict(a.to_mapping(), record="actuator") for a in self._actuators.values())
        return records
