from __future__ import annotations

import itertools
import logging
import math
import threading
from collections import deque
from copy import deepcopy
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

from resource_engine.core.confidence import POWER_CONFIDENCE, ConfidenceModel, FixedConfidenceModel
from resource_engine.core.config import PowerSettings
from resource_engine.core.models import (
    ActionResult,
    Clock,
    EnvironmentSnapshot,
    ManagementAction,
    TrendPoint,
    iso,
    utc_now,
)
from resource_engine.core.telemetry import RandomTelemetrySource, TelemetrySource

from .model import (
    STATE_FIELDS,
    BatteryBank,
    BatteryForecastPoint,
    CycleRecord,
    GenerationSource,
    PowerEvent,
    PowerForecast,
    PowerLoad,
    default_banks,
    default_loads,
    default_sources,
)

logger = logging.getLogger(__name__)

TRIGGERS = ("low_soc", "thermal_runaway", "solar_storm", "load_spike")

EMERGENCY_SHED = ("science-primary", "science-secondary", "cameras", "backup-systems")
LOW_SOC_SHED = ("science-secondary", "cameras", "backup-systems")
STORM_SHED = ("science-primary", "cameras")
SPIKE_SHED = ("backup-systems",)

FLARE_GENERATION_LOSS_W = 50.0
HIGH_DEMAND_IMPACT_W = 150.0
HIGH_DEMAND_DURATION_S = 1800.0


@dataclass(frozen=True)
class _Decision:
    action: str
    affected: Tuple[str, ...]
    mission_impact: str
    execution_time_s: float
    reversible: bool = True


class PowerManager:
    """
    Battery-bank, load and generation model with a rule-based action tree.

    Forecasts read a snapshot of the catalog; actions and telemetry updates
    mutate it under the instance lock.
    """

    def __init__(
        self,
        settings: Optional[PowerSettings] = None,
        banks: Optional[Sequence[BatteryBank]] = None,
        loads: Optional[Sequence[PowerLoad]] = None,
        sources: Optional[Sequence[GenerationSource]] = None,
        telemetry: Optional[TelemetrySource] = None,
        confidence_model: Optional[ConfidenceModel] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.settings = settings or PowerSettings()
        self._clock = clock or utc_now
        now = self._clock()
        self._banks: Dict[str, BatteryBank] = {
            b.bank_id: b for b in (banks if banks is not None else default_banks(now))
        }
        for bank in self._banks.values():
            bank.cycle_history = deque(bank.cycle_history, maxlen=self.settings.cycle_history_limit)
            if bank.isolated:
                bank.active = False
        self._loads: Dict[str, PowerLoad] = {l.load_id: l for l in (loads if loads is not None else default_loads())}
        self._sources: Dict[str, GenerationSource] = {
            s.source_id: s for s in (sources if sources is not None else default_sources())
        }
        self._telemetry = telemetry or RandomTelemetrySource()
        self._confidence = confidence_model or FixedConfidenceModel(POWER_CONFIDENCE)
        self._actions: Deque[ManagementAction] = deque(maxlen=1000)
        self._action_ids = itertools.count(1)
        self._emergency_mode = False
        self._lock = threading.RLock()
        self._last_update = now

    @property
    def emergency_mode(self) -> bool:
        return self._emergency_mode

    def bank(self, bank_id: str) -> Optional[BatteryBank]:
        with self._lock:
            found = self._banks.get(bank_id)
            return None if found is None else deepcopy(found)

    def load(self, load_id: str) -> Optional[PowerLoad]:
        with self._lock:
            found = self._loads.get(load_id)
            return None if found is None else deepcopy(found)

    def source(self, source_id: str) -> Optional[GenerationSource]:
        with self._lock:
            found = self._sources.get(source_id)
            return None if found is None else deepcopy(found)

    def action_history(self) -> List[ManagementAction]:
        with self._lock:
            return list(self._actions)

    def _active_banks(self) -> List[BatteryBank]:
        return [b for b in self._banks.values() if b.active and not b.isolated]

    def _forecast_bank(self) -> Optional[BatteryBank]:
        active = self._active_banks()
        if active:
            return active[0]
        return self._banks.get(self.settings.primary_bank_id) or next(iter(self._banks.values()), None)

    # Forecasting

    def _solar_factor(self, environment: EnvironmentSnapshot) -> float:
        s = self.settings
        sun_pct = s.default_sun_exposure_pct if environment.sun_exposure_pct is None else environment.sun_exposure_pct
        efficiency = 1.0 - (environment.solar_wind_speed_kms - s.solar_wind_baseline_kms) / s.solar_wind_span_kms
        return (sun_pct / 100.0) * min(1.0, max(s.min_solar_efficiency, efficiency))

    def _generation_w(self, sources: Sequence[GenerationSource], environment: EnvironmentSnapshot) -> float:
        total = 0.0
        solar_factor = self._solar_factor(environment)
        for source in sources:
            if not source.active:
                continue
            output = source.maximum_output_w * (1.0 - source.degradation_pct / 100.0)
            if source.source_type == "solar":
                output *= solar_factor
            total += output
        return total

    def _consumption_w(self, loads: Sequence[PowerLoad], step: int) -> float:
        total = 0.0
        for load in loads:
            if load.category == "critical" or not load.sheddable:
                total += load.nominal_draw_w
            else:
                variation = self._telemetry.load_variation(load.load_id, step)
                total += load.nominal_draw_w * (load.duty_cycle_pct / 100.0) * variation
        return total

    def generate_power_forecast(self, horizon_h: float, environment: EnvironmentSnapshot) -> PowerForecast:
        if horizon_h <= 0.0:
            raise ValueError(f"Forecast horizon must be > 0 h, got {horizon_h}")
        with self._lock:
            sources = [deepcopy(s) for s in self._sources.values()]
            loads = [deepcopy(l) for l in self._loads.values()]
            bank = deepcopy(self._forecast_bank())
        if bank is None:
            raise ValueError("Power forecast requires at least one battery bank")

        s = self.settings
        now = self._clock()
        step_s = s.forecast_step_s
        steps = int(horizon_h * 3600.0 // step_s)
        generation: List[TrendPoint] = []
        consumption: List[TrendPoint] = []
        battery: List[BatteryForecastPoint] = []

        soc = bank.state.soc_pct
        soh = bank.state.soh_pct
        generation_w = self._generation_w(sources, environment)
        for i in range(steps):
            ts = now + timedelta(seconds=i * step_s)
            gen_conf = max(60.0, 95.0 - i)
            consumption_w = self._consumption_w(loads, i)
            generation.append(TrendPoint(ts, generation_w, gen_conf))
            consumption.append(TrendPoint(ts, consumption_w, max(70.0, 90.0 - 0.5 * i)))

            charge_rate_a = (generation_w - consumption_w) / bank.nominal_voltage_v
            soc = min(100.0, max(0.0, soc + charge_rate_a * (step_s / 3600.0) / bank.capacity_ah * 100.0))
            soh = max(s.soh_floor_pct, soh - s.soh_decay_per_step)
            temperature = 15.0 + abs(charge_rate_a) * 0.1 + math.sin(i * 0.1) * 3.0
            battery.append(BatteryForecastPoint(ts, soc, soh, temperature, gen_conf))

        horizon_end = now + timedelta(hours=horizon_h)
        events = [
            PowerEvent(flare.estimated_arrival, "low_generation", -flare.magnitude * FLARE_GENERATION_LOSS_W, flare.duration_h * 3600.0)
            for flare in environment.predicted_flares
            if flare.estimated_arrival <= horizon_end
        ]
        demand_at = now + timedelta(hours=s.high_demand_offset_h)
        if demand_at <= horizon_end:
            events.append(PowerEvent(demand_at, "high_demand", HIGH_DEMAND_IMPACT_W, HIGH_DEMAND_DURATION_S))
        events.sort(key=lambda e: e.timestamp)

        return PowerForecast(
            horizon_h=float(horizon_h),
            bank_id=bank.bank_id,
            generation=generation,
            consumption=consumption,
            battery=battery,
            critical_events=events,
        )

    # Decision tree

    def average_active_soc(self) -> float:
        with self._lock:
            active = self._active_banks()
            if not active:
                return 0.0
            return sum(b.state.soc_pct for b in active) / len(active)

    def _decide(self, trigger: str, severity: float, bank_id: Optional[str]) -> Optional[_Decision]:
        s = self.settings
        if trigger == "low_soc":
            soc = self.average_active_soc()
            if soc < s.emergency_soc_pct:
                return _Decision("emergency_mode", self._sheddable(EMERGENCY_SHED), "severe", 5.0)
            if soc < s.shed_soc_pct:
                return _Decision("shed_load", self._sheddable(LOW_SOC_SHED), "moderate", 10.0)
            return _Decision("switch_battery_bank", (), "minor", 30.0)
        if trigger == "thermal_runaway":
            target = bank_id
            if target is None:
                active = self._active_banks()
                target = active[0].bank_id if active else s.primary_bank_id
            return _Decision("isolate_bank", (target,), "moderate", 2.0, reversible=False)
        if trigger == "solar_storm":
            if severity > s.storm_shed_severity:
                return _Decision("shed_load", self._sheddable(STORM_SHED), "moderate", 15.0)
            return _Decision("activate_backup", (s.backup_source_id,), "minor", 60.0)
        if trigger == "load_spike":
            return _Decision("shed_load", self._sheddable(SPIKE_SHED), "none", 5.0)
        return None

    def _sheddable(self, load_ids: Sequence[str]) -> Tuple[str, ...]:
        return tuple(lid for lid in load_ids if lid in self._loads and self._loads[lid].category != "critical")

    def _power_savings(self, decision: _Decision) -> float:
        if decision.action in {"shed_load", "emergency_mode"}:
            return sum(self._loads[lid].current_draw_w for lid in decision.affected if self._loads[lid].can_shed)
        if decision.action == "activate_backup":
            source = self._sources.get(decision.affected[0])
            return -source.current_output_w if source is not None else 0.0
        return 0.0

    def execute_power_management_action(
        self,
        trigger: str,
        severity: float,
        bank_id: Optional[str] = None,
    ) -> ActionResult:
        with self._lock:
            decision = self._decide(trigger, severity, bank_id)
            if decision is None:
                logger.warning("Unsupported power trigger %s ignored", trigger)
                return ActionResult(False, f"Unsupported power trigger: {trigger}")

            action = ManagementAction(
                action_id=f"power-{next(self._action_ids):04d}",
                trigger=trigger,
                action=decision.action,
                affected_systems=decision.affected,
                effect=self._power_savings(decision),
                effect_unit="power_savings_w",
                mission_impact=decision.mission_impact,
                execution_time_s=decision.execution_time_s,
                reversible=decision.reversible,
                confidence=self._confidence.score(trigger, decision.action),
                timestamp=self._clock(),
            )
            self._actions.append(action)
            ok, status = self._apply(action)
            if not ok:
                self._actions.remove(action)
                logger.warning("Power action %s for %s not applied: %s", action.action, trigger, status)
                return ActionResult(False, status, action)
            self._last_update = action.timestamp

        logger.info(
            "Power action %s (%s) applied to %s, savings %.1f W, confidence %.0f",
            action.action,
            trigger,
            ",".join(action.affected_systems) or "-",
            action.effect,
            action.confidence,
        )
        return ActionResult(True, status, action, action.effect, action.execution_time_s)

    def _apply(self, action: ManagementAction) -> Tuple[bool, str]:
        if action.action == "shed_load":
            return self._shed_loads(action.affected_systems)
        if action.action == "switch_battery_bank":
            return self._switch_battery_bank()
        if action.action == "isolate_bank":
            return self._isolate_bank(action.affected_systems[0])
        if action.action == "activate_backup":
            return self._activate_sources(action.affected_systems)
        if action.action == "emergency_mode":
            self._emergency_mode = True
            _, status = self._shed_loads(action.affected_systems)
            return True, "Emergency mode active; " + status
        return False, f"Unsupported power action: {action.action}"

    def _shed_loads(self, load_ids: Sequence[str]) -> Tuple[bool, str]:
        if not load_ids:
            return False, "No sheddable loads found"
        shed: List[str] = []
        for lid in load_ids:
            load = self._loads.get(lid)
            if load is not None and load.can_shed:
                load.current_draw_w = load.profile.standby_w
                shed.append(lid)
        return True, f"Shed {len(shed)} load(s) to standby"

    def _switch_battery_bank(self) -> Tuple[bool, str]:
        primary = self._banks.get(self.settings.primary_bank_id)
        backup = self._banks.get(self.settings.backup_bank_id)
        if primary is None or backup is None:
            return False, "Battery bank not found"
        if backup.isolated:
            return False, f"Backup bank {backup.bank_id} is isolated"
        primary.active = False
        backup.active = True
        return True, f"Switched from {primary.bank_id} to {backup.bank_id}"

    def _isolate_bank(self, bank_id: str) -> Tuple[bool, str]:
        bank = self._banks.get(bank_id)
        if bank is None:
            return False, f"Battery bank {bank_id} not found"
        bank.isolated = True
        bank.active = False
        status = f"Isolated {bank_id}"
        reserve = self._banks.get(self.settings.emergency_bank_id)
        if reserve is not None and not reserve.isolated and reserve.bank_id != bank_id:
            reserve.active = True
            status += f"; {reserve.bank_id} activated"
        return True, status

    def _activate_sources(self, source_ids: Sequence[str]) -> Tuple[bool, str]:
        found = [self._sources[sid] for sid in source_ids if sid in self._sources]
        if not found:
            return False, f"Generation source {', '.join(source_ids)} not found"
        for source in found:
            source.active = True
        return True, f"Activated {', '.join(s.source_id for s in found)}"

    # Telemetry

    def update_battery_state(self, bank_id: str, partial_state: Mapping[str, Any]) -> bool:
        s = self.settings
        with self._lock:
            bank = self._banks.get(bank_id)
            if bank is None:
                logger.warning("Battery update for unknown bank %s ignored", bank_id)
                return False
            for key, value in partial_state.items():
                if key not in STATE_FIELDS:
                    logger.warning("Unknown battery state field %s for %s skipped", key, bank_id)
                    continue
                setattr(bank.state, key, value)

            temperature = partial_state.get("temperature_c")
            if temperature is not None and float(temperature) > s.runaway_temp_c:
                bank.state.thermal_runaway_risk_pct = min(
                    100.0,
                    bank.state.thermal_runaway_risk_pct + (float(temperature) - s.runaway_temp_c) * s.runaway_gain,
                )
                logger.warning(
                    "Bank %s at %.1f C, thermal runaway risk now %.1f%%",
                    bank_id,
                    float(temperature),
                    bank.state.thermal_runaway_risk_pct,
                )
            if "soc_pct" in partial_state:
                self._track_cycle(bank, float(partial_state["soc_pct"]))
            self._last_update = self._clock()
        return True

    def _track_cycle(self, bank: BatteryBank, new_soc: float) -> None:
        # The first record on a bank only anchors the SoC; it carries no discharge depth.
        last = bank.cycle_history[-1] if bank.cycle_history else None
        start = last.end_soc_pct if last is not None else new_soc
        delta = abs(new_soc - start)
        if last is not None and delta <= self.settings.cycle_delta_pct:
            return
        record = CycleRecord(
            timestamp=self._clock(),
            start_soc_pct=start,
            end_soc_pct=new_soc,
            depth_of_discharge_pct=delta,
            average_temperature_c=bank.state.temperature_c,
            peak_current_a=abs(bank.state.current_a),
            energy_transferred_wh=delta * bank.capacity_ah * bank.nominal_voltage_v / 100.0,
        )
        bank.cycle_history.append(record)
        if record.depth_of_discharge_pct > self.settings.cycle_dod_pct:
            bank.state.cycle_count += 1

    def advance_telemetry(self, dt_s: Optional[float] = None) -> int:
        """Advance simulated telemetry by ``dt_s`` seconds (one interval by default).

        Only whole ``telemetry_interval_s`` ticks are applied; returns the tick count.
        """
        s = self.settings
        elapsed = s.telemetry_interval_s if dt_s is None else float(dt_s)
        ticks = max(0, int(elapsed // s.telemetry_interval_s))
        with self._lock:
            for _ in range(ticks):
                margin = self._total_generation() - self._total_consumption()
                for bank in self._active_banks():
                    if margin < 0.0:
                        bank.state.soc_pct = max(0.0, bank.state.soc_pct - 0.1)
                        bank.state.current_a = abs(margin) / bank.nominal_voltage_v
                    else:
                        bank.state.soc_pct = min(100.0, bank.state.soc_pct + 0.05)
                        bank.state.current_a = -margin / bank.nominal_voltage_v
                    bank.state.voltage_v = bank.nominal_voltage_v * (0.85 + 0.15 * bank.state.soc_pct / 100.0)
                    bank.state.soh_pct = max(s.soh_floor_pct, bank.state.soh_pct - s.soh_decay_per_step)
            self._last_update = self._clock()
        return ticks

    # Status

    def assess_battery_health(self, bank_id: str) -> str:
        with self._lock:
            bank = self._banks.get(bank_id)
            if bank is None:
                return "unknown"
            return self._health(bank)

    def _health(self, bank: BatteryBank) -> str:
        state = bank.state
        if state.thermal_runaway_risk_pct > 50.0 or state.temperature_c > 50.0 or bank.isolated:
            return "critical"
        if state.soc_pct < self.settings.min_soc_pct or state.soh_pct < self.settings.min_soh_pct or state.temperature_c > 40.0:
            return "warning"
        if state.soc_pct < 30.0 or state.soh_pct < 90.0 or state.temperature_c > 35.0:
            return "caution"
        return "nominal"

    def _total_generation(self) -> float:
        return sum(s.current_output_w for s in self._sources.values() if s.active)

    def _total_consumption(self) -> float:
        return sum(l.current_draw_w for l in self._loads.values())

    def get_power_status(self) -> Dict[str, Any]:
        with self._lock:
            batteries = {}
            for bid, bank in self._banks.items():
                entry = bank.state.to_mapping()
                entry.update(
                    {
                        "active": bank.active,
                        "isolated": bank.isolated,
                        "capacity_ah": bank.capacity_ah,
                        "health": self._health(bank),
                        "cycle_records": len(bank.cycle_history),
                    }
                )
                batteries[bid] = entry
            generation = {
                sid: {
                    "current_output_w": src.current_output_w,
                    "efficiency_pct": src.efficiency_pct,
                    "active": src.active,
                    "degradation_pct": src.degradation_pct,
                }
                for sid, src in self._sources.items()
            }
            loads = {
                lid: {
                    "current_draw_w": load.current_draw_w,
                    "category": load.category,
                    "priority": load.priority,
                    "sheddable": load.sheddable,
                }
                for lid, load in self._loads.items()
            }
            total_generation = self._total_generation()
            total_consumption = self._total_consumption()
            status = {
                "batteries": batteries,
                "generation": generation,
                "loads": loads,
                "emergency_mode": self._emergency_mode,
                "total_generation_w": total_generation,
                "total_consumption_w": total_consumption,
                "power_margin_w": total_generation - total_consumption,
                "last_update": iso(self._last_update),
            }
        return status

    def catalog_records(self) -> List[Dict[str, Any]]:
        with self._lock:
            records = [dict(b.to_mapping(), record="bank") for b in self._banks.values()]
            records.extend(dict(l.to_mapping(), record="load") for l in self._loads.values())
            records.extend(dict(s.to_mapping(), record="source") for s in self._sources.values())
        return records
