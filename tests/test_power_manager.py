from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from resource_engine.core.models import EnvironmentSnapshot, PredictedSolarFlare
from resource_engine.core.telemetry import NominalTelemetrySource
from resource_engine.power import PowerManager, banks_from_config
from resource_engine.power.manager import TRIGGERS
from resource_engine.power.model import PowerLoad, default_loads

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _manager(banks=None, loads: Optional[List[PowerLoad]] = None) -> PowerManager:
    return PowerManager(
        banks=banks,
        loads=loads,
        telemetry=NominalTelemetrySource(),
        clock=lambda: NOW,
    )


def _two_active_banks(primary_soc: float, backup_soc: float):
    return banks_from_config(
        [
            {"id": "primary-bank", "active": True, "state": {"soc_pct": primary_soc}},
            {"id": "backup-bank", "active": True, "state": {"soc_pct": backup_soc}},
            {"id": "emergency-bank", "state": {"soc_pct": 100.0}},
        ],
        NOW,
    )


def test_forecast_uses_nominal_solar_exposure_and_deterministic_loads() -> None:
    forecast = _manager().generate_power_forecast(2.0, EnvironmentSnapshot())

    assert forecast.bank_id == "primary-bank"
    assert len(forecast.generation) == 8
    assert forecast.generation[0].timestamp == NOW
    assert forecast.generation[0].value == pytest.approx(600.0 * (1.0 - 0.082) * 0.5)
    assert forecast.consumption[0].value == pytest.approx(651.5)
    assert [e.event for e in forecast.critical_events] == []


def test_forecast_solar_efficiency_has_floor() -> None:
    environment = EnvironmentSnapshot(solar_wind_speed_kms=2400.0, sun_exposure_pct=100.0)
    forecast = _manager().generate_power_forecast(1.0, environment)
    assert forecast.generation[0].value == pytest.approx(600.0 * (1.0 - 0.082) * 0.1)


def test_forecast_confidence_decays_to_floors() -> None:
    forecast = _manager().generate_power_forecast(24.0, EnvironmentSnapshot())
    gen = [p.confidence for p in forecast.generation]
    con = [p.confidence for p in forecast.consumption]

    assert len(gen) == 96
    assert gen[0] == 95.0 and min(gen) == 60.0
    assert con[0] == 90.0 and min(con) == 70.0
    assert all(b <= a for a, b in zip(gen, gen[1:]))
    assert all(b <= a for a, b in zip(con, con[1:]))
    assert all(0.0 <= p.soc_pct <= 100.0 for p in forecast.battery)


def test_forecast_events_include_flares_and_high_demand_inside_horizon() -> None:
    flare = PredictedSolarFlare("M", 2.0, 60.0, NOW + timedelta(hours=3), 2.0)
    forecast = _manager().generate_power_forecast(12.0, EnvironmentSnapshot(predicted_flares=[flare]))

    events = forecast.critical_events
    assert [e.event for e in events] == ["low_generation", "high_demand"]
    assert events[0].impact_w == pytest.approx(-100.0)
    assert events[0].duration_s == pytest.approx(7200.0)
    assert events[1].timestamp == NOW + timedelta(hours=6)
    assert events[1].impact_w == pytest.approx(150.0)


def test_forecast_does_not_mutate_catalog() -> None:
    manager = _manager()
    manager.generate_power_forecast(24.0, EnvironmentSnapshot())
    assert manager.bank("primary-bank").state.soc_pct == pytest.approx(85.5)


def test_low_soc_below_emergency_threshold_enters_emergency_mode() -> None:
    manager = _manager(banks=_two_active_banks(6.0, 10.0))
    assert manager.average_active_soc() == pytest.approx(8.0)

    result = manager.execute_power_management_action("low_soc", 5.0)

    assert result.success
    assert result.action.action == "emergency_mode"
    assert set(result.action.affected_systems) == {"science-primary", "science-secondary", "cameras", "backup-systems"}
    assert result.action.confidence == 95.0
    assert result.action.mission_impact == "severe"
    assert result.effect == pytest.approx(340.0)
    assert manager.emergency_mode
    assert manager.load("science-primary").current_draw_w == pytest.approx(45.0)
    assert manager.load("flight-computer").current_draw_w == pytest.approx(45.0)


def test_low_soc_shed_and_switch_boundary() -> None:
    shedding = _manager()
    shedding.update_battery_state("primary-bank", {"soc_pct": 19.9})
    shed = shedding.execute_power_management_action("low_soc", 5.0)
    assert shed.action.action == "shed_load"
    assert shed.action.affected_systems == ("science-secondary", "cameras", "backup-systems")
    assert shed.action.confidence == 90.0
    assert shed.effect == pytest.approx(175.0)

    switching = _manager()
    switching.update_battery_state("primary-bank", {"soc_pct": 20.0})
    switch = switching.execute_power_management_action("low_soc", 5.0)
    assert switch.success
    assert switch.action.action == "switch_battery_bank"
    assert switch.action.confidence == 88.0
    assert not switching.bank("primary-bank").active
    assert switching.bank("backup-bank").active


def test_critical_loads_are_never_shed() -> None:
    for soc in (5.0, 15.0, 50.0):
        for trigger in TRIGGERS:
            for severity in (0.0, 5.0, 8.0, 10.0):
                loads = default_loads()
                for load in loads:
                    if load.load_id == "cameras":
                        load.category = "critical"
                manager = _manager(banks=_two_active_banks(soc, soc), loads=loads)
                result = manager.execute_power_management_action(trigger, severity)
                if result.action is not None:
                    assert "cameras" not in result.action.affected_systems
                    assert "flight-computer" not in result.action.affected_systems
                assert manager.load("cameras").current_draw_w == pytest.approx(55.0)


def test_shed_with_no_eligible_loads_is_rejected_and_not_logged() -> None:
    loads = default_loads()
    for load in loads:
        if load.load_id == "backup-systems":
            load.category = "critical"
    manager = _manager(loads=loads)

    result = manager.execute_power_management_action("load_spike", 6.0)

    assert not result.success
    assert "No sheddable loads" in result.status
    assert manager.action_history() == []


def test_thermal_runaway_isolates_bank_and_activates_reserve() -> None:
    manager = _manager()
    result = manager.execute_power_management_action("thermal_runaway", 9.0, "primary-bank")

    assert result.success
    assert result.action.action == "isolate_bank"
    assert result.action.requires_confirmation
    assert result.action.confidence == 98.0
    primary = manager.bank("primary-bank")
    assert primary.isolated and not primary.active
    assert manager.bank("emergency-bank").active
    assert manager.assess_battery_health("primary-bank") == "critical"


def test_thermal_runaway_without_bank_targets_first_active_bank() -> None:
    manager = _manager()
    result = manager.execute_power_management_action("thermal_runaway", 9.0)
    assert result.action.affected_systems == ("primary-bank",)


def test_isolating_unknown_bank_fails_cleanly() -> None:
    manager = _manager()
    result = manager.execute_power_management_action("thermal_runaway", 9.0, "ghost-bank")
    assert not result.success
    assert "not found" in result.status
    assert manager.action_history() == []


def test_switch_refuses_isolated_backup() -> None:
    manager = _manager()
    manager.execute_power_management_action("thermal_runaway", 9.0, "backup-bank")
    result = manager.execute_power_management_action("low_soc", 5.0)
    assert not result.success
    assert "isolated" in result.status
    assert manager.bank("primary-bank").active
    assert len(manager.action_history()) == 1


def test_solar_storm_actions_depend_on_severity() -> None:
    mild = _manager()
    backup = mild.execute_power_management_action("solar_storm", 5.0)
    assert backup.action.action == "activate_backup"
    assert backup.effect == pytest.approx(-45.0)
    assert mild.source("rtg-backup").active

    severe = _manager()
    shed = severe.execute_power_management_action("solar_storm", 8.0)
    assert shed.action.action == "shed_load"
    assert shed.action.affected_systems == ("science-primary", "cameras")
    assert shed.action.confidence == 85.0


def test_unsupported_trigger_returns_failure() -> None:
    manager = _manager()
    result = manager.execute_power_management_action("meteor_strike", 5.0)
    assert not result.success
    assert result.action is None


def test_action_ids_are_sequential() -> None:
    manager = _manager()
    first = manager.execute_power_management_action("load_spike", 3.0)
    second = manager.execute_power_management_action("solar_storm", 3.0)
    assert [first.action.action_id, second.action.action_id] == ["power-0001", "power-0002"]


def test_runaway_risk_ratchets_and_never_decays() -> None:
    manager = _manager()
    manager.update_battery_state("primary-bank", {"temperature_c": 52.0})
    assert manager.bank("primary-bank").state.thermal_runaway_risk_pct == pytest.approx(16.1)
    assert manager.assess_battery_health("primary-bank") == "critical"

    manager.update_battery_state("primary-bank", {"temperature_c": 52.0})
    manager.update_battery_state("primary-bank", {"temperature_c": 20.0})
    assert manager.bank("primary-bank").state.thermal_runaway_risk_pct == pytest.approx(30.1)
    assert manager.assess_battery_health("primary-bank") == "nominal"


def test_health_cascade() -> None:
    manager = _manager()
    assert manager.assess_battery_health("ghost-bank") == "unknown"
    manager.update_battery_state("primary-bank", {"soc_pct": 25.0})
    assert manager.assess_battery_health("primary-bank") == "caution"
    manager.update_battery_state("primary-bank", {"soc_pct": 15.0})
    assert manager.assess_battery_health("primary-bank") == "warning"
    manager.update_battery_state("backup-bank", {"temperature_c": 42.0})
    assert manager.assess_battery_health("backup-bank") == "warning"


def test_first_soc_update_anchors_cycle_history_without_counting() -> None:
    manager = _manager()
    manager.update_battery_state("primary-bank", {"soc_pct": 60.5})
    bank = manager.bank("primary-bank")
    assert bank.state.cycle_count == 1247
    assert len(bank.cycle_history) == 1
    assert bank.cycle_history[0].start_soc_pct == pytest.approx(60.5)
    assert bank.cycle_history[0].depth_of_discharge_pct == pytest.approx(0.0)


def test_deep_discharge_counts_a_cycle() -> None:
    manager = _manager()
    manager.update_battery_state("primary-bank", {"soc_pct": 85.5})
    manager.update_battery_state("primary-bank", {"soc_pct": 60.5})
    bank = manager.bank("primary-bank")
    assert bank.state.cycle_count == 1248
    assert len(bank.cycle_history) == 2
    assert bank.cycle_history[-1].start_soc_pct == pytest.approx(85.5)
    assert bank.cycle_history[-1].depth_of_discharge_pct == pytest.approx(25.0)


def test_shallow_discharge_is_recorded_without_counting() -> None:
    manager = _manager()
    manager.update_battery_state("primary-bank", {"soc_pct": 70.5})
    manager.update_battery_state("primary-bank", {"soc_pct": 65.5})
    bank = manager.bank("primary-bank")
    assert bank.state.cycle_count == 1247
    assert len(bank.cycle_history) == 1


def test_battery_update_skips_unknown_fields() -> None:
    manager = _manager()
    assert manager.update_battery_state("primary-bank", {"colour": "red", "soc_pct": 80.0})
    assert manager.bank("primary-bank").state.soc_pct == pytest.approx(80.0)
    assert not manager.update_battery_state("ghost-bank", {"soc_pct": 80.0})


def test_telemetry_drains_active_bank_on_negative_margin() -> None:
    manager = _manager()
    assert manager.advance_telemetry(300.0) == 10
    assert manager.bank("primary-bank").state.soc_pct == pytest.approx(84.5)
    assert manager.bank("primary-bank").state.current_a == pytest.approx(415.0 / 28.0)
    assert manager.bank("backup-bank").state.soc_pct == pytest.approx(92.1)


def test_power_status_totals() -> None:
    status = _manager().get_power_status()
    assert status["total_generation_w"] == pytest.approx(450.0)
    assert status["total_consumption_w"] == pytest.approx(865.0)
    assert status["power_margin_w"] == pytest.approx(-415.0)
    assert status["batteries"]["primary-bank"]["health"] == "nominal"
    assert status["emergency_mode"] is False


def test_telemetry_applies_whole_intervals_only() -> None:
    manager = _manager()
    assert manager.advance_telemetry(29.0) == 0
    assert manager.bank("primary-bank").state.soc_pct == pytest.approx(85.5)
    assert manager.advance_telemetry() == 1
    assert manager.advance_telemetry(75.0) == 2
    assert manager.bank("primary-bank").state.soc_pct == pytest.approx(85.2)
