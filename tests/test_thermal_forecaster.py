from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from resource_engine.core.confidence import THERMAL_CONFIDENCE, build_confidence_model
from resource_engine.core.models import EnvironmentSnapshot, PredictedSolarFlare
from resource_engine.thermal import ThermalAction, ThermalComponent, ThermalForecaster

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _forecaster(**kwargs) -> ThermalForecaster:
    return ThermalForecaster(clock=lambda: NOW, **kwargs)


def _flare(flare_class: str, magnitude: float, arrival_h: float, duration_h: float = 1.0) -> PredictedSolarFlare:
    return PredictedSolarFlare(flare_class, magnitude, 70.0, NOW + timedelta(hours=arrival_h), duration_h)


def test_forecast_rises_monotonically_with_positive_net_heat() -> None:
    panel = ThermalComponent("test-panel", "Test Panel", 20.0, (0.0, 40.0), (-20.0, 60.0), 100.0, "sun_facing", "low", (), 50.0)
    forecaster = _forecaster(components=[panel])

    forecast = forecaster.generate_thermal_forecast(24.0, EnvironmentSnapshot())
    temps = [p.temperature_c for p in forecast.trend_for("test-panel").points]

    assert len(temps) == 288
    assert temps[0] > 20.0
    assert all(b >= a for a, b in zip(temps, temps[1:]))
    # Forecasting never touches the live catalog.
    assert forecaster.component("test-panel").temperature_c == 20.0


def test_forecast_confidence_starts_at_ceiling_and_never_increases() -> None:
    forecast = _forecaster().generate_thermal_forecast(12.0, EnvironmentSnapshot())
    for trend in forecast.component_trends:
        confidences = [p.confidence for p in trend.points]
        assert confidences[0] == 95.0
        assert all(b <= a for a, b in zip(confidences, confidences[1:]))
        assert min(confidences) == 50.0
        assert trend.points[0].timestamp == NOW + timedelta(seconds=300)


def test_forecast_rejects_non_positive_horizon() -> None:
    with pytest.raises(ValueError):
        _forecaster().generate_thermal_forecast(0.0, EnvironmentSnapshot())


def test_flare_events_are_limited_to_horizon() -> None:
    environment = EnvironmentSnapshot(predicted_flares=[_flare("M", 2.5, 2.0, 2.0), _flare("X", 1.0, 48.0)])
    forecast = _forecaster().generate_thermal_forecast(24.0, environment)

    assert len(forecast.events) == 1
    event = forecast.events[0]
    assert event.timestamp == NOW + timedelta(hours=2)
    assert event.magnitude_c == pytest.approx(25.0)
    assert event.duration_s == pytest.approx(7200.0)
    assert event.affected_components == ("comms-transmitter", "solar-panels")


def test_cooling_capacity_reports_radiators_and_louvers() -> None:
    forecast = _forecaster().generate_thermal_forecast(24.0, EnvironmentSnapshot())
    assert len(forecast.cooling_capacity) == 48
    first = forecast.cooling_capacity[0]
    assert first.timestamp == NOW
    assert first.capacity_w == pytest.approx(980.0)
    assert first.utilization_pct == pytest.approx(333.0 / 980.0 * 100.0)


def test_m_class_flare_recommends_single_radiator_deployment() -> None:
    impact = _forecaster().predict_solar_flare_response(_flare("M", 2.0, 3.0))

    assert impact.flare_label == "M2"
    assert impact.recommended_actions == [ThermalAction("all_critical", "deploy_radiator", "high", 30.0)]
    solar = next(c for c in impact.component_impacts if c.component_id == "solar-panels")
    assert solar.rise_rate_c_per_min == pytest.approx(2.0 / 350.0 * 60.0)
    assert solar.minutes_to_nominal_exceed == -1.0
    assert solar.confidence == 85.0


def test_x_class_flare_adds_component_level_actions() -> None:
    impact = _forecaster().predict_solar_flare_response(_flare("X", 5.0, 1.0))
    actions = impact.recommended_actions

    assert ThermalAction("all_systems", "deploy_radiator", "critical", 45.0) in actions
    assert ThermalAction("radiation_shield", "activate_heater", "critical", 120.0) in actions
    assert ThermalAction("non_essential", "reduce_power", "high", 10.0) in actions
    assert ThermalAction("solar-panels", "deploy_radiator", "critical", 30.0) in actions

    solar = next(c for c in impact.component_impacts if c.component_id == "solar-panels")
    assert solar.minutes_to_nominal_exceed == pytest.approx(40.0 / (50.0 / 350.0 * 60.0))
    assert impact.radiation_level == pytest.approx(5000.0)


def test_solar_flare_response_thresholds() -> None:
    forecaster = _forecaster()
    quiet = forecaster.generate_thermal_response("solar_flare", 3.0)
    severe = forecaster.generate_thermal_response("solar_flare", 9.0)

    assert quiet.automatic_actions == []
    assert [a.target for a in severe.automatic_actions] == ["primary-radiator", "emergency-radiator"]
    assert severe.confidence == 88.0
    assert severe.predicted_temp_rise_c == pytest.approx(13.5)
    assert len(severe.manual_recommendations) == 3


def test_overheat_response_targets_each_component() -> None:
    response = _forecaster().generate_thermal_response(
        "component_overheat", 8.0, ("main-computer", "comms-transmitter")
    )
    assert [(a.target, a.priority) for a in response.automatic_actions] == [
        ("main-computer", "critical"),
        ("comms-transmitter", "critical"),
    ]
    assert response.minutes_to_threshold == 20.0
    assert response.confidence == 92.0


def test_deep_space_cooling_response_activates_heaters() -> None:
    response = _forecaster().generate_thermal_response("deep_space_cooling", 4.0)
    assert response.automatic_actions == [ThermalAction("battery-heaters", "activate_heater", "medium", 5.0)]
    assert response.predicted_temp_rise_c == pytest.approx(-8.0)


def test_response_confidence_follows_injected_model() -> None:
    model = build_confidence_model(THERMAL_CONFIDENCE, {"solar_flare": 70.0})
    response = _forecaster(confidence_model=model).generate_thermal_response("solar_flare", 6.0)
    assert response.confidence == 70.0


def test_unknown_trigger_raises() -> None:
    with pytest.raises(ValueError):
        _forecaster().generate_thermal_response("meteor_strike", 5.0)


def test_execute_action_caps_activation_and_reports_applied_effect() -> None:
    forecaster = _forecaster()
    result = forecaster.execute_thermal_action(ThermalAction("all_systems", "deploy_radiator", "critical", 45.0))

    assert result.success
    assert forecaster.actuator("primary-radiator").activation_pct == 100.0
    assert result.effect == pytest.approx(500.0 * 0.55 * 0.985)
    assert result.time_to_complete_s == 30.0
    assert result.action.action_id == "thermal-0001"
    assert result.action.effect_unit == "thermal_w"
    assert result.action.reversible

    again = forecaster.execute_thermal_action(ThermalAction("all_systems", "deploy_radiator", "critical", 45.0))
    assert again.success
    assert again.effect == 0.0
    assert len(forecaster.action_log()) == 2


def test_unmapped_action_fails_without_raising() -> None:
    forecaster = _forecaster()
    result = forecaster.execute_thermal_action(ThermalAction("main-computer", "vent_coolant", "high", 10.0))
    assert not result.success
    assert "Actuator not found" in result.status
    assert forecaster.action_log() == []


def test_thermal_action_rejects_unknown_priority() -> None:
    with pytest.raises(ValueError, match="priority"):
        ThermalAction("all_systems", "deploy_radiator", "urgent", 45.0)


def test_update_unknown_component_returns_false() -> None:
    forecaster = _forecaster()
    assert not forecaster.update_component_temperature("reaction-wheel", 40.0)
    assert forecaster.component("reaction-wheel") is None


def test_status_classification_and_overall_rollup() -> None:
    forecaster = _forecaster()
    assert forecaster.get_thermal_status()["overall_status"] == "nominal"

    forecaster.update_component_temperature("main-computer", 50.0)
    assert forecaster.get_thermal_status()["overall_status"] == "caution"

    forecaster.update_component_temperature("comms-transmitter", 60.0)
    assert forecaster.get_thermal_status()["overall_status"] == "warning"

    forecaster.update_component_temperature("main-computer", 80.0)
    status = forecaster.get_thermal_status()
    assert status["overall_status"] == "critical"
    assert status["components"]["main-computer"]["status"] == "critical"
    assert status["components"]["main-computer"]["margin_to_limit_c"] == pytest.approx(10.0)


def test_trend_detects_rising_temperatures() -> None:
    forecaster = _forecaster()
    for temp in (15.0, 18.0, 21.0):
        forecaster.update_component_temperature("battery-bank-1", temp)
    status = forecaster.get_thermal_status()
    assert status["components"]["battery-bank-1"]["trend"] == "rising"
    assert status["components"]["main-computer"]["trend"] == "stable"
    assert len(forecaster.history("battery-bank-1")) == 3
