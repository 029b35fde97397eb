from __future__ import annotations

from pathlib import Path

import yaml

from resource_engine.core.config_validation import ConfigValidationError, validate_config


def _load_cfg() -> dict:
    return yaml.safe_load((Path(__file__).resolve().parents[1] / "configs" / "default.yaml").read_text())


def _expect_invalid(cfg: dict, fragment: str) -> None:
    try:
        validate_config(cfg)
    except ConfigValidationError as exc:
        assert fragment in str(exc)
        return
    raise AssertionError(f"Expected ConfigValidationError mentioning {fragment!r}")


def test_default_config_is_valid() -> None:
    cfg = _load_cfg()
    validate_config(cfg)


def test_emergency_threshold_must_not_exceed_shed_threshold() -> None:
    cfg = _load_cfg()
    cfg["power"]["emergency_soc_pct"] = 30
    _expect_invalid(cfg, "power.emergency_soc_pct must be <= power.shed_soc_pct")


def test_telemetry_source_must_be_supported() -> None:
    cfg = _load_cfg()
    cfg["telemetry"]["source"] = "replay"
    _expect_invalid(cfg, "telemetry.source")


def test_mission_phase_must_be_known() -> None:
    cfg = _load_cfg()
    cfg["scenario"]["mission_phase"] = "cruise"
    _expect_invalid(cfg, "scenario.mission_phase")


def test_power_trigger_severity_is_bounded() -> None:
    cfg = _load_cfg()
    cfg["scenario"]["power_triggers"][0]["severity"] = 11
    _expect_invalid(cfg, "scenario.power_triggers[0].severity")


def test_thermal_trigger_must_be_supported() -> None:
    cfg = _load_cfg()
    cfg["scenario"]["thermal_triggers"] = [{"trigger": "meteor_strike", "severity": 4}]
    _expect_invalid(cfg, "scenario.thermal_triggers[0].trigger")


def test_duplicate_activity_ids_are_rejected() -> None:
    cfg = _load_cfg()
    cfg["scheduler"]["activities"] = [
        {"id": "science-1", "duration_s": 600},
        {"id": "science-1", "duration_s": 900},
    ]
    _expect_invalid(cfg, "duplicates id science-1")


def test_unknown_confidence_section_is_rejected() -> None:
    cfg = _load_cfg()
    cfg["confidence"]["propulsion"] = {"burn": 90}
    _expect_invalid(cfg, "confidence.propulsion")


def test_capacities_must_be_positive() -> None:
    cfg = _load_cfg()
    cfg["scheduler"]["capacities"]["power"] = 0
    _expect_invalid(cfg, "scheduler.capacities.power must be > 0")


def test_errors_are_reported_together() -> None:
    cfg = _load_cfg()
    cfg["thermal"]["emissivity"] = 1.5
    cfg["logging"]["level"] = "LOUD"
    try:
        validate_config(cfg)
    except ConfigValidationError as exc:
        message = str(exc)
        assert "thermal.emissivity" in message
        assert "logging.level" in message
        return
    raise AssertionError("Expected ConfigValidationError for emissivity and logging level")


def test_activity_type_must_be_known() -> None:
    cfg = _load_cfg()
    cfg["scheduler"]["activities"] = [{"id": "drill-1", "type": "emergency", "duration_s": 600}]
    _expect_invalid(cfg, "scheduler.activities[0].type")

    cfg["scheduler"]["activities"] = [{"id": "drill-1", "type": "safety", "duration_s": 600}]
    validate_config(cfg)


def test_activity_constraint_and_criterion_vocabularies() -> None:
    cfg = _load_cfg()
    cfg["scheduler"]["activities"] = [
        {
            "id": "science-1",
            "status": "paused",
            "constraints": [{"type": "dependency", "condition": "after", "value": "calibration-1"}],
            "success_criteria": [{"metric": "data_quality", "threshold": 90, "operator": "at_least"}],
        }
    ]
    try:
        validate_config(cfg)
    except ConfigValidationError as exc:
        message = str(exc)
        assert "scheduler.activities[0].status" in message
        assert "scheduler.activities[0].constraints[0].type" in message
        assert "scheduler.activities[0].success_criteria[0].operator" in message
        return
    raise AssertionError("Expected ConfigValidationError for activity vocabularies")


def test_component_location_must_be_known() -> None:
    cfg = _load_cfg()
    cfg["thermal"]["components"] = [{"id": "star-tracker", "location": "sun_side"}]
    _expect_invalid(cfg, "thermal.components[0].location")


def test_component_criticality_must_be_known() -> None:
    cfg = _load_cfg()
    cfg["thermal"]["components"] = [{"id": "star-tracker", "location": "internal", "criticality": "vital"}]
    _expect_invalid(cfg, "thermal.components[0].criticality")


def test_actuator_type_must_be_known() -> None:
    cfg = _load_cfg()
    cfg["thermal"]["actuators"] = [{"id": "fan-1", "type": "fan", "capacity_w": 100}]
    _expect_invalid(cfg, "thermal.actuators[0].type")


def test_scenario_health_states_must_be_known() -> None:
    cfg = _load_cfg()
    cfg["scenario"]["health"]["subsystems"]["comms"] = "degraded"
    _expect_invalid(cfg, "scenario.health.subsystems.comms")
