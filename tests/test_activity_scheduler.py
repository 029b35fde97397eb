from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from resource_engine.core.models import (
    EnvironmentSnapshot,
    PredictedSolarFlare,
    ResourceRequirement,
    SystemHealthSummary,
)
from resource_engine.scheduling import (
    ActivityConstraint,
    ActivityScheduler,
    MissionActivity,
    SuccessCriterion,
    activity_success_probability,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def _activity(activity_id: str, power_w: float, start_h: float = 1.0, duration_s: float = 1800.0, priority: int = 6, **kwargs) -> MissionActivity:
    return MissionActivity(
        activity_id,
        activity_id,
        "science",
        priority,
        NOW + timedelta(hours=start_h),
        duration_s,
        requirements=[ResourceRequirement("power", power_w, "watts", duration_s)],
        **kwargs,
    )


def _scheduler(activities=None, clock=None, phase: str = "transit") -> ActivityScheduler:
    return ActivityScheduler(activities=activities, mission_phase=phase, clock=clock or (lambda: NOW))


def test_conflict_above_severity_multiplier_is_critical() -> None:
    scheduler = _scheduler([_activity("imager", 1600.0)])
    conflicts = scheduler.detect_and_resolve_conflicts()

    assert len(conflicts) == 1
    conflict = conflicts[0]
    assert conflict.conflict_id == "conflict-power-01"
    assert conflict.severity == "critical"
    assert conflict.activity_ids == ("imager",)
    assert conflict.required == pytest.approx(1600.0)
    assert conflict.window == (NOW + timedelta(hours=1), NOW + timedelta(hours=2))
    assert [r.strategy for r in conflict.resolutions] == ["reschedule"]
    assert conflict.resolutions[0].confidence == 85.0


def test_conflict_below_severity_multiplier_is_high_with_defer() -> None:
    scheduler = _scheduler([_activity("low-priority", 800.0, priority=3), _activity("high-priority", 600.0, priority=7)])
    conflict = scheduler.detect_and_resolve_conflicts()[0]

    assert conflict.severity == "high"
    strategies = {r.strategy: r for r in conflict.resolutions}
    assert set(strategies) == {"reschedule", "defer"}
    assert strategies["defer"].affected_activities == ("low-priority",)
    assert strategies["defer"].confidence == 75.0


def test_small_excess_offers_requirement_modification() -> None:
    scheduler = _scheduler([_activity("imager", 1100.0)])
    conflict = scheduler.detect_and_resolve_conflicts()[0]
    assert [r.strategy for r in conflict.resolutions] == ["reschedule", "modify_requirements"]


def test_demand_at_capacity_is_not_a_conflict() -> None:
    scheduler = _scheduler([_activity("imager", 1000.0)])
    assert scheduler.detect_and_resolve_conflicts() == []


def test_activity_ending_on_slot_boundary_occupies_one_slot() -> None:
    scheduler = _scheduler([_activity("imager", 1600.0, start_h=1.0, duration_s=3600.0)])
    conflicts = scheduler.detect_and_resolve_conflicts()
    assert [c.conflict_id for c in conflicts] == ["conflict-power-01"]


def test_default_catalog_has_no_conflicts() -> None:
    assert _scheduler().detect_and_resolve_conflicts() == []


def test_conflicts_are_replaced_on_each_detection() -> None:
    scheduler = _scheduler([_activity("imager", 1600.0)])
    scheduler.detect_and_resolve_conflicts()
    assert len(scheduler.conflicts()) == 1

    assert scheduler.update_activity_status("imager", "cancelled")
    assert scheduler.detect_and_resolve_conflicts() == []
    assert scheduler.conflicts() == []


def test_phase_restricted_activity_only_counts_in_its_phase() -> None:
    scheduler = _scheduler([_activity("orbit-burn", 1600.0, phase_restrictions=("orbital",))])
    assert scheduler.detect_and_resolve_conflicts() == []

    scheduler.set_mission_phase("orbital")
    assert len(scheduler.detect_and_resolve_conflicts()) == 1

    with pytest.raises(ValueError):
        scheduler.set_mission_phase("cruise")


def test_dependency_conflicts() -> None:
    scheduler = _scheduler(
        [
            _activity("calibrate", 100.0, start_h=1.0, duration_s=7200.0),
            _activity("observe", 100.0, start_h=2.0, dependencies=("calibrate",)),
            _activity("downlink", 100.0, start_h=5.0, dependencies=("relay-setup",)),
        ]
    )
    conflicts = {c.conflict_id: c for c in scheduler.detect_dependency_conflicts()}

    late = conflicts["conflict-time-observe-calibrate"]
    assert late.severity == "high"
    assert late.required == pytest.approx(3600.0)
    assert [r.strategy for r in late.resolutions] == ["reschedule"]

    missing = conflicts["conflict-time-downlink-relay-setup"]
    assert missing.severity == "critical"
    assert missing.resolutions == []


def test_lifecycle_gates_ready_on_completed_dependencies() -> None:
    scheduler = _scheduler()
    assert not scheduler.update_activity_status("science-observation-1", "ready")
    assert not scheduler.update_activity_status("nav-update", "completed")
    assert not scheduler.update_activity_status("unknown-activity", "ready")

    assert scheduler.update_activity_status("nav-update", "ready")
    assert scheduler.update_activity_status("nav-update", "executing")
    outcome = scheduler.complete_activity("nav-update", {"position_uncertainty": 50.0})
    assert outcome.success
    assert scheduler.activity("nav-update").status == "completed"

    assert scheduler.update_activity_status("science-observation-1", "ready")
    assert not scheduler.update_activity_status("nav-update", "planned")


def test_completion_fails_on_critical_criterion_only() -> None:
    scheduler = _scheduler()
    for status in ("ready", "executing"):
        scheduler.update_activity_status("thermal-calibration", status)
    failed = scheduler.complete_activity("thermal-calibration", {"calibration_accuracy": 98.0})
    assert failed.status == "failed"
    assert not failed.success

    other = _scheduler([
        _activity(
            "survey",
            100.0,
            success_criteria=[
                SuccessCriterion("data_quality", 90.0, "greater_than", True),
                SuccessCriterion("data_volume", 1000.0, "greater_than", False),
            ],
        )
    ])
    for status in ("ready", "executing"):
        other.update_activity_status("survey", status)
    outcome = other.complete_activity("survey", {"data_quality": 95.0})
    assert outcome.status == "completed"
    volume = next(c for c in outcome.criteria if c.metric == "data_volume")
    assert volume.observed is None and not volume.passed


def test_completion_requires_executing_activity() -> None:
    scheduler = _scheduler()
    assert scheduler.complete_activity("nav-update", {"position_uncertainty": 1.0}) is None
    assert scheduler.complete_activity("ghost", {}) is None


def test_between_criterion_is_inclusive() -> None:
    criterion = SuccessCriterion("temperature", 10.0, "between", True, upper_threshold=20.0)
    assert criterion.evaluate(10.0)
    assert criterion.evaluate(20.0)
    assert not criterion.evaluate(25.0)
    with pytest.raises(ValueError):
        SuccessCriterion("x", 1.0, "roughly", False).evaluate(1.0)


def test_add_activity_rejects_duplicates_and_empty_durations() -> None:
    scheduler = _scheduler([_activity("imager", 100.0)])
    with pytest.raises(ValueError):
        scheduler.add_activity(_activity("imager", 100.0))
    with pytest.raises(ValueError):
        scheduler.add_activity(_activity("flash", 100.0, duration_s=0.0))


def test_escalation_is_idempotent_within_cooldown_and_capped() -> None:
    clock = _Clock()
    scheduler = _scheduler([_activity("urgent", 100.0, priority=9, deadline=NOW + timedelta(hours=2))], clock=clock)

    first = scheduler.run_optimization_pass()
    assert [a.action_id for a in first] == ["schedule-0001"]
    assert first[0].effect_unit == "priority_delta"
    assert scheduler.activity("urgent").priority == 10

    assert scheduler.run_optimization_pass() == []
    clock.advance(600.0)
    assert scheduler.run_optimization_pass() == []
    assert scheduler.activity("urgent").priority == 10
    assert len(scheduler.action_log()) == 1


def test_escalation_respects_cooldown() -> None:
    clock = _Clock()
    scheduler = _scheduler([_activity("routine", 100.0, priority=5, deadline=NOW + timedelta(hours=12))], clock=clock)

    scheduler.run_optimization_pass()
    scheduler.run_optimization_pass()
    assert scheduler.activity("routine").priority == 6

    clock.advance(301.0)
    scheduler.run_optimization_pass()
    assert scheduler.activity("routine").priority == 7


def test_escalation_skips_distant_and_closed_activities() -> None:
    scheduler = _scheduler(
        [
            _activity("later", 100.0, priority=5, deadline=NOW + timedelta(hours=30)),
            _activity("done", 100.0, priority=5, deadline=NOW + timedelta(hours=1), status="completed"),
            _activity("overdue", 100.0, priority=5, deadline=NOW - timedelta(hours=1)),
        ]
    )
    escalated = scheduler.run_optimization_pass()
    assert [a.affected_systems for a in escalated] == [("overdue",)]


def test_success_probability_heuristic() -> None:
    scheduler = _scheduler()
    assert activity_success_probability(scheduler.activity("science-observation-1")) == pytest.approx(77.0)
    assert activity_success_probability(scheduler.activity("daily-health-check")) == pytest.approx(96.0)
    assert activity_success_probability(scheduler.activity("thermal-calibration")) == pytest.approx(99.0)

    crowded = _activity(
        "crowded",
        100.0,
        dependencies=("a", "b", "c"),
        autonomous=False,
        constraints=[ActivityConstraint("temporal", "window", None, 0.0)],
    )
    assert activity_success_probability(crowded) == pytest.approx(65.0)


def test_mission_prediction_for_default_catalog() -> None:
    scheduler = _scheduler()
    flare = PredictedSolarFlare("M", 2.0, 70.0, NOW + timedelta(hours=3), 2.0)
    environment = EnvironmentSnapshot(flare_risk="high", predicted_flares=[flare])

    prediction = scheduler.generate_mission_prediction(24.0, SystemHealthSummary(), environment)

    assert [e.event_id for e in prediction.events] == [
        "activity-daily-health-check",
        "activity-nav-update",
        "solar-flare-M2",
        "activity-science-observation-1",
        "activity-comm-pass-dsn",
        "activity-thermal-calibration",
    ]
    flare_event = prediction.events[2]
    assert [(i.subsystem, i.severity) for i in flare_event.impacts] == [("power", 20.0), ("comms", 16.0)]
    assert prediction.confidence == pytest.approx(78.0)
    assert prediction.risk.overall == "medium"
    assert [o.optimization_id for o in prediction.optimizations] == [
        "science-optimization-1",
        "environmental-optimization-1",
    ]


def test_prediction_utilization_and_comm_windows() -> None:
    prediction = _scheduler().generate_mission_prediction(24.0)
    utilization = prediction.utilization

    power = utilization.series["power"]
    assert len(power) == 96
    assert power[16].value == pytest.approx(250.0)
    assert power[24].value == pytest.approx(430.0)
    assert utilization.series["compute"][4].value == pytest.approx(25.0)
    assert power[0].confidence == 95.0
    assert min(p.confidence for p in power) >= 60.0

    assert [w.station for w in utilization.comm_windows] == ["Goldstone", "Madrid"]
    assert len(utilization.data_volume) == 24
    assert utilization.data_volume[10].value == pytest.approx(8.2)


def test_prediction_confidence_and_risk_react_to_health() -> None:
    scheduler = _scheduler([_activity("imager", 1600.0)])
    scheduler.detect_and_resolve_conflicts()

    prediction = scheduler.generate_mission_prediction(24.0, SystemHealthSummary(overall="critical"))
    assert prediction.confidence == pytest.approx(58.0)
    assert prediction.risk.overall == "high"
    assert prediction.optimizations[0].optimization_id == "resource-optimization-1"

    assert scheduler.generate_mission_prediction(200.0).confidence == 30.0
    with pytest.raises(ValueError):
        scheduler.generate_mission_prediction(0.0)


def test_schedule_metrics_for_default_catalog() -> None:
    metrics = _scheduler().get_schedule_metrics()
    assert metrics.completion_rate == 0.0
    assert metrics.autonomy_level == pytest.approx(80.0)
    assert metrics.adaptability == pytest.approx(49.0)
    assert metrics.risk_level == 0.0
    assert metrics.resource_margin == pytest.approx({"power": 750.0, "thermal": 300.0, "bandwidth": 0.0})
    assert 0.0 < metrics.efficiency <= 100.0


def test_metrics_risk_and_history_retention() -> None:
    clock = _Clock()
    scheduler = _scheduler([_activity("imager", 1600.0)], clock=clock)
    scheduler.detect_and_resolve_conflicts()
    assert scheduler.get_schedule_metrics().risk_level == 30.0

    clock.advance(25 * 3600.0)
    scheduler.get_schedule_metrics()
    history = scheduler.metrics_history()
    assert len(history) == 1
    assert history[0].timestamp == clock.now


def test_activity_from_mapping_accepts_utc_designator() -> None:
    activity = MissionActivity.from_mapping(
        {"id": "downlink-1", "type": "communication", "scheduled_start": "2026-01-01T03:00:00Z", "deadline": "2026-01-01T06:00:00z"},
        now=NOW,
    )
    assert activity.scheduled_start == NOW + timedelta(hours=3)
    assert activity.scheduled_start.tzinfo is not None
    assert activity.deadline == NOW + timedelta(hours=6)
