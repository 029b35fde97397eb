from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, List, Sequence

from resource_engine.core.config import SchedulerSettings
from resource_engine.core.models import (
    EnvironmentSnapshot,
    PredictedSolarFlare,
    ResourceRequirement,
    SystemHealthSummary,
    TrendPoint,
)

from .model import (
    CascadeRisk,
    CommWindow,
    EventImpact,
    MissionActivity,
    MissionPrediction,
    PredictedEvent,
    PreparationStep,
    ResourceConflict,
    ResourceUtilization,
    RiskAssessment,
    RiskFactor,
    ScheduleOptimization,
)

UTILIZATION_RESOURCES = ("power", "thermal", "bandwidth", "compute")
IMPACT_SUBSYSTEMS: Dict[str, str] = {"power": "power", "thermal": "thermal", "bandwidth": "comms"}

ACTIVITY_PREPARATIONS: Dict[str, List[PreparationStep]] = {
    "science": [
        PreparationStep("Pre-calibrate instruments", 3600.0, 7),
        PreparationStep("Verify target visibility", 1800.0, 8),
    ],
    "communication": [
        PreparationStep("Point high-gain antenna", 900.0, 9),
    ],
}
FLARE_PREPARATIONS = [
    PreparationStep("Pre-charge batteries to 95%", 3600.0, 8),
    PreparationStep("Switch to low-rate communication mode", 1800.0, 7),
]
MAINTENANCE_PREPARATIONS = [
    PreparationStep("Complete all pending data transmissions", 7200.0, 9, autonomous=False),
]
MAINTENANCE_PROBABILITY = 85.0

DSN_STATIONS = ("Goldstone", "Madrid", "Canberra")
DSN_FIRST_WINDOW_H = 8.0
DSN_SPACING_H = 8.0
DSN_WINDOW_H = 4.0
DSN_MAX_RATE_KBPS = 8192.0
DATA_VOLUME_BASE_GB = 5.2
DATA_VOLUME_GROWTH_GB = 0.3
DATA_VOLUME_CONFIDENCE = 85.0

CASCADES = [
    CascadeRisk(
        "Power system failure",
        ("Thermal control degradation", "Communication system overheating", "Loss of mission capability"),
        15.0,
        "critical",
    ),
    CascadeRisk(
        "Solar storm impact",
        ("Solar panel efficiency reduction", "Battery overcharging protection", "Temporary science suspension"),
        45.0,
        "medium",
    ),
]
MITIGATION_EFFECTIVENESS = 78.0


def activity_success_probability(activity: MissionActivity) -> float:
    probability = 90.0
    if len(activity.dependencies) > 2:
        probability -= 10.0
    if len(activity.requirements) > 3:
        probability -= 5.0
    if not activity.autonomous:
        probability -= 15.0
    probability += activity.average_flexibility() * 0.2
    return max(10.0, min(99.0, probability))


def _activity_impacts(activity: MissionActivity) -> List[EventImpact]:
    return [
        EventImpact(
            subsystem=IMPACT_SUBSYSTEMS.get(req.resource_type, "navigation"),
            impact_type="resource_consumption",
            severity=min(100.0, req.amount * 0.1),
            mitigation_possible=True,
        )
        for req in activity.requirements
    ]


def _flare_event(flare: PredictedSolarFlare) -> PredictedEvent:
    return PredictedEvent(
        event_id=f"solar-flare-{flare.flare_class}{flare.magnitude:g}",
        event_type="solar_storm",
        description=f"{flare.flare_class}{flare.magnitude:g} solar flare",
        probability=flare.probability,
        start=flare.estimated_arrival,
        duration_s=flare.duration_h * 3600.0,
        impacts=[
            EventImpact("power", "performance_degradation", flare.magnitude * 10.0, True),
            EventImpact("comms", "service_interruption", flare.magnitude * 8.0, True),
        ],
        preparations=list(FLARE_PREPARATIONS),
    )


def next_maintenance_window(now: datetime, settings: SchedulerSettings) -> datetime:
    target = now + timedelta(days=settings.maintenance_interval_days)
    return target.replace(hour=settings.maintenance_hour_utc, minute=0, second=0, microsecond=0)


def predict_events(
    activities: Sequence[MissionActivity],
    environment: EnvironmentSnapshot,
    settings: SchedulerSettings,
    now: datetime,
    horizon_h: float,
) -> List[PredictedEvent]:
    horizon_end = now + timedelta(hours=horizon_h)
    events: List[PredictedEvent] = []
    for activity in activities:
        if activity.status != "planned" or activity.scheduled_start > horizon_end:
            continue
        events.append(
            PredictedEvent(
                event_id=f"activity-{activity.activity_id}",
                event_type=activity.activity_type,
                description=activity.name,
                probability=activity_success_probability(activity),
                start=activity.scheduled_start,
                duration_s=activity.duration_s,
                impacts=_activity_impacts(activity),
                preparations=list(ACTIVITY_PREPARATIONS.get(activity.activity_type, ())),
            )
        )

    events.extend(_flare_event(f) for f in environment.predicted_flares if f.estimated_arrival <= horizon_end)

    maintenance = next_maintenance_window(now, settings)
    if maintenance <= horizon_end:
        events.append(
            PredictedEvent(
                event_id="maintenance-window",
                event_type="communication_blackout",
                description="Scheduled ground-station maintenance",
                probability=MAINTENANCE_PROBABILITY,
                start=maintenance,
                duration_s=settings.maintenance_duration_s,
                impacts=[EventImpact("comms", "service_interruption", 100.0, False)],
                preparations=list(MAINTENANCE_PREPARATIONS),
            )
        )
    events.sort(key=lambda e: e.start)
    return events


def predict_utilization(
    activities: Sequence[MissionActivity],
    settings: SchedulerSettings,
    now: datetime,
    horizon_h: float,
) -> ResourceUtilization:
    steps = int(horizon_h * 3600.0 // settings.utilization_step_s)
    series: Dict[str, List[TrendPoint]] = {r: [] for r in UTILIZATION_RESOURCES}
    for i in range(steps):
        ts = now + timedelta(seconds=i * settings.utilization_step_s)
        active = [a for a in activities if a.scheduled_start <= ts <= a.scheduled_end]
        confidence = max(60.0, 95.0 - i * 0.2)
        for resource in UTILIZATION_RESOURCES:
            series[resource].append(TrendPoint(ts, sum(a.demand(resource) for a in active), confidence))

    horizon_end = now + timedelta(hours=horizon_h)
    windows = []
    for i, station in enumerate(DSN_STATIONS):
        start = now + timedelta(hours=DSN_FIRST_WINDOW_H + i * DSN_SPACING_H)
        if start < horizon_end:
            windows.append(CommWindow(start, start + timedelta(hours=DSN_WINDOW_H), station, DSN_MAX_RATE_KBPS))

    data_volume = [
        TrendPoint(now + timedelta(hours=i), DATA_VOLUME_BASE_GB + i * DATA_VOLUME_GROWTH_GB, DATA_VOLUME_CONFIDENCE)
        for i in range(int(horizon_h))
    ]
    return ResourceUtilization(float(horizon_h), series, windows, data_volume)


def _environmental_risk(environment: EnvironmentSnapshot) -> str:
    if environment.flare_risk == "critical":
        return "critical"
    if environment.flare_risk == "high" or environment.dose_rate > 100.0:
        return "high"
    return "medium"


def _health_risk(health: SystemHealthSummary) -> str:
    if health.overall == "critical":
        return "critical"
    if health.overall == "warning":
        return "high"
    return "medium"


def _resource_risk(conflicts: Sequence[ResourceConflict]) -> str:
    if any(c.severity == "critical" for c in conflicts):
        return "high"
    if conflicts:
        return "medium"
    return "low"


def assess_risks(
    conflicts: Sequence[ResourceConflict],
    health: SystemHealthSummary,
    environment: EnvironmentSnapshot,
) -> RiskAssessment:
    factors = [
        RiskFactor(
            "Environmental",
            _environmental_risk(environment),
            75.0 if environment.flare_risk in ("high", "critical") else 25.0,
            48.0,
            ("Power system degradation", "Communication interference"),
        ),
        RiskFactor(
            "System Health",
            _health_risk(health),
            85.0 if health.overall == "critical" else 15.0,
            24.0,
            ("Mission capability reduction", "Emergency procedures"),
        ),
        RiskFactor(
            "Resource Constraints",
            _resource_risk(conflicts),
            35.0,
            12.0,
            ("Activity deferrals", "Science data loss"),
        ),
    ]
    elevated = sum(1 for f in factors if f.risk in ("high", "critical"))
    if elevated >= 2:
        overall = "high"
    elif elevated == 1:
        overall = "medium"
    else:
        overall = "low"
    return RiskAssessment(overall, factors, list(CASCADES), MITIGATION_EFFECTIVENESS)


def _science_opportunity(activities: Sequence[MissionActivity], horizon_end: datetime) -> bool:
    for activity in activities:
        if activity.activity_type != "science" or activity.status != "planned":
            continue
        if activity.scheduled_start > horizon_end:
            continue
        if any(c.condition == "target_visibility" and c.flexibility > 0.0 for c in activity.constraints):
            return True
    return False


def propose_optimizations(
    activities: Sequence[MissionActivity],
    conflicts: Sequence[ResourceConflict],
    environment: EnvironmentSnapshot,
    now: datetime,
    horizon_h: float,
) -> List[ScheduleOptimization]:
    horizon_end = now + timedelta(hours=horizon_h)
    optimizations: List[ScheduleOptimization] = []
    if any(c.window[0] < horizon_end for c in conflicts):
        optimizations.append(
            ScheduleOptimization(
                "resource-optimization-1",
                "Reschedule overlapping high-power activities",
                ("Reduce peak power demand by 25%", "Extend battery life", "Improve thermal management"),
                ("Slight increase in mission timeline", "Reduced scheduling flexibility"),
                [ResourceRequirement("power", -150.0, "watts", 3600.0)],
                "medium",
                85.0,
            )
        )
    if _science_opportunity(activities, horizon_end):
        optimizations.append(
            ScheduleOptimization(
                "science-optimization-1",
                "Adjust observation timing for optimal target visibility",
                ("Increase data quality by 15%", "Reduce observation time requirements"),
                ("Requires precise timing coordination", "Less resilient to delays"),
                [ResourceRequirement("time", -1800.0, "seconds", 0.0)],
                "high",
                78.0,
            )
        )
    if environment.flare_risk in ("high", "critical"):
        optimizations.append(
            ScheduleOptimization(
                "environmental-optimization-1",
                "Defer non-critical activities during solar storm period",
                (
                    "Protect sensitive equipment",
                    "Reduce power consumption during low generation",
                    "Maintain communication capability",
                ),
                ("Delayed mission milestones", "Compressed activity schedule post-storm"),
                [ResourceRequirement("power", -200.0, "watts", 14400.0)],
                "low",
                92.0,
            )
        )
    return optimizations


def prediction_confidence(horizon_h: float, health: SystemHealthSummary) -> float:
    confidence = 90.0 - horizon_h * 0.5
    if health.overall == "critical":
        confidence -= 20.0
    elif health.overall == "warning":
        confidence -= 10.0
    return max(30.0, min(95.0, confidence))


def build_mission_prediction(
    activities: Sequence[MissionActivity],
    conflicts: Sequence[ResourceConflict],
    settings: SchedulerSettings,
    now: datetime,
    horizon_h: float,
    health: SystemHealthSummary,
    environment: EnvironmentSnapshot,
) -> MissionPrediction:
    return MissionPrediction(
        generated_at=now,
        horizon_h=float(horizon_h),
        events=predict_events(activities, environment, settings, now, horizon_h),
        utilization=predict_utilization(activities, settings, now, horizon_h),
        risk=assess_risks(conflicts, health, environment),
        optimizations=propose_optimizations(activities, conflicts, environment, now, horizon_h),
        confidence=prediction_confidence(horizon_h, health),
    )
