from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from resource_engine.core.models import ResourceRequirement, TrendPoint, iso, parse_timestamp

DEMAND_STATUSES = ("planned", "ready", "executing")

# Allowed lifecycle moves; "ready" is additionally gated on completed dependencies.
STATUS_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "planned": ("ready", "cancelled"),
    "ready": ("executing", "planned", "cancelled"),
    "executing": ("completed", "failed", "cancelled"),
    "completed": (),
    "cancelled": (),
    "failed": (),
}


@dataclass(frozen=True)
class ActivityConstraint:
    constraint_type: str
    condition: str
    value: Any
    flexibility: float = 0.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ActivityConstraint":
        return cls(
            constraint_type=str(data.get("type", "temporal")),
            condition=str(data.get("condition", "")),
            value=data.get("value"),
            flexibility=float(data.get("flexibility", 0.0)),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "type": self.constraint_type,
            "condition": self.condition,
            "value": self.value,
            "flexibility": float(self.flexibility),
        }


@dataclass(frozen=True)
class SuccessCriterion:
    metric: str
    threshold: float
    operator: str
    critical: bool
    upper_threshold: Optional[float] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SuccessCriterion":
        upper = data.get("upper_threshold")
        return cls(
            metric=str(data["metric"]),
            threshold=float(data.get("threshold", 0.0)),
            operator=str(data.get("operator", "greater_than")),
            critical=bool(data.get("critical", False)),
            upper_threshold=None if upper is None else float(upper),
        )

    def evaluate(self, observed: float) -> bool:
        if self.operator == "greater_than":
            return observed > self.threshold
        if self.operator == "less_than":
            return observed < self.threshold
        if self.operator == "equals":
            return observed == self.threshold
        if self.operator == "between":
            upper = self.threshold if self.upper_threshold is None else self.upper_threshold
            return self.threshold <= observed <= upper
        raise ValueError(f"Unsupported criterion operator: {self.operator}")

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "threshold": float(self.threshold),
            "operator": self.operator,
            "critical": bool(self.critical),
            "upper_threshold": self.upper_threshold,
        }


@dataclass
class MissionActivity:
    activity_id: str
    name: str
    activity_type: str
    priority: int
    scheduled_start: datetime
    duration_s: float
    requirements: List[ResourceRequirement] = field(default_factory=list)
    dependencies: Tuple[str, ...] = ()
    constraints: List[ActivityConstraint] = field(default_factory=list)
    autonomous: bool = True
    status: str = "planned"
    success_criteria: List[SuccessCriterion] = field(default_factory=list)
    deadline: Optional[datetime] = None
    phase_restrictions: Tuple[str, ...] = ()
    description: str = ""

    @property
    def scheduled_end(self) -> datetime:
        return self.scheduled_start + timedelta(seconds=self.duration_s)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.scheduled_start < end and self.scheduled_end > start

    def demand(self, resource_type: str) -> float:
        return sum(r.amount for r in self.requirements if r.resource_type == resource_type)

    def average_flexibility(self) -> float:
        if not self.constraints:
            return 0.0
        return sum(c.flexibility for c in self.constraints) / len(self.constraints)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, now: datetime) -> "MissionActivity":
        if "scheduled_start" in data:
            start = parse_timestamp(data["scheduled_start"], now)
        else:
            start = parse_timestamp(float(data.get("start_in_h", 0.0)), now)
        deadline = data.get("deadline", data.get("deadline_in_h"))
        return cls(
            activity_id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            activity_type=str(data.get("type", "science")),
            priority=int(data.get("priority", 5)),
            scheduled_start=start,
            duration_s=float(data.get("duration_s", 3600.0)),
            requirements=[
                ResourceRequirement(
                    resource_type=str(r["type"]),
                    amount=float(r.get("amount", 0.0)),
                    unit=str(r.get("unit", "")),
                    duration_s=float(r.get("duration_s", data.get("duration_s", 3600.0))),
                )
                for r in data.get("requirements", ())
            ],
            dependencies=tuple(str(d) for d in data.get("dependencies", ())),
            constraints=[ActivityConstraint.from_mapping(c) for c in data.get("constraints", ())],
            autonomous=bool(data.get("autonomous", True)),
            status=str(data.get("status", "planned")),
            success_criteria=[SuccessCriterion.from_mapping(c) for c in data.get("success_criteria", ())],
            deadline=None if deadline is None else parse_timestamp(deadline, now),
            phase_restrictions=tuple(str(p) for p in data.get("phase_restrictions", ())),
            description=str(data.get("description", "")),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.activity_id,
            "name": self.name,
            "type": self.activity_type,
            "priority": int(self.priority),
            "scheduled_start": iso(self.scheduled_start),
            "duration_s": float(self.duration_s),
            "requirements": [r.to_mapping() for r in self.requirements],
            "dependencies": list(self.dependencies),
            "constraints": [c.to_mapping() for c in self.constraints],
            "autonomous": bool(self.autonomous),
            "status": self.status,
            "success_criteria": [c.to_mapping() for c in self.success_criteria],
            "deadline": iso(self.deadline),
            "phase_restrictions": list(self.phase_restrictions),
            "description": self.description,
        }


@dataclass
class ConflictResolution:
    resolution_id: str
    strategy: str
    description: str
    impact: str
    confidence: float
    complexity: int
    affected_activities: Tuple[str, ...]

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.resolution_id,
            "strategy": self.strategy,
            "description": self.description,
            "impact": self.impact,
            "confidence": float(self.confidence),
            "complexity": int(self.complexity),
            "affected_activities": list(self.affected_activities),
        }


@dataclass
class ResourceConflict:
    conflict_id: str
    resource_type: str
    activity_ids: Tuple[str, ...]
    severity: str
    available: float
    required: float
    window: Tuple[datetime, datetime]
    resolutions: List[ConflictResolution] = field(default_factory=list)

    @property
    def excess(self) -> float:
        return max(0.0, self.required - self.available)

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.conflict_id,
            "type": self.resource_type,
            "activities": list(self.activity_ids),
            "severity": self.severity,
            "available": float(self.available),
            "required": float(self.required),
            "window_start": iso(self.window[0]),
            "window_end": iso(self.window[1]),
            "resolutions": [r.to_mapping() for r in self.resolutions],
        }


@dataclass
class CriterionOutcome:
    metric: str
    observed: Optional[float]
    passed: bool
    critical: bool


@dataclass
class ActivityOutcome:
    activity_id: str
    status: str
    criteria: List[CriterionOutcome]

    @property
    def success(self) -> bool:
        return self.status == "completed"


@dataclass(frozen=True)
class EventImpact:
    subsystem: str
    impact_type: str
    severity: float
    mitigation_possible: bool


@dataclass(frozen=True)
class PreparationStep:
    action: str
    lead_time_s: float
    priority: int
    autonomous: bool = True


@dataclass
class PredictedEvent:
    event_id: str
    event_type: str
    description: str
    probability: float
    start: datetime
    duration_s: float
    impacts: List[EventImpact] = field(default_factory=list)
    preparations: List[PreparationStep] = field(default_factory=list)

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.event_id,
            "type": self.event_type,
            "description": self.description,
            "probability": float(self.probability),
            "start": iso(self.start),
            "duration_s": float(self.duration_s),
            "impacts": [
                {
                    "subsystem": i.subsystem,
                    "impact_type": i.impact_type,
                    "severity": float(i.severity),
                    "mitigation_possible": bool(i.mitigation_possible),
                }
                for i in self.impacts
            ],
            "preparations": [
                {
                    "action": p.action,
                    "lead_time_s": float(p.lead_time_s),
                    "priority": int(p.priority),
                    "autonomous": bool(p.autonomous),
                }
                for p in self.preparations
            ],
        }


@dataclass(frozen=True)
class CommWindow:
    start: datetime
    end: datetime
    station: str
    max_data_rate_kbps: float


@dataclass
class ResourceUtilization:
    horizon_h: float
    series: Dict[str, List[TrendPoint]]
    comm_windows: List[CommWindow]
    data_volume: List[TrendPoint]

    def rows(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for resource, points in self.series.items():
            for point in points:
                row = {"resource": resource}
                row.update(point.to_mapping())
                rows.append(row)
        return rows


@dataclass(frozen=True)
class RiskFactor:
    category: str
    risk: str
    probability: float
    timeframe_h: float
    impacts: Tuple[str, ...]


@dataclass(frozen=True)
class CascadeRisk:
    trigger_event: str
    sequence: Tuple[str, ...]
    probability: float
    impact: str


@dataclass
class RiskAssessment:
    overall: str
    factors: List[RiskFactor]
    cascades: List[CascadeRisk]
    mitigation_effectiveness: float


@dataclass
class ScheduleOptimization:
    optimization_id: str
    description: str
    benefits: Tuple[str, ...]
    tradeoffs: Tuple[str, ...]
    resource_impact: List[ResourceRequirement]
    complexity: str
    confidence: float

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "id": self.optimization_id,
            "description": self.description,
            "benefits": list(self.benefits),
            "tradeoffs": list(self.tradeoffs),
            "resource_impact": [r.to_mapping() for r in self.resource_impact],
            "complexity": self.complexity,
            "confidence": float(self.confidence),
        }


@dataclass
class MissionPrediction:
    generated_at: datetime
    horizon_h: float
    events: List[PredictedEvent]
    utilization: ResourceUtilization
    risk: RiskAssessment
    optimizations: List[ScheduleOptimization]
    confidence: float

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "generated_at": iso(self.generated_at),
            "horizon_h": float(self.horizon_h),
            "events": [e.to_mapping() for e in self.events],
            "comm_windows": [
                {
                    "start": iso(w.start),
                    "end": iso(w.end),
                    "station": w.station,
                    "max_data_rate_kbps": float(w.max_data_rate_kbps),
                }
                for w in self.utilization.comm_windows
            ],
            "risk": {
                "overall": self.risk.overall,
                "mitigation_effectiveness": float(self.risk.mitigation_effectiveness),
                "factors": [
                    {
                        "category": f.category,
                        "risk": f.risk,
                        "probability": float(f.probability),
                        "timeframe_h": float(f.timeframe_h),
                        "impacts": list(f.impacts),
                    }
                    for f in self.risk.factors
                ],
                "cascades": [
                    {
                        "trigger_event": c.trigger_event,
                        "sequence": list(c.sequence),
                        "probability": float(c.probability),
                        "impact": c.impact,
                    }
                    for c in self.risk.cascades
                ],
            },
            "optimizations": [o.to_mapping() for o in self.optimizations],
            "confidence": float(self.confidence),
        }


@dataclass
class ScheduleMetrics:
    timestamp: datetime
    efficiency: float
    risk_level: float
    completion_rate: float
    autonomy_level: float
    resource_margin: Dict[str, float]
    adaptability: float

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "timestamp": iso(self.timestamp),
            "efficiency": float(self.efficiency),
            "risk_level": float(self.risk_level),
            "completion_rate": float(self.completion_rate),
            "autonomy_level": float(self.autonomy_level),
            "resource_margin": {k: float(v) for k, v in self.resource_margin.items()},
            "adaptability": float(self.adaptability),
        }


def _req(resource_type: str, amount: float, unit: str, duration_s: float) -> ResourceRequirement:
    return ResourceRequirement(resource_type, amount, unit, duration_s)


def default_activities(now: datetime) -> List[MissionActivity]:
    def hours(h: float) -> datetime:
        return now + timedelta(hours=h)

    return [
        MissionActivity(
            "daily-health-check", "Daily System Health Check", "maintenance", 8, hours(1), 1800.0,
            requirements=[_req("compute", 25.0, "percent", 1800.0), _req("bandwidth", 512.0, "kbps", 900.0)],
            constraints=[ActivityConstraint("temporal", "daily_occurrence", "06:00:00", 30.0)],
            autonomous=True,
            success_criteria=[SuccessCriterion("completion_percentage", 95.0, "greater_than", True)],
            description="Comprehensive health check of all spacecraft systems",
        ),
        MissionActivity(
            "nav-update", "Navigation State Update", "navigation", 7, hours(2), 900.0,
            requirements=[_req("compute", 40.0, "percent", 900.0), _req("bandwidth", 256.0, "kbps", 900.0)],
            constraints=[ActivityConstraint("environmental", "dsn_visibility", True, 0.0)],
            autonomous=True,
            success_criteria=[SuccessCriterion("position_uncertainty", 100.0, "less_than", True)],
            description="Update spacecraft position and velocity from ground tracking",
        ),
        MissionActivity(
            "science-observation-1", "Deep Space Observation", "science", 6, hours(4), 7200.0,
            requirements=[
                _req("power", 250.0, "watts", 7200.0),
                _req("bandwidth", 2048.0, "kbps", 3600.0),
                _req("thermal", 150.0, "watts", 7200.0),
            ],
            dependencies=("nav-update",),
            constraints=[
                ActivityConstraint("environmental", "target_visibility", True, 20.0),
                ActivityConstraint("system_state", "thermal_nominal", True, 0.0),
            ],
            autonomous=False,
            success_criteria=[
                SuccessCriterion("data_quality", 90.0, "greater_than", True),
                SuccessCriterion("data_volume", 1000.0, "greater_than", False),
            ],
            deadline=hours(24),
            description="High-resolution imaging of target celestial object",
        ),
        MissionActivity(
            "comm-pass-dsn", "DSN Communication Pass", "communication", 9, hours(6), 3600.0,
            requirements=[_req("power", 180.0, "watts", 3600.0), _req("bandwidth", 8192.0, "kbps", 3600.0)],
            constraints=[ActivityConstraint("environmental", "dsn_station_visibility", "madrid_visible", 0.0)],
            autonomous=True,
            success_criteria=[SuccessCriterion("data_transmitted", 28800.0, "greater_than", True)],
            description="High-rate data downlink to Deep Space Network",
        ),
        MissionActivity(
            "thermal-calibration", "Thermal System Calibration", "calibration", 5, hours(9), 2700.0,
            requirements=[_req("power", 45.0, "watts", 2700.0), _req("thermal", 200.0, "watts", 1800.0)],
            constraints=[ActivityConstraint("system_state", "no_active_science", True, 50.0)],
            autonomous=True,
            success_criteria=[SuccessCriterion("calibration_accuracy", 99.0, "greater_than", True)],
            description="Calibrate thermal sensors and control systems",
        ),
    ]


def activities_from_config(items: Optional[Sequence[Mapping[str, Any]]], now: datetime) -> List[MissionActivity]:
    if not items:
        return default_activities(now)
    return [MissionActivity.from_mapping(item, now=now) for item in items]
