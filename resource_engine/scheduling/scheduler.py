from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections import deque
from copy import deepcopy
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Mapping, Optional, Sequence, Tuple

from resource_engine.core.config import SchedulerSettings
from resource_engine.core.models import (
    MISSION_PHASES,
    Clock,
    EnvironmentSnapshot,
    ManagementAction,
    SystemHealthSummary,
    utc_now,
)

from .model import (
    DEMAND_STATUSES,
    STATUS_TRANSITIONS,
    ActivityOutcome,
    ConflictResolution,
    CriterionOutcome,
    MissionActivity,
    MissionPrediction,
    ResourceConflict,
    ScheduleMetrics,
    default_activities,
)
from .prediction import build_mission_prediction

logger = logging.getLogger(__name__)

SEVERITY_RISK_WEIGHT: Dict[str, float] = {"medium": 5.0, "high": 15.0, "critical": 30.0}
ESCALATION_STATUSES = ("planned", "ready")


class ActivityScheduler:
    """
    Activity catalog with slot-based conflict detection, mission prediction
    and a periodic priority-escalation pass.
    """

    def __init__(
        self,
        settings: Optional[SchedulerSettings] = None,
        activities: Optional[Sequence[MissionActivity]] = None,
        mission_phase: str = "transit",
        clock: Optional[Clock] = None,
    ) -> None:
        if mission_phase not in MISSION_PHASES:
            raise ValueError(f"Unsupported mission phase: {mission_phase}")
        self.settings = settings or SchedulerSettings()
        self._clock = clock or utc_now
        self._lock = threading.RLock()
        self._activities: Dict[str, MissionActivity] = {}
        for activity in activities if activities is not None else default_activities(self._clock()):
            self.add_activity(activity)
        self._mission_phase = mission_phase
        self._conflicts: List[ResourceConflict] = []
        self._metrics: Deque[ScheduleMetrics] = deque(maxlen=max(1, self.settings.metrics_history_limit))
        self._escalated_at: Dict[str, datetime] = {}
        self._actions: Deque[ManagementAction] = deque(maxlen=1000)
        self._action_ids = itertools.count(1)
        self.running = False
        self.optimization_task: Optional[asyncio.Task] = None

    @property
    def mission_phase(self) -> str:
        return self._mission_phase

    def activity(self, activity_id: str) -> Optional[MissionActivity]:
        with self._lock:
            found = self._activities.get(activity_id)
            return None if found is None else deepcopy(found)

    def activities(self) -> List[MissionActivity]:
        with self._lock:
            return [deepcopy(a) for a in self._activities.values()]

    def conflicts(self) -> List[ResourceConflict]:
        with self._lock:
            return deepcopy(self._conflicts)

    def action_log(self) -> List[ManagementAction]:
        with self._lock:
            return list(self._actions)

    # Catalog and lifecycle

    def add_activity(self, activity: MissionActivity) -> None:
        if activity.duration_s <= 0.0:
            raise ValueError(f"Activity {activity.activity_id} must have a positive duration")
        with self._lock:
            if activity.activity_id in self._activities:
                raise ValueError(f"Duplicate activity id: {activity.activity_id}")
            self._activities[activity.activity_id] = deepcopy(activity)

    def update_activity_status(self, activity_id: str, status: str) -> bool:
        with self._lock:
            activity = self._activities.get(activity_id)
            if activity is None:
                logger.warning("Status update for unknown activity %s ignored", activity_id)
                return False
            if status not in STATUS_TRANSITIONS.get(activity.status, ()):
                logger.warning("Activity %s cannot move from %s to %s", activity_id, activity.status, status)
                return False
            if status == "ready":
                pending = [d for d in activity.dependencies if self._dependency_status(d) != "completed"]
                if pending:
                    logger.warning("Activity %s not ready; waiting on %s", activity_id, ", ".join(pending))
                    return False
            activity.status = status
        logger.info("Activity %s is now %s", activity_id, status)
        return True

    def _dependency_status(self, activity_id: str) -> Optional[str]:
        dep = self._activities.get(activity_id)
        return None if dep is None else dep.status

    def complete_activity(self, activity_id: str, observed: Mapping[str, float]) -> Optional[ActivityOutcome]:
        """Evaluate success criteria and close an executing activity.

        A missing observation counts as a miss. Any missed critical criterion
        fails the activity.
        """
        with self._lock:
            activity = self._activities.get(activity_id)
            if activity is None:
                logger.warning("Completion for unknown activity %s ignored", activity_id)
                return None
            if activity.status != "executing":
                logger.warning("Activity %s is %s, not executing", activity_id, activity.status)
                return None
            outcomes: List[CriterionOutcome] = []
            for criterion in activity.success_criteria:
                value = observed.get(criterion.metric)
                passed = value is not None and criterion.evaluate(float(value))
                outcomes.append(
                    CriterionOutcome(criterion.metric, None if value is None else float(value), passed, criterion.critical)
                )
            failed = any(o.critical and not o.passed for o in outcomes)
            activity.status = "failed" if failed else "completed"
        if failed:
            logger.warning("Activity %s failed its success criteria", activity_id)
        else:
            logger.info("Activity %s completed", activity_id)
        return ActivityOutcome(activity_id, activity.status, outcomes)

    def set_mission_phase(self, phase: str) -> None:
        if phase not in MISSION_PHASES:
            raise ValueError(f"Unsupported mission phase: {phase}")
        with self._lock:
            self._mission_phase = phase
        logger.info("Mission phase set to %s", phase)

    def _eligible(self, activity: MissionActivity) -> bool:
        if activity.status not in DEMAND_STATUSES:
            return False
        return not activity.phase_restrictions or self._mission_phase in activity.phase_restrictions

    # Conflicts

    def _slots(self, now: datetime) -> List[Tuple[datetime, datetime]]:
        s = self.settings
        count = int(s.analysis_window_h * 3600.0 // s.slot_s)
        return [
            (now + timedelta(seconds=i * s.slot_s), now + timedelta(seconds=(i + 1) * s.slot_s))
            for i in range(count)
        ]

    def _slot_demand(self, start: datetime, end: datetime, resource_type: str) -> Tuple[float, List[MissionActivity]]:
        members = [
            a for a in self._activities.values()
            if self._eligible(a) and a.overlaps(start, end) and a.demand(resource_type) > 0.0
        ]
        return sum(a.demand(resource_type) for a in members), members

    def detect_and_resolve_conflicts(self) -> List[ResourceConflict]:
        s = self.settings
        with self._lock:
            now = self._clock()
            conflicts: List[ResourceConflict] = []
            for index, (start, end) in enumerate(self._slots(now)):
                for resource_type, capacity in s.capacities.items():
                    demand, members = self._slot_demand(start, end, resource_type)
                    if demand <= capacity:
                        continue
                    conflict = ResourceConflict(
                        conflict_id=f"conflict-{resource_type}-{index:02d}",
                        resource_type=resource_type,
                        activity_ids=tuple(a.activity_id for a in members),
                        severity="critical" if demand > capacity * s.severity_multiplier else "high",
                        available=capacity,
                        required=demand,
                        window=(start, end),
                    )
                    conflict.resolutions = self._resolutions(conflict, members)
                    conflicts.append(conflict)
            self._conflicts = conflicts

        for conflict in conflicts:
            logger.warning(
                "%s conflict %s: %.1f required vs %.1f available (%s)",
                conflict.severity,
                conflict.conflict_id,
                conflict.required,
                conflict.available,
                ",".join(conflict.activity_ids),
            )
        return deepcopy(conflicts)

    def _resolutions(self, conflict: ResourceConflict, members: Sequence[MissionActivity]) -> List[ConflictResolution]:
        s = self.settings
        resolutions: List[ConflictResolution] = []

        def add(strategy: str, description: str, impact: str, confidence: float, complexity: int, affected) -> None:
            resolutions.append(
                ConflictResolution(
                    resolution_id=f"resolution-{conflict.conflict_id}-{len(resolutions) + 1}",
                    strategy=strategy,
                    description=description,
                    impact=impact,
                    confidence=confidence,
                    complexity=complexity,
                    affected_activities=tuple(affected),
                )
            )

        if conflict.activity_ids:
            add("reschedule", "Reschedule conflicting activities to different time slots", "minor", 85.0, 3,
                conflict.activity_ids)
            lowest = min(members, key=lambda a: (a.priority, a.activity_id))
            if lowest.priority < s.defer_priority_below:
                add("defer", f"Defer {lowest.activity_id} until resources are available", "moderate", 75.0, 2,
                    (lowest.activity_id,))
            if conflict.excess <= s.modify_excess_fraction * conflict.available:
                add("modify_requirements", "Reduce resource requirements of conflicting activities", "minor", 70.0, 5,
                    conflict.activity_ids)
        return resolutions

    def detect_dependency_conflicts(self) -> List[ResourceConflict]:
        """Report activities that start before a dependency can finish.

        A dependency that is unknown, cancelled or failed can never be met, so
        its conflict carries no resolution.
        """
        with self._lock:
            conflicts: List[ResourceConflict] = []
            for activity in self._activities.values():
                if not self._eligible(activity):
                    continue
                for dep_id in activity.dependencies:
                    dep = self._activities.get(dep_id)
                    window = (activity.scheduled_start, activity.scheduled_end)
                    conflict_id = f"conflict-time-{activity.activity_id}-{dep_id}"
                    if dep is None or dep.status in ("cancelled", "failed"):
                        conflicts.append(
                            ResourceConflict(conflict_id, "time", (activity.activity_id, dep_id), "critical", 0.0,
                                             activity.duration_s, window)
                        )
                        continue
                    if dep.status == "completed" or dep.scheduled_end <= activity.scheduled_start:
                        continue
                    overlap_s = (dep.scheduled_end - activity.scheduled_start).total_seconds()
                    conflict = ResourceConflict(
                        conflict_id, "time", (activity.activity_id, dep_id), "high", 0.0, overlap_s, window
                    )
                    conflict.resolutions = [
                        ConflictResolution(
                            resolution_id=f"resolution-{conflict_id}-1",
                            strategy="reschedule",
                            description=f"Start {activity.activity_id} after {dep_id} finishes",
                            impact="minor",
                            confidence=85.0,
                            complexity=3,
                            affected_activities=(activity.activity_id,),
                        )
                    ]
                    conflicts.append(conflict)
        for conflict in conflicts:
            logger.warning("Dependency conflict %s (%s)", conflict.conflict_id, conflict.severity)
        return conflicts

    # Prediction and metrics

    def generate_mission_prediction(
        self,
        horizon_h: float,
        health: Optional[SystemHealthSummary] = None,
        environment: Optional[EnvironmentSnapshot] = None,
    ) -> MissionPrediction:
        if horizon_h <= 0.0:
            raise ValueError(f"Prediction horizon must be > 0 h, got {horizon_h}")
        with self._lock:
            activities = [deepcopy(a) for a in self._activities.values() if self._eligible(a)]
            conflicts = deepcopy(self._conflicts)
        return build_mission_prediction(
            activities,
            conflicts,
            self.settings,
            self._clock(),
            horizon_h,
            health or SystemHealthSummary(),
            environment or EnvironmentSnapshot(),
        )

    def get_schedule_metrics(self) -> ScheduleMetrics:
        s = self.settings
        with self._lock:
            now = self._clock()
            activities = list(self._activities.values())
            total = len(activities)
            slots = self._slots(now)
            ratios: List[float] = []
            peaks: Dict[str, float] = {r: 0.0 for r in s.capacities}
            for start, end in slots:
                for resource_type, capacity in s.capacities.items():
                    demand, _ = self._slot_demand(start, end, resource_type)
                    peaks[resource_type] = max(peaks[resource_type], demand)
                    ratios.append(min(1.0, demand / capacity) if capacity > 0.0 else 0.0)
            risk = sum(SEVERITY_RISK_WEIGHT.get(c.severity, 0.0) for c in self._conflicts)

            completed = sum(1 for a in activities if a.status == "completed")
            autonomous = sum(1 for a in activities if a.autonomous)
            autonomy = 100.0 * autonomous / total if total else 0.0
            flexibility = sum(a.average_flexibility() for a in activities) / total if total else 0.0

            metrics = ScheduleMetrics(
                timestamp=now,
                efficiency=100.0 * sum(ratios) / len(ratios) if ratios else 0.0,
                risk_level=min(100.0, risk),
                completion_rate=100.0 * completed / total if total else 0.0,
                autonomy_level=autonomy,
                resource_margin={r: s.capacities[r] - peaks[r] for r in s.capacities},
                adaptability=0.5 * autonomy + 0.5 * flexibility,
            )
            self._metrics.append(metrics)
            self._prune_metrics(now)
        return deepcopy(metrics)

    def _prune_metrics(self, now: datetime) -> None:
        cutoff = now - timedelta(hours=self.settings.metrics_retention_h)
        while self._metrics and self._metrics[0].timestamp < cutoff:
            self._metrics.popleft()

    def metrics_history(self) -> List[ScheduleMetrics]:
        with self._lock:
            return deepcopy(list(self._metrics))

    # Continuous optimization

    def run_optimization_pass(self) -> List[ManagementAction]:
        """Detect conflicts, then escalate activities whose deadline is near."""
        self.detect_and_resolve_conflicts()
        s = self.settings
        escalations: List[ManagementAction] = []
        with self._lock:
            now = self._clock()
            cutoff = now + timedelta(hours=s.escalation_window_h)
            for activity in self._activities.values():
                if activity.status not in ESCALATION_STATUSES or activity.deadline is None:
                    continue
                if activity.deadline > cutoff or activity.priority >= s.max_priority:
                    continue
                last = self._escalated_at.get(activity.activity_id)
                if last is not None and (now - last).total_seconds() < s.escalation_cooldown_s:
                    continue
                activity.priority = min(s.max_priority, activity.priority + 1)
                self._escalated_at[activity.activity_id] = now
                action = ManagementAction(
                    action_id=f"schedule-{next(self._action_ids):04d}",
                    trigger="deadline_approaching",
                    action="escalate_priority",
                    affected_systems=(activity.activity_id,),
                    effect=1.0,
                    effect_unit="priority_delta",
                    mission_impact="none",
                    execution_time_s=0.0,
                    reversible=True,
                    confidence=100.0,
                    timestamp=now,
                )
                self._actions.append(action)
                escalations.append(action)
                logger.info("Escalated %s to priority %d", activity.activity_id, activity.priority)
        return escalations

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self.optimization_task = asyncio.create_task(self._optimization_loop())
        logger.info("Schedule optimization started (every %.0f s)", self.settings.optimization_interval_s)

    async def stop(self) -> None:
        self.running = False
        if self.optimization_task:
            self.optimization_task.cancel()
            try:
                await self.optimization_task
            except asyncio.CancelledError:
                pass
            self.optimization_task = None
        logger.info("Schedule optimization stopped")

    async def _optimization_loop(self) -> None:
        while self.running:
            try:
                # The pass takes the catalog lock; run it off the event loop.
                await asyncio.to_thread(self.run_optimization_pass)
            except Exception:
                logger.exception("Schedule optimization pass failed")
            await asyncio.sleep(self.settings.optimization_interval_s)

    def catalog_records(self) -> List[Dict[str, object]]:
        with self._lock:
            return [dict(a.to_mapping(), record="activity") for a in self._activities.values()]
