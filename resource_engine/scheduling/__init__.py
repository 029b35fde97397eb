from .model import (
    ActivityConstraint,
    ActivityOutcome,
    ConflictResolution,
    MissionActivity,
    MissionPrediction,
    PredictedEvent,
    ResourceConflict,
    ScheduleMetrics,
    ScheduleOptimization,
    SuccessCriterion,
    activities_from_config,
)
from .prediction import activity_success_probability
from .scheduler import ActivityScheduler

__all__ = [
    "ActivityConstraint",
    "ActivityOutcome",
    "ConflictResolution",
    "MissionActivity",
    "MissionPrediction",
    "PredictedEvent",
    "ResourceConflict",
    "ScheduleMetrics",
    "ScheduleOptimization",
    "SuccessCriterion",
    "activities_from_config",
    "activity_success_probability",
    "ActivityScheduler",
]
