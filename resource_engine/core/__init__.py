from .confidence import (
    POWER_CONFIDENCE,
    THERMAL_CONFIDENCE,
    ConfidenceModel,
    FixedConfidenceModel,
    build_confidence_model,
)
from .config import EngineSettings, PowerSettings, SchedulerSettings, ThermalSettings
from .config_validation import ConfigValidationError, validate_config
from .io import append_action_log, read_jsonl, write_catalog_snapshot, write_csv, write_json
from .logging_config import setup_logging
from .models import (
    ActionResult,
    Clock,
    EnvironmentSnapshot,
    ManagementAction,
    PredictedSolarFlare,
    ResourceRequirement,
    SystemHealthSummary,
    TrendPoint,
    utc_now,
)
from .telemetry import NominalTelemetrySource, RandomTelemetrySource, TelemetrySource, build_telemetry_source

__all__ = [
    "POWER_CONFIDENCE",
    "THERMAL_CONFIDENCE",
    "ConfidenceModel",
    "FixedConfidenceModel",
    "build_confidence_model",
    "EngineSettings",
    "PowerSettings",
    "SchedulerSettings",
    "ThermalSettings",
    "ConfigValidationError",
    "validate_config",
    "append_action_log",
    "read_jsonl",
    "write_catalog_snapshot",
    "write_csv",
    "write_json",
    "setup_logging",
    "ActionResult",
    "Clock",
    "EnvironmentSnapshot",
    "ManagementAction",
    "PredictedSolarFlare",
    "ResourceRequirement",
    "SystemHealthSummary",
    "TrendPoint",
    "utc_now",
    "NominalTelemetrySource",
    "RandomTelemetrySource",
    "TelemetrySource",
    "build_telemetry_source",
]
