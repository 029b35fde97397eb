from .manager import TRIGGERS, PowerManager
from .model import (
    BatteryBank,
    BatteryState,
    CycleRecord,
    GenerationSource,
    PowerForecast,
    PowerLoad,
    PowerProfile,
    banks_from_config,
    loads_from_config,
    sources_from_config,
)

__all__ = [
    "TRIGGERS",
    "PowerManager",
    "BatteryBank",
    "BatteryState",
    "CycleRecord",
    "GenerationSource",
    "PowerForecast",
    "PowerLoad",
    "PowerProfile",
    "banks_from_config",
    "loads_from_config",
    "sources_from_config",
]
