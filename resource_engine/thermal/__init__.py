from .forecaster import MANUAL_RECOMMENDATIONS, TRIGGERS, ThermalForecaster
from .model import (
    ComponentThermalImpact,
    SolarFlareImpact,
    ThermalAction,
    ThermalActuator,
    ThermalComponent,
    ThermalForecast,
    ThermalResponse,
    actuators_from_config,
    components_from_config,
)

__all__ = [
    "MANUAL_RECOMMENDATIONS",
    "TRIGGERS",
    "ThermalForecaster",
    "ComponentThermalImpact",
    "SolarFlareImpact",
    "ThermalAction",
    "ThermalActuator",
    "ThermalComponent",
    "ThermalForecast",
    "ThermalResponse",
    "actuators_from_config",
    "components_from_config",
]
