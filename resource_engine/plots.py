from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import List, Mapping, Sequence

import matplotlib.pyplot as plt
import numpy as np

from resource_engine.power import PowerForecast
from resource_engine.scheduling import MissionPrediction
from resource_engine.thermal import ThermalForecast


def _hours_from(start: datetime, stamps: Sequence[datetime]) -> np.ndarray:
    return np.array([(ts - start).total_seconds() / 3600.0 for ts in stamps], dtype=float)


def plot_thermal_forecast(forecast: ThermalForecast, start: datetime, save_path: Path) -> None:
    if not forecast.component_trends:
        return

    fig, ax = plt.subplots(2, 1, figsize=(12, 8), sharex=True)
    for trend in forecast.component_trends:
        hours = _hours_from(start, [p.timestamp for p in trend.points])
        ax[0].plot(hours, [p.temperature_c for p in trend.points], label=trend.component_id)
    for event in forecast.events:
        ax[0].axvline((event.timestamp - start).total_seconds() / 3600.0, color="tab:red", alpha=0.4, linestyle="--")
    ax[0].set_ylabel("Temperature [C]")
    ax[0].set_title("Component Temperature Forecast")
    ax[0].legend(fontsize=8, loc="best")
    ax[0].grid(alpha=0.3)

    first = forecast.component_trends[0]
    ax[1].plot(
        _hours_from(start, [p.timestamp for p in first.points]),
        [p.confidence for p in first.points],
        color="tab:gray",
    )
    ax[1].set_ylabel("Confidence [%]")
    ax[1].set_xlabel("Forecast Time [hours]")
    ax[1].grid(alpha=0.3)

    fig.tight_layout()
    fig.savefig(save_path, dpi=180)
    plt.close(fig)


def plot_power_forecast(forecast: PowerForecast, start: datetime, save_path: Path) -> None:
    if not forecast.battery:
        return

    hours = _hours_from(start, [p.timestamp for p in forecast.battery])
    fig, ax = plt.subplots(3, 1, figsize=(12, 8), sharex=True)
    ax[0].plot(hours, [p.value for p in forecast.generation], color="tab:orange", label="Generation")
    ax[0].plot(hours, [p.value for p in forecast.consumption], color="tab:blue", label="Consumption")
    ax[0].set_ylabel("Power [W]")
    ax[0].legend(loc="best")
    ax[0].grid(alpha=0.3)

    ax[1].plot(hours, [p.soc_pct for p in forecast.battery], color="tab:purple")
    ax[1].set_ylabel(f"{forecast.bank_id} SoC [%]")
    ax[1].grid(alpha=0.3)

    ax[2].plot(hours, [p.temperature_c for p in forecast.battery], color="tab:red")
    ax[2].set_ylabel("Battery Temp [C]")
    ax[2].set_xlabel("Forecast Time [hours]")
    ax[2].grid(alpha=0.3)

    fig.suptitle("Power Forecast")
    fig.tight_layout()
    fig.savefig(save_path, dpi=180)
    plt.close(fig)


def plot_resource_utilization(prediction: MissionPrediction, capacities: Mapping[str, float], save_path: Path) -> None:
    series = prediction.utilization.series
    resources: List[str] = [r for r in ("power", "thermal", "bandwidth") if series.get(r)]
    if not resources:
        return

    start = prediction.generated_at
    fig, ax = plt.subplots(len(resources), 1, figsize=(12, 3 * len(resources)), sharex=True, squeeze=False)
    for row, resource in enumerate(resources):
        points = series[resource]
        axis = ax[row][0]
        axis.step(_hours_from(start, [p.timestamp for p in points]), [p.value for p in points], where="post")
        capacity = capacities.get(resource)
        if capacity is not None:
            axis.axhline(float(capacity), color="tab:red", linestyle="--", alpha=0.6)
        axis.set_ylabel(resource.capitalize())
        axis.grid(alpha=0.3)
    for window in prediction.utilization.comm_windows:
        ax[-1][0].axvspan(
            (window.start - start).total_seconds() / 3600.0,
            (window.end - start).total_seconds() / 3600.0,
            color="tab:green",
            alpha=0.15,
        )
    ax[-1][0].set_xlabel("Forecast Time [hours]")
    fig.suptitle("Scheduled Resource Demand")
    fig.tight_layout()
    fig.savefig(save_path, dpi=180)
    plt.close(fig)
