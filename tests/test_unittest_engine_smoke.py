from __future__ import annotations

import asyncio
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from resource_engine.engine import ForecastEngine
from resource_engine.core import EnvironmentSnapshot, NominalTelemetrySource, SystemHealthSummary, read_jsonl, validate_config
from resource_engine.scenario import run_scenario

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _load_default_cfg() -> dict:
    import yaml

    return yaml.safe_load((Path(__file__).resolve().parents[1] / "configs" / "default.yaml").read_text())


def _engine(cfg: dict) -> ForecastEngine:
    return ForecastEngine(cfg, clock=lambda: NOW, telemetry=NominalTelemetrySource())


class EngineSmokeTests(unittest.TestCase):
    def test_default_config_valid(self) -> None:
        validate_config(_load_default_cfg())

    def test_engine_builds_default_catalogs(self) -> None:
        engine = _engine(_load_default_cfg())
        snapshot = engine.status_snapshot()

        self.assertEqual(snapshot["mission_phase"], "transit")
        self.assertEqual(len(snapshot["thermal"]["components"]), 6)
        self.assertEqual(len(snapshot["power"]["batteries"]), 3)
        self.assertEqual(snapshot["thermal"]["overall_status"], "nominal")
        self.assertEqual(snapshot["conflicts"], [])
        self.assertAlmostEqual(snapshot["schedule"]["autonomy_level"], 80.0)

    def test_battery_component_temperature_reaches_power_manager(self) -> None:
        engine = _engine(_load_default_cfg())
        before = engine.power.bank("primary-bank").state.thermal_runaway_risk_pct

        self.assertTrue(engine.update_component_temperature("battery-bank-1", 52.0))

        bank = engine.power.bank("primary-bank")
        self.assertAlmostEqual(bank.state.thermal_runaway_risk_pct, before + 14.0)
        self.assertAlmostEqual(bank.state.temperature_c, 52.0)
        self.assertEqual(engine.power.assess_battery_health("primary-bank"), "critical")
        self.assertEqual(engine.thermal_status()["components"]["battery-bank-1"]["status"], "warning")

    def test_unmapped_component_stays_in_thermal_domain(self) -> None:
        engine = _engine(_load_default_cfg())
        self.assertTrue(engine.update_component_temperature("main-computer", 30.0))
        self.assertAlmostEqual(engine.power.bank("primary-bank").state.temperature_c, 18.5)
        self.assertFalse(engine.update_component_temperature("reaction-wheel", 30.0))

    def test_forecast_bundle_covers_all_predictors(self) -> None:
        cfg = _load_default_cfg()
        engine = _engine(cfg)
        scenario = cfg["scenario"]
        environment = EnvironmentSnapshot.from_mapping(scenario["environment"], now=NOW)
        health = SystemHealthSummary.from_mapping(scenario["health"])

        bundle = engine.forecast_bundle(24.0, environment, health)

        self.assertEqual(len(bundle.thermal.events), 1)
        self.assertEqual([e.event for e in bundle.power.critical_events], ["low_generation", "high_demand"])
        self.assertIn("solar-flare-M2.5", [e.event_id for e in bundle.mission.events])
        self.assertEqual(bundle.mission.risk.overall, "medium")
        self.assertEqual(len(bundle.power.generation), 96)

    def test_persist_writes_catalogs_and_action_log(self) -> None:
        engine = _engine(_load_default_cfg())
        engine.power.execute_power_management_action("load_spike", 4.0)
        engine.scheduler.run_optimization_pass()

        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp)
            counts = engine.persist(out)
            self.assertEqual(counts["thermal_catalog"], 11)
            self.assertEqual(counts["power_catalog"], 14)
            self.assertEqual(counts["activity_catalog"], 5)
            self.assertEqual(counts["actions"], 2)

            actions = read_jsonl(out / "action_log.jsonl")
            self.assertEqual([a["source"] for a in actions], ["power", "scheduler"])
            self.assertEqual(actions[1]["affected_systems"], ["science-observation-1"])

            engine.persist(out)
            self.assertEqual(len(read_jsonl(out / "action_log.jsonl")), 4)
            self.assertEqual(len(read_jsonl(out / "activity_catalog.jsonl")), 5)

    def test_background_optimization_runs_and_stops(self) -> None:
        engine = _engine(_load_default_cfg())

        async def _cycle() -> None:
            await engine.start()
            for _ in range(200):
                if engine.scheduler.action_log():
                    break
                await asyncio.sleep(0.01)
            await engine.stop()

        asyncio.run(_cycle())

        self.assertFalse(engine.scheduler.running)
        self.assertIsNone(engine.scheduler.optimization_task)
        self.assertEqual(len(engine.scheduler.action_log()), 1)
        self.assertEqual(engine.scheduler.activity("science-observation-1").priority, 7)

    def test_scenario_writes_outputs(self) -> None:
        cfg = _load_default_cfg()
        cfg["telemetry"]["source"] = "nominal"
        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp) / "scenario"
            summary = run_scenario(cfg, out, horizon_h=12.0, clock=lambda: NOW)

            self.assertEqual(summary["horizon_h"], 12.0)
            self.assertEqual(summary["actions_rejected"], 0)
            self.assertGreaterEqual(summary["actions_applied"], 3)
            self.assertEqual(summary["priority_escalations"], 1)
            self.assertFalse(summary["emergency_mode"])
            for path in summary["outputs"].values():
                self.assertTrue(Path(path).exists(), path)
            self.assertTrue((out / "action_log.jsonl").exists())
            self.assertTrue((out / "conflicts.json").exists())


if __name__ == "__main__":
    unittest.main()
