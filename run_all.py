from __future__ import annotations

import argparse
import importlib.metadata
import importlib.util
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import zipfile

# Keep matplotlib cache writable in restricted environments.
workspace_root = Path(__file__).resolve().parent
os.environ.setdefault("MPLCONFIGDIR", str(workspace_root / ".mpl_cache"))
os.environ.setdefault("XDG_CACHE_HOME", str(workspace_root / ".cache"))


RUNTIME_DEPENDENCIES: list[tuple[str, str]] = [
    ("yaml", "PyYAML"),
    ("numpy", "numpy"),
    ("matplotlib", "matplotlib"),
]

logger = logging.getLogger("resource_engine.run_all")


def _module_available(module_name: str) -> bool:
    return importlib.util.find_spec(module_name) is not None


def _package_version(package_name: str) -> str | None:
    try:
        return importlib.metadata.version(package_name)
    except importlib.metadata.PackageNotFoundError:
        return None


def build_environment_report() -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "python_version": os.sys.version.split()[0],
        "python_executable": os.sys.executable,
        "runtime_dependencies": {},
        "missing_dependencies": [],
    }
    dep_status: Dict[str, Any] = {}
    missing: list[str] = []
    for module_name, package_name in RUNTIME_DEPENDENCIES:
        available = _module_available(module_name)
        dep_status[package_name] = {
            "module": module_name,
            "available": bool(available),
            "version": _package_version(package_name),
        }
        if not available:
            missing.append(package_name)
    report["runtime_dependencies"] = dep_status
    report["missing_dependencies"] = missing
    report["all_runtime_dependencies_available"] = len(missing) == 0
    return report


def _raise_on_missing_dependencies(report: Dict[str, Any]) -> None:
    missing = report.get("missing_dependencies", [])
    if not missing:
        return
    raise RuntimeError(
        "Missing runtime dependencies: "
        + ", ".join(str(x) for x in missing)
        + ".\nInstall with the same interpreter used to run this script:\n"
        + "  python3 -m pip install -e ."
    )


def _import_yaml_module():
    if not _module_available("yaml"):
        raise RuntimeError(
            "Missing runtime dependency: PyYAML. Install with:\n"
            "  python3 -m pip install -e ."
        )
    import yaml  # type: ignore

    return yaml


def load_config(config_path: Path, yaml_module: Any) -> Dict[str, Any]:
    with config_path.open("r", encoding="utf-8") as f:
        cfg = yaml_module.safe_load(f)
    if not isinstance(cfg, dict):
        raise ValueError(f"Config at {config_path} must parse to a mapping")
    return cfg


def create_results_bundle(output_root: Path) -> Path:
    bundle_path = output_root / "results_bundle.zip"
    # Package only the canonical scenario artifacts.
    allowed_suffixes = {".csv", ".json", ".jsonl", ".png"}
    with zipfile.ZipFile(bundle_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for file_path in sorted(output_root.rglob("*")):
            if file_path.is_dir() or file_path == bundle_path:
                continue
            if file_path.suffix not in allowed_suffixes:
                continue
            archive.write(file_path, arcname=str(file_path.relative_to(output_root)))
    return bundle_path


def collect_pipeline_issues(summary: Dict[str, Any]) -> List[str]:
    issues: List[str] = []
    if summary.get("thermal_overall_status") == "critical":
        issues.append("thermal status is critical after the scenario")
    if summary.get("emergency_mode"):
        issues.append("power manager entered emergency mode")
    rejected = int(summary.get("actions_rejected", 0))
    if rejected:
        issues.append(f"{rejected} triggered action(s) were not applied")
    critical_conflicts = [
        c for c in summary.get("conflicts", []) if c.get("severity") == "critical"
    ]
    if critical_conflicts:
        issues.append(f"{len(critical_conflicts)} critical resource conflict(s) in the analysis window")
    return issues


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Resource forecasting and autonomous response scenario runner")
    parser.add_argument("--config", type=Path, default=Path("configs/default.yaml"), help="Path to YAML config")
    parser.add_argument("--horizon-h", type=float, default=None, help="Override scenario.horizon_h")
    parser.add_argument("--output-root", type=Path, default=None, help="Override output_root")
    parser.add_argument("--log-level", default=None, help="Override logging.level")
    parser.add_argument("--skip-preflight", action="store_true", help="Skip runtime dependency preflight checks")
    parser.add_argument("--strict", action="store_true", help="Fail the run if the scenario reports any issue")
    args = parser.parse_args(argv)

    env_report = build_environment_report()
    if not args.skip_preflight:
        _raise_on_missing_dependencies(env_report)

    yaml_module = _import_yaml_module()
    cfg = load_config(args.config, yaml_module)

    from resource_engine.core import setup_logging, validate_config

    validate_config(cfg)
    setup_logging(args.log_level or str(cfg.get("logging", {}).get("level", "INFO")))

    output_root = Path(args.output_root or cfg.get("output_root", "outputs"))
    output_root.mkdir(parents=True, exist_ok=True)
    (output_root / "environment_report.json").write_text(json.dumps(env_report, indent=2))

    from resource_engine.scenario import run_scenario

    summary = run_scenario(cfg, output_root / "scenario", horizon_h=args.horizon_h)
    conflicts = json.loads((output_root / "scenario" / "conflicts.json").read_text())
    issues = collect_pipeline_issues(dict(summary, conflicts=conflicts.get("resource", [])))
    summary["pipeline_issues"] = issues

    (output_root / "run_summary.json").write_text(json.dumps(summary, indent=2, default=str))
    (output_root / "pipeline_issues.json").write_text(json.dumps({"issues": issues}, indent=2))
    bundle_path = create_results_bundle(output_root)

    for issue in issues:
        logger.warning("Pipeline issue: %s", issue)
    if args.strict and issues:
        raise RuntimeError("Strict mode failed: " + "; ".join(issues))

    print("Run complete.")
    print(f"Outputs: {output_root.resolve()}")
    print(f"Results bundle: {bundle_path.resolve()}")


if __name__ == "__main__":
    main()
