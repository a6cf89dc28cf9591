"""Utilities for managing run directories and experiment metadata."""
from __future__ import annotations

import json
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, MutableMapping

import yaml

from .config import OptimizationConfig


@dataclass(frozen=True)
class RunArtifacts:
    """Paths produced for a concrete optimization run."""

    run_id: str
    run_dir: Path
    config_original: Path
    config_resolved: Path
    log_path: Path
    main_log_path: Path
    minimum_log_path: Path
    meta_path: Path


def prepare_run_environment(
    config_model: OptimizationConfig,
    *,
    config_source: Path | None = None,
    runs_root: Path | None = None,
) -> tuple[Dict[str, Any], RunArtifacts]:
    """Prepare a run directory and point every result log into it."""

    config_dict: MutableMapping[str, Any] = config_model.model_dump(mode="python")
    artifacts_cfg = dict(config_dict.get("artifacts") or {})
    config_dict["artifacts"] = artifacts_cfg

    metadata = config_dict.get("metadata") or {}
    base_name = _slugify(str(metadata.get("name", "run")))
    base_runs_dir = runs_root or Path("runs")

    run_root_value = artifacts_cfg.get("run_root")
    if run_root_value:
        run_dir = Path(run_root_value)
    else:
        _, run_dir = _allocate_run_directory(base_runs_dir, base_name)
        artifacts_cfg["run_root"] = str(run_dir)

    artifacts_cfg["log_file"] = str(run_dir / "log.csv")
    artifacts_cfg["main_log_file"] = str(run_dir / "main.csv")
    artifacts_cfg["minimum_log_file"] = str(run_dir / "minimum.csv")

    # Revalidate so the stored configuration is the one that will run.
    final_model = OptimizationConfig.model_validate(config_dict)
    final_config = final_model.model_dump(mode="python")

    artifacts = _write_run_metadata(final_model, config_source=config_source, run_dir=run_dir)
    return final_config, artifacts


def _slugify(value: str) -> str:
    cleaned = value.strip().lower()
    cleaned = re.sub(r"[^a-z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-")
    return cleaned or "run"


def _allocate_run_directory(base_dir: Path, base_name: str) -> tuple[str, Path]:
    base_dir.mkdir(parents=True, exist_ok=True)
    candidate = base_name or "run"
    run_dir = base_dir / candidate
    counter = 2
    while run_dir.exists():
        candidate = f"{base_name}-{counter:02d}"
        run_dir = base_dir / candidate
        counter += 1
    return candidate, run_dir


def _write_run_metadata(
    model: OptimizationConfig,
    *,
    config_source: Path | None,
    run_dir: Path,
) -> RunArtifacts:
    run_dir.mkdir(parents=True, exist_ok=True)
    artifacts = model.artifacts
    assert artifacts is not None
    log_path = Path(artifacts.log_file)
    main_log_path = Path(artifacts.main_log_file or run_dir / "main.csv")
    minimum_log_path = Path(artifacts.minimum_log_file or run_dir / "minimum.csv")

    original_path = run_dir / "config_original.yaml"
    if config_source and config_source.exists():
        shutil.copyfile(config_source, original_path)
    else:
        with original_path.open("w", encoding="utf-8") as fh:
            yaml.safe_dump(
                model.model_dump(mode="python"),
                fh,
                allow_unicode=True,
                sort_keys=False,
            )

    resolved_path = run_dir / "config_resolved.json"
    with resolved_path.open("w", encoding="utf-8") as fh:
        json.dump(model.model_dump(mode="json"), fh, indent=2, ensure_ascii=False)

    created_at = datetime.now(timezone.utc)
    meta: Dict[str, Any] = {
        "run_id": run_dir.name or run_dir.as_posix(),
        "run_dir": str(run_dir),
        "created_at": created_at.isoformat(),
        "metadata": model.metadata.model_dump(mode="json"),
        "algorithm": model.algorithm.main,
        "objectives": list(model.objectives),
        "seed": model.optimization.seed,
        "artifacts": {
            "config_original": str(original_path),
            "config_resolved": str(resolved_path),
            "log": str(log_path),
            "main_log": str(main_log_path),
            "minimum_log": str(minimum_log_path),
        },
        "source": {"config_path": str(config_source) if config_source else None},
    }

    meta_path = run_dir / "meta.json"
    with meta_path.open("w", encoding="utf-8") as fh:
        json.dump(meta, fh, indent=2, ensure_ascii=False)

    return RunArtifacts(
        run_id=run_dir.name or run_dir.as_posix(),
        run_dir=run_dir,
        config_original=original_path,
        config_resolved=resolved_path,
        log_path=log_path,
        main_log_path=main_log_path,
        minimum_log_path=minimum_log_path,
        meta_path=meta_path,
    )


__all__ = ["RunArtifacts", "prepare_run_environment"]
