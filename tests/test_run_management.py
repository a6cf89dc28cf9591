import json
import tempfile
import unittest
from pathlib import Path

import yaml

from boreas.config import OptimizationConfig
from boreas.run_management import RunArtifacts, prepare_run_environment


def _make_config() -> dict:
    return {
        "metadata": {"name": "Example Run", "description": "demo"},
        "parameters": {
            "continuous": {"x": {"initial": 0.0, "step": 0.5, "minimum": -1.0, "maximum": 1.0}},
        },
        "objectives": ["cost"],
        "evaluator": {"module": "objectives", "callable": "bowl"},
        "optimization": {"seed": 7},
        "algorithm": {"main": "gps_coordinate_search"},
    }


class PrepareRunEnvironmentTests(unittest.TestCase):
    def test_creates_standard_run_layout(self) -> None:
        base_config = OptimizationConfig.model_validate(_make_config())

        with tempfile.TemporaryDirectory() as tmpdir:
            tmp_path = Path(tmpdir)
            config_path = tmp_path / "config.yaml"
            config_path.write_text(yaml.safe_dump(_make_config()), encoding="utf-8")

            final_config, artifacts = prepare_run_environment(
                base_config,
                config_source=config_path,
                runs_root=tmp_path / "runs",
            )

            self.assertIsInstance(artifacts, RunArtifacts)
            self.assertEqual(artifacts.run_id, "example-run")
            self.assertTrue(artifacts.run_dir.exists())
            self.assertTrue(artifacts.config_original.exists())
            self.assertTrue(artifacts.config_resolved.exists())
            self.assertTrue(artifacts.meta_path.exists())

            self.assertEqual(artifacts.log_path, artifacts.run_dir / "log.csv")
            self.assertEqual(final_config["artifacts"]["log_file"], str(artifacts.run_dir / "log.csv"))
            self.assertEqual(final_config["artifacts"]["main_log_file"], str(artifacts.run_dir / "main.csv"))
            self.assertEqual(
                final_config["artifacts"]["minimum_log_file"], str(artifacts.run_dir / "minimum.csv")
            )
            self.assertEqual(final_config["artifacts"]["run_root"], str(artifacts.run_dir))

            self.assertEqual(
                artifacts.config_original.read_text(encoding="utf-8"),
                config_path.read_text(encoding="utf-8"),
            )
            resolved = json.loads(artifacts.config_resolved.read_text(encoding="utf-8"))
            self.assertEqual(resolved["artifacts"]["log_file"], str(artifacts.log_path))

            meta = json.loads(artifacts.meta_path.read_text(encoding="utf-8"))
            self.assertEqual(meta["run_id"], "example-run")
            self.assertEqual(meta["seed"], 7)
            self.assertEqual(meta["objectives"], ["cost"])
            self.assertEqual(meta["algorithm"], "gps_coordinate_search")
            self.assertEqual(meta["source"]["config_path"], str(config_path))

    def test_dumps_config_without_source(self) -> None:
        base_config = OptimizationConfig.model_validate(_make_config())

        with tempfile.TemporaryDirectory() as tmpdir:
            tmp_path = Path(tmpdir)
            _, artifacts = prepare_run_environment(base_config, runs_root=tmp_path / "runs")

            original = yaml.safe_load(artifacts.config_original.read_text(encoding="utf-8"))
            self.assertEqual(original["metadata"]["name"], "Example Run")
            meta = json.loads(artifacts.meta_path.read_text(encoding="utf-8"))
            self.assertIsNone(meta["source"]["config_path"])

    def test_run_directories_do_not_collide(self) -> None:
        base_config = OptimizationConfig.model_validate(_make_config())

        with tempfile.TemporaryDirectory() as tmpdir:
            runs_root = Path(tmpdir) / "runs"
            _, first = prepare_run_environment(base_config, runs_root=runs_root)
            _, second = prepare_run_environment(base_config, runs_root=runs_root)

            self.assertEqual(first.run_id, "example-run")
            self.assertEqual(second.run_id, "example-run-02")

    def test_explicit_run_root_is_respected(self) -> None:
        data = _make_config()
        with tempfile.TemporaryDirectory() as tmpdir:
            run_root = Path(tmpdir) / "custom"
            data["artifacts"] = {"run_root": str(run_root)}
            base_config = OptimizationConfig.model_validate(data)

            final_config, artifacts = prepare_run_environment(base_config, runs_root=Path(tmpdir) / "runs")

            self.assertEqual(artifacts.run_dir, run_root)
            self.assertEqual(final_config["artifacts"]["log_file"], str(run_root / "log.csv"))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
