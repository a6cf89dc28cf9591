from __future__ import annotations

import csv
import sys
import tempfile
import textwrap
import unittest
from pathlib import Path
from unittest.mock import patch

from boreas.config import OptimizationConfig
from boreas.errors import StagnationError
from boreas.evaluators import BaseEvaluator, PythonEvaluator, load_evaluator
from boreas.optimization import build_evaluator, run_optimization

OBJECTIVES_MODULE = textwrap.dedent(
    """
    from boreas.evaluators import BaseEvaluator

    def bowl(values, step_number=1):
        return {"cost": (values["x"] - 0.5) ** 2, "mass": values["x"] + step_number}

    def make_bowl(config):
        return bowl

    class Flat(BaseEvaluator):
        def _evaluate_impl(self, request, slot):
            return 1.0
    """
)

SIMULATION = textwrap.dedent(
    """
    with open("input.txt") as fh:
        x = float(fh.read().split("=")[1])
    with open("output.txt", "w") as fh:
        fh.write("cost = %r\\n" % ((x - 0.5) ** 2))
    """
)


class LoadEvaluatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / "boreas_test_objectives.py").write_text(OBJECTIVES_MODULE, encoding="utf-8")
        self._path = patch.object(sys, "path", [str(self.root), *sys.path])
        self._path.start()

    def tearDown(self) -> None:
        self._path.stop()
        sys.modules.pop("boreas_test_objectives", None)
        self._tmp.cleanup()

    def test_plain_function(self) -> None:
        evaluator = load_evaluator({"module": "boreas_test_objectives", "callable": "bowl"}, ["cost", "mass"])
        self.assertIsInstance(evaluator, PythonEvaluator)
        self.assertEqual(evaluator.evaluate({"x": 1.5}, step_number=3), {"cost": 1.0, "mass": 4.5})

    def test_factory(self) -> None:
        evaluator = load_evaluator(
            {"module": "boreas_test_objectives", "callable": "make_bowl", "factory": True}, ["cost"]
        )
        self.assertEqual(evaluator.evaluate({"x": 0.5})["cost"], 0.0)

    def test_evaluator_class(self) -> None:
        evaluator = load_evaluator({"module": "boreas_test_objectives", "callable": "Flat"}, ["cost"])
        self.assertIsInstance(evaluator, BaseEvaluator)
        self.assertEqual(evaluator.evaluate({"x": 0.0}), {"cost": 1.0})

    def test_missing_objective_is_an_error(self) -> None:
        evaluator = load_evaluator({"module": "boreas_test_objectives", "callable": "bowl"}, ["energy"])
        with self.assertRaises(Exception) as ctx:
            evaluator.evaluate({"x": 0.0})
        self.assertIn("energy", str(ctx.exception))


class RunOptimizationTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / "boreas_test_objectives.py").write_text(OBJECTIVES_MODULE, encoding="utf-8")
        self._path = patch.object(sys, "path", [str(self.root), *sys.path])
        self._path.start()

    def tearDown(self) -> None:
        self._path.stop()
        sys.modules.pop("boreas_test_objectives", None)
        self._tmp.cleanup()

    def _config(self, evaluator: dict, objectives: list[str], algorithm: dict | None = None, **settings) -> dict:
        data = {
            "metadata": {"name": "integration"},
            "parameters": {
                "continuous": {"x": {"initial": 0.0, "step": 0.25, "minimum": -1.0, "maximum": 1.0}},
            },
            "objectives": objectives,
            "evaluator": evaluator,
            "optimization": {"workers": 2, **settings},
            "algorithm": algorithm or {"main": "gps_coordinate_search", "max_step_reductions": 2},
            "artifacts": {
                "run_root": str(self.root / "run"),
                "log_file": str(self.root / "run" / "log.csv"),
            },
        }
        return OptimizationConfig.model_validate(data).model_dump(mode="python")

    def test_python_evaluator_run(self) -> None:
        config = self._config(
            {"module": "boreas_test_objectives", "callable": "bowl"}, ["cost", "mass"], max_iterations=100
        )
        result = run_optimization(config)

        self.assertEqual(result.return_code, 1)
        self.assertEqual(result.best_parameters, {"x": 0.5})
        self.assertEqual(result.best_objectives["cost"], 0.0)
        with (self.root / "run" / "log.csv").open(encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))
        self.assertEqual(rows[0]["comment"], "Initial point.")
        self.assertIn("f_mass", rows[0])
        self.assertTrue((self.root / "run" / "main.csv").exists())
        self.assertTrue((self.root / "run" / "minimum.csv").exists())

    def test_simulation_evaluator_run(self) -> None:
        script = self.root / "simulate.py"
        script.write_text(SIMULATION, encoding="utf-8")
        template = self.root / "input.template"
        template.write_text("x = %x%\n", encoding="utf-8")
        config = self._config(
            {
                "kind": "simulation",
                "command": [sys.executable, str(script)],
                "input_templates": [{"template": str(template), "destination": "input.txt"}],
                "output": [{"name": "cost", "file": "output.txt", "delimiter": "cost ="}],
            },
            ["cost"],
        )
        result = run_optimization(config)

        self.assertEqual(result.return_code, 1)
        self.assertAlmostEqual(result.best_parameters["x"], 0.5)
        self.assertTrue((self.root / "run" / "work" / "worker-0").is_dir())

    def test_parametric_run_logs_every_point(self) -> None:
        config = self._config(
            {"module": "boreas_test_objectives", "callable": "bowl"},
            ["cost", "mass"],
            algorithm={"main": "parametric", "intervals": {"x": 4}},
        )
        result = run_optimization(config)

        self.assertEqual(result.return_code, 4)
        self.assertEqual(result.best_parameters, {"x": 0.5})
        with (self.root / "run" / "main.csv").open(encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))
        self.assertEqual([row["x"] for row in rows], ["-1.0", "-0.5", "0.0", "0.5", "1.0"])
        self.assertEqual({row["comment"] for row in rows}, {"Function evaluation successful."})

    def test_stagnation_stops_the_run(self) -> None:
        config = self._config(
            {"module": "boreas_test_objectives", "callable": "Flat"}, ["cost"], max_equal_results=3
        )
        with self.assertRaises(StagnationError):
            run_optimization(config)

    def test_build_evaluator_defaults_working_root(self) -> None:
        config = self._config(
            {
                "kind": "simulation",
                "command": "solver",
                "output": [{"name": "cost", "file": "out.txt"}],
            },
            ["cost"],
        )
        evaluator = build_evaluator(config["evaluator"], ["cost"], working_root=self.root / "work")
        self.assertEqual(evaluator.working_root, self.root / "work")
        self.assertEqual(evaluator.objective_names, ["cost"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
