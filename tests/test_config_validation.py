from __future__ import annotations

import unittest

from boreas.algorithms import (
    GridAlgorithm,
    HybridAlgorithm,
    LineSearchAlgorithm,
    ParticleSwarmAlgorithm,
    PatternSearchAlgorithm,
)
from boreas.config import OptimizationConfig, ValidationError
from boreas.context import CoordinateSpace
from boreas.linesearch import Fibonacci
from boreas.optimization import build_algorithm, build_parameters
from boreas.pattern_search import HookeJeeves


def make_base_config() -> dict:
    return {
        "metadata": {
            "name": "experiment",
            "description": "example",
        },
        "parameters": {
            "continuous": {
                "x": {"initial": 0.5, "step": 0.1, "minimum": 0.0, "maximum": 1.0},
                "y": {"initial": 1.0, "step": 0.5},
            },
        },
        "objectives": ["cost"],
        "evaluator": {
            "module": "objectives",
            "callable": "bowl",
        },
        "optimization": {"max_iterations": 50, "seed": 3},
        "algorithm": {
            "main": "gps_hooke_jeeves",
            "max_step_reductions": 3,
        },
    }


class OptimizationConfigValidationTests(unittest.TestCase):
    def test_valid_configuration_passes(self) -> None:
        config = OptimizationConfig.model_validate(make_base_config())
        self.assertEqual(config.algorithm.main, "gps_hooke_jeeves")
        self.assertEqual(config.optimization.workers, 1)
        self.assertIsNone(config.artifacts)

    def test_main_is_normalised(self) -> None:
        data = make_base_config()
        data["algorithm"]["main"] = "  GPS_Coordinate_Search "
        config = OptimizationConfig.model_validate(data)
        self.assertEqual(config.algorithm.main, "gps_coordinate_search")

    def test_unknown_algorithm_rejected(self) -> None:
        data = make_base_config()
        data["algorithm"]["main"] = "simplex"
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

    def test_unknown_keys_rejected(self) -> None:
        data = make_base_config()
        data["algorithm"]["mesh_divider"] = 2
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

    def test_initial_value_outside_bounds(self) -> None:
        data = make_base_config()
        data["parameters"]["continuous"]["x"]["initial"] = 2.0
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

    def test_duplicate_parameter_names(self) -> None:
        data = make_base_config()
        data["parameters"]["discrete"] = {"x": {"values": [1, 2]}}
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

    def test_objectives_must_be_unique(self) -> None:
        data = make_base_config()
        data["objectives"] = ["cost", "Cost"]
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

    def test_swarm_requires_bounds(self) -> None:
        data = make_base_config()
        data["algorithm"] = {"main": "pso_cc"}
        with self.assertRaises(ValidationError) as ctx:
            OptimizationConfig.model_validate(data)
        self.assertIn("parameters.continuous.y", str(ctx.exception))

    def test_multi_start_requires_bounds(self) -> None:
        data = make_base_config()
        data["algorithm"]["number_of_initial_points"] = 3
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

    def test_keys_of_other_algorithms_rejected(self) -> None:
        data = make_base_config()
        del data["parameters"]["continuous"]["y"]
        data["algorithm"] = {"main": "golden_section", "particles": 20}
        with self.assertRaises(ValidationError) as ctx:
            OptimizationConfig.model_validate(data)
        self.assertIn("algorithm.particles is not used by algorithm 'golden_section'", str(ctx.exception))

        data["algorithm"] = {"main": "pso_cc", "forcing": {"phi": "%Delta%"}}
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

    def test_dumped_configuration_validates_again(self) -> None:
        data = make_base_config()
        data["parameters"]["continuous"]["y"].update({"minimum": -5.0, "maximum": 5.0})
        data["algorithm"] = {"main": "pso_cc_mesh", "particles": 6, "max_step_reductions": 2}
        dumped = OptimizationConfig.model_validate(data).model_dump(mode="python")
        again = OptimizationConfig.model_validate(dumped)
        self.assertEqual(again.algorithm.particles, 6)

    def test_grid_runs_require_bounds_and_known_intervals(self) -> None:
        data = make_base_config()
        data["algorithm"] = {"main": "parametric", "intervals": {"x": 4}}
        with self.assertRaises(ValidationError) as ctx:
            OptimizationConfig.model_validate(data)
        self.assertIn("parameters.continuous.y", str(ctx.exception))

        data["parameters"]["continuous"]["y"].update({"minimum": -5.0, "maximum": 5.0})
        config = OptimizationConfig.model_validate(data)
        self.assertEqual(config.algorithm.intervals, {"x": 4})

        data["algorithm"]["intervals"] = {"z": 4}
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

    def test_logarithmic_intervals(self) -> None:
        data = make_base_config()
        data["parameters"]["continuous"]["y"].update({"minimum": 1.0, "maximum": 5.0})
        data["algorithm"] = {"main": "mesh", "intervals": {"y": -2}}
        OptimizationConfig.model_validate(data)

        data["algorithm"]["intervals"] = {"x": -2}
        with self.assertRaises(ValidationError) as ctx:
            OptimizationConfig.model_validate(data)
        self.assertIn("positive minimum", str(ctx.exception))

        data["algorithm"] = {"main": "equidistant_mesh", "intervals": {"y": -2}}
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

    def test_line_search_requires_single_parameter(self) -> None:
        data = make_base_config()
        data["algorithm"] = {"main": "golden_section"}
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

        del data["parameters"]["continuous"]["y"]
        config = OptimizationConfig.model_validate(data)
        self.assertEqual(config.algorithm.main, "golden_section")

    def test_fibonacci_rejects_abs_df_min(self) -> None:
        data = make_base_config()
        del data["parameters"]["continuous"]["y"]
        data["algorithm"] = {"main": "fibonacci", "abs_df_min": 0.01}
        with self.assertRaises(ValidationError) as ctx:
            OptimizationConfig.model_validate(data)
        self.assertIn("fibonacci", str(ctx.exception))

    def test_line_search_stopping_rules_are_exclusive(self) -> None:
        data = make_base_config()
        del data["parameters"]["continuous"]["y"]
        data["algorithm"] = {"main": "golden_section", "max_reductions": 5, "uncertainty_interval": 0.1}
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

    def test_forcing_alpha_range(self) -> None:
        data = make_base_config()
        data["algorithm"]["forcing"] = {"phi": "%Delta%", "alpha": 1.0}
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

    def test_simulation_evaluator_requires_outputs_in_order(self) -> None:
        data = make_base_config()
        data["objectives"] = ["cost", "mass"]
        data["evaluator"] = {
            "kind": "simulation",
            "command": "solver input.txt",
            "output": [
                {"name": "mass", "file": "out.txt", "delimiter": "mass ="},
                {"name": "cost", "file": "out.txt", "delimiter": "cost ="},
            ],
        }
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

        data["evaluator"]["output"].reverse()
        config = OptimizationConfig.model_validate(data)
        self.assertEqual([output.name for output in config.evaluator.output], ["cost", "mass"])

    def test_python_evaluator_requires_module(self) -> None:
        data = make_base_config()
        data["evaluator"] = {"callable": "bowl"}
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)

    def test_workers_must_be_positive(self) -> None:
        data = make_base_config()
        data["optimization"]["workers"] = 0
        with self.assertRaises(ValidationError):
            OptimizationConfig.model_validate(data)


class BuildAlgorithmTests(unittest.TestCase):
    def _config(self, **algorithm) -> dict:
        data = make_base_config()
        data["parameters"]["continuous"]["y"].update({"minimum": -5.0, "maximum": 5.0})
        data["algorithm"] = algorithm
        return OptimizationConfig.model_validate(data).model_dump(mode="python")

    def test_pattern_search(self) -> None:
        config = self._config(main="gps_hooke_jeeves", space="transformed", max_step_reductions=6)
        algorithm = build_algorithm(config["algorithm"])
        self.assertIsInstance(algorithm, PatternSearchAlgorithm)
        self.assertIsInstance(algorithm.strategy, HookeJeeves)
        self.assertIs(algorithm.space, CoordinateSpace.TRANSFORMED)
        self.assertEqual(algorithm.mesh.max_step_reductions, 6)
        self.assertIsNone(algorithm.multi_start)

    def test_multi_start(self) -> None:
        config = self._config(main="gps_coordinate_search", number_of_initial_points=4, seed=9)
        algorithm = build_algorithm(config["algorithm"])
        self.assertEqual(algorithm.multi_start.number_of_initial_points, 4)
        self.assertEqual(algorithm.multi_start.seed, 9)

    def test_swarm_variants(self) -> None:
        plain = build_algorithm(self._config(main="pso_cc", topology="lbest")["algorithm"])
        self.assertIsInstance(plain, ParticleSwarmAlgorithm)
        self.assertIsNone(plain.mesh)
        self.assertEqual(plain.swarm.topology.value, "lbest")

        meshed = build_algorithm(self._config(main="pso_cc_mesh")["algorithm"])
        self.assertIsNotNone(meshed.mesh)

        hybrid = build_algorithm(
            self._config(main="gps_pso_cc_hj", forcing={"phi": "multiply(%Delta%, %Delta%)"})["algorithm"]
        )
        self.assertIsInstance(hybrid, HybridAlgorithm)
        self.assertEqual(hybrid.forcing.expression.source, "multiply(%Delta%, %Delta%)")

    def test_line_search(self) -> None:
        data = make_base_config()
        del data["parameters"]["continuous"]["y"]
        data["algorithm"] = {"main": "fibonacci", "max_reductions": 12}
        config = OptimizationConfig.model_validate(data).model_dump(mode="python")
        algorithm = build_algorithm(config["algorithm"])
        self.assertIsInstance(algorithm, LineSearchAlgorithm)
        self.assertIsInstance(algorithm.reduction, Fibonacci)
        self.assertEqual(algorithm.max_reductions, 12)

    def test_grid_runs(self) -> None:
        algorithm = build_algorithm(self._config(main="equidistant_mesh", intervals={"x": 3})["algorithm"])
        self.assertIsInstance(algorithm, GridAlgorithm)
        self.assertEqual(algorithm.layout, "equidistant_mesh")
        self.assertEqual(algorithm.intervals, {"x": 3})

    def test_build_parameters(self) -> None:
        data = make_base_config()
        del data["parameters"]["continuous"]["y"]
        data["parameters"]["discrete"] = {"n": {"values": [1, 2, 4], "initial_index": 2}}
        data["algorithm"] = {"main": "pso_cc"}
        config = OptimizationConfig.model_validate(data).model_dump(mode="python")
        parameters = build_parameters(config["parameters"])
        self.assertEqual(parameters.names, ["x", "n"])
        self.assertEqual(parameters.discrete[0].value(parameters.discrete[0].initial_index), 4)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
