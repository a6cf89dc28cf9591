from __future__ import annotations

import unittest

from boreas.algorithms import GridAlgorithm
from boreas.driver import IterationDriver
from boreas.errors import ConfigurationError
from boreas.evaluators import PythonEvaluator
from boreas.parameters import ContinuousParameter, DiscreteParameter, ParameterSet
from boreas.parametric import (
    ALL_POINTS_EVALUATED,
    ALREADY_EVALUATED,
    BUDGET_EXHAUSTED,
    EVALUATED,
    spacing,
)
from boreas.results import MemoryReporter


def _sum(values):
    return values["x"] + values["y"] ** 2 + values.get("n", 0)


def _parameters(discrete: bool = True) -> ParameterSet:
    return ParameterSet(
        continuous=[
            ContinuousParameter("x", initial=0.5, step=0.1, minimum=0.0, maximum=1.0),
            ContinuousParameter("y", initial=0.0, step=0.1, minimum=-1.0, maximum=1.0),
        ],
        discrete=[DiscreteParameter("n", values=(1, 2, 3))] if discrete else [],
    )


class SpacingTests(unittest.TestCase):
    def test_linear(self) -> None:
        self.assertEqual(spacing(4, 0.0, 1.0), [0.0, 0.25, 0.5, 0.75, 1.0])

    def test_logarithmic(self) -> None:
        values = spacing(-2, 1.0, 100.0)
        self.assertEqual(len(values), 3)
        for value, expected in zip(values, [1.0, 10.0, 100.0]):
            self.assertAlmostEqual(value, expected)

    def test_zero_intervals_keep_lower_bound(self) -> None:
        self.assertEqual(spacing(0, 2.0, 3.0), [2.0])

    def test_logarithmic_needs_positive_bounds(self) -> None:
        with self.assertRaises(ConfigurationError):
            spacing(-3, 0.0, 1.0)


class GridRunTests(unittest.TestCase):
    def _run(self, algorithm: GridAlgorithm, parameters: ParameterSet | None = None, **kwargs):
        reporter = MemoryReporter()
        driver = IterationDriver(
            parameters or _parameters(),
            PythonEvaluator(_sum, ["f"]),
            reporters=[reporter],
            **kwargs,
        )
        with driver:
            result = driver.run(algorithm)
        return result, reporter

    def test_parametric_varies_one_parameter_at_a_time(self) -> None:
        result, reporter = self._run(GridAlgorithm("parametric", {"x": 2}))

        main = [record for record in reporter.records if record.main]
        self.assertEqual(
            [(record.parameters["x"], record.parameters["y"], record.parameters["n"]) for record in main],
            [(0.0, 0.0, 1), (0.5, 0.0, 1), (1.0, 0.0, 1), (0.5, 0.0, 1), (0.5, 0.0, 2), (0.5, 0.0, 3)],
        )
        self.assertEqual(
            [record.comment for record in main],
            [EVALUATED, EVALUATED, EVALUATED, ALREADY_EVALUATED, EVALUATED, EVALUATED],
        )
        self.assertEqual(len(reporter.records), 2 * len(main))
        self.assertEqual(result.return_code, ALL_POINTS_EVALUATED)
        self.assertEqual(result.simulations, 5)
        self.assertEqual(result.best_parameters, {"x": 0.0, "y": 0.0, "n": 1})
        self.assertEqual(len(reporter.minima), 1)

    def test_mesh_crosses_all_axes(self) -> None:
        result, reporter = self._run(GridAlgorithm("mesh", {"x": 1}))

        main = [record for record in reporter.records if record.main]
        self.assertEqual(
            [(record.parameters["x"], record.parameters["n"]) for record in main],
            [(0.0, 1), (0.0, 2), (0.0, 3), (1.0, 1), (1.0, 2), (1.0, 3)],
        )
        self.assertTrue(all(record.parameters["y"] == 0.0 for record in main))
        self.assertEqual(result.return_code, ALL_POINTS_EVALUATED)
        self.assertEqual(result.simulations, 6)
        self.assertEqual(result.best_objectives, {"f": 1.0})

    def test_equidistant_mesh_pins_unspaced_parameters_to_minimum(self) -> None:
        result, reporter = self._run(
            GridAlgorithm("equidistant_mesh", {"x": 2}), parameters=_parameters(discrete=False)
        )

        main = [record for record in reporter.records if record.main]
        self.assertEqual([record.parameters["x"] for record in main], [0.0, 0.5, 1.0])
        self.assertTrue(all(record.parameters["y"] == -1.0 for record in main))
        self.assertEqual(result.return_code, ALL_POINTS_EVALUATED)

    def test_equidistant_mesh_rejects_discrete_parameters(self) -> None:
        with self.assertRaises(ConfigurationError):
            self._run(GridAlgorithm("equidistant_mesh", {"x": 2}))

    def test_budget_stops_the_mesh(self) -> None:
        result, reporter = self._run(GridAlgorithm("mesh", {"x": 4}), max_iterations=2)

        self.assertEqual(result.return_code, BUDGET_EXHAUSTED)
        self.assertEqual(result.simulations, 2)
        self.assertEqual(len([record for record in reporter.records if record.main]), 2)

    def test_unbounded_parameter_is_rejected(self) -> None:
        parameters = ParameterSet(continuous=[ContinuousParameter("x", initial=0.0, step=1.0)])
        with self.assertRaises(ConfigurationError):
            self._run(GridAlgorithm("parametric", {"x": 2}), parameters=parameters)

    def test_logarithmic_sweep_needs_positive_minimum(self) -> None:
        with self.assertRaises(ConfigurationError):
            self._run(GridAlgorithm("parametric", {"x": -2}))

    def test_intervals_for_unknown_parameters_are_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            self._run(GridAlgorithm("parametric", {"z": 2}))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
