from __future__ import annotations

import unittest

from boreas.algorithms import LineSearchAlgorithm
from boreas.driver import IterationDriver
from boreas.errors import ConfigurationError, FlatObjectiveError
from boreas.evaluators import PythonEvaluator
from boreas.linesearch import (
    BUDGET_EXHAUSTED,
    CONVERGED,
    NULL_SPACE,
    Fibonacci,
    GoldenSection,
    IntervalDivider,
    fibonacci_numbers,
)
from boreas.parameters import ContinuousParameter, DiscreteParameter, ParameterSet
from boreas.point import Point
from boreas.results import MemoryReporter


def _quadratic(values):
    return (values["t"] - 0.37) ** 2


def _constant(values):
    return 1.0


def _driver(function, **kwargs) -> IterationDriver:
    parameters = ParameterSet(
        continuous=[ContinuousParameter("t", initial=0.5, step=0.1, minimum=0.0, maximum=1.0)]
    )
    return IterationDriver(parameters, PythonEvaluator(function, ["f"]), **kwargs)


class ReductionFactorTests(unittest.TestCase):
    def test_fibonacci_numbers(self) -> None:
        self.assertEqual(fibonacci_numbers(8), [1, 1, 2, 3, 5, 8, 13, 21])

    def test_golden_section_factor_is_constant(self) -> None:
        golden = GoldenSection()
        self.assertAlmostEqual(golden.factor(0, 9), 0.6180339887498949)
        self.assertEqual(golden.factor(0, 9), golden.factor(7, 9))

    def test_fibonacci_factor_shrinks_towards_half(self) -> None:
        fibonacci = Fibonacci()
        fibonacci.prepare(9)
        self.assertAlmostEqual(fibonacci.factor(0, 9), 89.0 / 144.0)
        self.assertAlmostEqual(fibonacci.factor(9, 9), 0.5)

    def test_reductions_for_uncertainty_interval(self) -> None:
        self.assertEqual(GoldenSection().reductions_for_interval(0.01), 11)
        self.assertGreater(Fibonacci().reductions_for_interval(0.01), 0)


class IntervalDividerTests(unittest.TestCase):
    def test_golden_section_brackets_minimum(self) -> None:
        with _driver(_quadratic) as driver:
            divider = IntervalDivider(driver, GoldenSection())
            divider.set_max_reductions(20)
            result = divider.run(Point(x=(0.0,)), Point(x=(1.0,)))

        self.assertEqual(result.code, CONVERGED)
        self.assertLess(abs(result.minimum.x[0] - 0.37), 1e-3)
        self.assertLessEqual(result.lower.x[0], result.minimum.x[0])
        self.assertLessEqual(result.minimum.x[0], result.upper.x[0])
        self.assertEqual(result.reductions, 19)

    def test_fibonacci_brackets_minimum(self) -> None:
        with _driver(_quadratic) as driver:
            divider = IntervalDivider(driver, Fibonacci())
            divider.set_max_reductions(20)
            result = divider.run(Point(x=(0.0,)), Point(x=(1.0,)))

        self.assertEqual(result.code, CONVERGED)
        self.assertLess(abs(result.minimum.x[0] - 0.37), 1e-3)

    def test_constant_function_is_null_space(self) -> None:
        with _driver(_constant) as driver:
            divider = IntervalDivider(driver, GoldenSection())
            result = divider.run(Point(x=(0.0,)), Point(x=(1.0,)))
        self.assertEqual(result.code, NULL_SPACE)

    def test_accuracy_mode_does_not_report_null_space(self) -> None:
        with _driver(_constant) as driver:
            divider = IntervalDivider(driver, GoldenSection())
            divider.set_abs_df_min(1e-6, 20)
            result = divider.run(Point(x=(0.0,)), Point(x=(1.0,)))
        self.assertNotEqual(result.code, NULL_SPACE)

    def test_fibonacci_rejects_accuracy_mode(self) -> None:
        with _driver(_quadratic) as driver:
            divider = IntervalDivider(driver, Fibonacci())
            with self.assertRaises(ConfigurationError):
                divider.set_abs_df_min(1e-3, 20)

    def test_uncertainty_interval_must_be_normalized(self) -> None:
        with _driver(_quadratic) as driver:
            divider = IntervalDivider(driver, GoldenSection())
            with self.assertRaises(ConfigurationError):
                divider.set_uncertainty_interval(1.5)


class FiniteIntervalSearchTests(unittest.TestCase):
    def test_run_reports_minimum_and_interval(self) -> None:
        reporter = MemoryReporter()
        with _driver(_quadratic, reporters=[reporter]) as driver:
            result = driver.run(LineSearchAlgorithm(GoldenSection(), max_reductions=20))

        self.assertEqual(result.return_code, CONVERGED)
        self.assertAlmostEqual(result.best_parameters["t"], 0.37, delta=1e-3)
        self.assertLess(result.details["uncertainty_length"], 1e-3)
        self.assertLessEqual(result.details["uncertainty_lower"], result.best_parameters["t"])
        self.assertEqual(reporter.main_iterations[-1].comment, "Minimum of line search.")
        self.assertEqual(len(reporter.minima), 1)
        self.assertEqual(len(reporter.sub_iterations), result.simulations)

    def test_constant_objective_raises(self) -> None:
        with _driver(_constant) as driver:
            with self.assertRaises(FlatObjectiveError):
                driver.run(LineSearchAlgorithm(GoldenSection()))

    def test_constant_objective_in_accuracy_mode(self) -> None:
        with _driver(_constant) as driver:
            result = driver.run(LineSearchAlgorithm(GoldenSection(), abs_df_min=1e-6))
        self.assertNotEqual(result.return_code, NULL_SPACE)

    def test_budget_exhaustion(self) -> None:
        with _driver(_quadratic, max_iterations=5) as driver:
            result = driver.run(LineSearchAlgorithm(GoldenSection(), max_reductions=20))
        self.assertEqual(result.return_code, BUDGET_EXHAUSTED)
        self.assertEqual(result.simulations, 5)

    def test_fibonacci_with_accuracy_is_configuration_error(self) -> None:
        with _driver(_quadratic) as driver:
            with self.assertRaises(ConfigurationError):
                driver.run(LineSearchAlgorithm(Fibonacci(), abs_df_min=1e-3))

    def test_requires_single_bounded_parameter(self) -> None:
        parameters = ParameterSet(
            continuous=[ContinuousParameter("t", initial=0.5, step=0.1, minimum=0.0)]
        )
        with IterationDriver(parameters, PythonEvaluator(_quadratic, ["f"])) as driver:
            with self.assertRaises(ConfigurationError):
                driver.run(LineSearchAlgorithm())

        parameters = ParameterSet(
            continuous=[ContinuousParameter("t", initial=0.5, step=0.1, minimum=0.0, maximum=1.0)],
            discrete=[DiscreteParameter("n", values=(1, 2))],
        )
        with IterationDriver(parameters, PythonEvaluator(_quadratic, ["f"])) as driver:
            with self.assertRaises(ConfigurationError):
                driver.run(LineSearchAlgorithm())


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
