from __future__ import annotations

import math
import sys
import tempfile
import threading
import time
import unittest
from pathlib import Path

from boreas.context import SearchContext
from boreas.dispatcher import EvaluationDispatcher
from boreas.errors import EvaluationError, NonFiniteObjectiveError, StagnationError, UserAbort
from boreas.evaluators import ObjectiveLocation, PythonEvaluator, SimulationEvaluator
from boreas.point import Point
from boreas.stagnation import StagnationDetector


class _CountingObjective:
    """Squares ``x0`` and records every call."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[float] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, values):
        with self._lock:
            self.calls.append(values["x0"])
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            return values["x0"] ** 2
        finally:
            with self._lock:
                self.active -= 1


def _points(*values: float) -> list[Point]:
    return [Point(x=(value,)) for value in values]


class EvaluationDispatcherTests(unittest.TestCase):
    def test_each_location_evaluated_once(self) -> None:
        objective = _CountingObjective()
        with EvaluationDispatcher(
            PythonEvaluator(objective, ["f"]), context=SearchContext(), workers=3
        ) as dispatcher:
            results = dispatcher.evaluate_all(_points(0, 1, 2, 3, 4, 1, 0, 4))
            again = dispatcher.evaluate_all(_points(2, 3))

        self.assertEqual(dispatcher.invocations, 5)
        self.assertEqual(sorted(objective.calls), [0.0, 1.0, 2.0, 3.0, 4.0])
        self.assertEqual([point.objective for point in results], [0, 1, 4, 9, 16, 1, 0, 16])
        self.assertEqual(results[1].simulation_number, results[5].simulation_number)
        self.assertEqual([point.objective for point in again], [4, 9])

    def test_simulation_numbers_are_unique(self) -> None:
        with EvaluationDispatcher(
            PythonEvaluator(_CountingObjective(), ["f"]), context=SearchContext(), workers=4
        ) as dispatcher:
            results = dispatcher.evaluate_all(_points(*range(12)))
        numbers = sorted(point.simulation_number for point in results)
        self.assertEqual(numbers, list(range(1, 13)))

    def test_concurrency_is_bounded(self) -> None:
        objective = _CountingObjective(delay=0.05)
        with EvaluationDispatcher(
            PythonEvaluator(objective, ["f"]), context=SearchContext(), workers=2
        ) as dispatcher:
            dispatcher.evaluate_all(_points(*range(6)))
        self.assertLessEqual(objective.max_active, 2)

    def test_step_number_is_part_of_the_key(self) -> None:
        objective = _CountingObjective()
        context = SearchContext(use_step_number=True)
        with EvaluationDispatcher(PythonEvaluator(objective, ["f"]), context=context) as dispatcher:
            dispatcher.evaluate(Point(x=(1.0,), step_number=1))
            dispatcher.evaluate(Point(x=(1.0,), step_number=2))
            dispatcher.evaluate(Point(x=(1.0,), step_number=2))
        self.assertEqual(dispatcher.invocations, 2)

    def test_abort_stops_dispatching(self) -> None:
        calls: list[float] = []

        def objective(values):
            calls.append(values["x0"])
            if len(calls) == 3:
                dispatcher.abort()
            return values["x0"]

        dispatcher = EvaluationDispatcher(
            PythonEvaluator(objective, ["f"]), context=SearchContext(), workers=1
        )
        try:
            with self.assertRaises(UserAbort):
                dispatcher.evaluate_all(_points(*range(10)))
            self.assertEqual(dispatcher.invocations, 3)
            self.assertEqual(len(calls), 3)
            with self.assertRaises(UserAbort):
                dispatcher.evaluate_all(_points(42))
            self.assertEqual(len(calls), 3)
        finally:
            dispatcher.close()

    def test_failure_propagates(self) -> None:
        def objective(values):
            if values["x0"] == 2:
                raise RuntimeError("solver diverged")
            return values["x0"]

        with EvaluationDispatcher(
            PythonEvaluator(objective, ["f"]), context=SearchContext(), workers=2
        ) as dispatcher:
            with self.assertRaises(EvaluationError) as ctx:
                dispatcher.evaluate_all(_points(0, 1, 2, 3))
        self.assertIn("solver diverged", str(ctx.exception))

    def test_non_finite_values(self) -> None:
        with EvaluationDispatcher(
            PythonEvaluator(lambda values: math.nan, ["f"]), context=SearchContext()
        ) as dispatcher:
            with self.assertRaises(NonFiniteObjectiveError):
                dispatcher.evaluate(Point(x=(0.0,)))

        with EvaluationDispatcher(
            PythonEvaluator(lambda values: math.nan, ["f"], nan_policy="coerce_to_inf"),
            context=SearchContext(),
        ) as dispatcher:
            self.assertEqual(dispatcher.evaluate(Point(x=(0.0,))).objective, math.inf)

    def test_stagnation_is_detected(self) -> None:
        with EvaluationDispatcher(
            PythonEvaluator(lambda values: 7.0, ["f"]),
            context=SearchContext(),
            stagnation=StagnationDetector(2),
        ) as dispatcher:
            dispatcher.evaluate(Point(x=(0.0,)))
            dispatcher.evaluate(Point(x=(1.0,)))
            with self.assertRaises(StagnationError):
                dispatcher.evaluate(Point(x=(2.0,)))


class SimulationCancellationTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_abort_kills_running_process(self) -> None:
        script = self.root / "sleeper.py"
        script.write_text("import time\ntime.sleep(30)\n", encoding="utf-8")
        evaluator = SimulationEvaluator(
            [sys.executable, str(script)],
            [ObjectiveLocation(name="f", file="result.txt")],
        )
        dispatcher = EvaluationDispatcher(
            evaluator, context=SearchContext(), workers=1, working_root=self.root / "work"
        )
        errors: list[BaseException] = []

        def run() -> None:
            try:
                dispatcher.evaluate(Point(x=(0.0,)))
            except BaseException as exc:  # noqa: BLE001 - collected for the assertion
                errors.append(exc)

        start = time.monotonic()
        thread = threading.Thread(target=run)
        thread.start()
        time.sleep(0.5)
        dispatcher.abort()
        thread.join(timeout=10.0)
        dispatcher.close()

        self.assertFalse(thread.is_alive())
        self.assertLess(time.monotonic() - start, 10.0)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], UserAbort)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
