"""Iteration driver shared by all search algorithm families."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Sequence

from .context import CoordinateSpace, SearchContext
from .dispatcher import EvaluationDispatcher
from .errors import BoreasError, UserAbort
from .evaluators.base import BaseEvaluator
from .parameters import ParameterSet
from .point import INFEASIBLE_VALUE, Point
from .results import EvaluationRecord, OptimizationResult, Reporter
from .stagnation import StagnationDetector

if TYPE_CHECKING:
    from .algorithms import SearchAlgorithm

logger = logging.getLogger(__name__)

_SIGNIFICANT_DIGITS = 12


def round_coordinate(value: float) -> float:
    """Round ``value`` to a fixed number of significant digits."""

    return float(f"{value:.{_SIGNIFICANT_DIGITS}g}")


class IterationDriver:
    """Bookkeeping shared by every algorithm.

    The driver owns the evaluation dispatcher, the iteration counters and the
    reporting hooks. Algorithms ask it to evaluate candidate points; it rounds
    the coordinates, short-circuits infeasible points, stamps the current step
    number and forwards the rest to the dispatcher.

    Parameters
    ----------
    parameters:
        Continuous and discrete parameters of the problem.
    evaluator:
        Objective function evaluator.
    context:
        Search context; a fresh unseeded context is created when omitted.
    workers:
        Maximum number of concurrent evaluations.
    max_iterations:
        Maximum number of simulations, or ``None`` for no limit.
    max_equal_results:
        Stagnation threshold; non-positive values disable the check.
    reporters:
        Receivers of the evaluation records.
    working_root:
        Root directory of the per-worker working directories.
    """

    def __init__(
        self,
        parameters: ParameterSet,
        evaluator: BaseEvaluator,
        *,
        context: SearchContext | None = None,
        workers: int = 1,
        max_iterations: int | None = None,
        max_equal_results: int = 0,
        reporters: Iterable[Reporter] = (),
        working_root: Path | None = None,
    ) -> None:
        self.parameters = parameters
        self.context = context or SearchContext()
        self.max_iterations = max_iterations
        self.reporters: List[Reporter] = list(reporters)
        self.space = CoordinateSpace.ORIGINAL
        self.stagnation = StagnationDetector(max_equal_results) if max_equal_results > 0 else None
        self.dispatcher = EvaluationDispatcher(
            evaluator,
            context=self.context,
            workers=workers,
            value_mapper=self.values_for,
            stagnation=self.stagnation,
            working_root=working_root,
        )
        self.objective_names = list(evaluator.objective_names)
        self._best: Point | None = None

    # ------------------------------------------------------------------
    # Coordinates
    # ------------------------------------------------------------------
    def set_space(self, space: CoordinateSpace | str) -> None:
        self.space = CoordinateSpace(space)

    @property
    def dimension_continuous(self) -> int:
        return self.parameters.dimension_continuous

    @property
    def dimension_discrete(self) -> int:
        return self.parameters.dimension_discrete

    def initial_point(self) -> Point:
        x = []
        for parameter in self.parameters.continuous:
            if self.space is CoordinateSpace.TRANSFORMED:
                x.append(parameter.to_transformed(parameter.initial))
            else:
                x.append(parameter.initial)
        indices = [parameter.initial_index for parameter in self.parameters.discrete]
        return Point(x=tuple(x), indices=tuple(indices), step_number=self.context.step_number)

    def step_sizes(self) -> List[float]:
        """Initial step sizes in the working space of the driver."""

        if self.space is CoordinateSpace.TRANSFORMED:
            return [parameter.transformed_step() for parameter in self.parameters.continuous]
        return [parameter.step for parameter in self.parameters.continuous]

    def original_coordinates(self, point: Point) -> List[float]:
        if self.space is CoordinateSpace.TRANSFORMED:
            return [
                parameter.to_original(value)
                for parameter, value in zip(self.parameters.continuous, point.x)
            ]
        return list(point.x)

    def values_for(self, point: Point) -> Dict[str, Any]:
        """Named original-space parameter values of ``point``."""

        values: Dict[str, Any] = {}
        for parameter, value in zip(self.parameters.continuous, self.original_coordinates(point)):
            values[parameter.name] = value
        for parameter, index in zip(self.parameters.discrete, point.indices):
            values[parameter.name] = parameter.value(index)
        return values

    def is_feasible(self, point: Point) -> bool:
        for parameter, index in zip(self.parameters.discrete, point.indices):
            if not 0 <= index <= parameter.max_index:
                return False
        if self.space is CoordinateSpace.TRANSFORMED:
            return True
        return all(
            parameter.is_feasible(value)
            for parameter, value in zip(self.parameters.continuous, point.x)
        )

    def round_point(self, point: Point) -> Point:
        rounded = tuple(round_coordinate(value) for value in point.x)
        if rounded == point.x:
            return point
        return point.with_x(rounded).with_comment(point.comment)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def evaluate(self, point: Point) -> Point:
        return self.evaluate_all([point])[0]

    def evaluate_all(self, points: Sequence[Point]) -> List[Point]:
        """Evaluate ``points`` and return them in the same order.

        Infeasible points receive :data:`INFEASIBLE_VALUE` for every objective
        without invoking the evaluator.
        """

        self.context.cancel_token.raise_if_cancelled()
        prepared = [
            self.round_point(point).with_step_number(self.context.step_number) for point in points
        ]
        results: List[Point | None] = [None] * len(prepared)
        feasible_positions: List[int] = []
        for position, point in enumerate(prepared):
            if self.is_feasible(point):
                feasible_positions.append(position)
            else:
                logger.debug("Infeasible point %s; skipping evaluation", point.x)
                results[position] = point.with_f((INFEASIBLE_VALUE,) * len(self.objective_names))

        if feasible_positions:
            evaluated = self.dispatcher.evaluate_all([prepared[i] for i in feasible_positions])
            for position, point in zip(feasible_positions, evaluated):
                results[position] = point
                self._update_best(point)
        return [point for point in results if point is not None]

    def increase_step_number(self, point: Point | None = None) -> Point | None:
        """Advance the step number and re-evaluate ``point`` at the new step number."""

        self.context.step_number += 1
        logger.info("Step number increased to %d", self.context.step_number)
        if point is None:
            return None
        return self.evaluate(point).with_comment(point.comment)

    def reset_step_number(self, step_number: int = 1) -> None:
        self.context.step_number = step_number

    def max_iterations_reached(self) -> bool:
        if self.max_iterations is None:
            return False
        return self.context.counters.simulations >= self.max_iterations

    def abort(self) -> None:
        self.dispatcher.abort()

    @property
    def best_point(self) -> Point | None:
        return self._best

    def _update_best(self, point: Point) -> None:
        if point.is_infeasible:
            return
        if self._best is None or point.objective < self._best.objective:
            self._best = point

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def report(self, point: Point, main: bool = False) -> None:
        """Forward ``point`` to the reporters as a sub or main iteration."""

        if point.f is None or point.is_infeasible:
            return
        counters = self.context.counters
        if main:
            counters.main_iteration += 1
        else:
            counters.sub_iteration += 1
        record = self._record(point, main=main)
        for reporter in self.reporters:
            reporter.report(record)

    def report_minimum(self, point: Point | None = None) -> None:
        best = point or self._best
        if best is None or best.f is None:
            logger.info("No point has been evaluated; nothing to report")
            return
        record = self._record(best, main=True)
        logger.info(
            "Minimum point: simulation %s, %s = %s",
            best.simulation_number,
            self.objective_names[0],
            best.objective,
        )
        for reporter in self.reporters:
            reporter.report_minimum(record)

    def _record(self, point: Point, *, main: bool) -> EvaluationRecord:
        counters = self.context.counters
        return EvaluationRecord(
            simulation=point.simulation_number,
            main_iteration=counters.main_iteration,
            sub_iteration=counters.sub_iteration,
            step_number=point.step_number,
            objectives=dict(zip(self.objective_names, point.f or ())),
            parameters=self.values_for(point),
            comment=point.comment,
            main=main,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def run(self, algorithm: "SearchAlgorithm") -> OptimizationResult:
        """Run ``algorithm`` and summarise the outcome.

        Fatal errors are re-raised after the best point found so far has been
        reported.
        """

        from .algorithms import run_algorithm

        try:
            outcome = run_algorithm(self, algorithm)
        except KeyboardInterrupt as exc:
            self.abort()
            self.report_minimum()
            raise UserAbort() from exc
        except (BoreasError, UserAbort) as exc:
            logger.error("Optimization terminated: %s", exc)
            self.report_minimum()
            raise
        except Exception:
            logger.exception("Optimization terminated by an unexpected error")
            self.report_minimum()
            raise

        best = outcome.best_point or self._best
        return OptimizationResult(
            return_code=outcome.return_code,
            best_point=best,
            best_parameters=self.values_for(best) if best is not None else {},
            best_objectives=dict(zip(self.objective_names, best.f or ())) if best is not None else {},
            simulations=self.context.counters.simulations,
            main_iterations=self.context.counters.main_iteration,
            details=dict(outcome.details),
        )

    def close(self) -> None:
        self.dispatcher.close()

    def __enter__(self) -> "IterationDriver":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["IterationDriver", "round_coordinate"]
