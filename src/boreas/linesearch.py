"""Interval-division line searches (golden section and Fibonacci)."""
from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, List

import numpy as np

from .context import CoordinateSpace
from .errors import ConfigurationError, FlatObjectiveError
from .parameters import ConstraintKind
from .point import Point
from .results import SearchOutcome

if TYPE_CHECKING:
    from .driver import IterationDriver

logger = logging.getLogger(__name__)

DEFAULT_MAX_REDUCTIONS = 10

CONVERGED = 1
BUDGET_EXHAUSTED = -1
NULL_SPACE = -2


# ----------------------------------------------------------------------
# Reduction factors
# ----------------------------------------------------------------------
class ReductionFactor(ABC):
    """Rule deciding how much the bracket shrinks with each interval reduction."""

    name: str = ""
    supports_accuracy_mode: bool = True

    def prepare(self, max_index: int) -> None:
        """Called whenever the maximum reduction index changes."""

    @abstractmethod
    def factor(self, reduction: int, max_index: int) -> float:
        """Reduction factor for the zero-based ``reduction`` counter."""

    @abstractmethod
    def reductions_for_interval(self, normalized_length: float) -> int:
        """Number of reductions needed to reach ``normalized_length``."""


class GoldenSection(ReductionFactor):
    name = "golden_section"
    RATIO = (math.sqrt(5.0) - 1.0) / 2.0

    def factor(self, reduction: int, max_index: int) -> float:
        return self.RATIO

    def reductions_for_interval(self, normalized_length: float) -> int:
        if not 0.0 < normalized_length < 1.0:
            return 0
        return int(math.ceil(math.log(normalized_length) / math.log(self.RATIO))) + 1


def fibonacci_numbers(count: int) -> List[int]:
    """First ``count`` Fibonacci numbers, starting with 1, 1."""

    numbers: List[int] = []
    for i in range(count):
        numbers.append(1 if i < 2 else numbers[-1] + numbers[-2])
    return numbers


class Fibonacci(ReductionFactor):
    name = "fibonacci"
    supports_accuracy_mode = False

    def __init__(self) -> None:
        self._numbers = fibonacci_numbers(DEFAULT_MAX_REDUCTIONS + 2)

    def prepare(self, max_index: int) -> None:
        self._numbers = fibonacci_numbers(max_index + 3)

    def factor(self, reduction: int, max_index: int) -> float:
        i = max_index - reduction + 1
        return self._numbers[i] / self._numbers[i + 1]

    def reductions_for_interval(self, normalized_length: float) -> int:
        if not 0.0 < normalized_length < 1.0:
            return 0
        n = 0
        while normalized_length < 1.0 / fibonacci_numbers(n + 2)[n + 1]:
            n += 1
        return n


def reduction_factor(name: str) -> ReductionFactor:
    if name == GoldenSection.name:
        return GoldenSection()
    if name == Fibonacci.name:
        return Fibonacci()
    raise ConfigurationError(f"Unknown interval division method {name!r}")


# ----------------------------------------------------------------------
# Interval divider
# ----------------------------------------------------------------------
class StoppingMode(str, Enum):
    REDUCTIONS = "reductions"
    ACCURACY = "accuracy"


@dataclass(frozen=True)
class LineSearchResult:
    """Outcome of an interval division.

    ``code`` is ``+1`` on convergence, ``-1`` when the accuracy target or the
    simulation budget was not met, and ``-2`` when the objective was found to be
    constant over the bracket.
    """

    code: int
    lower: Point
    minimum: Point
    upper: Point
    reductions: int


class IntervalDivider:
    """Bracket the minimum of a unimodal function along the segment between two points."""

    def __init__(
        self,
        driver: "IterationDriver",
        reduction: ReductionFactor,
        *,
        comment: str = "Line search.",
    ) -> None:
        self.driver = driver
        self.reduction = reduction
        self.comment = comment
        self.mode = StoppingMode.REDUCTIONS
        self.df_min = 0.0
        self.max_index = DEFAULT_MAX_REDUCTIONS - 1
        self.set_max_reductions(DEFAULT_MAX_REDUCTIONS)

    # Stopping criteria -------------------------------------------------
    def set_max_reductions(self, count: int) -> None:
        """Stop after ``count`` interval reductions (values below 2 use the default)."""

        self.max_index = count - 1 if count > 1 else DEFAULT_MAX_REDUCTIONS - 1
        self.mode = StoppingMode.REDUCTIONS
        self.reduction.prepare(self.max_index)

    def set_abs_df_min(self, df_min: float, max_reductions: int) -> None:
        """Stop once the bracket values differ by less than ``df_min``."""

        if not self.reduction.supports_accuracy_mode:
            raise ConfigurationError(
                "Accuracy of objective function cannot be specified for the "
                f"{self.reduction.name} algorithm."
            )
        if not df_min > 0:
            raise ConfigurationError("Absolute objective difference must be positive")
        self.set_max_reductions(max_reductions)
        self.df_min = float(df_min)
        self.mode = StoppingMode.ACCURACY

    def set_uncertainty_interval(self, normalized_length: float) -> None:
        if not 0.0 < normalized_length < 1.0:
            raise ConfigurationError("Uncertainty interval must lie in (0, 1)")
        self.set_max_reductions(self.reduction.reductions_for_interval(normalized_length))

    # Algorithm ----------------------------------------------------------
    def run(self, start: Point, end: Point) -> LineSearchResult:
        x0 = start
        x3 = end
        origin = np.asarray(start.x, dtype=float)
        direction = np.asarray(end.x, dtype=float) - origin

        reductions = 0
        length = self.reduction.factor(reductions, self.max_index)
        x2 = start.with_x(origin + length * direction)
        reductions += 1
        length *= self.reduction.factor(reductions, self.max_index)
        x1 = start.with_x(origin + length * direction)
        x1, x2 = self._evaluate_all([x1, x2])

        lower_border = max(x1.objective, x2.objective)
        null_space = False
        previous_equal = False
        budget_exhausted = False
        while True:
            reductions += 1
            length *= self.reduction.factor(reductions, self.max_index)
            if x2.objective < x1.objective:
                lower_border = x1.objective
                x0, x1 = x1, x2
                x2 = self._evaluate(start.with_x(np.asarray(x3.x) - length * direction))
            else:
                lower_border = x2.objective
                x3, x2 = x2, x1
                x1 = self._evaluate(start.with_x(np.asarray(x0.x) + length * direction))

            if self.mode is not StoppingMode.ACCURACY and x1.objective == x2.objective:
                if previous_equal:
                    null_space = True
                previous_equal = True
            else:
                previous_equal = False

            if null_space or self._accuracy_reached(x1, x2, lower_border):
                break
            if reductions >= self.max_index:
                break
            if self.driver.max_iterations_reached():
                budget_exhausted = True
                break

        if x1.objective < x2.objective:
            lower, minimum, upper = x0, x1, x2
        else:
            lower, minimum, upper = x1, x2, x3

        if null_space:
            code = NULL_SPACE
        elif budget_exhausted:
            code = BUDGET_EXHAUSTED
        elif self.mode is StoppingMode.ACCURACY and not self._accuracy_reached(x1, x2, lower_border):
            code = BUDGET_EXHAUSTED
        else:
            code = CONVERGED
        logger.info("Line search finished after %d reductions with code %d", reductions, code)
        return LineSearchResult(code=code, lower=lower, minimum=minimum, upper=upper, reductions=reductions)

    def _accuracy_reached(self, x1: Point, x2: Point, lower_border: float) -> bool:
        if self.mode is not StoppingMode.ACCURACY:
            return False
        return abs(lower_border - min(x1.objective, x2.objective)) < self.df_min

    def _evaluate(self, point: Point) -> Point:
        return self._evaluate_all([point])[0]

    def _evaluate_all(self, points: List[Point]) -> List[Point]:
        evaluated = [point.with_comment(self.comment) for point in self.driver.evaluate_all(points)]
        for point in evaluated:
            self.driver.report(point)
        return evaluated


# ----------------------------------------------------------------------
# Standalone algorithm
# ----------------------------------------------------------------------
class FiniteIntervalSearch:
    """Minimize a function of one bounded continuous parameter by interval division."""

    def __init__(
        self,
        driver: "IterationDriver",
        reduction: ReductionFactor,
        *,
        max_reductions: int | None = None,
        abs_df_min: float | None = None,
        uncertainty_interval: float | None = None,
    ) -> None:
        parameters = driver.parameters
        if parameters.dimension_discrete:
            raise ConfigurationError("Line search algorithms do not support discrete parameters.")
        if parameters.dimension_continuous != 1:
            raise ConfigurationError(
                "The selected optimization algorithm cannot be used for problems with "
                "more than 1 independent variable."
            )
        if parameters.continuous[0].kind is not ConstraintKind.BOUNDED:
            raise ConfigurationError(
                "Min and Max of parameter must be specified for using the selected optimization algorithm."
            )
        self.driver = driver
        self.divider = IntervalDivider(driver, reduction)
        budget = driver.max_iterations or DEFAULT_MAX_REDUCTIONS
        if abs_df_min is not None:
            self.divider.set_abs_df_min(abs_df_min, budget)
        elif uncertainty_interval is not None:
            self.divider.set_uncertainty_interval(uncertainty_interval)
        else:
            self.divider.set_max_reductions(max_reductions or budget)

    def run(self) -> SearchOutcome:
        driver = self.driver
        driver.set_space(CoordinateSpace.ORIGINAL)
        parameter = driver.parameters.continuous[0]
        initial = driver.initial_point()
        start = initial.with_x((parameter.minimum,))
        end = initial.with_x((parameter.maximum,))

        result = self.divider.run(start, end)
        minimum = result.minimum.with_comment("Minimum of line search.")
        driver.report(minimum, main=True)

        low = result.lower.x[0]
        high = result.upper.x[0]
        details = {
            "uncertainty_lower": low,
            "uncertainty_upper": high,
            "uncertainty_midpoint": (low + high) / 2.0,
            "uncertainty_length": high - low,
            "normalized_reduction": (high - low) / (float(parameter.maximum) - float(parameter.minimum)),
        }
        for key, value in details.items():
            logger.info("%s: %s", key.replace("_", " ").capitalize(), value)

        if result.code == NULL_SPACE:
            raise FlatObjectiveError(
                "Null space in line search: the objective function is constant over the bracket."
            )
        if result.code == CONVERGED:
            driver.report_minimum(minimum)
        return SearchOutcome(return_code=result.code, best_point=minimum, details=details)


__all__ = [
    "BUDGET_EXHAUSTED",
    "CONVERGED",
    "Fibonacci",
    "FiniteIntervalSearch",
    "GoldenSection",
    "IntervalDivider",
    "LineSearchResult",
    "NULL_SPACE",
    "ReductionFactor",
    "fibonacci_numbers",
    "reduction_factor",
]
