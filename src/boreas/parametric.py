"""Parametric sweeps and mesh runs over the ranges of bounded parameters.

These runs do not search. They evaluate a fixed set of points spread over
the parameter ranges, which is useful to look at the shape of an objective
before an optimization. How many points lie on each continuous axis is set
by an integer interval count per parameter:

* ``n > 0`` divides ``[minimum, maximum]`` into ``n`` equal intervals;
* ``n < 0`` divides it into ``|n|`` intervals of equal ratio (log scale);
* ``n == 0`` keeps the parameter fixed.
"""
from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Dict, List, Mapping

import numpy as np

from .context import CoordinateSpace
from .errors import ConfigurationError
from .parameters import ContinuousParameter
from .point import Point
from .results import SearchOutcome

if TYPE_CHECKING:
    from .driver import IterationDriver

logger = logging.getLogger(__name__)

ALL_POINTS_EVALUATED = 4
BUDGET_EXHAUSTED = -1

EVALUATED = "Function evaluation successful."
ALREADY_EVALUATED = "Point already evaluated."


def spacing(intervals: int, lower: float, upper: float) -> List[float]:
    """``abs(intervals) + 1`` values from ``lower`` to ``upper``.

    A negative count spaces the values logarithmically and needs positive
    bounds. A count of zero returns ``[lower]``.
    """

    count = abs(int(intervals))
    if intervals < 0:
        if lower <= 0 or upper <= 0:
            raise ConfigurationError(
                f"Logarithmic spacing needs positive bounds, got [{lower}, {upper}]"
            )
        values = np.geomspace(lower, upper, count + 1)
    else:
        values = np.linspace(lower, upper, count + 1)
    return [float(value) for value in values]


class GridRun:
    """Evaluate a precomputed list of points and report every one of them.

    Every point is reported both as a sub and as a main iteration. The run ends
    with :data:`ALL_POINTS_EVALUATED`, or :data:`BUDGET_EXHAUSTED` when the
    simulation budget runs out first.
    """

    name = ""

    def __init__(self, driver: "IterationDriver", intervals: Mapping[str, int] | None = None) -> None:
        self.driver = driver
        self.intervals: Dict[str, int] = dict(intervals or {})
        parameters = driver.parameters
        names = {parameter.name for parameter in parameters.continuous}
        unknown = sorted(set(self.intervals) - names)
        if unknown:
            raise ConfigurationError(
                "Interval counts given for unknown continuous parameters: " + ", ".join(unknown)
            )
        parameters.require_bounded()
        for parameter in parameters.continuous:
            if self.intervals.get(parameter.name, 0) < 0 and parameter.minimum <= 0:
                raise ConfigurationError(
                    f"Parameter '{parameter.name}': logarithmic spacing needs a positive minimum, "
                    f"got {parameter.minimum}"
                )

    def axis(self, parameter: ContinuousParameter) -> List[float]:
        return spacing(self.intervals.get(parameter.name, 0), parameter.minimum, parameter.maximum)

    def candidates(self, initial: Point) -> List[Point]:
        raise NotImplementedError

    def run(self) -> SearchOutcome:
        driver = self.driver
        driver.set_space(CoordinateSpace.ORIGINAL)
        points = self.candidates(driver.initial_point())
        logger.info("%s run over %d points", self.name, len(points))

        seen: set = set()
        evaluated_count = 0
        batch = driver.dispatcher.workers
        for start in range(0, len(points), batch):
            if driver.max_iterations_reached():
                logger.warning(
                    "Maximum number of iterations reached after %d of %d points",
                    evaluated_count,
                    len(points),
                )
                return SearchOutcome(
                    return_code=BUDGET_EXHAUSTED,
                    best_point=driver.best_point,
                    details={"points": len(points), "evaluated": evaluated_count},
                )
            for point in driver.evaluate_all(points[start:start + batch]):
                comment = ALREADY_EVALUATED if point.simulation_number in seen else EVALUATED
                seen.add(point.simulation_number)
                point = point.with_comment(comment)
                driver.report(point)
                driver.report(point, main=True)
                evaluated_count += 1

        best = driver.best_point
        driver.report_minimum(best)
        return SearchOutcome(
            return_code=ALL_POINTS_EVALUATED,
            best_point=best,
            details={"points": len(points), "evaluated": evaluated_count},
        )


class ParametricRun(GridRun):
    """Vary one parameter at a time while the others stay at their initial values.

    Continuous parameters with a non-zero interval count are swept first, then
    every discrete parameter with more than one value.
    """

    name = "parametric"

    def candidates(self, initial: Point) -> List[Point]:
        points: List[Point] = []
        for position, parameter in enumerate(self.driver.parameters.continuous):
            if self.intervals.get(parameter.name, 0) == 0:
                continue
            for value in self.axis(parameter):
                points.append(initial.with_coordinate(position, value))
        for position, parameter in enumerate(self.driver.parameters.discrete):
            if parameter.max_index == 0:
                continue
            for index in range(parameter.max_index + 1):
                indices = list(initial.indices)
                indices[position] = index
                points.append(initial.with_indices(tuple(indices)))
        return points


class MeshRun(GridRun):
    """Evaluate the Cartesian product of all axes.

    Continuous parameters with an interval count of zero stay at their initial
    value and every discrete parameter runs through all of its values. With
    ``equidistant`` set, only linear spacing and continuous parameters are
    accepted, and a zero count pins the parameter to its minimum.
    """

    def __init__(
        self,
        driver: "IterationDriver",
        intervals: Mapping[str, int] | None = None,
        *,
        equidistant: bool = False,
    ) -> None:
        super().__init__(driver, intervals)
        self.equidistant = equidistant
        self.name = "equidistant_mesh" if equidistant else "mesh"
        if equidistant:
            if driver.parameters.dimension_discrete:
                raise ConfigurationError("The equidistant mesh does not support discrete parameters.")
            negative = sorted(name for name, count in self.intervals.items() if count < 0)
            if negative:
                raise ConfigurationError(
                    "The equidistant mesh needs non-negative interval counts: " + ", ".join(negative)
                )

    def candidates(self, initial: Point) -> List[Point]:
        axes: List[List[float]] = []
        for position, parameter in enumerate(self.driver.parameters.continuous):
            if self.equidistant or self.intervals.get(parameter.name, 0) != 0:
                axes.append(self.axis(parameter))
            else:
                axes.append([initial.x[position]])
        index_axes = [range(parameter.max_index + 1) for parameter in self.driver.parameters.discrete]
        return [
            initial.with_x(tuple(x)).with_indices(tuple(indices))
            for x in itertools.product(*axes)
            for indices in itertools.product(*index_axes)
        ]


__all__ = [
    "ALL_POINTS_EVALUATED",
    "BUDGET_EXHAUSTED",
    "GridRun",
    "MeshRun",
    "ParametricRun",
    "spacing",
]
