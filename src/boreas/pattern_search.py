"""Generalized pattern search: coordinate search and Hooke-Jeeves on a shrinking mesh."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Sequence

import numpy as np

from .context import CoordinateSpace
from .errors import AlgorithmDefectError, ConfigurationError
from .expressions import Expression, UnboundPlaceholderError
from .point import Point, best_of
from .results import SearchOutcome

if TYPE_CHECKING:
    from .driver import IterationDriver

logger = logging.getLogger(__name__)

MAX_STEP_REDUCTIONS_REACHED = 1
BUDGET_EXHAUSTED = -1

_TINY_NORM = 1e-50

# Arithmetic failures of a user supplied forcing function.
_EVALUATION_ERRORS = (ZeroDivisionError, ValueError, OverflowError)


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class MeshSettings:
    """Mesh refinement rule: the mesh size is ``divider ** -exponent``."""

    mesh_size_divider: int = 2
    initial_mesh_size_exponent: int = 0
    mesh_size_exponent_increment: int = 1
    max_step_reductions: int = 4

    def __post_init__(self) -> None:
        if self.mesh_size_divider <= 1:
            raise ConfigurationError("mesh_size_divider must be greater than 1")
        if self.initial_mesh_size_exponent < 0:
            raise ConfigurationError("initial_mesh_size_exponent must not be negative")
        if self.mesh_size_exponent_increment <= 0:
            raise ConfigurationError("mesh_size_exponent_increment must be positive")
        if self.max_step_reductions <= 0:
            raise ConfigurationError("max_step_reductions must be positive")

    def mesh_size(self, exponent: int) -> float:
        return float(self.mesh_size_divider) ** (-exponent)


class ForcingFunction:
    """Forcing function Phi used for the sufficient decrease test.

    ``phi`` may reference ``%Delta%``, ``%stepNumber%`` and the objective names.
    A constant expression must evaluate to zero; ``alpha`` switches the mesh
    update to the adaptive precision scheme.
    """

    def __init__(self, phi: str | Expression, *, zeta: float = 0.0, alpha: float | None = None) -> None:
        self.expression = phi if isinstance(phi, Expression) else Expression(phi)
        if zeta < 0:
            raise ConfigurationError("Forcing function constant zeta must not be negative")
        if alpha is not None and not 0.0 < alpha < 1.0:
            raise ConfigurationError("Forcing function exponent alpha must lie in (0, 1)")
        self.zeta = float(zeta)
        self.alpha = alpha
        try:
            constant = self.expression.evaluate({})
        except UnboundPlaceholderError:
            return
        except _EVALUATION_ERRORS as exc:
            raise ConfigurationError(
                f"Forcing function '{self.expression.source}' cannot be evaluated: {exc}"
            ) from exc
        if constant != 0.0:
            raise ConfigurationError(
                f"Forcing function '{self.expression.source}' is a non-zero constant ({constant})"
            )

    @property
    def adaptive(self) -> bool:
        return self.alpha is not None

    def value(self, bindings: Dict[str, float]) -> float:
        try:
            return self.expression.evaluate(bindings)
        except UnboundPlaceholderError as exc:
            raise ConfigurationError(
                f"Forcing function '{self.expression.source}' references unknown placeholder {exc}"
            ) from exc
        except _EVALUATION_ERRORS as exc:
            raise ConfigurationError(
                f"Forcing function '{self.expression.source}' cannot be evaluated at {bindings}: {exc}"
            ) from exc


@dataclass(frozen=True)
class MultiStart:
    """Restart the search from random mesh points inside the bounds."""

    seed: int | None = None
    number_of_initial_points: int = 1

    def __post_init__(self) -> None:
        if self.number_of_initial_points < 1:
            raise ConfigurationError("number_of_initial_points must be at least 1")


def coordinate_directions(steps: Sequence[float]) -> np.ndarray:
    """Columns ``+step_i e_i`` followed by ``-step_i e_i``."""

    scaled = np.diag(np.asarray(steps, dtype=float))
    return np.hstack([scaled, -scaled])


def check_base_directions(directions: np.ndarray, dimension: int) -> None:
    if directions.ndim != 2 or directions.shape[0] != dimension:
        raise ConfigurationError(
            f"Base direction matrix must have {dimension} rows, got shape {directions.shape}"
        )
    if directions.shape[1] <= dimension:
        raise ConfigurationError(
            "Base direction matrix must have more columns than continuous parameters "
            f"({directions.shape[1]} <= {dimension})"
        )
    if np.linalg.matrix_rank(directions) < dimension:
        raise ConfigurationError("Base direction matrix does not span the parameter space")


# ----------------------------------------------------------------------
# Search strategies
# ----------------------------------------------------------------------
@dataclass
class CoordinateSearch:
    """Try each coordinate in the remembered direction, then in the opposite one."""

    name: str = "coordinate_search"
    signs: List[int] = field(default_factory=list)

    def base_directions(self, steps: Sequence[float]) -> np.ndarray:
        return coordinate_directions(steps)

    def reset(self, dimension: int) -> None:
        self.signs = [1] * dimension

    def global_search(self, engine: "PatternSearch", current: Point, previous: Point | None) -> List[Point]:
        return []

    def local_search(self, engine: "PatternSearch", current: Point) -> List[Point]:
        return self.explore(engine, current)

    def explore(self, engine: "PatternSearch", base: Point) -> List[Point]:
        """Evaluate the coordinate moves around ``base`` and return every trial point."""

        trials: List[Point] = []
        for i in range(engine.dimension):
            if engine.budget_exhausted():
                break
            trial = engine.evaluate(engine.move(base, i, self.signs[i]), f"Coordinate search in {engine.name_of(i)}.")
            trials.append(trial)
            if engine.sufficient_decrease(base, trial):
                base = trial
                continue
            self.signs[i] = -self.signs[i]
            if engine.budget_exhausted():
                break
            trial = engine.evaluate(engine.move(base, i, self.signs[i]), f"Coordinate search in {engine.name_of(i)}.")
            trials.append(trial)
            if engine.sufficient_decrease(base, trial):
                base = trial
            else:
                self.signs[i] = -self.signs[i]
        return trials


@dataclass
class HookeJeeves(CoordinateSearch):
    """Coordinate search with a pattern move along the last successful step.

    The global search explores around ``2 x_k - x_{k-1}``. In the first
    iteration and after an iteration without decrease that point is ``x_k``
    itself; the local search then reuses the trials of that exploration instead
    of repeating it.
    """

    name: str = "hooke_jeeves"
    _explored: tuple | None = field(default=None, repr=False)
    _explored_trials: List[Point] = field(default_factory=list, repr=False)

    def reset(self, dimension: int) -> None:
        super().reset(dimension)
        self._explored = None
        self._explored_trials = []

    def global_search(self, engine: "PatternSearch", current: Point, previous: Point | None) -> List[Point]:
        if previous is None or previous.x == current.x:
            trials = self.explore(engine, current)
            self._explored = self._exploration_key(engine, current)
            self._explored_trials = trials
            return trials
        self._explored = None
        origin = np.asarray(current.x)
        base = current.with_x(2.0 * origin - np.asarray(previous.x))
        base = engine.evaluate(base, f"Exploration base, Delta = {engine.mesh_size}.")
        if engine.budget_exhausted():
            return []
        return self.explore(engine, base)

    def local_search(self, engine: "PatternSearch", current: Point) -> List[Point]:
        if self._explored is not None and self._explored == self._exploration_key(engine, current):
            return list(self._explored_trials)
        return self.explore(engine, current)

    @staticmethod
    def _exploration_key(engine: "PatternSearch", point: Point) -> tuple:
        return (point.x, engine.exponent, engine.driver.context.step_number)


def search_strategy(name: str) -> CoordinateSearch:
    if name == "coordinate_search":
        return CoordinateSearch()
    if name == "hooke_jeeves":
        return HookeJeeves()
    raise ConfigurationError(f"Unknown pattern search strategy {name!r}")


# ----------------------------------------------------------------------
# Engine
# ----------------------------------------------------------------------
class PatternSearch:
    """Mesh-based direct search driven by a coordinate search strategy.

    Each iteration runs the strategy's global search and, unless that already
    achieved a sufficient decrease, its local search. The best trial point
    replaces the current iterate on success; otherwise the mesh is refined.

    Parameters
    ----------
    driver:
        Iteration driver used for evaluation and reporting.
    strategy:
        :class:`CoordinateSearch` or :class:`HookeJeeves`.
    mesh:
        Mesh refinement settings.
    forcing:
        Optional forcing function for the sufficient decrease test.
    multi_start:
        Optional random restarts; requires bounded parameters.
    space:
        Coordinate space in which the mesh lives.
    hold_discrete:
        Keep discrete indices fixed instead of rejecting discrete parameters.
    """

    def __init__(
        self,
        driver: "IterationDriver",
        strategy: CoordinateSearch,
        mesh: MeshSettings,
        *,
        forcing: ForcingFunction | None = None,
        multi_start: MultiStart | None = None,
        space: CoordinateSpace | str = CoordinateSpace.ORIGINAL,
        hold_discrete: bool = False,
    ) -> None:
        self.driver = driver
        self.strategy = strategy
        self.mesh = mesh
        self.forcing = forcing
        self.multi_start = multi_start
        self.space = CoordinateSpace(space)
        parameters = driver.parameters

        if parameters.dimension_continuous == 0:
            raise ConfigurationError("Pattern search requires at least one continuous parameter")
        if parameters.dimension_discrete and not hold_discrete:
            raise ConfigurationError(
                "The selected optimization algorithm can only be used with continuous parameters."
            )
        if multi_start is not None and multi_start.number_of_initial_points > 1:
            if self.space is CoordinateSpace.TRANSFORMED:
                raise ConfigurationError("Multi-start is only available in the original coordinate space")
            parameters.require_bounded()
        if forcing is not None and forcing.adaptive and not driver.context.use_step_number:
            raise ConfigurationError(
                "The adaptive precision scheme requires step numbers; set optimization.use_step_number"
            )

        driver.set_space(self.space)
        self.dimension = parameters.dimension_continuous
        self.steps = np.asarray(driver.step_sizes(), dtype=float)
        self.directions = strategy.base_directions(self.steps)
        check_base_directions(self.directions, self.dimension)

        self.exponent = mesh.initial_mesh_size_exponent
        self.origin = np.zeros(self.dimension)
        self.step_reductions = 0
        self._f_norm: float | None = None

    # Mesh --------------------------------------------------------------
    @property
    def mesh_size(self) -> float:
        return self.mesh.mesh_size(self.exponent)

    def mesh_spacing(self) -> np.ndarray:
        return self.mesh_size * self.steps

    def snap(self, point: Point) -> Point:
        """Move ``point`` onto the nearest mesh point."""

        spacing = self.mesh_spacing()
        x = np.asarray(point.x, dtype=float)
        snapped = self.origin + np.rint((x - self.origin) / spacing) * spacing
        return point.with_x(snapped).with_comment(point.comment)

    def move(self, base: Point, column: int, sign: int) -> Point:
        index = column if sign > 0 else column + self.dimension
        x = np.asarray(base.x, dtype=float) + self.mesh_size * self.directions[:, index]
        return base.with_x(x)

    def name_of(self, i: int) -> str:
        return self.driver.parameters.continuous[i].name

    # Evaluation ----------------------------------------------------------
    def budget_exhausted(self) -> bool:
        return self.driver.max_iterations_reached()

    def evaluate(self, point: Point, comment: str = "") -> Point:
        """Snap, evaluate and report ``point`` as a sub-iteration."""

        evaluated = self.driver.evaluate(self.snap(point)).with_comment(comment)
        self.driver.report(evaluated)
        return evaluated

    def bindings(self, point: Point) -> Dict[str, float]:
        values: Dict[str, float] = {
            "Delta": self.mesh_size,
            "stepNumber": float(self.driver.context.step_number),
        }
        values.update(zip(self.driver.objective_names, point.f or ()))
        return values

    def sufficient_decrease(self, old: Point, new: Point) -> bool:
        if new.is_infeasible:
            return False
        if self.forcing is None:
            return new.objective < old.objective
        if self._f_norm is None:
            # Stays unset while both values are numerically zero.
            for candidate in (abs(old.objective), abs(new.objective)):
                if candidate > _TINY_NORM:
                    self._f_norm = candidate
                    break
        decrease = self.forcing.value(self.bindings(new))
        if decrease < 0:
            raise ConfigurationError(
                f"Forcing function '{self.forcing.expression.source}' returned a negative value ({decrease})"
            )
        difference = new.objective - old.objective
        if self._f_norm is not None:
            difference /= self._f_norm
        return difference < -self.forcing.zeta * decrease

    # Algorithm -------------------------------------------------------------
    def run(self, x0: Point | None = None) -> SearchOutcome:
        start = x0 if x0 is not None else self.driver.initial_point()
        starts = [start]
        if self.multi_start is not None and self.multi_start.number_of_initial_points > 1:
            if self.multi_start.seed is not None:
                self.driver.context.reseed(self.multi_start.seed)
            starts.extend(self._random_starts(start, self.multi_start.number_of_initial_points - 1))

        outcomes: List[SearchOutcome] = []
        for number, initial in enumerate(starts):
            if number and self.budget_exhausted():
                logger.info("Simulation budget exhausted; skipping remaining initial points")
                break
            if len(starts) > 1:
                logger.info("Start pattern search from initial point %d of %d", number + 1, len(starts))
                self.driver.reset_step_number(1)
            outcomes.append(self._run_from(initial))

        best = best_of(outcome.best_point for outcome in outcomes if outcome.best_point is not None)
        code = (
            MAX_STEP_REDUCTIONS_REACHED
            if any(outcome.return_code == MAX_STEP_REDUCTIONS_REACHED for outcome in outcomes)
            else BUDGET_EXHAUSTED
        )
        details = dict(outcomes[-1].details)
        details["initial_points"] = len(outcomes)
        if best is not None:
            self.driver.report_minimum(best)
        return SearchOutcome(return_code=code, best_point=best, details=details)

    def _random_starts(self, first: Point, count: int) -> List[Point]:
        context = self.driver.context
        parameters = self.driver.parameters.continuous
        spacing = self.mesh.mesh_size(self.mesh.initial_mesh_size_exponent) * self.steps
        origin = np.asarray(first.x, dtype=float)
        starts: List[Point] = []
        for _ in range(count):
            x = np.array(
                [
                    parameter.minimum + context.uniform() * parameter.width
                    for parameter in parameters
                ],
                dtype=float,
            )
            x = origin + np.rint((x - origin) / spacing) * spacing
            for i, parameter in enumerate(parameters):
                # Snapping may leave the domain by at most one mesh step.
                if x[i] < parameter.minimum:
                    x[i] += spacing[i]
                elif x[i] > parameter.maximum:
                    x[i] -= spacing[i]
            starts.append(first.with_x(x))
        return starts

    def _run_from(self, x0: Point) -> SearchOutcome:
        driver = self.driver
        self.strategy.reset(self.dimension)
        self.exponent = self.mesh.initial_mesh_size_exponent
        self.step_reductions = 0
        self._f_norm = None
        self.origin = np.asarray(x0.x, dtype=float)

        current = driver.evaluate(x0).with_comment("Initial point.")
        driver.report(current)
        driver.report(current, main=True)
        previous: Point | None = None

        while not self.budget_exhausted():
            logger.debug("Perform global search.")
            global_points = self.strategy.global_search(self, current, previous)
            local_points: List[Point] = []
            best_global = best_of(global_points)
            if best_global is None or not self.sufficient_decrease(current, best_global):
                if not self.budget_exhausted():
                    logger.debug("Perform local search.")
                    local_points = self.strategy.local_search(self, current)

            best_local = best_of(local_points)
            candidate, comment = best_local, "Local search reduced cost."
            if best_global is not None and (
                candidate is None or best_global.objective < candidate.objective
            ):
                candidate, comment = best_global, "Global search reduced cost."

            if candidate is not None and self.sufficient_decrease(current, candidate):
                previous, current = current, candidate.with_comment(comment)
                driver.report(current)
                driver.report(current, main=True)
                continue

            previous = current
            if self.budget_exhausted():
                break
            if len(local_points) <= self.dimension:
                raise AlgorithmDefectError(
                    "Local search returned fewer trial points than parameters without a decrease; "
                    "the local search directions were not a positive span."
                )
            if self.step_reductions == self.mesh.max_step_reductions:
                current = current.with_comment("Maximum number of step reductions reached.")
                driver.report(current, main=True)
                return self._outcome(MAX_STEP_REDUCTIONS_REACHED, current)
            if self.forcing is not None and self.forcing.adaptive:
                current = self._adaptive_update(current)
            else:
                current = self._counting_update(current)

        return self._outcome(BUDGET_EXHAUSTED, current)

    def _counting_update(self, current: Point) -> Point:
        self.exponent += self.mesh.mesh_size_exponent_increment
        logger.info("Reduce step size to %s.", self.mesh_size)
        current = current.with_comment(f"Reduce step size to {self.mesh_size}.")
        self.driver.report(current, main=True)
        if self.driver.context.use_step_number:
            current = self.driver.increase_step_number(current)
            self.driver.report(current, main=True)
        self.step_reductions += 1
        return current

    def _adaptive_update(self, current: Point) -> Point:
        assert self.forcing is not None and self.forcing.alpha is not None
        phi_old = self.forcing.value(self.bindings(current))
        current = self.driver.increase_step_number(current)
        self.step_reductions += 1
        phi_new = self.forcing.value(self.bindings(current))
        if phi_new >= phi_old:
            raise ConfigurationError(
                f"Forcing function '{self.forcing.expression.source}' is not decreasing with the "
                f"step number ({phi_old} -> {phi_new})"
            )
        if phi_new <= 0:
            raise ConfigurationError(
                f"Forcing function '{self.forcing.expression.source}' must stay positive under the adaptive "
                f"precision scheme (step number {self.driver.context.step_number}: {phi_new})"
            )
        delta = self.mesh_size
        if phi_new ** self.forcing.alpha / delta < delta:
            increment = self.mesh.mesh_size_exponent_increment
            ratio = math.log(delta / phi_new ** (self.forcing.alpha / 2.0)) / math.log(self.mesh.mesh_size_divider)
            t = increment * math.ceil(ratio / increment)
            if t <= 0:
                raise ConfigurationError(
                    f"Adaptive precision scheme produced a non-positive exponent increment ({t})"
                )
            self.exponent += t
            logger.info("Reduce step size to %s.", self.mesh_size)
        current = current.with_comment(f"Step number {self.driver.context.step_number}, Delta = {self.mesh_size}.")
        self.driver.report(current, main=True)
        return current

    def _outcome(self, code: int, current: Point) -> SearchOutcome:
        details = {
            "mesh_size_exponent": self.exponent,
            "mesh_size": self.mesh_size,
            "step_reductions": self.step_reductions,
        }
        return SearchOutcome(return_code=code, best_point=current, details=details)


__all__ = [
    "BUDGET_EXHAUSTED",
    "CoordinateSearch",
    "ForcingFunction",
    "HookeJeeves",
    "MAX_STEP_REDUCTIONS_REACHED",
    "MeshSettings",
    "MultiStart",
    "PatternSearch",
    "check_base_directions",
    "coordinate_directions",
    "search_strategy",
]
