"""Immutable candidate solutions exchanged between engines and the dispatcher."""
from __future__ import annotations

import sys
from dataclasses import dataclass, replace
from typing import Iterable, Sequence, Tuple

INFEASIBLE_VALUE = sys.float_info.max
"""Artificial objective value assigned to points outside the feasible domain."""


@dataclass(frozen=True)
class Point:
    """Snapshot of a candidate solution.

    ``x`` holds the continuous coordinates in the working space of the active
    algorithm, ``indices`` the discrete parameter indices. Objective values are
    ``None`` until the point has been evaluated. All modifications return a new
    instance.
    """

    x: Tuple[float, ...] = ()
    indices: Tuple[int, ...] = ()
    f: Tuple[float, ...] | None = None
    step_number: int = 1
    simulation_number: int | None = None
    comment: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", tuple(float(value) for value in self.x))
        object.__setattr__(self, "indices", tuple(int(value) for value in self.indices))
        if self.f is not None:
            object.__setattr__(self, "f", tuple(float(value) for value in self.f))

    @property
    def is_evaluated(self) -> bool:
        return self.f is not None

    @property
    def objective(self) -> float:
        """First objective value, which is the one being minimized."""

        if self.f is None or not self.f:
            raise ValueError("Point has not been evaluated")
        return self.f[0]

    @property
    def is_infeasible(self) -> bool:
        return self.f is not None and all(value == INFEASIBLE_VALUE for value in self.f)

    def with_x(self, x: Sequence[float]) -> "Point":
        return replace(self, x=tuple(x), f=None, simulation_number=None)

    def with_coordinate(self, i: int, value: float) -> "Point":
        coordinates = list(self.x)
        coordinates[i] = value
        return self.with_x(coordinates)

    def with_indices(self, indices: Sequence[int]) -> "Point":
        return replace(self, indices=tuple(indices), f=None, simulation_number=None)

    def with_f(self, f: Sequence[float], simulation_number: int | None = None) -> "Point":
        return replace(self, f=tuple(f), simulation_number=simulation_number)

    def with_comment(self, comment: str) -> "Point":
        return replace(self, comment=comment)

    def with_step_number(self, step_number: int) -> "Point":
        return replace(self, step_number=int(step_number))

    def key(self, *, include_step_number: bool = False) -> tuple:
        """Hashable identity of the point's location."""

        if include_step_number:
            return (self.x, self.indices, self.step_number)
        return (self.x, self.indices)


def lowest(points: Sequence[Point]) -> int:
    """Return the index of the point with the lowest objective, or -1 if empty."""

    best = -1
    for i, point in enumerate(points):
        if best == -1 or point.objective < points[best].objective:
            best = i
    return best


def best_of(points: Iterable[Point]) -> Point | None:
    candidates = list(points)
    index = lowest(candidates)
    return candidates[index] if index >= 0 else None


__all__ = ["INFEASIBLE_VALUE", "Point", "best_of", "lowest"]
