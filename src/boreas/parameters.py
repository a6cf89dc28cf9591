"""Continuous and discrete parameter definitions."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Sequence

from .errors import ConfigurationError


class ConstraintKind(str, Enum):
    """Kinds of bound constraints a continuous parameter can carry."""

    UNCONSTRAINED = "unconstrained"
    LOWER_BOUNDED = "lower_bounded"
    BOUNDED = "bounded"
    UPPER_BOUNDED = "upper_bounded"


class ValueType(str, Enum):
    """Type inferred from the admissible values of a discrete parameter."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"


@dataclass(frozen=True)
class ContinuousParameter:
    """A real valued parameter with optional bounds.

    The parameter maps between the original space, in which bounds apply, and a
    transformed space in which the parameter is unconstrained.

    Parameters
    ----------
    name:
        Identifier used in templates and result logs.
    initial:
        Initial value in the original space.
    step:
        Initial step size in the original space.
    minimum, maximum:
        Optional lower and upper bounds.
    """

    name: str
    initial: float
    step: float
    minimum: float | None = None
    maximum: float | None = None

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ConfigurationError("Parameter name must be a non-empty string")
        if not self.step > 0:
            raise ConfigurationError(f"Parameter '{self.name}': step must be positive, got {self.step}")
        if self.minimum is not None and self.maximum is not None:
            if self.minimum > self.maximum:
                raise ConfigurationError(
                    f"Parameter '{self.name}': lower bound {self.minimum} exceeds upper bound {self.maximum}"
                )
            if self.minimum == self.maximum:
                raise ConfigurationError(
                    f"Parameter '{self.name}': lower bound equals upper bound ({self.minimum})"
                )
        if not self.is_feasible(self.initial):
            raise ConfigurationError(
                f"Parameter '{self.name}': initial value {self.initial} violates its bounds"
            )

    @property
    def kind(self) -> ConstraintKind:
        if self.minimum is None and self.maximum is None:
            return ConstraintKind.UNCONSTRAINED
        if self.maximum is None:
            return ConstraintKind.LOWER_BOUNDED
        if self.minimum is None:
            return ConstraintKind.UPPER_BOUNDED
        return ConstraintKind.BOUNDED

    @property
    def width(self) -> float:
        """Width of the feasible interval, infinite unless bounded on both sides."""

        if self.kind is ConstraintKind.BOUNDED:
            return float(self.maximum) - float(self.minimum)  # type: ignore[arg-type]
        return math.inf

    def is_feasible(self, value: float) -> bool:
        if self.minimum is not None and value < self.minimum:
            return False
        if self.maximum is not None and value > self.maximum:
            return False
        return True

    def to_transformed(self, value: float) -> float:
        """Map an original-space value into the unconstrained space."""

        kind = self.kind
        if kind is ConstraintKind.UNCONSTRAINED:
            return float(value)
        if kind is ConstraintKind.LOWER_BOUNDED:
            return math.sqrt(max(value - self.minimum, 0.0))  # type: ignore[operator]
        if kind is ConstraintKind.UPPER_BOUNDED:
            return math.sqrt(max(self.maximum - value, 0.0))  # type: ignore[operator]
        if value <= self.minimum:  # type: ignore[operator]
            return 0.0
        if value >= self.maximum:  # type: ignore[operator]
            return math.pi / 2.0
        ratio = (value - self.minimum) / self.width  # type: ignore[operator]
        return math.asin(math.sqrt(ratio))

    def to_original(self, value: float) -> float:
        """Map a transformed-space value back into the original space."""

        kind = self.kind
        if kind is ConstraintKind.UNCONSTRAINED:
            return float(value)
        if kind is ConstraintKind.LOWER_BOUNDED:
            return self.minimum + value * value  # type: ignore[operator]
        if kind is ConstraintKind.UPPER_BOUNDED:
            return self.maximum - value * value  # type: ignore[operator]
        if value == 0.0:
            return float(self.minimum)  # type: ignore[arg-type]
        if value == math.pi / 2.0:
            return float(self.maximum)  # type: ignore[arg-type]
        return self.minimum + self.width * math.sin(value) ** 2  # type: ignore[operator]

    def transformed_step(self, value: float | None = None) -> float:
        """Return the step size expressed in the transformed space.

        The half-step interval around ``value`` is shifted to stay inside the
        bounds before both ends are transformed.
        """

        if self.kind is ConstraintKind.UNCONSTRAINED:
            return self.step
        centre = self.initial if value is None else value
        low = centre - self.step / 2.0
        high = centre + self.step / 2.0
        if self.minimum is not None and low < self.minimum:
            high += self.minimum - low
            low = self.minimum
        if self.maximum is not None and high > self.maximum:
            low -= high - self.maximum
            high = self.maximum
        if self.minimum is not None:
            low = max(low, self.minimum)
        return abs(self.to_transformed(high) - self.to_transformed(low))

    def reflect(self, value: float) -> float:
        """Mirror ``value`` at the bounds until it is feasible."""

        result = float(value)
        if self.kind is not ConstraintKind.BOUNDED:
            if self.minimum is not None and result < self.minimum:
                return 2.0 * self.minimum - result
            if self.maximum is not None and result > self.maximum:
                return 2.0 * self.maximum - result
            return result
        low, high = float(self.minimum), float(self.maximum)  # type: ignore[arg-type]
        while not low <= result <= high:
            if result < low:
                result = 2.0 * low - result
            else:
                result = 2.0 * high - result
        return result


def _infer_value_type(values: Sequence[Any]) -> ValueType:
    numbers: List[float] = []
    for value in values:
        if isinstance(value, bool):
            return ValueType.STRING
        try:
            numbers.append(float(value))
        except (TypeError, ValueError):
            return ValueType.STRING
    if any(not number.is_integer() for number in numbers):
        return ValueType.FLOAT
    return ValueType.INTEGER


@dataclass(frozen=True)
class DiscreteParameter:
    """A parameter taking one of an ordered set of admissible values."""

    name: str
    values: tuple
    initial_index: int = 0
    value_type: ValueType = field(init=False)

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ConfigurationError("Parameter name must be a non-empty string")
        values = tuple(self.values)
        if not values:
            raise ConfigurationError(f"Parameter '{self.name}': at least one value is required")
        object.__setattr__(self, "values", values)
        if not 0 <= self.initial_index < len(values):
            raise ConfigurationError(
                f"Parameter '{self.name}': initial index {self.initial_index} outside [0, {len(values) - 1}]"
            )
        object.__setattr__(self, "value_type", _infer_value_type(values))

    @property
    def count(self) -> int:
        return len(self.values)

    @property
    def max_index(self) -> int:
        return len(self.values) - 1

    def value(self, index: int) -> Any:
        self._check_index(index)
        raw = self.values[index]
        if self.value_type is ValueType.INTEGER:
            return int(float(raw))
        if self.value_type is ValueType.FLOAT:
            return float(raw)
        return str(raw)

    def numeric_value(self, index: int) -> float:
        """Numeric representation of a value; string values map to their index."""

        self._check_index(index)
        if self.value_type is ValueType.STRING:
            return float(index)
        return float(self.values[index])

    def clamp(self, index: int) -> int:
        return min(max(int(index), 0), self.max_index)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.values):
            raise IndexError(f"Parameter '{self.name}': index {index} outside [0, {self.max_index}]")


@dataclass(frozen=True)
class ParameterSet:
    """Ordered collection of the continuous and discrete parameters of a problem."""

    continuous: tuple = ()
    discrete: tuple = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "continuous", tuple(self.continuous))
        object.__setattr__(self, "discrete", tuple(self.discrete))
        names = [parameter.name for parameter in (*self.continuous, *self.discrete)]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError("Duplicate parameter names: " + ", ".join(duplicates))
        if not names:
            raise ConfigurationError("At least one parameter must be defined")

    @property
    def names(self) -> List[str]:
        return [parameter.name for parameter in (*self.continuous, *self.discrete)]

    @property
    def dimension_continuous(self) -> int:
        return len(self.continuous)

    @property
    def dimension_discrete(self) -> int:
        return len(self.discrete)

    def all_bounded(self) -> bool:
        return all(parameter.kind is ConstraintKind.BOUNDED for parameter in self.continuous)

    def require_bounded(self) -> None:
        """Raise :class:`ConfigurationError` unless every continuous parameter has both bounds."""

        problems = [
            f"Parameter '{parameter.name}' does not have lower and upper bounds specified."
            for parameter in self.continuous
            if parameter.kind is not ConstraintKind.BOUNDED
        ]
        if problems:
            raise ConfigurationError("\n".join(problems))


__all__ = [
    "ConstraintKind",
    "ContinuousParameter",
    "DiscreteParameter",
    "ParameterSet",
    "ValueType",
]
