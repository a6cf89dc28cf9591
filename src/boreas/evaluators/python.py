"""Evaluators backed by Python callables."""
from __future__ import annotations

import importlib
import inspect
from typing import Any, Callable, Mapping, Sequence

from ..workers import WorkerSlot
from .base import BaseEvaluator, EvaluationRequest, GracefulNaNPolicy

ObjectiveCallable = Callable[[Mapping[str, Any]], Mapping[str, Any] | float]


class PythonEvaluator(BaseEvaluator):
    """Evaluate the objective by calling ``function(values)``.

    The callable receives the original-space parameter values keyed by name.
    Callables that accept a ``step_number`` keyword also receive the current step
    number, which adaptive precision schemes use to refine their accuracy.
    """

    def __init__(
        self,
        function: ObjectiveCallable,
        objective_names: Sequence[str],
        *,
        timeout_seconds: float | None = None,
        max_retries: int = 0,
        nan_policy: GracefulNaNPolicy | str | None = None,
    ) -> None:
        super().__init__(
            objective_names,
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            nan_policy=nan_policy,
        )
        if not callable(function):
            raise TypeError("PythonEvaluator requires a callable objective function")
        self.function = function
        self._wants_step_number = _accepts_keyword(function, "step_number")

    def _evaluate_impl(self, request: EvaluationRequest, slot: WorkerSlot) -> Mapping[str, Any] | float:
        if self._wants_step_number:
            return self.function(request.values, step_number=request.step_number)
        return self.function(request.values)


def _accepts_keyword(function: Callable[..., Any], name: str) -> bool:
    try:
        signature = inspect.signature(function)
    except (TypeError, ValueError):
        return False
    for parameter in signature.parameters.values():
        if parameter.kind is inspect.Parameter.VAR_KEYWORD:
            return True
        if parameter.name == name and parameter.kind in (
            inspect.Parameter.KEYWORD_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            return True
    return False


def load_evaluator(config: Mapping[str, Any], objective_names: Sequence[str]) -> BaseEvaluator:
    """Resolve the ``module``/``callable`` pair of a python evaluator section.

    ``callable`` may name a :class:`BaseEvaluator` instance, a subclass, a
    factory accepting the configuration mapping, or a plain objective function.
    """

    module = importlib.import_module(config["module"])
    target = getattr(module, config["callable"])
    options = {
        "timeout_seconds": config.get("timeout_seconds"),
        "max_retries": config.get("max_retries", 0),
        "nan_policy": config.get("nan_policy"),
    }

    if isinstance(target, BaseEvaluator):
        return target
    if isinstance(target, type) and issubclass(target, BaseEvaluator):
        return target(objective_names, **options)  # type: ignore[call-arg]
    if not callable(target):
        raise TypeError("Evaluator callable must be a function, factory, or BaseEvaluator instance.")

    if config.get("factory", False):
        produced = target(config)
        if isinstance(produced, BaseEvaluator):
            return produced
        if callable(produced):
            return PythonEvaluator(produced, objective_names, **options)
        raise TypeError("Evaluator factory did not return a callable or BaseEvaluator instance.")
    return PythonEvaluator(target, objective_names, **options)


__all__ = ["PythonEvaluator", "load_evaluator"]
