"""Evaluator package exports."""

from .base import BaseEvaluator, EvaluationRequest, GracefulNaNPolicy, ObjectiveValues
from .python import PythonEvaluator, load_evaluator
from .simulation import (
    InputTemplate,
    ObjectiveLocation,
    SimulationEvaluator,
    find_error_lines,
    read_objective_value,
    substitute_placeholders,
)

__all__ = [
    "BaseEvaluator",
    "EvaluationRequest",
    "GracefulNaNPolicy",
    "InputTemplate",
    "ObjectiveLocation",
    "ObjectiveValues",
    "PythonEvaluator",
    "SimulationEvaluator",
    "find_error_lines",
    "load_evaluator",
    "read_objective_value",
    "substitute_placeholders",
]
