"""Result records, CSV result logging and run summaries."""
from __future__ import annotations

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Protocol

from .point import Point


@dataclass(frozen=True)
class EvaluationRecord:
    """Structured record emitted for every reported point."""

    simulation: int | None
    main_iteration: int
    sub_iteration: int
    step_number: int
    objectives: Dict[str, float]
    parameters: Dict[str, Any]
    comment: str = ""
    main: bool = False


class Reporter(Protocol):
    def report(self, record: EvaluationRecord) -> None: ...

    def report_minimum(self, record: EvaluationRecord) -> None: ...


@dataclass
class OptimizationResult:
    """Container summarising an optimization run."""

    return_code: int
    best_point: Point | None
    best_parameters: Dict[str, Any]
    best_objectives: Dict[str, float]
    simulations: int
    main_iterations: int
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def best_value(self) -> float | None:
        if self.best_point is None or self.best_point.f is None:
            return None
        return self.best_point.objective


class ResultLogger:
    """Append evaluation records to CSV files.

    ``path`` receives one row per reported point; ``minimum_path``, when given,
    receives the best point whenever the minimum is reported.
    """

    def __init__(
        self,
        path: Path,
        parameter_names: Iterable[str],
        objective_names: Iterable[str],
        *,
        minimum_path: Path | None = None,
        main_iterations_only: bool = False,
    ) -> None:
        self.path = path
        self.parameter_names = list(parameter_names)
        self.objective_names = [str(name) for name in objective_names]
        self.main_iterations_only = main_iterations_only
        self.fieldnames = [
            "simulation",
            "main_iteration",
            "sub_iteration",
            "step_number",
            *[f"f_{name}" for name in self.objective_names],
            *self.parameter_names,
            "comment",
        ]
        self._fh, self._writer = self._open(path)
        self._min_fh = None
        self._min_writer = None
        if minimum_path is not None:
            self._min_fh, self._min_writer = self._open(minimum_path)

    def _open(self, path: Path):
        path.parent.mkdir(parents=True, exist_ok=True)
        write_header = not path.exists() or path.stat().st_size == 0
        handle = path.open("a", newline="", encoding="utf-8")
        writer = csv.DictWriter(handle, fieldnames=self.fieldnames)
        if write_header:
            writer.writeheader()
        return handle, writer

    def _row(self, record: EvaluationRecord) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "simulation": record.simulation,
            "main_iteration": record.main_iteration,
            "sub_iteration": record.sub_iteration,
            "step_number": record.step_number,
            "comment": record.comment,
        }
        for name in self.objective_names:
            row[f"f_{name}"] = record.objectives.get(name)
        for name in self.parameter_names:
            row[name] = record.parameters.get(name)
        return row

    def report(self, record: EvaluationRecord) -> None:
        if self.main_iterations_only and not record.main:
            return
        if not self.main_iterations_only and record.main:
            return
        self._writer.writerow(self._row(record))
        self._fh.flush()

    def report_minimum(self, record: EvaluationRecord) -> None:
        if self._min_writer is None or self._min_fh is None:
            return
        self._min_writer.writerow(self._row(record))
        self._min_fh.flush()

    def close(self) -> None:
        self._fh.close()
        if self._min_fh is not None:
            self._min_fh.close()

    def __enter__(self) -> "ResultLogger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@dataclass(frozen=True)
class SearchOutcome:
    """What an algorithm hands back to the driver when it terminates."""

    return_code: int
    best_point: Point | None = None
    details: Dict[str, Any] = field(default_factory=dict)


class MemoryReporter:
    """Keep reported records in memory."""

    def __init__(self) -> None:
        self.records: List[EvaluationRecord] = []
        self.minima: List[EvaluationRecord] = []

    def report(self, record: EvaluationRecord) -> None:
        self.records.append(record)

    def report_minimum(self, record: EvaluationRecord) -> None:
        self.minima.append(record)

    @property
    def sub_iterations(self) -> List[EvaluationRecord]:
        return [record for record in self.records if not record.main]

    @property
    def main_iterations(self) -> List[EvaluationRecord]:
        return [record for record in self.records if record.main]


def format_result(result: OptimizationResult, objective_names: Iterable[str] = ()) -> str:
    """Human readable summary of an optimization result."""

    lines = [
        f"Return code: {result.return_code}",
        f"Simulations: {result.simulations}",
        f"Main iterations: {result.main_iterations}",
    ]
    names = list(objective_names) or list(result.best_objectives)
    for name in names:
        if name in result.best_objectives:
            lines.append(f"Best {name}: {result.best_objectives[name]}")
    if result.best_parameters:
        lines.append("Best parameters:")
        for name, value in result.best_parameters.items():
            lines.append(f"  {name}: {value}")
    for key, value in result.details.items():
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


__all__ = [
    "EvaluationRecord",
    "MemoryReporter",
    "OptimizationResult",
    "Reporter",
    "ResultLogger",
    "SearchOutcome",
    "format_result",
]
