"""Evaluators that run an external simulation program per point."""
from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, IO, List, Mapping, Sequence

from ..errors import EvaluationError, UserAbort
from ..workers import WorkerSlot
from .base import BaseEvaluator, EvaluationRequest, GracefulNaNPolicy

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"%([A-Za-z_][\w.]*)%")
_DEFAULT_SEPARATORS = " \t"


@dataclass(frozen=True)
class InputTemplate:
    """Template file whose ``%name%`` placeholders are replaced before each run."""

    template: Path
    destination: str


@dataclass(frozen=True)
class ObjectiveLocation:
    """Where to find one objective value in the simulation output.

    With a ``delimiter`` the value is the number following the last occurrence of
    the delimiter in ``file``. Without one, the first number on the last non-empty
    line is used. ``first_character_at`` (one-based) requires the delimiter to
    start at that column.
    """

    name: str
    file: str
    delimiter: str = ""
    first_character_at: int = 0
    separators: str = ""


def substitute_placeholders(text: str, values: Mapping[str, Any]) -> str:
    """Replace ``%name%`` tokens with their values; unknown tokens are kept."""

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in values:
            value = values[name]
            return repr(value) if isinstance(value, float) else str(value)
        return match.group(0)

    return _PLACEHOLDER.sub(_replace, text)


def find_error_lines(lines: Sequence[str], indicators: Sequence[str]) -> List[str]:
    """Return a message for every line containing one of ``indicators``."""

    messages: List[str] = []
    for number, line in enumerate(lines):
        for indicator in indicators:
            if indicator and indicator in line:
                messages.append(f"Error on line {number}:\n   {line.rstrip()}")
    return messages


def read_objective_value(path: Path, location: ObjectiveLocation) -> float:
    """Parse one objective value from a simulation output file."""

    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as exc:
        raise EvaluationError(f"Cannot read simulation output file {path}: {exc}") from exc

    separators = _DEFAULT_SEPARATORS + location.separators
    if not location.delimiter:
        candidates = [line.rstrip(" \t") for line in lines if line.rstrip(" \t")]
        if not candidates:
            raise EvaluationError(f"Output file {path} does not contain an objective function value")
        return _parse_number(_leading_token(candidates[-1], separators), path, location)

    found: str | None = None
    for line in lines:
        if location.first_character_at > 0:
            if len(line) <= location.first_character_at:
                continue
            shifted = line[location.first_character_at - 1 :]
            if shifted.startswith(location.delimiter):
                found = shifted[len(location.delimiter) :]
        else:
            position = line.rfind(location.delimiter)
            if position != -1:
                found = line[position + len(location.delimiter) :]
    if found is None:
        raise EvaluationError(
            f"Output file {path} does not contain the delimiter {location.delimiter!r} "
            f"for objective {location.name!r}"
        )
    return _parse_number(_leading_token(found, separators), path, location)


def _leading_token(text: str, separators: str) -> str:
    stripped = text.strip()
    cut = len(stripped)
    for separator in separators:
        position = stripped.find(separator)
        if position != -1:
            cut = min(cut, position)
    return stripped[:cut]


def _parse_number(token: str, path: Path, location: ObjectiveLocation) -> float:
    try:
        return float(token)
    except ValueError as exc:
        raise EvaluationError(
            f"Cannot convert {token!r} to a number while reading objective {location.name!r} from {path}"
        ) from exc


class SimulationEvaluator(BaseEvaluator):
    """Run an external program and read the objective values from its output.

    Each evaluation runs inside the working directory of its worker slot. Input
    templates are written with parameter placeholders replaced. Templates and the
    command may also reference ``%working_dir%``, ``%simulation%``,
    ``%stepNumber%``, ``%input_file%`` (the first template destination) and
    ``%input_file_<n>%`` (the n-th destination, counted from 1).
    """

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        command: str | Sequence[str],
        objectives: Sequence[ObjectiveLocation],
        *,
        input_templates: Sequence[InputTemplate] = (),
        log_files: Sequence[str] = (),
        error_indicators: Sequence[str] = (),
        working_root: Path | None = None,
        environment: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
        max_retries: int = 0,
        nan_policy: GracefulNaNPolicy | str | None = None,
    ) -> None:
        super().__init__(
            [location.name for location in objectives],
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            nan_policy=nan_policy,
        )
        self.command = command
        self.objectives = list(objectives)
        self.input_templates = list(input_templates)
        self.log_files = list(log_files)
        self.error_indicators = [indicator for indicator in error_indicators if indicator]
        self.working_root = working_root
        self.environment = dict(environment or {})
        self._template_cache: Dict[Path, str] = {}
        for template in self.input_templates:
            try:
                self._template_cache[template.template] = template.template.read_text(encoding="utf-8")
            except OSError as exc:
                raise EvaluationError(f"Cannot read input template {template.template}: {exc}") from exc

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def _evaluate_impl(self, request: EvaluationRequest, slot: WorkerSlot) -> Mapping[str, Any]:
        working_dir = self._working_directory(slot)
        substitutions = self._substitutions(request, working_dir)

        for template in self.input_templates:
            content = substitute_placeholders(self._template_cache[template.template], substitutions)
            (working_dir / template.destination).write_text(content, encoding="utf-8")

        args = self._command_arguments(substitutions)
        stdout_path = working_dir / "simulation.out"
        logger.debug("Simulation %d: %s (cwd=%s)", request.simulation_number, args, working_dir)
        returncode, stderr = self._run_process(args, working_dir, stdout_path, slot)
        if returncode != 0:
            raise EvaluationError(
                f"Simulation {request.simulation_number} exited with code {returncode}",
                command=args,
                working_directory=str(working_dir),
                details=f"Error stream:\n{stderr}" if stderr else None,
            )

        self._check_logs(working_dir, args, stderr)

        results: Dict[str, float] = {}
        for location in self.objectives:
            results[location.name] = read_objective_value(working_dir / location.file, location)
        return results

    def _working_directory(self, slot: WorkerSlot) -> Path:
        directory = slot.working_directory
        if directory is None:
            root = self.working_root or Path(tempfile.gettempdir()) / "boreas"
            directory = root / f"worker-{slot.index}"
            slot.working_directory = directory
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def _substitutions(self, request: EvaluationRequest, working_dir: Path) -> Dict[str, Any]:
        substitutions: Dict[str, Any] = dict(request.values)
        substitutions["stepNumber"] = request.step_number
        substitutions["simulation"] = request.simulation_number
        substitutions["working_dir"] = str(working_dir)
        for number, template in enumerate(self.input_templates, start=1):
            substitutions[f"input_file_{number}"] = template.destination
        if self.input_templates:
            substitutions["input_file"] = self.input_templates[0].destination
        return substitutions

    def _command_arguments(self, substitutions: Mapping[str, Any]) -> List[str]:
        if isinstance(self.command, str):
            return shlex.split(substitute_placeholders(self.command, substitutions))
        return [substitute_placeholders(str(part), substitutions) for part in self.command]

    def _run_process(
        self,
        args: Sequence[str],
        working_dir: Path,
        stdout_path: Path,
        slot: WorkerSlot,
    ) -> tuple[int, str]:
        env = None
        if self.environment:
            env = dict(os.environ)
            env.update(self.environment)

        stderr_chunks: List[str] = []
        with stdout_path.open("w", encoding="utf-8") as stdout_handle:
            try:
                process = subprocess.Popen(
                    list(args),
                    cwd=str(working_dir),
                    stdout=stdout_handle,
                    stderr=subprocess.PIPE,
                    text=True,
                    env=env,
                )
            except OSError as exc:
                raise EvaluationError(
                    f"Cannot start simulation: {exc}",
                    command=list(args),
                    working_directory=str(working_dir),
                ) from exc

            slot.register_process(process)
            reader = threading.Thread(
                target=_drain_stream,
                args=(process.stderr, stderr_chunks),
                name=f"boreas-stderr-{slot.index}",
                daemon=True,
            )
            reader.start()
            try:
                while process.poll() is None:
                    if slot.cancel_token.wait(self.POLL_INTERVAL):
                        process.kill()
                        process.wait()
                        raise UserAbort()
                returncode = process.returncode
            finally:
                if process.poll() is None:
                    process.kill()
                    process.wait()
                slot.unregister_process(process)
                reader.join(timeout=5.0)
        return returncode, "".join(stderr_chunks)

    def _check_logs(self, working_dir: Path, args: Sequence[str], stderr: str) -> None:
        if not self.error_indicators:
            return
        messages: List[str] = []
        sources: Dict[str, List[str]] = {"<stderr>": stderr.splitlines()}
        for name in self.log_files:
            path = working_dir / name
            if path.exists():
                sources[name] = path.read_text(encoding="utf-8", errors="replace").splitlines()
            else:
                logger.debug("Log file %s does not exist", path)
        for name, lines in sources.items():
            found = find_error_lines(lines, self.error_indicators)
            if found:
                messages.append(f"Simulation log '{name}' reports errors:")
                messages.extend(found)
        if messages:
            raise EvaluationError(
                "Simulation reported an error",
                command=list(args),
                working_directory=str(working_dir),
                details="\n".join(messages),
            )


def _drain_stream(stream: IO[str] | None, sink: List[str]) -> None:
    if stream is None:
        return
    with stream:
        for chunk in iter(stream.readline, ""):
            sink.append(chunk)


__all__ = [
    "InputTemplate",
    "ObjectiveLocation",
    "SimulationEvaluator",
    "find_error_lines",
    "read_objective_value",
    "substitute_placeholders",
]
