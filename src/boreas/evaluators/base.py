"""Base interfaces and utilities for objective function evaluators."""
from __future__ import annotations

import concurrent.futures
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..context import CancelToken
from ..errors import EvaluationError, NonFiniteObjectiveError, UserAbort
from ..workers import WorkerSlot

logger = logging.getLogger(__name__)


ObjectiveValues = Dict[str, float]
"""Mapping of objective names to the values returned by an evaluator."""


class GracefulNaNPolicy(str, Enum):
    """Policies for handling NaN/Inf objective values."""

    ERROR = "error"
    COERCE_TO_INF = "coerce_to_inf"


class EvaluationRequest(BaseModel):
    """Structured representation of evaluator inputs."""

    values: Dict[str, Any]
    simulation_number: int = Field(default=0, ge=0)
    step_number: int = Field(default=1, ge=0)

    model_config = ConfigDict(arbitrary_types_allowed=True)


@dataclass(frozen=True)
class _ExecutionConfig:
    """Execution parameters resolved for a single evaluation."""

    timeout: float | None
    max_retries: int
    nan_policy: GracefulNaNPolicy


class BaseEvaluator(ABC):
    """Common interface for all evaluator implementations.

    Evaluators receive the original-space parameter values of a point and return
    one value per configured objective. Concrete subclasses implement
    :meth:`_evaluate_impl`, which may return either a mapping keyed by objective
    name or, for single objective problems, a bare number.
    """

    #: Default graceful NaN policy if not provided explicitly.
    DEFAULT_NAN_POLICY: GracefulNaNPolicy = GracefulNaNPolicy.ERROR

    def __init__(
        self,
        objective_names: Sequence[str],
        *,
        timeout_seconds: float | None = None,
        max_retries: int = 0,
        nan_policy: GracefulNaNPolicy | str | None = None,
    ) -> None:
        if not objective_names:
            raise ValueError("At least one objective name is required")
        self.objective_names = [str(name) for name in objective_names]
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.nan_policy = nan_policy

    def evaluate(
        self,
        values: Mapping[str, Any],
        *,
        simulation_number: int = 0,
        step_number: int = 1,
        slot: WorkerSlot | None = None,
    ) -> ObjectiveValues:
        """Compute the objective values for one parameter set.

        Parameters
        ----------
        values:
            Mapping of parameter names to original-space values.
        simulation_number:
            One-based counter of the evaluation, used for working files.
        step_number:
            Current step number of adaptive precision schemes.
        slot:
            Worker slot the evaluation runs in. A private slot is created when
            omitted.
        """

        request = EvaluationRequest.model_validate(
            {"values": dict(values), "simulation_number": simulation_number, "step_number": step_number}
        )
        if slot is None:
            slot = WorkerSlot(index=0, cancel_token=CancelToken())
        exec_config = self._resolve_execution_config()

        attempts = exec_config.max_retries + 1
        for attempt in range(attempts):
            slot.cancel_token.raise_if_cancelled()
            start = time.perf_counter()
            try:
                raw = self._execute(request, slot=slot, timeout=exec_config.timeout)
            except UserAbort:
                raise
            except Exception as exc:  # noqa: BLE001 - propagate through retry logic
                if slot.cancelled:
                    raise UserAbort() from exc
                if attempt < attempts - 1:
                    logger.warning(
                        "Evaluation %d failed (%s); retrying (%d/%d)",
                        request.simulation_number,
                        exc,
                        attempt + 1,
                        exec_config.max_retries,
                    )
                    continue
                if isinstance(exc, EvaluationError):
                    raise
                raise EvaluationError(
                    f"Evaluation {request.simulation_number} failed: {exc.__class__.__name__}: {exc}"
                ) from exc
            elapsed = time.perf_counter() - start
            logger.debug("Evaluation %d finished in %.3fs", request.simulation_number, elapsed)
            return self._finalize_result(raw, nan_policy=exec_config.nan_policy)

        # The loop always returns or raises.
        raise RuntimeError("Evaluator execution loop exited unexpectedly.")

    @abstractmethod
    def _evaluate_impl(self, request: EvaluationRequest, slot: WorkerSlot) -> Mapping[str, Any] | float:
        """Return the raw objective payload prior to normalization."""

    def __call__(self, values: Mapping[str, Any], **kwargs: Any) -> ObjectiveValues:
        return self.evaluate(values, **kwargs)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _resolve_execution_config(self) -> _ExecutionConfig:
        timeout = self.timeout_seconds
        if timeout is not None and timeout <= 0:
            timeout = None
        max_retries = max(0, int(self.max_retries or 0))
        return _ExecutionConfig(
            timeout=timeout,
            max_retries=max_retries,
            nan_policy=self._coerce_nan_policy(self.nan_policy),
        )

    def _coerce_nan_policy(self, candidate: GracefulNaNPolicy | str | None) -> GracefulNaNPolicy:
        if isinstance(candidate, GracefulNaNPolicy):
            return candidate
        if isinstance(candidate, str):
            try:
                return GracefulNaNPolicy(candidate)
            except ValueError as exc:
                raise ValueError(f"Unknown graceful_nan_policy: {candidate!r}") from exc
        return self.DEFAULT_NAN_POLICY

    def _execute(
        self,
        request: EvaluationRequest,
        *,
        slot: WorkerSlot,
        timeout: float | None,
    ) -> Mapping[str, Any] | float:
        if timeout is None:
            return self._evaluate_impl(request, slot)

        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self._evaluate_impl, request, slot)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            slot.kill_processes()
            raise EvaluationError(
                f"Evaluation {request.simulation_number} exceeded timeout of {timeout} seconds",
                working_directory=str(slot.working_directory) if slot.working_directory else None,
            ) from exc
        finally:
            executor.shutdown(wait=False)

    def _finalize_result(
        self,
        payload: Mapping[str, Any] | float,
        *,
        nan_policy: GracefulNaNPolicy,
    ) -> ObjectiveValues:
        """Validate and normalize the raw evaluator payload."""

        if not isinstance(payload, Mapping):
            if len(self.objective_names) != 1:
                raise EvaluationError(
                    "Evaluator returned a single value but "
                    f"{len(self.objective_names)} objectives are configured"
                )
            payload = {self.objective_names[0]: payload}

        missing = [name for name in self.objective_names if name not in payload]
        if missing:
            raise EvaluationError(
                "Evaluator payload is missing objective values: " + ", ".join(missing)
            )

        normalized: ObjectiveValues = {}
        invalid: list[str] = []
        for name in self.objective_names:
            try:
                value = float(payload[name])
            except (TypeError, ValueError) as exc:
                raise EvaluationError(f"Objective {name!r} must be convertible to float") from exc
            if math.isnan(value) or math.isinf(value):
                invalid.append(name)
            normalized[name] = value

        if invalid:
            if nan_policy is GracefulNaNPolicy.ERROR:
                raise NonFiniteObjectiveError(
                    "Evaluator produced non-finite objective values: " + ", ".join(invalid)
                )
            for name in invalid:
                normalized[name] = math.inf
        return normalized


__all__ = [
    "BaseEvaluator",
    "EvaluationRequest",
    "GracefulNaNPolicy",
    "ObjectiveValues",
]
