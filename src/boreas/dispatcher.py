"""Concurrent evaluation of candidate points."""
from __future__ import annotations

import concurrent.futures
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple

from .context import SearchContext
from .errors import UserAbort
from .evaluators.base import BaseEvaluator
from .point import Point
from .stagnation import StagnationDetector
from .workers import SlotPool

logger = logging.getLogger(__name__)

ValueMapper = Callable[[Point], Mapping[str, Any]]


def _default_value_mapper(point: Point) -> Dict[str, Any]:
    values: Dict[str, Any] = {f"x{i}": value for i, value in enumerate(point.x)}
    values.update({f"i{i}": index for i, index in enumerate(point.indices)})
    return values


class EvaluationDispatcher:
    """Turn candidate points into evaluated points using a bounded worker pool.

    Every distinct location is evaluated at most once; repeated requests are
    answered from a cache keyed by coordinates, indices and, when step numbers
    are in use, the step number. Within a batch the results keep the input
    order. A failure of one member cancels the rest of the batch.

    Parameters
    ----------
    evaluator:
        Evaluator invoked for each new point.
    context:
        Search context providing the cancellation token and counters.
    workers:
        Maximum number of concurrent evaluations.
    value_mapper:
        Converts a point into the named parameter values passed to the evaluator.
    stagnation:
        Optional detector fed with every new objective value.
    working_root:
        Root of the per-worker working directories.
    """

    def __init__(
        self,
        evaluator: BaseEvaluator,
        *,
        context: SearchContext,
        workers: int = 1,
        value_mapper: ValueMapper | None = None,
        stagnation: StagnationDetector | None = None,
        working_root: Path | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be a positive integer")
        self.evaluator = evaluator
        self.context = context
        self.workers = workers
        self.value_mapper: ValueMapper = value_mapper or _default_value_mapper
        self.stagnation = stagnation
        self.slots = SlotPool(workers, context.cancel_token, working_root=working_root)
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="boreas-eval"
        )
        self._lock = threading.Lock()
        self._cache: Dict[tuple, Tuple[Tuple[float, ...], int | None]] = {}
        self.invocations = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def objective_names(self) -> List[str]:
        return list(self.evaluator.objective_names)

    def evaluate(self, point: Point) -> Point:
        return self.evaluate_all([point])[0]

    def evaluate_all(self, points: Sequence[Point]) -> List[Point]:
        """Evaluate ``points`` concurrently and return them in input order."""

        self.context.cancel_token.raise_if_cancelled()
        keys = [self._key(point) for point in points]

        pending: Dict[tuple, Point] = {}
        for key, point in zip(keys, points):
            if key not in self._cache and key not in pending:
                pending[key] = point

        if pending:
            evaluated = self._run_batch(list(pending.items()))
            for key, point in evaluated:
                self._cache[key] = (point.f, point.simulation_number)  # type: ignore[assignment]
                if self.stagnation is not None:
                    self.stagnation.record_result(point.objective, point.simulation_number or 0)
                    self.stagnation.check()

        results: List[Point] = []
        for key, point in zip(keys, points):
            f, simulation_number = self._cache[key]
            results.append(point.with_f(f, simulation_number=simulation_number))
        return results

    def is_cached(self, point: Point) -> bool:
        return self._key(point) in self._cache

    def abort(self) -> None:
        """Stop dispatching and terminate every running evaluation process."""

        with self._lock:
            self.context.cancel_token.cancel()
        logger.warning("Abort requested; cancelling running evaluations")
        self.slots.kill_all()

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)

    def __enter__(self) -> "EvaluationDispatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _key(self, point: Point) -> tuple:
        return point.key(include_step_number=self.context.use_step_number)

    def _run_batch(self, items: List[Tuple[tuple, Point]]) -> List[Tuple[tuple, Point]]:
        batch_cancelled = threading.Event()
        futures = [
            self._executor.submit(self._evaluate_one, point, batch_cancelled) for _, point in items
        ]
        try:
            done, not_done = concurrent.futures.wait(
                futures, return_when=concurrent.futures.FIRST_EXCEPTION
            )
        except BaseException:
            # Interrupted while waiting, e.g. by KeyboardInterrupt.
            batch_cancelled.set()
            self.abort()
            concurrent.futures.wait(futures)
            raise

        failure: BaseException | None = None
        for future in futures:
            if future in done and future.exception() is not None:
                failure = future.exception()
                break

        if failure is not None or self.context.cancel_token.cancelled:
            batch_cancelled.set()
            for future in not_done:
                future.cancel()
            self.slots.kill_all()
            concurrent.futures.wait(futures)
            if self.context.cancel_token.cancelled:
                raise UserAbort() from failure
            assert failure is not None
            raise failure

        return [(key, future.result()) for (key, _), future in zip(items, futures)]

    def _evaluate_one(self, point: Point, batch_cancelled: threading.Event) -> Point:
        with self.slots.checkout() as slot:
            with self._lock:
                if self.context.cancel_token.cancelled or batch_cancelled.is_set():
                    raise UserAbort()
                self.invocations += 1
            simulation_number = self.context.next_simulation_number()
            values = self.value_mapper(point)
            logger.debug("Dispatching simulation %d to worker %d", simulation_number, slot.index)
            result = self.evaluator.evaluate(
                values,
                simulation_number=simulation_number,
                step_number=point.step_number,
                slot=slot,
            )
            f = tuple(result[name] for name in self.evaluator.objective_names)
            return point.with_f(f, simulation_number=simulation_number)


__all__ = ["EvaluationDispatcher", "ValueMapper"]
