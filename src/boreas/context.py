"""Explicit search state shared by the driver, the engines and the dispatcher."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from .errors import UserAbort


class CoordinateSpace(str, Enum):
    """Space in which an algorithm moves the continuous coordinates."""

    ORIGINAL = "original"
    TRANSFORMED = "transformed"


class CancelToken:
    """Thread-safe flag signalling that the optimization must stop."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise UserAbort()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


@dataclass
class IterationCounters:
    """Counters reported with every logged point."""

    simulations: int = 0
    main_iteration: int = 0
    sub_iteration: int = 0


@dataclass
class SearchContext:
    """Random generator, counters and cancellation state of one optimization run."""

    seed: int | None = None
    rng: np.random.Generator = field(init=False)
    cancel_token: CancelToken = field(default_factory=CancelToken)
    counters: IterationCounters = field(default_factory=IterationCounters)
    step_number: int = 1
    use_step_number: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.rng = np.random.default_rng(self.seed)

    def reseed(self, seed: int | None) -> None:
        self.seed = seed
        self.rng = np.random.default_rng(seed)

    def uniform(self) -> float:
        return float(self.rng.random())

    def integer(self, upper: int) -> int:
        """Uniform integer in ``[0, upper)``."""

        return int(self.rng.integers(0, upper))

    def next_simulation_number(self) -> int:
        with self._lock:
            self.counters.simulations += 1
            return self.counters.simulations


__all__ = ["CancelToken", "CoordinateSpace", "IterationCounters", "SearchContext"]
