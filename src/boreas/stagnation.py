"""Detection of objective functions that stopped producing new values."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from .errors import StagnationError

logger = logging.getLogger(__name__)


@dataclass
class _WindowEntry:
    value: float
    run_id: int
    matches: int = 1


class StagnationDetector:
    """Sliding window of objective values sorted from highest to lowest.

    Each inserted value that equals an entry already in the window joins its
    group; the detector tracks the largest group and the total number of
    duplicate insertions. :meth:`check` fails once the largest group exceeds
    ``max_matching_results``. A non-positive threshold disables the check.
    """

    def __init__(self, max_matching_results: int) -> None:
        self.max_matching_results = int(max_matching_results)
        self._window: List[_WindowEntry] = []
        self.largest_run = 0
        self.duplicate_count = 0
        self._largest_value: float | None = None

    @property
    def enabled(self) -> bool:
        return self.max_matching_results > 0

    def values(self) -> List[float]:
        return [entry.value for entry in self._window]

    def record_result(self, value: float, run_id: int) -> None:
        value = float(value)
        position = len(self._window)
        for i, entry in enumerate(self._window):
            if value >= entry.value:
                position = i
                break

        matches = 1
        for entry in self._window[position:]:
            if entry.value != value:
                break
            entry.matches += 1
            matches = entry.matches
        if matches > 1:
            self.duplicate_count += 1
        self._window.insert(position, _WindowEntry(value=value, run_id=int(run_id), matches=matches))

        if matches > self.largest_run:
            self.largest_run = matches
            self._largest_value = value
        logger.debug("Recorded value %s from run %s (matching=%s)", value, run_id, matches)

    def check(self) -> None:
        if not self.enabled or self.largest_run <= self.max_matching_results:
            return
        value = self._largest_value
        run_ids = sorted(entry.run_id for entry in self._window if entry.value == value)
        lines = [
            f"Objective function returned the value {value!r} {self.largest_run} times,",
            f"but at most {self.max_matching_results} equal results are allowed.",
            "Simulation numbers with this value: " + ", ".join(str(run_id) for run_id in run_ids),
            "Variation too small to make further progress. Increase the precision of the",
            "objective function or reduce the accuracy requested from the optimizer.",
        ]
        raise StagnationError("\n".join(lines), run_ids=run_ids, value=value)


__all__ = ["StagnationDetector"]
