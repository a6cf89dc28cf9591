"""Worker slots that bound the number of concurrent evaluations."""
from __future__ import annotations

import contextlib
import logging
import queue
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List

from .context import CancelToken

logger = logging.getLogger(__name__)


@dataclass
class WorkerSlot:
    """One evaluation seat of the pool.

    A slot runs at most one evaluation at a time. Evaluators that start external
    processes register them on the slot so that an abort can terminate them.
    """

    index: int
    cancel_token: CancelToken
    working_directory: Path | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _processes: List[subprocess.Popen] = field(default_factory=list, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    def register_process(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.append(process)
        # An abort may have been requested while the process was starting.
        if self.cancel_token.cancelled:
            self.kill_processes()

    def unregister_process(self, process: subprocess.Popen) -> None:
        with self._lock:
            if process in self._processes:
                self._processes.remove(process)

    def kill_processes(self) -> int:
        """Terminate all processes registered on this slot and return how many were live."""

        with self._lock:
            processes = list(self._processes)
        killed = 0
        for process in processes:
            if process.poll() is None:
                try:
                    process.kill()
                    killed += 1
                except OSError:  # pragma: no cover - process exited concurrently
                    logger.debug("Process %s already exited", process.pid)
        return killed


class SlotPool:
    """Bounded pool of :class:`WorkerSlot` objects.

    Slots are handed out through :meth:`checkout`, which always returns the slot
    to the pool, also when the evaluation raises.
    """

    def __init__(
        self,
        size: int,
        cancel_token: CancelToken,
        *,
        working_root: Path | None = None,
    ) -> None:
        if size < 1:
            raise ValueError("Worker pool size must be at least 1")
        self.size = size
        self.cancel_token = cancel_token
        self._lock = threading.Lock()
        self._slots: List[WorkerSlot] = []
        self._free: "queue.Queue[WorkerSlot]" = queue.Queue(maxsize=size)
        for index in range(size):
            directory = working_root / f"worker-{index}" if working_root is not None else None
            slot = WorkerSlot(index=index, cancel_token=cancel_token, working_directory=directory)
            self._slots.append(slot)
            self._free.put(slot)

    @property
    def slots(self) -> List[WorkerSlot]:
        return list(self._slots)

    def available(self) -> int:
        return self._free.qsize()

    @contextlib.contextmanager
    def checkout(self) -> Iterator[WorkerSlot]:
        slot = self._free.get()
        try:
            yield slot
        finally:
            self._free.put(slot)

    def kill_all(self) -> int:
        """Terminate every live process of every slot."""

        with self._lock:
            killed = sum(slot.kill_processes() for slot in self._slots)
        if killed:
            logger.warning("Terminated %d running evaluation process(es)", killed)
        return killed


__all__ = ["SlotPool", "WorkerSlot"]
