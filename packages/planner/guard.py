"""Mutual exclusion between plan execution and refinement."""

import logging
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)

EXECUTING = "executing"
REFINING = "refining"


class ExecutionGuard:
    """
    Two flags, at most one raised at a time.

    Starting one kind of work while the other is active is a no-op: ``hold``
    yields False and the caller is expected to return without doing anything.
    All access happens on one event loop, so plain flags are enough.
    """

    def __init__(self) -> None:
        self.executing = False
        self.refining = False

    @property
    def busy(self) -> bool:
        return self.executing or self.refining

    @contextmanager
    def hold(self, kind: str) -> Iterator[bool]:
        if kind not in (EXECUTING, REFINING):
            raise ValueError(f"Unknown guard kind: {kind}")
        if self.busy:
            logger.info(f"Ignoring {kind} request: {self._active()} already in progress")
            yield False
            return
        setattr(self, kind, True)
        try:
            yield True
        finally:
            setattr(self, kind, False)

    def _active(self) -> str:
        return EXECUTING if self.executing else REFINING
