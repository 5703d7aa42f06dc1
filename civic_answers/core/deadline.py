"""
civic_answers/core/deadline.py

Per-request deadline that doubles as a cancellation token.

One Deadline is created per request and threaded through every stage. Stages
call `check(stage)` before doing work and `clip(stage, timeout)` to bound each
provider call by whatever budget is left, so a request that lost the race
against the orchestrator's timer stops issuing provider calls.
"""

from __future__ import annotations
import threading
import time
from typing import Optional

from civic_answers.core.errors import PipelineTimeout


class Deadline:
    def __init__(self, seconds: float, clock=time.monotonic):
        self._clock = clock
        self._expires_at = clock() + float(seconds)
        self._cancelled = threading.Event()

    def remaining(self) -> float:
        if self._cancelled.is_set():
            return 0.0
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def check(self, stage: str) -> None:
        if self.expired:
            raise PipelineTimeout(stage)

    def clip(self, stage: str, timeout: float) -> float:
        """Return min(timeout, remaining); raise PipelineTimeout when nothing is left."""
        left = self.remaining()
        if left <= 0.0:
            raise PipelineTimeout(stage)
        return min(float(timeout), left)


def clip_timeout(deadline: Optional[Deadline], stage: str, timeout: float) -> float:
    if deadline is None:
        return float(timeout)
    return deadline.clip(stage, timeout)
