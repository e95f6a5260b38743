# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Cooperative cancellation and debounced recomputation.

Heavy scans call CancellationToken.raise_if_cancelled() between phases. A
cancelled computation unwinds with ComputationCancelled before it reaches
any cache-populate step, so superseded work never leaves partial results.

Debouncer coalesces bursts of requests (slider drags) into one call of its
worker with the last-issued value, and cancels the previous in-flight call
when a newer one starts.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future
from typing import Final, Generic, TypeVar

from .errors import ComputationCancelled

__all__: Final[list[str]] = [
    "CancellationToken",
    "Debouncer",
    "checkpoint",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """A flag checked by long-running work at safe points."""

    __slots__ = ("_event", "reason")

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "superseded") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ComputationCancelled(self.reason or "cancelled")


def checkpoint(token: CancellationToken | None) -> None:
    """Raise ComputationCancelled if *token* has been cancelled."""
    if token is not None:
        token.raise_if_cancelled()


class Debouncer(Generic[T, R]):
    """Run *worker* once per quiet period with the latest submitted value.

    Every submit() restarts the delay timer. When the timer fires, the
    previous in-flight run (if any) is cancelled through its token and the
    worker is started on *executor* with a fresh token. Results of the most
    recent run are delivered to *on_result*; errors other than cancellation
    go to *on_error*.
    """

    def __init__(
        self,
        worker: Callable[[T, CancellationToken], R],
        executor: Executor,
        *,
        delay: float = 0.3,
        on_result: Callable[[R], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        self._worker = worker
        self._executor = executor
        self._delay = delay
        self._on_result = on_result
        self._on_error = on_error
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._pending: T | None = None
        self._generation = 0
        self._inflight_token: CancellationToken | None = None
        self._inflight_future: Future[R] | None = None
        self._idle = threading.Event()
        self._idle.set()

    def submit(self, value: T) -> None:
        """Schedule a run with *value*, replacing any not-yet-started request."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                logger.debug("Debounce: superseded pending request")
            self._pending = value
            self._generation += 1
            self._idle.clear()
            timer = threading.Timer(self._delay, self._fire, args=(self._generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def cancel(self) -> None:
        """Drop the pending request and cancel the in-flight run."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = None
            self._generation += 1
            if self._inflight_token is not None:
                self._inflight_token.cancel("debouncer cancelled")
            if self._inflight_future is None or self._inflight_future.done():
                self._idle.set()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no request is pending or running."""
        return self._idle.wait(timeout)

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            value = self._pending
            self._pending = None
            self._timer = None
            if self._inflight_token is not None:
                self._inflight_token.cancel("superseded by newer request")
                logger.debug("Debounce: cancelled in-flight run")
            token = CancellationToken()
            self._inflight_token = token
            future = self._executor.submit(self._worker, value, token)  # type: ignore[arg-type]
            self._inflight_future = future
        future.add_done_callback(lambda f: self._finished(f, token, generation))

    def _finished(self, future: Future[R], token: CancellationToken, generation: int) -> None:
        try:
            result = future.result()
        except ComputationCancelled:
            logger.debug("Debounce: run cancelled (%s)", token.reason)
        except Exception as e:
            if token.cancelled:
                logger.debug("Debounce: superseded run failed: %s", e)
            elif self._on_error is not None:
                self._on_error(e)
            else:
                logger.error("Debounced run failed: %s", e)
        else:
            if not token.cancelled and self._on_result is not None:
                self._on_result(result)
        finally:
            with self._lock:
                if self._inflight_token is token:
                    self._inflight_token = None
                    self._inflight_future = None
                latest = generation == self._generation or self._inflight_future is None
                if self._timer is None and latest:
                    self._idle.set()
