"""Bounded insert retry with jittered backoff for the load phase."""

from __future__ import annotations

import logging
import random
import threading
from typing import Callable, Optional

from txload.db import Status


class InsertionRetrier:
    """Re-attempts a failing insert up to ``limit`` more times.

    Each retry waits ``interval * uniform[0.8, 1.2)`` seconds on ``stop_event``;
    setting the event abandons the remaining retries. ``limit=0`` makes the
    first failure final.
    """

    def __init__(
        self,
        limit: int,
        interval: float,
        stop_event: Optional[threading.Event] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        if limit < 0:
            raise ValueError(f"retry limit must be >= 0 (got {limit})")
        self.limit = limit
        self.interval = interval
        self.stop_event = stop_event or threading.Event()
        self._rng = rng or random.Random()

    def backoff(self) -> float:
        return self.interval * (0.8 + 0.4 * self._rng.random())

    def run(self, attempt: Callable[[], Status], label: str = "insert") -> Status:
        retries = 0
        while True:
            status = attempt()
            if status.is_ok():
                return status
            if retries >= self.limit:
                if self.limit:
                    logging.error(
                        "%s failed after %d attempt(s) (retry limit %d); giving up",
                        label,
                        retries + 1,
                        self.limit,
                    )
                return status
            retries += 1
            delay = self.backoff()
            logging.warning(
                "%s returned %s; retry %d/%d in %.2fs", label, status.name, retries, self.limit, delay
            )
            if self.stop_event.wait(delay):
                logging.info("%s retry abandoned: stop requested", label)
                return status
