# Shelly Exporter - Poll Rate Limiter
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Provides DevicePoller: runs a device's request steps no more often than
# a minimum interval and caches the outcome.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""shelly_exporter.poller

Shelly devices refresh their readings about once per second, and a scrape
may arrive from several Prometheus servers at once. DevicePoller keeps a
device from being asked more often than `min_interval` seconds.

- `refresh_if_needed` returns the cached PollResult (the same object) while
  the interval has not elapsed since the last attempt. The attempt time is
  recorded whether or not the attempt succeeds, so a dead device is not
  hammered either.
- Steps run in order. The first step that gets no reply, gets an error
  reply, or cannot be applied ends the cycle as failed. Readings already
  applied by earlier steps are kept.
- An `optional` step that fails is logged and skipped; the cycle goes on.
- Anything a step raises beyond a malformed reply also fails the cycle, so
  the cached result never outlives the attempt that replaced it.
- The decision and the network calls happen under one lock per device.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

log = logging.getLogger(__name__)

DEFAULT_MIN_INTERVAL = 0.8


@dataclass(frozen=True)
class PollResult:
    success: bool
    timestamp: float
    payloads: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class PollStep:
    """One request of a refresh cycle.

    `fetch` returns the raw reply or None on a hard failure; `apply` takes
    the parsed document and raises ValueError/KeyError/TypeError/IndexError
    when it does not have the expected shape.
    """

    name: str
    fetch: Callable[[], Optional[str]]
    apply: Callable[[Any], None]
    optional: bool = False


class DevicePoller:
    def __init__(self, name: str, steps: Sequence[PollStep], min_interval: float = DEFAULT_MIN_INTERVAL,
                 clock: Callable[[], float] = time.monotonic):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.name = name
        self.steps: List[PollStep] = list(steps)
        self.min_interval = float(min_interval)
        self._clock = clock
        self._lock = threading.Lock()
        self._last_request: Optional[float] = None
        self._result: Optional[PollResult] = None

    @property
    def last_result(self) -> Optional[PollResult]:
        return self._result

    def refresh_if_needed(self) -> PollResult:
        with self._lock:
            now = self._clock()
            if (self._result is not None and self._last_request is not None
                    and now - self._last_request < self.min_interval):
                return self._result
            self._last_request = now
            payloads: Dict[str, Any] = {}
            try:
                self._result = self._run_steps(now, payloads)
            except Exception as exc:
                log.exception("Refresh of %s failed unexpectedly", self.name)
                self._result = PollResult(success=False, timestamp=now, payloads=payloads, error=repr(exc))
            return self._result

    def _run_steps(self, now: float, payloads: Dict[str, Any]) -> PollResult:
        log.debug("Refreshing %s", self.name)
        for step in self.steps:
            error = self._run_step(step, payloads)
            if error is None:
                continue
            if step.optional:
                log.warning("Optional step %s of %s failed, continuing: %s", step.name, self.name, error)
                continue
            log.error("Refresh of %s failed at %s: %s", self.name, step.name, error)
            return PollResult(success=False, timestamp=now, payloads=payloads, error=error)
        return PollResult(success=True, timestamp=now, payloads=payloads)

    def _run_step(self, step: PollStep, payloads: Dict[str, Any]) -> Optional[str]:
        raw = step.fetch()
        if raw is None:
            return "no response"
        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as e:
            return f"invalid JSON reply: {e}"
        if isinstance(doc, dict) and "error" in doc:
            return f"device returned error {doc['error']!r}"
        try:
            step.apply(doc)
        except (ValueError, KeyError, TypeError, IndexError) as e:
            return f"unexpected reply shape: {e!r}"
        payloads[step.name] = doc
        return None
