# Shelly Exporter - Device Connection
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Provides DeviceConnection: one configured Shelly device, its transport,
# its rate-limited refresh cycle and the latest readings.
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

"""shelly_exporter.device

DeviceConnection turns a TargetConfig and the matching DeviceModel table
into something the collector can refresh and read.

High-level responsibilities
- Own the transport: a WebSocketTransport + RpcClient for Gen2 devices or
  an HttpStatusClient for Gen1 devices.
- Build one PollStep per request, skipping requests whose fields are all
  ignored. Per-meter requests get one step per configured meter.
- With `components` set, finish with an optional Shelly.GetComponents step
  whose BTHome devices are kept apart from the meter readings. Its failure
  does not fail the refresh.
- Keep one RequestEnvelope per RPC method; per-meter requests reuse it and
  only change `params["id"]`.
- Store readings keyed by (field key, metric, meter index). Each step reads
  all of its fields before storing any, so a malformed reply leaves the
  previous values of that step untouched.

Thread safety
- Refreshes are serialized by the DevicePoller lock. Readings are guarded
  by their own lock so `samples` can be called at any time.
"""
from __future__ import annotations

import logging
import threading
import time
from functools import partial
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

import requests

from .components import BtHomeDevice, parse_components
from .config import TargetConfig
from .envelope import RequestEnvelope
from .http_status import HttpStatusClient
from .models import Call, Field
from .poller import DevicePoller, PollResult, PollStep
from .rpc import RpcClient
from .transport import WebSocketTransport

log = logging.getLogger(__name__)

ReadingKey = Tuple[str, str, Optional[int]]
COMPONENTS_METHOD = "Shelly.GetComponents"


class Sample(NamedTuple):
    metric: str
    phase: str
    value: float


class DeviceConnection:
    def __init__(self, target: TargetConfig, session: Optional[requests.Session] = None,
                 connector: Optional[Callable[[str, float], Any]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.target = target
        self.name = target.name
        self.model = target.device_model
        self._readings: Dict[ReadingKey, float] = {}
        self._lock = threading.Lock()
        self._envelopes: Dict[str, RequestEnvelope] = {}
        self._bthome: List[BtHomeDevice] = []

        self.transport: Optional[WebSocketTransport] = None
        self.client: Optional[RpcClient] = None
        self.http: Optional[HttpStatusClient] = None
        if self.model.transport == "rpc":
            self.transport = WebSocketTransport(target.url.rstrip("/") + "/rpc", target.request_timeout, connector)
            self.client = RpcClient(self.transport, target.password)
        else:
            self.http = HttpStatusClient(target.url, target.username, target.password,
                                         target.request_timeout, session)

        self.poller = DevicePoller(self.name, self._build_steps(), target.min_interval, clock)

    @property
    def label(self) -> str:
        return self.model.label

    @property
    def up(self) -> bool:
        result = self.poller.last_result
        return result is not None and result.success

    def connect(self) -> bool:
        """Open the device connection ahead of the first scrape."""
        if self.transport is None:
            return True
        ok = self.transport.connect()
        if not ok:
            log.warning("%s: initial connection to %s failed, will retry on scrape", self.name, self.transport.url)
        return ok

    def refresh(self) -> PollResult:
        return self.poller.refresh_if_needed()

    def samples(self) -> List[Sample]:
        with self._lock:
            items = sorted(self._readings.items(), key=lambda kv: (kv[0][1], -1 if kv[0][2] is None else kv[0][2]))
        return [Sample(metric, "" if index is None else str(index), value)
                for (_key, metric, index), value in items]

    def bthome_devices(self) -> List[BtHomeDevice]:
        with self._lock:
            return list(self._bthome)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()

    def _build_steps(self) -> List[PollStep]:
        steps: List[PollStep] = []
        meters = self.target.meter_indexes()
        for call in self.model.calls:
            if call.per_meter:
                for index in meters:
                    pairs = [(f, index) for f in call.fields if f.key not in self.target.ignored(index)]
                    if pairs:
                        steps.append(PollStep(f"{call.name}[{index}]", partial(self._fetch, call, index),
                                              partial(self._apply, pairs)))
                continue
            pairs = []
            for f in call.fields:
                if f.per_meter:
                    pairs.extend((f, index) for index in meters if f.key not in self.target.ignored(index))
                elif f.key not in self.target.ignored():
                    pairs.append((f, None))
            if not pairs:
                log.info("%s: every field of %s is ignored, not requesting it", self.name, call.method or call.name)
                continue
            steps.append(PollStep(call.name, partial(self._fetch, call, None), partial(self._apply, pairs)))
        if self.target.components and self.client is not None:
            steps.append(PollStep("components", self._fetch_components, self._apply_components, optional=True))
        return steps

    def _fetch(self, call: Call, index: Optional[int]) -> Optional[str]:
        if self.http is not None:
            return self.http.request()
        envelope = self._envelopes.get(call.method)
        if envelope is None:
            envelope = RequestEnvelope(call.method, dict(call.params) if call.params is not None else None)
            self._envelopes[call.method] = envelope
        if index is not None:
            if envelope.params is None:
                envelope.params = {}
            envelope.params["id"] = index
        return self.client.request(envelope)

    def _apply(self, pairs: List[Tuple[Field, Optional[int]]], doc: Any) -> None:
        values = {(f.key, f.metric, index): f.read(doc, index) for f, index in pairs}
        with self._lock:
            for key, value in values.items():
                if value is None:
                    self._readings.pop(key, None)
                else:
                    self._readings[key] = value

    def _fetch_components(self) -> Optional[str]:
        envelope = self._envelopes.get(COMPONENTS_METHOD)
        if envelope is None:
            envelope = self._envelopes[COMPONENTS_METHOD] = RequestEnvelope(COMPONENTS_METHOD)
        return self.client.request(envelope)

    def _apply_components(self, doc: Any) -> None:
        devices = parse_components(doc)
        with self._lock:
            self._bthome = devices
