# Shelly Exporter - WebSocket Transport
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Provides WebSocketTransport: a single persistent WebSocket per device
# endpoint with bounded reconnects on send.
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

"""shelly_exporter.transport

WebSocketTransport keeps one persistent WebSocket to a device's `/rpc`
endpoint.

Design notes
- The connection is opened lazily. `send` makes up to SEND_ATTEMPTS
  attempts and (re)connects before any attempt that finds no connection;
  a failed write drops the socket so the next attempt starts fresh.
- `receive` never retries. A timeout or a broken socket returns None and
  drops the connection; the caller decides what a missing reply means.
- Every operation is bounded by `timeout` seconds.
- Not thread-safe on its own; RpcClient serializes access.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import websocket

log = logging.getLogger(__name__)

SEND_ATTEMPTS = 3


def normalize_url(url: str) -> str:
    """Map an http(s) or bare host URL onto the matching ws(s) scheme."""
    url = url.strip()
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    if url.startswith("ws://") or url.startswith("wss://"):
        return url
    return "ws://" + url


def _default_connector(url: str, timeout: float) -> Any:
    return websocket.create_connection(url, timeout=timeout)


class WebSocketTransport:
    def __init__(self, url: str, timeout: float = 3.0, connector: Optional[Callable[[str, float], Any]] = None):
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.url = normalize_url(url)
        self.timeout = float(timeout)
        self._connector = connector or _default_connector
        self._ws: Optional[Any] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def connect(self) -> bool:
        """Open the WebSocket. Returns False instead of raising on failure."""
        self._drop()
        try:
            self._ws = self._connector(self.url, self.timeout)
        except (websocket.WebSocketException, OSError) as e:
            log.warning("Connect to %s failed: %s", self.url, e)
            self._ws = None
            return False
        log.debug("Connected to %s", self.url)
        return True

    def send(self, message: str) -> bool:
        for attempt in range(1, SEND_ATTEMPTS + 1):
            if self._ws is None and not self.connect():
                log.debug("Send attempt %d/%d to %s: no connection", attempt, SEND_ATTEMPTS, self.url)
                continue
            try:
                self._ws.send(message)
                return True
            except (websocket.WebSocketException, OSError) as e:
                log.debug("Send attempt %d/%d to %s failed: %s", attempt, SEND_ATTEMPTS, self.url, e)
                self._drop()
        log.error("Giving up sending to %s after %d attempts", self.url, SEND_ATTEMPTS)
        return False

    def receive(self) -> Optional[str]:
        if self._ws is None:
            return None
        try:
            data = self._ws.recv()
        except websocket.WebSocketTimeoutException:
            log.warning("Timed out after %.1fs waiting for %s", self.timeout, self.url)
            self._drop()
            return None
        except (websocket.WebSocketException, OSError) as e:
            log.warning("Receive from %s failed: %s", self.url, e)
            self._drop()
            return None
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")
        if not data:
            # an empty frame is what a closed socket looks like here
            self._drop()
            return None
        return data

    def close(self) -> None:
        self._drop()

    def _drop(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            ws.close()
        except (websocket.WebSocketException, OSError):
            pass
