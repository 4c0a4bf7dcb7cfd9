# Shelly Exporter - RPC Client
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Provides RpcClient: one request/response exchange over a device's
# WebSocket, including the digest authentication handshake.
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

"""shelly_exporter.rpc

RpcClient drives a single request/response exchange with a Shelly Gen2
device.

The cycle runs at most twice:
- attach a fresh credential when a challenge has been accepted, serialize
  and send the envelope, then wait for one reply;
- a reply that is not JSON is handed back untouched;
- a reply with an `error` is final unless it is the first 401 of the call,
  in which case the challenge inside it is accepted and the request is sent
  again once.

Return values
- None: the request never completed (send or receive failed). This is a
  hard failure.
- str: the raw reply. A structured error reply is a soft failure and is
  left for the caller to interpret.

Thread safety
- One RpcClient belongs to one device connection. `request` holds an RLock
  for the whole exchange so replies cannot be interleaved on the socket.
"""
from __future__ import annotations

import enum
import json
import logging
import threading
from typing import Any, Optional

from .auth import AuthChallenge, AuthCredential, DigestAuthenticator
from .envelope import RequestEnvelope
from .transport import WebSocketTransport

log = logging.getLogger(__name__)

UNAUTHORIZED = 401


class AuthState(enum.Enum):
    NO_AUTH = "no_auth"
    CHALLENGED = "challenged"
    AUTHENTICATED = "authenticated"


class RpcClient:
    def __init__(self, transport: WebSocketTransport, password: Optional[str] = None):
        self.transport = transport
        self.password = password or None
        self._lock = threading.RLock()
        self._authenticator: Optional[DigestAuthenticator] = None
        self._credential: Optional[AuthCredential] = None
        self._state = AuthState.NO_AUTH

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def credential(self) -> Optional[AuthCredential]:
        """The last credential sent, or None before any challenge."""
        return self._credential

    def request(self, envelope: RequestEnvelope) -> Optional[str]:
        with self._lock:
            response: Optional[str] = None
            for attempt in range(2):
                if self._authenticator is not None:
                    self._credential = self._authenticator.next_credential()
                    envelope.auth = self._credential
                else:
                    envelope.auth = None

                if not self.transport.send(envelope.to_json()):
                    log.error("Failed to send %s to %s", envelope.method, self.transport.url)
                    return None

                response = self.transport.receive()
                if response is None:
                    log.error("No reply to %s from %s", envelope.method, self.transport.url)
                    return None

                try:
                    doc = json.loads(response)
                except json.JSONDecodeError:
                    log.debug("Reply to %s is not JSON, returning it as-is", envelope.method)
                    return response

                error = doc.get("error") if isinstance(doc, dict) else None
                if not isinstance(error, dict):
                    if self._authenticator is not None:
                        self._state = AuthState.AUTHENTICATED
                    return response

                code = error.get("code")
                if attempt > 0 or code != UNAUTHORIZED:
                    log.debug("%s on %s returned error %s", envelope.method, self.transport.url, code)
                    return response

                if not self._accept_challenge(error):
                    return response

                log.debug("Accepted auth challenge from %s, retrying %s", self.transport.url, envelope.method)
            return response

    def _accept_challenge(self, error: Any) -> bool:
        if not self.password:
            log.error("%s requires authentication but no password is configured", self.transport.url)
            return False
        try:
            challenge = AuthChallenge.from_error(error)
        except ValueError as e:
            log.error("Malformed auth challenge from %s: %s", self.transport.url, e)
            return False
        self._authenticator = DigestAuthenticator(self.password, challenge)
        self._state = AuthState.CHALLENGED
        return True

    def close(self) -> None:
        with self._lock:
            self.transport.close()
