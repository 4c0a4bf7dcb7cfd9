# Shelly Exporter - Digest Authentication
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# SHA-256 challenge/response helpers for the Shelly Gen2 RPC protocol. Pure
# hashing only, no I/O.
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

"""shelly_exporter.auth

Digest authentication for Shelly Gen2 devices.

A device answers an unauthenticated request with error code 401 whose
`message` is itself a JSON document carrying `realm`, `nonce` and `nc`.
The client answers with an `auth` object in the request envelope:

    ha1      = sha256("admin:<realm>:<password>")
    ha2      = sha256("dummy_method:dummy_uri")
    response = sha256("<ha1>:<nonce>:<nc>:<cnonce>:auth:<ha2>")

`cnonce` is a client counter that starts at 0 when a challenge is accepted
and is bumped before every request, so the first request answered under a
challenge carries cnonce=1.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping

USERNAME = "admin"
ALGORITHM = "SHA-256"


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


HA2 = sha256_hex("dummy_method:dummy_uri")


@dataclass(frozen=True)
class AuthChallenge:
    """Realm/nonce pair offered by a device in a 401 response."""

    realm: str
    nonce: int
    nc: int = 1

    @classmethod
    def from_error(cls, error: Mapping[str, Any]) -> "AuthChallenge":
        """Build a challenge from the `error` object of an RPC response.

        Raises ValueError when the message is not a well formed challenge.
        """
        message = error.get("message")
        if not isinstance(message, str):
            raise ValueError("401 response carries no challenge message")
        try:
            doc = json.loads(message)
        except json.JSONDecodeError as e:
            raise ValueError(f"challenge message is not JSON: {e}") from e
        if not isinstance(doc, dict):
            raise ValueError("challenge message is not a JSON object")
        try:
            realm = doc["realm"]
            nonce = int(doc["nonce"])
            nc = int(doc.get("nc", 1))
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"incomplete challenge: {e}") from e
        if not isinstance(realm, str):
            raise ValueError("challenge realm must be a string")
        return cls(realm=realm, nonce=nonce, nc=nc)


@dataclass(frozen=True)
class AuthCredential:
    realm: str
    nonce: int
    cnonce: int
    nc: int
    response: str
    username: str = USERNAME
    algorithm: str = ALGORITHM

    def to_wire(self) -> Dict[str, Any]:
        # nc is part of the hash but not of the auth object the device expects
        return {
            "realm": self.realm,
            "username": self.username,
            "nonce": self.nonce,
            "cnonce": self.cnonce,
            "response": self.response,
            "algorithm": self.algorithm,
        }


class DigestAuthenticator:
    """Issue credentials for one accepted challenge.

    A new authenticator is created for every challenge; it is never reset.
    """

    def __init__(self, password: str, challenge: AuthChallenge):
        if not password:
            raise ValueError("password is required for digest authentication")
        self.challenge = challenge
        self._ha1 = sha256_hex(f"{USERNAME}:{challenge.realm}:{password}")
        self._cnonce = 0

    @property
    def cnonce(self) -> int:
        return self._cnonce

    def next_credential(self) -> AuthCredential:
        self._cnonce += 1
        c = self.challenge
        response = sha256_hex(f"{self._ha1}:{c.nonce}:{c.nc}:{self._cnonce}:auth:{HA2}")
        return AuthCredential(
            realm=c.realm,
            nonce=c.nonce,
            cnonce=self._cnonce,
            nc=c.nc,
            response=response,
        )
