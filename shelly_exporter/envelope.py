# Shelly Exporter - RPC Request Envelope
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# The JSON object sent to a device for every RPC call.
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

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from .auth import AuthCredential


class RequestEnvelope:
    """Mutable request object reused for every call of one RPC method.

    `params` may be changed between calls (per-meter requests update the
    `id`), and `auth` is replaced by the RPC client before each send.
    """

    def __init__(self, method: str, params: Optional[Dict[str, Any]] = None, request_id: int = 1):
        self.id = request_id
        self.method = method
        self.params = params
        self.auth: Optional[AuthCredential] = None

    def to_dict(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"id": self.id, "method": self.method}
        if self.params is not None:
            doc["params"] = self.params
        if self.auth is not None:
            doc["auth"] = self.auth.to_wire()
        return doc

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def __repr__(self) -> str:
        return f"RequestEnvelope(method={self.method!r}, params={self.params!r})"
