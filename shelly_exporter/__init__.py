# Shelly Exporter - Prometheus Exporter for Shelly Power Meters
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Package initialization and public API exports.
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

"""Shelly power meter Prometheus exporter.

Polls Shelly Gen1 devices over HTTP and Gen2 (Plus/Pro) devices over
JSON-RPC on a persistent WebSocket, and republishes their readings as
Prometheus gauges.
"""

__version__ = "0.1.0"

from .auth import AuthChallenge, AuthCredential, DigestAuthenticator
from .envelope import RequestEnvelope
from .transport import WebSocketTransport
from .rpc import AuthState, RpcClient
from .poller import DevicePoller, PollResult, PollStep
from .components import BtHomeDevice, BtHomeSensor, parse_components
from .device import DeviceConnection
from .collector import ShellyCollector

__all__ = [
    "AuthChallenge",
    "AuthCredential",
    "DigestAuthenticator",
    "RequestEnvelope",
    "WebSocketTransport",
    "AuthState",
    "RpcClient",
    "DevicePoller",
    "PollResult",
    "PollStep",
    "BtHomeDevice",
    "BtHomeSensor",
    "parse_components",
    "DeviceConnection",
    "ShellyCollector",
]
