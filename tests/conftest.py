import json
import sys
from pathlib import Path

import pytest
import requests
import websocket

# Ensure repository root is on sys.path so tests can import the package
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class FakeSocket:
    def __init__(self, server):
        self.server = server
        self.closed = False

    def send(self, message):
        if self.server.fail_sends > 0:
            self.server.fail_sends -= 1
            raise websocket.WebSocketConnectionClosedException("socket is already closed.")
        self.server.sent.append(json.loads(message))

    def recv(self):
        reply = self.server.next_reply(self.server.sent[-1])
        if isinstance(reply, Exception):
            raise reply
        return reply

    def close(self):
        self.closed = True


class FakeServer:
    """Scripted Shelly RPC endpoint.

    Replies come from `handler(request)` when given, otherwise from the
    `replies` list in order. Dict replies are JSON encoded.
    """

    def __init__(self, replies=None, handler=None):
        self.replies = list(replies or [])
        self.handler = handler
        self.sent = []
        self.urls = []
        self.sockets = []
        self.fail_connects = 0
        self.fail_sends = 0

    @property
    def connects(self):
        return len(self.urls)

    def connector(self, url, timeout):
        self.urls.append(url)
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise ConnectionRefusedError(111, "Connection refused")
        sock = FakeSocket(self)
        self.sockets.append(sock)
        return sock

    def next_reply(self, request):
        reply = self.handler(request) if self.handler else self.replies.pop(0)
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.text = body if isinstance(body, str) else json.dumps(body)


class FakeSession:
    """Stands in for requests.Session; replies are FakeResponse or exceptions."""

    def __init__(self, replies=None, handler=None):
        self.replies = list(replies or [])
        self.handler = handler
        self.calls = []

    def get(self, url, auth=None, timeout=None):
        self.calls.append({"url": url, "auth": auth, "timeout": timeout})
        reply = self.handler(url) if self.handler else self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def close(self):
        pass


def challenge_error(realm="shelly", nonce=12345, nc=1):
    return {
        "id": 1,
        "src": "shellyplusplugs-abc",
        "error": {"code": 401, "message": json.dumps({"auth_type": "digest", "nonce": nonce, "nc": nc,
                                                      "realm": realm, "algorithm": "SHA-256"})},
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connection_error():
    return requests.ConnectionError("connection refused")


def _bthome(kind, cid, addr, config, status):
    return {"key": f"{kind}:{cid}", "config": dict(config, id=cid, addr=addr), "status": dict(status, id=cid)}


def components_reply():
    """Shelly.GetComponents reply of a gateway with two paired BTHome sensors."""
    vent, cellar = "aa:bb:cc:dd:ee:f1", "aa:bb:cc:dd:ee:f2"
    return {"id": 1, "result": {"components": [
        {"key": "switch:0", "status": {"id": 0, "apower": 10.0}, "config": {"id": 0, "name": None}},
        _bthome("bthomedevice", 200, vent, {"name": "Lüftung"},
                {"rssi": -49, "battery": 100, "last_updated_ts": 1753167523}),
        _bthome("bthomedevice", 201, cellar, {"name": "Keller"},
                {"rssi": -69, "battery": 100, "last_updated_ts": 1753167527}),
        _bthome("bthomesensor", 200, vent, {"name": "Battery", "obj_id": 1, "idx": 0},
                {"value": 100, "last_updated_ts": 1753167523}),
        _bthome("bthomesensor", 201, vent, {"name": "Humidity", "obj_id": 46, "idx": 0},
                {"value": 63, "last_updated_ts": 1753167523}),
        _bthome("bthomesensor", 202, vent, {"name": "Temperature", "obj_id": 69, "idx": 0},
                {"value": 20.4, "last_updated_ts": 1753167523}),
        _bthome("bthomesensor", 203, cellar, {"name": "Battery", "obj_id": 1, "idx": 0},
                {"value": 100, "last_updated_ts": 1753167527}),
        _bthome("bthomesensor", 204, cellar, {"name": "Humidity", "obj_id": 46, "idx": 0},
                {"value": 73, "last_updated_ts": 1753167527}),
        _bthome("bthomesensor", 205, cellar, {"name": "Temperature", "obj_id": 69, "idx": 0},
                {"value": 20.2, "last_updated_ts": 1753167527}),
    ]}}
