import pytest
import websocket

from conftest import FakeServer
from shelly_exporter.transport import SEND_ATTEMPTS, WebSocketTransport, normalize_url


@pytest.mark.parametrize("url, expected", [
    ("http://192.168.1.20/rpc", "ws://192.168.1.20/rpc"),
    ("https://shelly.local/rpc", "wss://shelly.local/rpc"),
    ("192.168.1.20/rpc", "ws://192.168.1.20/rpc"),
    ("ws://192.168.1.20/rpc", "ws://192.168.1.20/rpc"),
    ("wss://shelly.local/rpc", "wss://shelly.local/rpc"),
])
def test_normalize_url(url, expected):
    assert normalize_url(url) == expected


def test_url_is_normalized_once_at_construction():
    t = WebSocketTransport("https://shelly.local/rpc", connector=FakeServer().connector)
    assert t.url == "wss://shelly.local/rpc"


def test_send_connects_lazily():
    server = FakeServer()
    t = WebSocketTransport("http://dev/rpc", connector=server.connector)
    assert not t.connected

    assert t.send('{"id":1,"method":"Switch.GetStatus"}')
    assert server.connects == 1
    assert server.urls == ["ws://dev/rpc"]
    assert t.connected


def test_send_gives_up_after_three_failed_connects():
    server = FakeServer()
    server.fail_connects = 10
    t = WebSocketTransport("http://dev/rpc", connector=server.connector)

    assert t.send("{}") is False
    assert server.connects == SEND_ATTEMPTS == 3
    assert server.sent == []


def test_send_reconnects_after_write_failure():
    server = FakeServer()
    server.fail_sends = 1
    t = WebSocketTransport("http://dev/rpc", connector=server.connector)

    assert t.send('{"id":1}')
    assert server.connects == 2
    assert server.sockets[0].closed
    assert server.sent == [{"id": 1}]


def test_connect_failure_is_reported_not_raised():
    server = FakeServer()
    server.fail_connects = 1
    t = WebSocketTransport("http://dev/rpc", connector=server.connector)
    assert t.connect() is False
    assert t.connect() is True


def test_receive_timeout_drops_connection():
    server = FakeServer(replies=[websocket.WebSocketTimeoutException("timed out")])
    t = WebSocketTransport("http://dev/rpc", connector=server.connector)
    assert t.send('{"id":1}')

    assert t.receive() is None
    assert not t.connected
    assert server.sockets[0].closed


def test_receive_without_connection_returns_none():
    t = WebSocketTransport("http://dev/rpc", connector=FakeServer().connector)
    assert t.receive() is None


def test_receive_decodes_binary_frames():
    server = FakeServer(replies=[b'{"result":{}}'])
    t = WebSocketTransport("http://dev/rpc", connector=server.connector)
    t.send("{}")
    assert t.receive() == '{"result":{}}'


def test_timeout_must_be_positive():
    with pytest.raises(ValueError):
        WebSocketTransport("http://dev/rpc", timeout=0)
