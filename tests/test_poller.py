import json
import threading
import time

import pytest

from shelly_exporter.poller import DevicePoller, PollStep


class CountingStep:
    def __init__(self, replies):
        self.replies = list(replies)
        self.fetches = 0
        self.applied = []

    def fetch(self):
        self.fetches += 1
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return None if reply is None else json.dumps(reply) if not isinstance(reply, str) else reply

    def apply(self, doc):
        doc["result"]["apower"]
        self.applied.append(doc)

    def step(self, name):
        return PollStep(name, self.fetch, self.apply)


def test_requests_within_interval_hit_network_once(clock):
    s = CountingStep([{"result": {"apower": 1.0}}])
    poller = DevicePoller("plug", [s.step("switch")], min_interval=0.8, clock=clock)

    poller.refresh_if_needed()
    clock.advance(0.5)
    poller.refresh_if_needed()
    assert s.fetches == 1

    clock.advance(0.4)
    poller.refresh_if_needed()
    assert s.fetches == 2


def test_cached_result_is_the_same_object(clock):
    s = CountingStep([{"result": {"apower": 1.0}}])
    poller = DevicePoller("plug", [s.step("switch")], clock=clock)

    first = poller.refresh_if_needed()
    clock.advance(0.1)
    assert poller.refresh_if_needed() is first
    assert first.success
    assert first.payloads == {"switch": {"result": {"apower": 1.0}}}


def test_default_interval_is_0_8_seconds(clock):
    poller = DevicePoller("plug", [], clock=clock)
    assert poller.min_interval == 0.8


def test_failed_attempt_still_starts_the_interval(clock):
    s = CountingStep([None])
    poller = DevicePoller("plug", [s.step("switch")], clock=clock)

    result = poller.refresh_if_needed()
    assert not result.success
    assert result.error == "no response"
    clock.advance(0.2)
    assert poller.refresh_if_needed() is result
    assert s.fetches == 1


def test_first_failure_stops_the_cycle_and_keeps_earlier_steps(clock):
    first = CountingStep([{"result": {"apower": 5.0}}])
    second = CountingStep([{"result": {}}])
    third = CountingStep([{"result": {"apower": 7.0}}])
    poller = DevicePoller("pm", [first.step("a"), second.step("b"), third.step("c")], clock=clock)

    result = poller.refresh_if_needed()
    assert not result.success
    assert "b" not in result.payloads
    assert result.payloads["a"] == {"result": {"apower": 5.0}}
    assert len(first.applied) == 1
    assert third.fetches == 0


@pytest.mark.parametrize("reply", [
    "garbage{",
    {"id": 1, "error": {"code": 401, "message": "{}"}},
    {"id": 1, "error": {"code": 500, "message": "boom"}},
    {"result": None},
])
def test_unusable_replies_fail_the_refresh(clock, reply):
    s = CountingStep([reply])
    result = DevicePoller("plug", [s.step("switch")], clock=clock).refresh_if_needed()
    assert not result.success
    assert s.applied == []


def test_negative_interval_rejected(clock):
    with pytest.raises(ValueError):
        DevicePoller("plug", [], min_interval=-1, clock=clock)


def test_concurrent_scrapes_share_one_network_cycle():
    s = CountingStep([{"result": {"apower": 1.0}}])
    slow_fetch = s.fetch

    def fetch():
        time.sleep(0.05)
        return slow_fetch()

    poller = DevicePoller("plug", [PollStep("switch", fetch, s.apply)], min_interval=60)
    barrier = threading.Barrier(8)
    results = []

    def scrape():
        barrier.wait()
        results.append(poller.refresh_if_needed())

    threads = [threading.Thread(target=scrape) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert s.fetches == 1
    assert len(results) == 8
    assert all(r is results[0] for r in results)


def test_unexpected_exception_fails_and_caches_the_refresh(clock, caplog):
    calls = []

    def fetch():
        calls.append(1)
        raise RuntimeError("socket exploded")

    poller = DevicePoller("plug", [PollStep("switch", fetch, lambda doc: None)], clock=clock)
    result = poller.refresh_if_needed()

    assert not result.success
    assert "socket exploded" in result.error
    assert poller.last_result is result
    assert "Refresh of plug failed unexpectedly" in caplog.text
    clock.advance(0.2)
    assert poller.refresh_if_needed() is result
    assert len(calls) == 1


def test_failed_optional_step_does_not_fail_the_cycle(clock):
    meter = CountingStep([{"result": {"apower": 3.0}}])
    extra = CountingStep([None])
    poller = DevicePoller("pm", [meter.step("switch"),
                                 PollStep("components", extra.fetch, extra.apply, optional=True)], clock=clock)

    result = poller.refresh_if_needed()
    assert result.success
    assert list(result.payloads) == ["switch"]
    assert extra.fetches == 1
