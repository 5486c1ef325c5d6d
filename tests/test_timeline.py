import json
from datetime import datetime, timezone

import httpx
import pytest

from hubble.models import PinCommand, PinOp
from hubble.pins import build_test_pin
from hubble.timeline import USER_AGENT, CommandQueue, TimelineClient, TimelineDispatcher

NOW = datetime(2025, 6, 21, 4, 0, tzinfo=timezone.utc)


class FakeTimeline:
    """In-memory timeline API behind httpx.MockTransport."""

    def __init__(self, reject: set[str] = frozenset()) -> None:
        self.pins: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.reject = reject

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        pin_id = request.url.path.rsplit("/", 1)[-1]
        if pin_id in self.reject:
            return httpx.Response(400, text="INVALID_JSON")
        if request.method == "PUT":
            self.pins[pin_id] = json.loads(request.content)
        elif request.method == "DELETE":
            self.pins.pop(pin_id, None)
        return httpx.Response(200, text="OK")


@pytest.fixture
def timeline():
    return FakeTimeline()


@pytest.fixture
def client(timeline):
    with TimelineClient(
        "https://timeline.example/", "secret", transport=httpx.MockTransport(timeline)
    ) as c:
        yield c


def test_put_pin_sends_json_with_token(client, timeline):
    pin = build_test_pin(NOW)
    assert client.put_pin(pin) == 200
    (request,) = timeline.requests
    assert request.method == "PUT"
    assert request.url == "https://timeline.example/v1/user/pins/00-00-test"
    assert request.headers["X-User-Token"] == "secret"
    assert request.headers["User-Agent"] == USER_AGENT
    assert timeline.pins["00-00-test"] == pin.to_json()


def test_delete_pin(client, timeline):
    client.put_pin(build_test_pin(NOW))
    assert client.delete_pin("00-00-test") == 200
    assert timeline.requests[-1].method == "DELETE"
    assert timeline.pins == {}


def test_upsert_is_idempotent(client, timeline):
    pin = build_test_pin(NOW)
    client.put_pin(pin)
    client.put_pin(pin)
    assert list(timeline.pins) == ["00-00-test"]


def test_dispatcher_reports_each_command(client, timeline):
    timeline.reject = {"bad"}
    commands = CommandQueue()
    pin = build_test_pin(NOW)
    commands.upsert(pin)
    commands.delete("bad")
    commands.delete("sun-rise0")

    results = TimelineDispatcher(commands, client).drain()
    assert [r.ok for r in results] == [True, False, True]
    assert results[1].status == 400
    assert "INVALID_JSON" in results[1].detail
    assert len(commands) == 0


def test_network_error_is_a_failed_result():
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    client = TimelineClient("https://timeline.example", "t", transport=httpx.MockTransport(refuse))
    commands = CommandQueue()
    commands.delete("eclipse")
    (result,) = TimelineDispatcher(commands, client).drain()
    assert not result.ok
    assert result.status is None


def test_upsert_without_pin_fails_cleanly(client):
    dispatcher = TimelineDispatcher(CommandQueue(), client)
    result = dispatcher.execute(PinCommand(PinOp.UPSERT, "eclipse"))
    assert not result.ok
    assert dispatcher.results.get_nowait() is result


def test_background_thread_drains_queue(client, timeline):
    commands = CommandQueue()
    dispatcher = TimelineDispatcher(commands, client)
    dispatcher.start()
    commands.delete("eclipse")
    commands.delete("equinox")
    results = [dispatcher.results.get(timeout=5) for _ in range(2)]
    dispatcher.stop(timeout=5)
    assert [r.command.pin_id for r in results] == ["eclipse", "equinox"]
    assert all(r.ok for r in results)
