import asyncio
import json

import pytest
import trio
import trio_asyncio
from trio.testing import wait_all_tasks_blocked
from websockets.exceptions import ConnectionClosed, WebSocketException

from relayrun.backends.nostr import NostrRelay, verify_signature
from relayrun.errors import RelayConnectionError, RelayPublishError
from relayrun.reply import compose_reply_post

from helpers import TEST_SECRET_KEY, make_event

URL = "wss://relay.test"


def sent_frames(relay):
    frames = []

    while True:
        try:
            frames.append(relay._out_receive.receive_nowait())

        except trio.WouldBlock:
            return frames


def signed_event(content="hello"):
    return compose_reply_post(content, make_event("1" * 64, pubkey="c" * 64), TEST_SECRET_KEY)


async def feed(relay, *frame):
    return await relay._receive(json.dumps(list(frame)))


# === subscriptions ===


def test_subscribe_sends_req():
    relay = NostrRelay(URL)
    sub = relay.subscribe([{"ids": ["abc"]}, {"kinds": [1]}], lambda ev: None, lambda: None)

    assert sent_frames(relay) == [["REQ", sub.id, {"ids": ["abc"]}, {"kinds": [1]}]]


def test_subscription_ids_are_unique():
    relay = NostrRelay(URL)

    first = relay.subscribe([{}], lambda ev: None, lambda: None)
    second = relay.subscribe([{}], lambda ev: None, lambda: None)

    assert first.id != second.id


def test_close_sends_close_once():
    relay = NostrRelay(URL)
    sub = relay.subscribe([{"ids": ["abc"]}], lambda ev: None, lambda: None)
    sent_frames(relay)

    sub.close()
    sub.close()

    assert sub.closed
    assert sent_frames(relay) == [["CLOSE", sub.id]]


@pytest.mark.trio
async def test_events_and_eose_are_delivered():
    relay = NostrRelay(URL, verify_events=False)
    events, eoses = [], []
    sub = relay.subscribe([{"ids": ["abc"]}], events.append, lambda: eoses.append(True))
    event = make_event("abc", content="/run lang")

    assert await feed(relay, "EVENT", sub.id, event.to_dict())
    assert await feed(relay, "EOSE", sub.id)
    assert await feed(relay, "EOSE", sub.id)

    assert events == [event]
    assert eoses == [True]


@pytest.mark.trio
async def test_events_for_other_subscriptions_are_ignored():
    relay = NostrRelay(URL, verify_events=False)
    events = []
    relay.subscribe([{}], events.append, lambda: None)

    await feed(relay, "EVENT", "someone-else", make_event("abc").to_dict())

    assert events == []


@pytest.mark.trio
async def test_closed_subscription_gets_nothing_more():
    relay = NostrRelay(URL, verify_events=False)
    events = []
    sub = relay.subscribe([{}], events.append, lambda: None)
    sub.close()

    await feed(relay, "EVENT", sub.id, make_event("abc").to_dict())

    assert events == []


@pytest.mark.trio
async def test_closed_by_relay_ends_the_subscription():
    relay = NostrRelay(URL)
    eoses = []
    sub = relay.subscribe([{}], lambda ev: None, lambda: eoses.append(True))
    sent_frames(relay)

    await feed(relay, "CLOSED", sub.id, "error: too many subscriptions")
    sub.close()

    assert eoses == [True]
    assert sub.closed
    assert sent_frames(relay) == []


@pytest.mark.trio
async def test_malformed_frames():
    relay = NostrRelay(URL)

    assert not await relay._receive("not json")
    assert not await relay._receive('{"EVENT": 1}')
    assert not await relay._receive("[]")
    assert not await relay._receive("[1, 2]")
    assert await relay._receive(b'["NOTICE", "hi"]')


@pytest.mark.trio
async def test_frames_are_emitted_to_listeners():
    relay = NostrRelay(URL)
    notices = []

    @relay.listen("RELAY_NOTICE")
    async def on_notice(kind, frame):
        notices.append(frame)

    await feed(relay, "NOTICE", "rate limited")

    assert notices == [["NOTICE", "rate limited"]]


# === validation ===


def test_verify_signature():
    event = signed_event()

    assert verify_signature(event.to_dict())
    assert not verify_signature(dict(event.to_dict(), sig="0" * 128))
    assert not verify_signature({"nonsense": True})


@pytest.mark.trio
async def test_valid_signed_event_is_delivered():
    relay = NostrRelay(URL)
    events = []
    sub = relay.subscribe([{}], events.append, lambda: None)
    event = signed_event()

    await feed(relay, "EVENT", sub.id, event.to_dict())

    assert events == [event]


@pytest.mark.trio
@pytest.mark.parametrize(
    "tamper",
    [
        lambda data: dict(data, content="/run python\nprint('pwned')"),
        lambda data: dict(data, sig="0" * 128),
        lambda data: dict(data, kind="1"),
        lambda data: {"id": data["id"]},
    ],
)
async def test_bad_events_are_dropped(tamper):
    relay = NostrRelay(URL)
    events = []
    sub = relay.subscribe([{}], events.append, lambda: None)

    assert await feed(relay, "EVENT", sub.id, tamper(signed_event().to_dict()))
    assert events == []


# === publishing ===


@pytest.mark.trio
async def test_publish_accepted():
    relay = NostrRelay(URL)
    event = signed_event()

    async def acknowledge():
        await wait_all_tasks_blocked()
        await feed(relay, "OK", event.id, True, "")

    async with trio.open_nursery() as nursery:
        nursery.start_soon(acknowledge)
        await relay.publish(event)

    assert sent_frames(relay) == [["EVENT", event.to_dict()]]
    assert relay._pending == {}


@pytest.mark.trio
async def test_publish_rejected():
    relay = NostrRelay(URL)
    event = signed_event()

    async def reject():
        await wait_all_tasks_blocked()
        await feed(relay, "OK", event.id, False, "blocked: not on the allow list")

    async with trio.open_nursery() as nursery:
        nursery.start_soon(reject)

        with pytest.raises(RelayPublishError, match="allow list"):
            await relay.publish(event)


@pytest.mark.trio
async def test_publish_unacknowledged():
    relay = NostrRelay(URL)

    with pytest.raises(RelayPublishError):
        await relay.publish(signed_event(), timeout=0.01)

    assert relay._pending == {}


@pytest.mark.trio
async def test_follow_needs_a_running_relay():
    with pytest.raises(RelayConnectionError):
        NostrRelay(URL).follow([{"kinds": [1]}])


@pytest.mark.trio
async def test_follow_emits_messages():
    relay = NostrRelay(URL, verify_events=False)
    messages = []

    @relay.listen("MESSAGE")
    async def on_message(kind, event):
        messages.append(event)

    event = make_event("abc", content="/run lang")

    async with trio.open_nursery() as nursery:
        relay._nursery = nursery

        sub = relay.follow([{"kinds": [1], "since": 0}])
        await feed(relay, "EVENT", sub.id, event.to_dict())

    assert sent_frames(relay) == [["REQ", sub.id, {"kinds": [1], "since": 0}]]
    assert messages == [event]


# === lifecycle ===


class FakeConnection:
    """Plays back frames, then either hangs up or waits forever."""

    def __init__(self, frames=(), hang_up=True):
        self.frames = list(frames)
        self.hang_up = hang_up
        self.sent = []
        self.closed = False

    async def recv(self):
        if self.frames:
            return self.frames.pop(0)

        if self.hang_up:
            raise ConnectionClosed(None, None)

        await asyncio.sleep(3600)

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True


def connecting_to(relay, connection):
    async def connect():
        return connection

    relay._aio_connect = connect


@pytest.mark.trio
async def test_connection_lost():
    relay = NostrRelay(URL)
    connection = FakeConnection([json.dumps(["NOTICE", "bye"])])
    connecting_to(relay, connection)
    seen = []

    @relay.listen_all()
    async def on_anything(kind, data):
        seen.append(kind)

    async with trio_asyncio.open_loop():
        with pytest.raises(RelayConnectionError, match="Lost the connection"):
            await relay.start()

    assert seen == ["CONNECT", "RELAY_NOTICE"]
    assert connection.closed
    assert not relay.running()

    with pytest.raises(RelayConnectionError):
        relay.subscribe([{}], lambda ev: None, lambda: None)


@pytest.mark.trio
async def test_could_not_connect():
    relay = NostrRelay(URL)

    async def refuse():
        raise ConnectionRefusedError("nobody home")

    relay._aio_connect = refuse

    async with trio_asyncio.open_loop():
        with pytest.raises(RelayConnectionError, match="Could not connect"):
            await relay.start()


@pytest.mark.trio
async def test_failed_handshake():
    relay = NostrRelay(URL)

    async def reject():
        raise WebSocketException("server rejected WebSocket connection: HTTP 403")

    relay._aio_connect = reject

    async with trio_asyncio.open_loop():
        with pytest.raises(RelayConnectionError, match="HTTP 403"):
            await relay.start()

    assert not relay.running()


@pytest.mark.trio
async def test_stop():
    relay = NostrRelay(URL)
    connection = FakeConnection(hang_up=False)
    connecting_to(relay, connection)

    @relay.listen("CONNECT")
    async def on_connect(kind, which):
        which.subscribe([{"kinds": [1]}], lambda ev: None, lambda: None)

    async with trio_asyncio.open_loop():
        async with trio.open_nursery() as nursery:
            nursery.start_soon(relay.start)

            while not relay.running():
                await trio.sleep(0.01)

            await wait_all_tasks_blocked()

            assert await relay.stop()

    assert connection.closed
    assert connection.sent[0][0] == "REQ"
    assert not await relay.stop()
