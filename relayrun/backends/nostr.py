"""
The Nostr relay backend.

Uses the websockets library for the connection itself. Like the
Discord library in other trio bots, websockets is built on asyncio,
whereas relayrun uses trio; trio_asyncio bridges the two, so bots
using this backend must be run with trio_asyncio.run.

Frames follow NIP-01: the client sends REQ, CLOSE and EVENT, and the
relay answers with EVENT, EOSE, OK, CLOSED and NOTICE.
"""

import json
import logging
import math
import typing
import uuid
from collections.abc import Iterable
from typing import Any, Callable, Optional

import attr
import nostr_sdk
import trio
import trio_asyncio
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..backend import Backend
from ..errors import MalformedEventError, RelayConnectionError, RelayPublishError
from ..event import Event


def verify_signature(data: dict[str, Any]) -> bool:
    """Checks the Schnorr signature of a decoded event object."""

    try:
        return bool(nostr_sdk.Event.from_json(json.dumps(data)).verify())

    # (nostr-sdk raises its own error type on anything it cannot parse,
    # which makes the event just as invalid.)
    # pylint: disable=broad-except
    except Exception:
        return False


@attr.s(auto_attribs=True, eq=False)
class RelaySubscription:
    """A subscription opened on a NostrRelay."""

    relay: "NostrRelay"
    id: str
    filters: list[dict[str, Any]]
    onevent: Callable[[Event], None]
    oneose: Callable[[], None]

    closed: bool = False
    ended: bool = False

    def deliver(self, event: Event):
        if not self.closed:
            self.onevent(event)

    def end_of_stored_events(self):
        """Signals EOSE to the subscriber, at most once."""

        if not self.ended:
            self.ended = True
            self.oneose()

    def close(self):
        """Closes this subscription. Closing it again does nothing."""

        if self.closed:
            return

        self.closed = True
        self.relay._forget(self)


@attr.s(auto_attribs=True)
class _PendingPublish:
    done: trio.Event = attr.Factory(trio.Event)
    accepted: bool = False
    message: str = ""


class NostrRelay(Backend):
    """
    A connection to a single Nostr relay. Used in order to create
    relayrun bots that function on Nostr.

    Emits a CONNECT event once connected, a MESSAGE event for every
    event of a followed feed, and a RELAY_<TYPE> event for every frame
    received. A NostrRelay is single-use: once stopped or disconnected,
    make a new one.
    """

    def __init__(
        self,
        url: str,
        verify_events: bool = True,
        ping_interval: Optional[float] = 20.0,
        publish_timeout: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ):
        """
            >>> relay = NostrRelay('wss://relay.example')
            >>> relay.running()
            False

        Arguments:
            url {str} -- The websocket URL of the relay.

        Keyword Arguments:
            verify_events {bool} -- Whether to drop received events whose id or
                                    signature does not check out. (default: True)

            ping_interval {Optional[float]} -- Seconds between keepalive pings, or None
                                               to disable them. (default: 20.0)

            publish_timeout {float} --  Seconds to wait for a relay to acknowledge
                                        a published event. (default: 10.0)

            logger {Optional[logging.Logger]} -- The logger to use. (default: module logger)
        """

        super().__init__(logger)

        self.url = url
        self.verify_events = verify_events
        self.ping_interval = ping_interval
        self.publish_timeout = publish_timeout

        self.connection = None  # type: Optional[websockets.ClientConnection]

        self._subscriptions = {}  # type: dict[str, RelaySubscription]
        self._pending = {}  # type: dict[str, _PendingPublish]
        self._out_send, self._out_receive = trio.open_memory_channel(math.inf)

        self._nursery = None  # type: Optional[trio.Nursery]
        self._failure = None  # type: Optional[RelayConnectionError]

        self._running = False
        self._stopping = False
        self._closed = False

    def running(self) -> bool:
        return self._running and not self._stopping

    # === Subscriptions ===

    def _queue_frame(self, frame: list[Any]):
        if self._closed:
            raise RelayConnectionError("The connection to {} is closed".format(self.url))

        self._out_send.send_nowait(frame)

    def _forget(self, subscription: RelaySubscription):
        if self._subscriptions.pop(subscription.id, None) is not None and not self._closed:
            self._queue_frame(["CLOSE", subscription.id])

    def subscribe(
        self,
        filters: Iterable[dict[str, Any]],
        onevent: Callable[[Event], None],
        oneose: Callable[[], None],
    ) -> RelaySubscription:
        """Opens a subscription on this relay.

        Frames queued before the connection is up are sent as soon
        as it is.

        Arguments:
            filters {Iterable[dict]} -- NIP-01 filters.
            onevent {Callable[[Event], None]} -- Called for every matching event.
            oneose {Callable[[], None]} --  Called once no more stored events will follow,
                                            or when the relay closes the subscription.

        Raises:
            RelayConnectionError: The relay connection is closed.

        Returns:
            RelaySubscription -- The subscription; close it when done.
        """

        filters = [dict(item) for item in filters]
        subscription = RelaySubscription(self, uuid.uuid4().hex, filters, onevent, oneose)

        self._queue_frame(["REQ", subscription.id, *filters])
        self._subscriptions[subscription.id] = subscription

        return subscription

    def follow(self, filters: Iterable[dict[str, Any]]) -> RelaySubscription:
        """Follows a live feed, emitting a MESSAGE event for every event in it.

        Each MESSAGE is handled in its own task, so that slow handlers
        never hold up the connection, nor each other.

        Raises:
            RelayConnectionError: The relay is not running.
        """

        nursery = self._nursery

        if nursery is None:
            raise RelayConnectionError("Tried to follow a feed on {} while not running!".format(self.url))

        def onevent(event: Event):
            nursery.start_soon(self.receive_message, "MESSAGE", event)

        def oneose():
            self.logger.debug("Caught up with stored events on %s", self.url)

        return self.subscribe(filters, onevent, oneose)

    async def publish(self, event: Event, timeout: Optional[float] = None):
        """Publishes an event, waiting for the relay to acknowledge it.

        Arguments:
            event {Event} -- The signed event to publish.

        Keyword Arguments:
            timeout {Optional[float]} -- Seconds to wait for the OK. (default: publish_timeout)

        Raises:
            RelayPublishError: The relay rejected the event or did not answer in time.
            RelayConnectionError: The relay connection is closed.
        """

        pending = _PendingPublish()
        self._pending[event.id] = pending

        try:
            self._queue_frame(["EVENT", event.to_dict()])

            with trio.move_on_after(self.publish_timeout if timeout is None else timeout):
                await pending.done.wait()

        finally:
            self._pending.pop(event.id, None)

        if not pending.done.is_set():
            raise RelayPublishError("{} did not acknowledge event {}".format(self.url, event.id))

        if not pending.accepted:
            raise RelayPublishError(
                "{} rejected event {}: {}".format(self.url, event.id, pending.message)
            )

    # === Receiving ===

    def _validate_event(self, data: typing.Any) -> Optional[Event]:
        try:
            event = Event.from_dict(data)

        except MalformedEventError as err:
            self.logger.warning("Dropping malformed event from %s: %s", self.url, err)
            return None

        if not self.verify_events:
            return event

        if event.compute_id() != event.id:
            self.logger.warning("Dropping event %s from %s: id mismatch", event.id, self.url)
            return None

        if not verify_signature(data):
            self.logger.warning("Dropping event %s from %s: bad signature", event.id, self.url)
            return None

        return event

    async def _receive(self, raw: typing.Union[str, bytes]) -> bool:
        """
        Called every time the relay sends a frame.

        Arguments:
            raw {Union[str, bytes]} -- The frame, as received.

        Returns:
            bool -- Whether the frame is valid NIP-01 data.
        """

        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", "replace")

        try:
            frame = json.loads(raw)

        except ValueError:
            self.logger.warning("Ignoring non-JSON frame from %s", self.url)
            return False

        if not isinstance(frame, list) or not frame or not isinstance(frame[0], str):
            self.logger.warning("Ignoring malformed frame from %s: %r", self.url, frame)
            return False

        kind = frame[0]

        await self.receive_message("RELAY_" + kind, frame)

        if kind == "EVENT" and len(frame) >= 3:
            subscription = self._subscriptions.get(frame[1])

            if subscription is None:
                return True

            event = self._validate_event(frame[2])

            if event is not None:
                subscription.deliver(event)

        elif kind == "EOSE" and len(frame) >= 2:
            subscription = self._subscriptions.get(frame[1])

            if subscription is not None:
                subscription.end_of_stored_events()

        elif kind == "CLOSED" and len(frame) >= 2:
            subscription = self._subscriptions.pop(frame[1], None)

            if subscription is not None:
                self.logger.info(
                    "%s closed subscription %s: %s",
                    self.url,
                    subscription.id,
                    frame[2] if len(frame) >= 3 else "",
                )

                subscription.end_of_stored_events()
                subscription.closed = True

        elif kind == "OK" and len(frame) >= 3:
            pending = self._pending.get(frame[1])

            if pending is not None:
                pending.accepted = frame[2] is True
                pending.message = str(frame[3]) if len(frame) >= 4 else ""
                pending.done.set()

        elif kind == "NOTICE":
            self.logger.info("Notice from %s: %s", self.url, frame[1] if len(frame) >= 2 else "")

        else:
            self.logger.debug("Unhandled frame from %s: %r", self.url, frame)

        return True

    async def _receiver(self):
        while True:
            try:
                raw = await trio_asyncio.aio_as_trio(self.connection.recv)()

            except ConnectionClosed as err:
                if not self._stopping:
                    self._failure = RelayConnectionError(
                        "Lost the connection to {}: {}".format(self.url, err)
                    )

                self._nursery.cancel_scope.cancel()
                return

            await self._receive(raw)

    async def _sender(self):
        async for frame in self._out_receive:
            try:
                await trio_asyncio.aio_as_trio(self.connection.send)(
                    json.dumps(frame, ensure_ascii=False)
                )

            except ConnectionClosed:
                # The receiver notices this too, and reports it.
                return

    # === Lifecycle ===

    async def _aio_connect(self):
        return await websockets.connect(self.url, ping_interval=self.ping_interval)

    async def start(self):
        """
        Connects to the relay, and serves the connection until it is
        stopped or lost.

        Raises:
            RelayConnectionError: Could not connect, or the connection was lost.
        """

        if self._running or self._closed:
            raise RuntimeError("Tried to start a relay backend that was already started!")

        try:
            self.connection = await trio_asyncio.aio_as_trio(self._aio_connect)()

        except (OSError, WebSocketException) as err:
            self._closed = True
            raise RelayConnectionError("Could not connect to {}: {}".format(self.url, err)) from err

        self.logger.info("Connected to %s", self.url)
        self._running = True

        try:
            async with trio.open_nursery() as nursery:
                self._nursery = nursery

                nursery.start_soon(self._sender)
                nursery.start_soon(self._receiver)

                await self.receive_message("CONNECT", self)

        finally:
            self._running = False
            self._closed = True
            self._nursery = None
            self._subscriptions.clear()

            with trio.CancelScope(shield=True):
                await trio_asyncio.aio_as_trio(self.connection.close)()

        if self._failure is not None:
            raise self._failure

    async def stop(self) -> bool:
        if not self.running():
            return False

        self._stopping = True
        self._nursery.cancel_scope.cancel()

        while self._running:
            await trio.sleep(0.05)

        self._stopping = False

        return True
