"""
Walking reply chains backwards.

A /rerun is a reply somewhere below an earlier /run, usually
under the bot's own answer to it. To find that /run, the chain
of 'e' references is followed one event at a time, asking a relay
for each parent in turn.

Anyone can publish events, so chains may be arbitrarily long or
even cyclic; every walk remembers the ids it has seen and gives up
after a fixed number of hops.
"""

import logging
import typing
from collections.abc import Iterable
from typing import Any, Callable, Optional

import trio

from .commands import RUN_PREFIX
from .event import Event

DEFAULT_MAX_HOPS = 10

logger = logging.getLogger(__name__)


class Subscription(typing.Protocol):
    """A live relay subscription."""

    def close(self):
        """
        Closes this subscription. Closing it again does nothing.
        """
        ...


class SubscribableRelay(typing.Protocol):
    """Anything that can be queried for stored events."""

    def subscribe(
        self,
        filters: Iterable[dict[str, Any]],
        onevent: Callable[[Event], None],
        oneose: Callable[[], None],
    ) -> Subscription:
        """
        Opens a subscription. onevent is called for each matching event,
        and oneose exactly once, when no more stored events will follow.
        """
        ...


async def get_source_event(relay: SubscribableRelay, event: Event) -> Optional[Event]:
    """Fetches the event that an event replies to.

    When several 'e' tags are present, the last one is the one
    replied to.

    Arguments:
        relay {SubscribableRelay} -- The relay to query.
        event {Event} -- The replying event.

    Returns:
        Optional[Event] -- The replied-to event, or None if the event
                           replies to nothing or the relay does not
                           have it.
    """

    references = event.references()

    if not references:
        return None

    reference_id = references[-1]

    found = []
    end_of_stored = trio.Event()

    def onevent(candidate: Event):
        if not found and candidate.id == reference_id:
            found.append(candidate)

    def oneose():
        end_of_stored.set()

    subscription = relay.subscribe(
        [{"ids": [reference_id]}], onevent=onevent, oneose=oneose
    )

    try:
        await end_of_stored.wait()

    finally:
        subscription.close()

    return found[0] if found else None


async def resolve_source_run_event(
    relay: SubscribableRelay,
    start_event: Event,
    max_hops: int = DEFAULT_MAX_HOPS,
    on_hop: Optional[Callable[[Event], None]] = None,
) -> Optional[Event]:
    """Follows a reply chain up to the /run command it started from.

    Arguments:
        relay {SubscribableRelay} -- The relay to query.
        start_event {Event} -- Where to start; usually the /rerun itself.

    Keyword Arguments:
        max_hops {int} -- How many parents to fetch at most. (default: 10)
        on_hop {Optional[Callable[[Event], None]]} --
            Called with every newly fetched parent. (default: None)

    Returns:
        Optional[Event] -- The /run event, or None if the chain ends,
                           loops, or runs out of hops before reaching one.
    """

    visited = {start_event.id}
    current = start_event

    for _ in range(max_hops):
        parent = await get_source_event(relay, current)

        if parent is None:
            logger.debug("Chain from %s ends at %s", start_event.id, current.id)
            return None

        if parent.id in visited:
            logger.warning("Reply chain from %s loops back to %s", start_event.id, parent.id)
            return None

        visited.add(parent.id)

        if on_hop is not None:
            on_hop(parent)

        if parent.content.startswith(RUN_PREFIX):
            return parent

        current = parent

    logger.debug("Gave up on chain from %s after %d hops", start_event.id, max_hops)
    return None
