import signal

import pytest
import trio
from trio.testing import wait_all_tasks_blocked

from relayrun.__main__ import stop_on_signal
from relayrun.bot import RunBot

from helpers import TEST_SECRET_KEY, FakeNostrRelay, FakePiston


def make_bot():
    return RunBot(FakeNostrRelay(), FakePiston(), {}, TEST_SECRET_KEY)


@pytest.mark.trio
async def test_signal_stops_the_bot():
    bot = make_bot()

    async with trio.open_nursery() as nursery:
        nursery.start_soon(bot.start)
        nursery.start_soon(stop_on_signal, bot, [signal.SIGTERM])
        await wait_all_tasks_blocked()

        signal.raise_signal(signal.SIGTERM)

    assert bot.relay.stop_calls == 1


@pytest.mark.trio
async def test_no_signal_no_stop():
    bot = make_bot()

    with trio.move_on_after(0.05):
        await stop_on_signal(bot, [signal.SIGTERM])

    assert bot.relay.stop_calls == 0
