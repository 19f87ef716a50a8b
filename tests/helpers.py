"""In-memory stand-ins for relays and the execution backend."""

import trio

from relayrun.backend import Backend
from relayrun.event import Event
from relayrun.execution import ExecutionResult, StageResult

# For tests only; never use it for anything else.
TEST_SECRET_KEY = "a" * 64

NOW = 1700000000


def make_event(id, content="", tags=(), pubkey="b" * 64, created_at=NOW, kind=1):
    return Event(
        id=id,
        pubkey=pubkey,
        kind=kind,
        content=content,
        created_at=created_at,
        tags=tags,
        sig="0" * 128,
    )


class FakeSubscription:
    def __init__(self, filters):
        self.filters = filters
        self.close_calls = 0

    @property
    def closed(self):
        return self.close_calls > 0

    def close(self):
        self.close_calls += 1


class FakeRelay:
    """
    Answers id queries from a set of stored events. If given a nursery,
    answers later from another task, like a real relay would.
    """

    def __init__(self, events=(), nursery=None):
        self.events = {event.id: event for event in events}
        self.nursery = nursery
        self.subscriptions = []

    def store(self, *events):
        for event in events:
            self.events[event.id] = event

    @property
    def queried_ids(self):
        return [
            event_id
            for sub in self.subscriptions
            for query in sub.filters
            for event_id in query.get("ids", [])
        ]

    def subscribe(self, filters, onevent, oneose):
        subscription = FakeSubscription(list(filters))
        self.subscriptions.append(subscription)

        def answer():
            for query in subscription.filters:
                for event_id in query.get("ids", []):
                    if event_id in self.events:
                        onevent(self.events[event_id])

            oneose()

        if self.nursery is None:
            answer()

        else:

            async def answer_later():
                await trio.sleep(0)
                answer()

            self.nursery.start_soon(answer_later)

        return subscription


class FakeNostrRelay(FakeRelay, Backend):
    """A FakeRelay that bots can use as their backend."""

    def __init__(self, events=(), publish_error=None):
        FakeRelay.__init__(self, events)
        Backend.__init__(self)

        self.published = []
        self.followed = []
        self.publish_error = publish_error
        self.stopped = trio.Event()
        self.stop_calls = 0

    async def start(self):
        await self.receive_message("CONNECT", self)
        await self.stopped.wait()

    async def stop(self):
        self.stop_calls += 1
        self.stopped.set()
        return True

    def follow(self, filters):
        self.followed.append(filters)
        return self.subscribe(filters, lambda event: None, lambda: None)

    async def publish(self, event, timeout=None):
        if self.publish_error is not None:
            raise self.publish_error

        self.published.append(event)


class FakePiston:
    def __init__(self, result=None):
        self.result = result or ExecutionResult(run=StageResult("ok\n", 0))
        self.calls = []

    async def execute(self, language, version, files, args=(), stdin="", compile_timeout=10000, run_timeout=10000):
        self.calls.append(
            {
                "language": language,
                "version": version,
                "files": list(files),
                "args": list(args),
                "stdin": stdin,
                "compile_timeout": compile_timeout,
                "run_timeout": run_timeout,
            }
        )

        return self.result
