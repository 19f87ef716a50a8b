"""
The Backend class.

The base class of all relayrun backends is here defined.
"""

import logging
import typing
from typing import Optional

BackendListener = typing.Callable[[str, typing.Any], typing.Awaitable[None]]


class Backend:
    """
    Backend implementation superclass.

    Actual backends are supposed to subclass the Backend class, which
    provides the event listening machinery expected by the Bot that will
    eventually use it.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._listeners = {}  # type: dict[str, set[BackendListener]]
        self._global_listeners = set()  # type: set[BackendListener]

        self.logger = logger or logging.getLogger(type(self).__module__)

    def listen(self, name: str = "_"):
        """Adds a listener for specific messages received in this backend.
        Use as a decorator generating method.

        Keyword Arguments:
            name {str} -- The name of the event to listen for (default: {'_'})

        Returns:
            function -- The decorator method.
        """

        def _decorator(func):
            self._listeners.setdefault(name, set()).add(func)
            return func

        return _decorator

    def listen_all(self):
        """Adds a listener for all messages received in this backend.
        Use as a decorator generating method.

        Returns:
            function -- The decorator method.
        """

        def _decorator(func):
            self._global_listeners.add(func)
            return func

        return _decorator

    async def receive_message(self, kind: str, data: typing.Any):
        """Call this function whenever a message is received in this backend.
        Used either by subclasses or to 'simulate' messages.

            >>> import trio
            >>> dummy_backend = Backend()
            ...
            >>> @dummy_backend.listen('NOTICE')
            ... async def notice(kind, data):
            ...     print("The relay says: {}".format(data))
            ...
            >>> @dummy_backend.listen('MESSAGE')
            ... async def message(kind, data):
            ...     print("Someone says: {}".format(data))
            ...
            >>> async def test_me():
            ...     await dummy_backend.receive_message('MESSAGE', '/run help')
            ...     await dummy_backend.receive_message('NOTICE', 'slow down')
            ...
            >>> trio.run(test_me)
            Someone says: /run help
            The relay says: slow down

        Arguments:
            kind {str} -- The kind of message (aka name argument in listen).
            data {any} -- The message's data.
        """

        lists = self._listeners.get(kind, set()) | self._global_listeners

        for listener in lists:
            await listener(kind, data)

    def running(self) -> bool:
        """Returns whether this backend is up and running."""
        return False

    async def start(self):
        """Starts the backend."""

        raise NotImplementedError("Please subclass and implement!")

    async def stop(self):
        """Stops the backend."""

        raise NotImplementedError("Please subclass and implement!")
