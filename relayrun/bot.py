"""
The relayrun Bot classes.

Bots are the central concept of relayrun: entities that manage
high-level responses, while leaving low-level connection details
to the backend(s).
"""

import functools
import logging
import time
import typing
from collections.abc import Iterable
from typing import Callable, Optional

import trio

from .backend import Backend
from .chain import DEFAULT_MAX_HOPS, resolve_source_run_event
from .commands import (
    build_help_message,
    build_language_list_message,
    parse_rerun_command,
    parse_run_command,
)
from .errors import RelayPublishError
from .event import Event
from .execution import GENERIC_ERROR, PistonClient, format_execution_result
from .languages import LanguageEntry, build_script
from .reply import Signer, compose_reply_post, public_key_of, sign_event

if typing.TYPE_CHECKING:
    from .backends.nostr import NostrRelay

CommandHandler = Callable[[Backend, Event], typing.Awaitable[None]]

logger = logging.getLogger(__name__)


class Bot:
    """
    A bot superclass. It is supposed to be subclassed in order to be used, you know.
    """

    def __init__(self, name: str, backends: Iterable[Backend] = ()):
        """
        Arguments:
            name {str} -- A descriptive name for your bot.

        Keyword Arguments:
            backends {Iterable[Backend]} -- The backends for the bot to harness. (default: none)
        """

        self.name = name
        self.backends = set()  # type: set[Backend]

        for backend in backends:
            self.register_backend(backend)

    def register_backend(self, backend: Backend):
        """
        Registers an individual backend, relaying all of its events
        to this bot's on_<kind> methods.

        Arguments:
            backend {Backend} -- A single backend to register to this bot.
        """

        self.backends.add(backend)
        backend.listen_all()(functools.partial(self._specific_on_relay, backend))

    async def _specific_on_relay(self, which: Backend, kind: str, data: typing.Any):
        """
        >>> import trio
        ...
        >>> dummy_backend = Backend()
        ...
        >>> class MyBot(Bot):
        ...     async def on_hello(self, which, name):
        ...         print('Hello, {}!'.format(name))
        ...
        >>> bot = MyBot('mybot', [dummy_backend])
        ...
        >>> trio.run(dummy_backend.receive_message, 'hello', 'everyone')
        Hello, everyone!
        """

        func_name = "on_{}".format(kind.lower())

        if hasattr(self, func_name):
            await getattr(self, func_name)(which, data)

    def init(self):
        """Called before the backends are started."""

    def deinit(self):
        """Called right after the bot has stopped, and
        after all of its backends have been gracefully
        stopped."""

    async def start(self):
        """Starts this Bot by starting its backends."""

        self.init()

        async with trio.open_nursery() as nursery:
            for backend in self.backends:
                nursery.start_soon(backend.start)

    async def stop(self):
        """Stops this Bot by stopping its backends."""

        async with trio.open_nursery() as nursery:
            for backend in self.backends:
                nursery.start_soon(backend.stop)

        self.deinit()

    def __repr__(self):
        return "{}('{}': {} backends)".format(
            type(self).__name__, self.name, len(self.backends)
        )


class CommandBot(Bot):
    """
    A Bot subclass that responds to commands: messages whose content
    starts with the prefix followed by a command name.

    CommandBot subclasses can use their constructor or the init
    method to add commands.
    """

    def __init__(self, name: str, backends: Iterable[Backend] = (), prefix: str = "/"):
        """
        Arguments:
            name {str} -- A descriptive name for your bot.

        Keyword Arguments:
            backends {Iterable[Backend]} -- This bot's backend(s). (default: none)
            prefix {str} -- The command prefix to use (default: {"/"})
        """

        super().__init__(name, backends)

        self.prefix = prefix
        self.commands = {}  # type: dict[str, CommandHandler]

    def add_command(self, name: str):
        """Adds a command to this bot. Use as a decorator generating method.

            >>> bot = CommandBot('mybot')
            >>> @bot.add_command('ping')
            ... async def ping(which, event):
            ...     pass
            ...
            >>> bot.find_command('/ping me')
            'ping'

        Arguments:
            name {str} -- The name of the command, without the prefix.
        """

        def _decorator(func: CommandHandler) -> CommandHandler:
            self.commands[name] = func
            return func

        return _decorator

    def find_command(self, content: str) -> Optional[str]:
        """
        Finds which command some content invokes, if any. Longer command
        names win over shorter ones they start with.
        """

        if not content.startswith(self.prefix):
            return None

        content = content[len(self.prefix) :]

        for name in sorted(self.commands, key=len, reverse=True):
            if content.startswith(name):
                return name

        return None

    def accepts(self, which: Backend, event: Event) -> bool:
        """Whether an incoming event should be considered at all."""
        return True

    async def on_message(self, which: Backend, event: Event):
        if not self.accepts(which, event):
            return

        name = self.find_command(event.content)

        if name is None:
            return

        logger.info("%s%s from %s (%s)", self.prefix, name, event.pubkey, event.id)

        try:
            await self.commands[name](which, event)

        # (We are meant to catch exceptions broadly: a command that fails
        # is abandoned, and must not take the other ones down with it.)
        # pylint: disable=broad-except
        except Exception:
            logger.exception("Command %s%s failed on event %s", self.prefix, name, event.id)


class RunBot(CommandBot):
    """
    Runs code posted in /run commands, and replies with its output.

    Replying /rerun anywhere below a /run runs the same code again,
    optionally with other arguments or standard input.
    """

    def __init__(
        self,
        relay: "NostrRelay",
        piston: PistonClient,
        languages: dict[str, LanguageEntry],
        secret_key_hex: str,
        name: str = "relayrun",
        accept_window: int = 60,
        max_hops: int = DEFAULT_MAX_HOPS,
        resolve_timeout: Optional[float] = 30.0,
        compile_timeout: int = 10000,
        run_timeout: int = 10000,
        signer: Signer = sign_event,
        clock: Callable[[], float] = time.time,
    ):
        """
        Arguments:
            relay {NostrRelay} -- The relay to watch and reply on.
            piston {PistonClient} -- The execution backend.
            languages {dict[str, LanguageEntry]} -- The language table.
            secret_key_hex {str} -- The bot's secret key, in hex.

        Keyword Arguments:
            name {str} -- A descriptive name for the bot. (default: 'relayrun')
            accept_window {int} -- Events older than this many seconds are ignored. (default: 60)
            max_hops {int} -- How far up a reply chain /rerun may look. (default: 10)
            resolve_timeout {Optional[float]} --    Seconds a /rerun may spend looking for its
                                                    /run, or None for no limit. (default: 30.0)
            compile_timeout {int} -- Compile stage timeout, in ms. (default: 10000)
            run_timeout {int} -- Run stage timeout, in ms. (default: 10000)
        """

        super().__init__(name, [relay], prefix="/")

        self.relay = relay
        self.piston = piston
        self.languages = languages
        self.secret_key_hex = secret_key_hex
        self.pubkey = public_key_of(secret_key_hex)

        self.accept_window = accept_window
        self.max_hops = max_hops
        self.resolve_timeout = resolve_timeout
        self.compile_timeout = compile_timeout
        self.run_timeout = run_timeout
        self.signer = signer
        self.clock = clock

        self.help_message = build_help_message()

        self.add_command("run")(self.run_command)
        self.add_command("rerun")(self.rerun_command)

    def deinit(self):
        logger.info("%s stopped", self.name)

    async def on_connect(self, which: "NostrRelay", _data):
        which.follow([{"kinds": [1], "since": int(self.clock())}])

    def accepts(self, which: Backend, event: Event) -> bool:
        if event.created_at < self.clock() - self.accept_window:
            return False

        # never answer ourselves
        return event.pubkey != self.pubkey

    async def execute(
        self,
        content: str,
        args: Optional[Iterable[str]] = None,
        stdin: Optional[str] = None,
    ) -> str:
        """Runs the /run command in some content, returning the reply text.

        Arguments:
            content {str} -- The content of a /run event.

        Keyword Arguments:
            args {Optional[Iterable[str]]} -- Replaces the command's own args. (default: None)
            stdin {Optional[str]} -- Replaces the command's own stdin. (default: None)
        """

        command = parse_run_command(content)

        if command is None:
            return GENERIC_ERROR

        if command.kind == "help":
            return self.help_message

        if command.kind == "list":
            return build_language_list_message(self.languages)

        if command.language not in self.languages:
            return "Language not found.\n\n" + build_language_list_message(self.languages)

        entry = self.languages[command.language]
        script = build_script(command.code, self.languages, command.language)

        result = await self.piston.execute(
            entry.language,
            entry.version,
            [script],
            args=command.args if args is None else args,
            stdin=command.stdin if stdin is None else stdin,
            compile_timeout=self.compile_timeout,
            run_timeout=self.run_timeout,
        )

        return format_execution_result(result)

    async def resolve(self, which: "NostrRelay", event: Event) -> Optional[Event]:
        """Finds the /run event a /rerun event refers to."""

        def on_hop(parent: Event):
            logger.debug("Rerun %s passes by %s: %r", event.id, parent.id, parent.content)

        if self.resolve_timeout is None:
            return await resolve_source_run_event(which, event, self.max_hops, on_hop)

        with trio.move_on_after(self.resolve_timeout):
            return await resolve_source_run_event(which, event, self.max_hops, on_hop)

        logger.warning("Gave up looking for the source of rerun %s", event.id)
        return None

    async def publish_reply(self, which: "NostrRelay", content: str, target: Event):
        reply = compose_reply_post(content, target, self.secret_key_hex, self.signer)

        try:
            await which.publish(reply)

        except RelayPublishError as err:
            logger.warning("post error: %s", err)

        else:
            logger.info("post ok: %s", reply.id)

    async def run_command(self, which: "NostrRelay", event: Event):
        await self.publish_reply(which, await self.execute(event.content), event)

    async def rerun_command(self, which: "NostrRelay", event: Event):
        request = parse_rerun_command(event.content)
        source = await self.resolve(which, event)

        if source is None:
            logger.info("No /run found above rerun %s", event.id)
            return

        message = await self.execute(
            source.content,
            args=request.args or None,
            stdin=request.stdin or None,
        )

        await self.publish_reply(which, message, event)
