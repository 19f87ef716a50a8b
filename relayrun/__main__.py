"""
Runs the relayrun bot.

    python -m relayrun [--env-file FILE] [--relay URL] [--log-level LEVEL]

See relayrun.config for the environment variables it reads.
"""

import argparse
import logging
import signal
import sys
from typing import Optional

import attr
import httpx
import trio
import trio_asyncio

from .backends.nostr import NostrRelay
from .bot import Bot, RunBot
from .config import Config, load_config
from .errors import ConfigError, RelayRunError
from .execution import PistonClient
from .languages import build_language_map

LOG_FORMAT = "[%(levelname)s] %(message)s"

logger = logging.getLogger("relayrun")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relayrun",
        description="Runs code posted to a Nostr relay, and replies with the output.",
    )

    parser.add_argument("--env-file", help="a .env file to load (default: ./.env, if any)")
    parser.add_argument("--relay", help="the relay URL, overriding RELAY_URL")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="the logging level, overriding LOG_LEVEL",
    )

    return parser


async def stop_on_signal(bot: Bot, signals=(signal.SIGINT, signal.SIGTERM)):
    """Stops a bot gracefully the first time one of the signals arrives."""

    with trio.open_signal_receiver(*signals) as received:
        async for signum in received:
            logger.info("Caught %s, stopping", signal.Signals(signum).name)
            await bot.stop()
            return


async def run(config: Config):
    """
    Fetches the language table once, then serves the relay until it
    drops or a SIGINT or SIGTERM stops the bot.
    """

    async with httpx.AsyncClient(timeout=30.0) as http:
        piston = PistonClient(http, config.piston_server)
        languages = build_language_map(await piston.runtimes())

        logger.info("%d language names available on %s", len(languages), config.piston_server)

        bot = RunBot(
            NostrRelay(config.relay_url),
            piston,
            languages,
            config.private_key_hex,
            accept_window=config.accept_dur_sec,
            max_hops=config.max_hops,
            resolve_timeout=config.resolve_timeout,
            compile_timeout=config.compile_timeout,
            run_timeout=config.run_timeout,
        )

        logger.info("Running as %s", bot.pubkey)

        async with trio.open_nursery() as nursery:
            nursery.start_soon(stop_on_signal, bot)

            await bot.start()
            nursery.cancel_scope.cancel()


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.env_file)

    except ConfigError as err:
        logging.basicConfig(format=LOG_FORMAT)
        logger.error("%s", err)
        return 1

    if args.relay:
        config = attr.evolve(config, relay_url=args.relay)

    logging.basicConfig(level=args.log_level or config.log_level, format=LOG_FORMAT)

    status = 0

    try:
        trio_asyncio.run(run, config)

    except* RelayRunError as group:
        for err in group.exceptions:
            logger.error("%s", err)

        status = 1

    return status


if __name__ == "__main__":
    sys.exit(main())
