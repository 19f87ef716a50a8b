"""
Process configuration, read from the environment.

A .env file, if any, is loaded into the environment first; see
load_config.
"""

import logging
import os
import re
import typing
from collections.abc import Mapping
from typing import Optional

import attr
from dotenv import find_dotenv, load_dotenv

from .chain import DEFAULT_MAX_HOPS
from .errors import ConfigError
from .execution import DEFAULT_SERVER

DEFAULT_RELAY_URL = "wss://yabu.me"

_SECRET_KEY_HEX = re.compile(r"[0-9a-fA-F]{64}")

T = typing.TypeVar("T")


def _parse(environ: Mapping[str, str], name: str, kind: typing.Callable[[str], T], default: T) -> T:
    raw = environ.get(name, "").strip()

    if not raw:
        return default

    try:
        return kind(raw)

    except ValueError as err:
        raise ConfigError("{} must be a {}, got {}".format(name, kind.__name__, repr(raw))) from err


@attr.s(auto_attribs=True, frozen=True)
class Config:
    """Everything the bot needs to know to start."""

    private_key_hex: str = attr.ib(repr=False)
    relay_url: str = DEFAULT_RELAY_URL
    piston_server: str = DEFAULT_SERVER
    accept_dur_sec: int = 60
    compile_timeout: int = 10000
    run_timeout: int = 10000
    max_hops: int = DEFAULT_MAX_HOPS
    resolve_timeout: Optional[float] = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Reads the configuration from environment variables.

            >>> config = Config.from_env({"PRIVATE_KEY_HEX": "ab" * 32, "MAX_HOPS": "5"})
            >>> config.relay_url, config.max_hops
            ('wss://yabu.me', 5)

            >>> Config.from_env({"PRIVATE_KEY_HEX": "nope"})
            Traceback (most recent call last):
            ...
            relayrun.errors.ConfigError: PRIVATE_KEY_HEX must be a string of 64 hexadecimal characters

        Keyword Arguments:
            environ {Optional[Mapping[str, str]]} -- The environment. (default: os.environ)

        Raises:
            ConfigError: A variable is missing or invalid.
        """

        if environ is None:
            environ = os.environ

        private_key_hex = environ.get("PRIVATE_KEY_HEX", "").strip()

        if not _SECRET_KEY_HEX.fullmatch(private_key_hex):
            raise ConfigError("PRIVATE_KEY_HEX must be a string of 64 hexadecimal characters")

        resolve_timeout = _parse(environ, "RESOLVE_TIMEOUT", float, 30.0)

        config = cls(
            private_key_hex=private_key_hex,
            relay_url=environ.get("RELAY_URL", "").strip() or DEFAULT_RELAY_URL,
            piston_server=environ.get("PISTON_SERVER", "").strip() or DEFAULT_SERVER,
            accept_dur_sec=_parse(environ, "ACCEPT_DUR_SEC", int, 60),
            compile_timeout=_parse(environ, "COMPILE_TIMEOUT", int, 10000),
            run_timeout=_parse(environ, "RUN_TIMEOUT", int, 10000),
            max_hops=_parse(environ, "MAX_HOPS", int, DEFAULT_MAX_HOPS),
            resolve_timeout=resolve_timeout if resolve_timeout > 0 else None,
            log_level=environ.get("LOG_LEVEL", "").strip().upper() or "INFO",
        )

        if not isinstance(logging.getLevelName(config.log_level), int):
            raise ConfigError("LOG_LEVEL is not a logging level: {}".format(repr(config.log_level)))

        if config.max_hops < 1:
            raise ConfigError("MAX_HOPS must be at least 1, got {}".format(config.max_hops))

        return config


def load_config(env_file: Optional[str] = None) -> Config:
    """Loads a .env file into the environment, then reads the configuration.

    Variables already set in the environment win over the file.
    """

    load_dotenv(env_file or find_dotenv(usecwd=True))
    return Config.from_env()
