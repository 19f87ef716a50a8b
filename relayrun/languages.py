"""
The language table, built once from the execution backend's
runtime listing, and the quirks of turning code into a script
the backend accepts.
"""

from collections.abc import Iterable
from typing import Any, Optional, Tuple

import attr

from .errors import UnknownLanguageError

# Languages whose compiler refuses anonymous source files.
NAMED_SOURCE_FILES = {
    "emojicode": "file0.emojic",
}


@attr.s(auto_attribs=True, frozen=True)
class Runtime:
    """A runtime, as listed by the execution backend."""

    language: str
    version: str
    aliases: Tuple[str, ...] = attr.ib(converter=tuple, default=())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Runtime":
        return cls(data["language"], data["version"], data.get("aliases") or ())


@attr.s(auto_attribs=True, frozen=True)
class LanguageEntry:
    """What a language name or alias resolves to."""

    language: str
    version: str


@attr.s(auto_attribs=True, frozen=True)
class Script:
    """A single source file sent to the execution backend."""

    content: str
    name: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        if self.name is None:
            return {"content": self.content}

        return {"name": self.name, "content": self.content}


def build_language_map(runtimes: Iterable[Runtime]) -> dict[str, LanguageEntry]:
    """Maps every language name and alias to its canonical entry.

        >>> table = build_language_map([Runtime("python", "3.10.0", ["py"])])
        >>> table["py"]
        LanguageEntry(language='python', version='3.10.0')

    Arguments:
        runtimes {Iterable[Runtime]} -- The runtimes listed by the backend.

    Returns:
        dict[str, LanguageEntry] -- The language table.
    """

    languages = {}

    for runtime in runtimes:
        entry = LanguageEntry(runtime.language, runtime.version)
        languages[runtime.language] = entry

        for alias in runtime.aliases:
            languages[alias] = entry

    return languages


def build_script(code: str, languages: dict[str, LanguageEntry], language: str) -> Script:
    """Wraps code into a Script, naming the file if the language requires it.

    Raises:
        UnknownLanguageError: The language token is not in the table.
    """

    if language not in languages:
        raise UnknownLanguageError(language)

    return Script(code, NAMED_SOURCE_FILES.get(languages[language].language))
