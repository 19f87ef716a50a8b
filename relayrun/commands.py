"""
The command text protocol.

Commands are carried inside plain message content:

    /run <language>
    <args, one per line>
    ```
    <code>
    ```
    <stdin>

or, in the legacy syntax, the code right below the command line.
A re-run of an earlier command replies to its thread with:

    /rerun
    <args, one per line>
    ---
    <stdin>
"""

import re
import typing
from typing import Optional, Tuple, Union

import attr

if typing.TYPE_CHECKING:
    from .languages import LanguageEntry

RUN_PREFIX = "/run"
RERUN_PREFIX = "/rerun"
FENCE = "```"
RERUN_SEPARATOR = "---"

_LINE = re.compile(r"[^\r\n]+")


@attr.s(auto_attribs=True, frozen=True)
class HelpCommand:
    """Asks for the usage text."""

    kind: typing.ClassVar[str] = "help"


@attr.s(auto_attribs=True, frozen=True)
class LanguageListCommand:
    """Asks for the list of supported languages."""

    kind: typing.ClassVar[str] = "list"


@attr.s(auto_attribs=True, frozen=True)
class RunCommand:
    """Asks to run some code."""

    kind: typing.ClassVar[str] = "run"

    language: str
    args: Tuple[str, ...] = attr.ib(converter=tuple)
    code: str
    stdin: str


ParsedCommand = Union[HelpCommand, LanguageListCommand, RunCommand]


@attr.s(auto_attribs=True, frozen=True)
class RerunRequest:
    """Overrides given alongside a /rerun."""

    args: Tuple[str, ...] = attr.ib(converter=tuple, default=())
    stdin: str = ""


def _strip_one(text: str, leading: bool = True, trailing: bool = False) -> str:
    if leading and text.startswith("\n"):
        text = text[1:]

    if trailing and text.endswith("\n"):
        text = text[:-1]

    return text


def parse_run_command(content: str) -> Optional[ParsedCommand]:
    """Parses the content of a /run message.

    Empty lines are dropped before anything else, including those
    inside the code block.

        >>> parse_run_command("/run help")
        HelpCommand()

        >>> cmd = parse_run_command("/run python\\n1\\n2\\n```\\nprint(input())\\n```\\nhi")
        >>> cmd.language, cmd.args, cmd.code, cmd.stdin
        ('python', ('1', '2'), 'print(input())', 'hi')

        >>> parse_run_command("") is None
        True

    Arguments:
        content {str} -- The raw message content.

    Returns:
        Optional[ParsedCommand] -- The parsed command, or None if the
                                   content is empty.
    """

    lines = _LINE.findall(content)

    if not lines:
        return None

    language = lines[0].replace(RUN_PREFIX, "", 1).strip()

    if language == "help":
        return HelpCommand()

    if language == "lang":
        return LanguageListCommand()

    body = "\n".join(lines[1:])

    first_fence = body.find(FENCE)

    if first_fence != -1 and body.find(FENCE, first_fence + len(FENCE)) != -1:
        parts = body.split(FENCE)

        args = [line for line in parts[0].split("\n") if line.strip()]
        code = _strip_one(parts[1], trailing=True)

        # the fence may come back verbatim in stdin
        stdin = _strip_one(FENCE.join(parts[2:]))

        return RunCommand(language, args, code, stdin)

    return RunCommand(language, (), body, "")


def parse_rerun_command(content: str) -> RerunRequest:
    """Parses the content of a /rerun message. Never fails.

        >>> parse_rerun_command("/rerun\\na\\n---\\nline 1\\n\\nline 2")
        RerunRequest(args=('a',), stdin='line 1\\n\\nline 2')

    Arguments:
        content {str} -- The raw message content.

    Returns:
        RerunRequest -- The args and stdin to run with.
    """

    lines = content.split("\n")[1:]

    if not any(line.strip() for line in lines):
        return RerunRequest()

    if RERUN_SEPARATOR not in lines:
        return RerunRequest([line for line in lines if line.strip()], "")

    separator = lines.index(RERUN_SEPARATOR)

    return RerunRequest(
        [line for line in lines[:separator] if line.strip()],
        "\n".join(lines[separator + 1 :]),
    )


def build_help_message() -> str:
    return """I RUN C0DE.

Basic Syntax:
/run <language>
<args (optional, one per line)>
```
<code>
```
<stdin (optional)>

Legacy Syntax:
/run <language>
<code>

Rerun:
/rerun
<args (optional, one per line)>
---
<stdin (optional)>

Language List:
/run lang"""


def build_language_list_message(languages: "dict[str, LanguageEntry]") -> str:
    return "Supported languages:\n{}".format(", ".join(languages))
