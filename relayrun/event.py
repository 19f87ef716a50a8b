"""
Nostr events, as far as relayrun cares about them.

Events carry a heterogeneous tag list; the first element of every
tag tells what kind of tag it is ("e" for event references, "p"
for author references, and so on).
"""

import hashlib
import json
import typing
from collections.abc import Iterable
from typing import Any, Tuple

import attr

from .errors import MalformedEventError

TagList = Tuple[Tuple[str, ...], ...]


def freeze_tags(tags: Iterable[Iterable[str]]) -> TagList:
    """Converts any sequence of string sequences into nested tuples.

        >>> freeze_tags([["e", "abc"], ["p", "def"]])
        (('e', 'abc'), ('p', 'def'))
    """

    return tuple(tuple(str(item) for item in tag) for tag in tags)


def canonical_tags(tags: TagList) -> list[list[str]]:
    return [list(tag) for tag in tags]


@attr.s(auto_attribs=True, frozen=True)
class EventDraft:
    """An event that is yet to be signed."""

    kind: int
    content: str
    tags: TagList = attr.ib(converter=freeze_tags)
    created_at: int


@attr.s(auto_attribs=True, frozen=True)
class Event:
    """A signed, content-addressed Nostr event."""

    id: str
    pubkey: str
    kind: int
    content: str
    created_at: int
    tags: TagList = attr.ib(converter=freeze_tags)
    sig: str

    def tag_values(self, name: str) -> list[str]:
        """Returns the values of every tag of a given kind, in order.

            >>> ev = Event("1", "2", 1, "", 0, [["e", "a"], ["p", "b"], ["e"], ["e", "c"]], "")
            >>> ev.tag_values("e")
            ['a', 'c']

        Arguments:
            name {str} -- The tag kind discriminator, e.g. 'e'.

        Returns:
            list[str] -- The second element of each matching tag.
        """

        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]

    def references(self) -> list[str]:
        """Returns the ids of all events referenced by 'e' tags."""
        return self.tag_values("e")

    def compute_id(self) -> str:
        """Computes the id this event should have, per NIP-01."""

        serialized = json.dumps(
            [0, self.pubkey, self.created_at, self.kind, canonical_tags(self.tags), self.content],
            separators=(",", ":"),
            ensure_ascii=False,
        )

        return hashlib.sha256(serialized.encode("utf-8")).hexdigest()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "kind": self.kind,
            "content": self.content,
            "created_at": self.created_at,
            "tags": canonical_tags(self.tags),
            "sig": self.sig,
        }

    @classmethod
    def from_dict(cls, data: typing.Any) -> "Event":
        """Builds an Event from a decoded JSON object.

        Raises:
            MalformedEventError: The object is not shaped like a Nostr event.
        """

        if not isinstance(data, dict):
            raise MalformedEventError(
                "Expected an event object, got {}".format(type(data).__name__)
            )

        for name, kind in _FIELD_TYPES:
            if name not in data:
                raise MalformedEventError("Event is missing field {}".format(repr(name)))

            # bool is an int subclass, and never a valid value here
            if not isinstance(data[name], kind) or isinstance(data[name], bool):
                raise MalformedEventError(
                    "Event field {} has the wrong type: {}".format(
                        repr(name), type(data[name]).__name__
                    )
                )

        tags = data["tags"]

        if not all(
            isinstance(tag, list) and all(isinstance(item, str) for item in tag)
            for tag in tags
        ):
            raise MalformedEventError("Event tags must be lists of strings")

        return cls(
            id=data["id"],
            pubkey=data["pubkey"],
            kind=data["kind"],
            content=data["content"],
            created_at=data["created_at"],
            tags=tags,
            sig=data["sig"],
        )


_FIELD_TYPES = (
    ("id", str),
    ("pubkey", str),
    ("kind", int),
    ("content", str),
    ("created_at", int),
    ("tags", list),
    ("sig", str),
)
