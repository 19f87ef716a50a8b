"""
Composing and signing threaded replies.

Signing itself is delegated to nostr-sdk, which computes the event
id, public key and Schnorr signature from the draft and the key.
"""

import json
import re
import typing

from nostr_sdk import EventBuilder, Keys, Kind, Tag, Timestamp

from .errors import SigningKeyError
from .event import Event, EventDraft, canonical_tags

Signer = typing.Callable[[EventDraft, str], Event]

TEXT_NOTE = 1

_SECRET_KEY_HEX = re.compile(r"[0-9a-fA-F]{64}")


def parse_keys(secret_key_hex: str) -> Keys:
    """Parses a hex secret key into nostr-sdk Keys.

    Raises:
        SigningKeyError: The key is not 64 hexadecimal characters.
    """

    if not isinstance(secret_key_hex, str) or not _SECRET_KEY_HEX.fullmatch(secret_key_hex):
        raise SigningKeyError("The secret key must be a string of 64 hexadecimal characters")

    return Keys.parse(secret_key_hex)


def public_key_of(secret_key_hex: str) -> str:
    """Returns the hex public key matching a hex secret key."""
    return parse_keys(secret_key_hex).public_key().to_hex()


def sign_event(draft: EventDraft, secret_key_hex: str) -> Event:
    """Signs an EventDraft, returning the complete Event.

    Arguments:
        draft {EventDraft} -- The fields to sign.
        secret_key_hex {str} -- The signer's secret key, in hex.

    Raises:
        SigningKeyError: The key is not 64 hexadecimal characters.
        nostr_sdk.NostrSdkError: nostr-sdk could not parse the key or sign
                                 the event; its own errors are not wrapped.

    Returns:
        Event -- The signed event.
    """

    keys = parse_keys(secret_key_hex)

    builder = (
        EventBuilder(Kind(draft.kind), draft.content)
        .tags([Tag.parse(tag) for tag in canonical_tags(draft.tags)])
        .custom_created_at(Timestamp.from_secs(draft.created_at))
    )

    signed = builder.finalize(keys)

    return Event.from_dict(json.loads(signed.as_json()))


def compose_reply_post(
    content: str,
    target: Event,
    secret_key_hex: str,
    signer: Signer = sign_event,
) -> Event:
    """Builds and signs a reply to an event.

    The reply references the target and its author, and is dated
    one second after the target, so that it always sorts after it
    even if the clock has not moved.

    Arguments:
        content {str} -- The text of the reply.
        target {Event} -- The event being replied to.
        secret_key_hex {str} -- The bot's secret key, in hex.

    Keyword Arguments:
        signer {Signer} -- The signing function. (default: sign_event)

    Returns:
        Event -- The signed reply.
    """

    draft = EventDraft(
        kind=TEXT_NOTE,
        content=content,
        tags=[["e", target.id], ["p", target.pubkey]],
        created_at=target.created_at + 1,
    )

    return signer(draft, secret_key_hex)
