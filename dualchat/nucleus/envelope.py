# dualchat/nucleus/envelope.py
import base64
import secrets
from typing import Iterable, List, Optional

from dualchat.nucleus.protocol import Envelope, Message

NONCE_BYTES = 16
TOPIC_PREFIX = "chat-user-"


def new_nonce() -> str:
    """16 bytes from the OS CSPRNG, hex encoded to 32 characters."""
    return secrets.token_hex(NONCE_BYTES)


def build_envelope(message: Message, type: str = "message", nonce: Optional[str] = None) -> Envelope:
    """
    Wraps a Message in the canonical fallback envelope.

    Pure apart from the nonce draw; passing `nonce` makes the result a
    function of its inputs, which is what re-adding an identical envelope needs.
    """
    return Envelope(
        type=type,
        timestamp=message.created_at.isoformat().replace("+00:00", "Z"),
        sender_id=message.sender_id,
        recipient_id=message.recipient_id,
        payload=base64.b64encode(message.payload).decode("ascii"),
        nonce=nonce if nonce is not None else new_nonce(),
    )


def pubsub_topic(recipient_id: str) -> str:
    return f"{TOPIC_PREFIX}{recipient_id}"


def gateway_url(base: str, cid: str) -> str:
    return f"{base.rstrip('/')}/ipfs/{cid}"


def gateway_urls(bases: Iterable[str], cid: str) -> List[str]:
    return [gateway_url(base, cid) for base in bases if base]
