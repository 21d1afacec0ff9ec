# dualchat/nucleus/requests.py
import base64
import binascii
from typing import Optional

from dualchat.nucleus.errors import ValidationError
from dualchat.nucleus.protocol import Message, TransportMode

# Older clients name the fallback mode after the network it runs on.
_MODE_ALIASES = {"ipfs": TransportMode.FALLBACK, "websocket": TransportMode.PRIMARY}


def parse_mode(value: Optional[str]) -> TransportMode:
    if value is None or value == "":
        return TransportMode.PRIMARY
    if isinstance(value, TransportMode):
        return value
    normalized = str(value).strip().lower()
    if normalized in _MODE_ALIASES:
        return _MODE_ALIASES[normalized]
    try:
        return TransportMode(normalized)
    except ValueError:
        raise ValidationError(f"unknown transport mode '{value}'; expected primary, fallback or dual")


def decode_payload(payload_b64: Optional[str]) -> bytes:
    if payload_b64 is None or payload_b64 == "":
        raise ValidationError("payload required")
    if not isinstance(payload_b64, str):
        raise ValidationError("payload must be a base64 string")
    try:
        data = base64.b64decode(payload_b64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("payload is not valid base64")
    if not data:
        raise ValidationError("payload required")
    return data


def build_message(sender_id: str, recipient_id: Optional[str], payload_b64: Optional[str], mode: Optional[str]) -> Message:
    """
    Turns the loosely-typed fields of an inbound request into a Message.
    Raises ValidationError before any transport is touched.
    """
    if not recipient_id or not str(recipient_id).strip():
        raise ValidationError("recipient_id required")
    return Message(
        sender_id=sender_id,
        recipient_id=str(recipient_id).strip(),
        payload=decode_payload(payload_b64),
        transport_mode=parse_mode(mode),
    )
