# dualchat/nucleus/protocol.py
import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


PRIMARY = "primary"
FALLBACK = "fallback"
TRANSPORTS = (PRIMARY, FALLBACK)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_frame_id() -> str:
    """Generates a new unique frame ID in the format 'frm_uuid'."""
    return f"frm_{uuid.uuid4()}"


def canonical_json(data: Any) -> bytes:
    """Sorted keys, no whitespace. The bytes a content address is computed over."""
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


class TransportMode(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    DUAL = "dual"


class Recommendation(str, Enum):
    PRIMARY = "primary"
    DEGRADED = "degraded"
    FALLBACK = "fallback"
    DISCONNECTED = "disconnected"


class HealthState(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


# --- Delivery data model ---

class Message(BaseModel):
    """A single message handed to the core for delivery. Identity is `id`."""
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    sender_id: str
    recipient_id: str
    payload: bytes = Field(..., description="Opaque, pre-encoded bytes. Never inspected.")
    transport_mode: TransportMode = TransportMode.PRIMARY
    created_at: datetime = Field(default_factory=utcnow)


class Envelope(BaseModel):
    """
    The canonical, versioned form of a Message prepared for the content store
    and pub/sub. Never mutated after creation.

    The nonce keeps logically distinct messages with equal payloads at
    distinct content addresses.
    """
    model_config = ConfigDict(frozen=True)

    type: str = "message"
    version: Literal["1.0"] = "1.0"
    timestamp: str = Field(..., description="RFC3339 UTC creation time.")
    sender_id: str
    recipient_id: str
    payload: str = Field(..., description="The message payload, base64 encoded.")
    nonce: str = Field(..., pattern=r"^[0-9a-f]{32}$")

    def to_bytes(self) -> bytes:
        """Canonical JSON encoding. Equal envelopes always encode to equal bytes."""
        return canonical_json(self.model_dump())


class TransportHealth(BaseModel):
    """
    Point-in-time health of one transport. Replaced wholesale on every poll,
    so `available=False` never travels with detail left over from a healthy poll.
    """
    model_config = ConfigDict(frozen=True)

    state: HealthState = HealthState.UNKNOWN
    available: bool = False
    detail: Dict[str, Any] = Field(default_factory=dict)
    last_checked: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def unknown(cls) -> "TransportHealth":
        return cls()

    @classmethod
    def healthy(cls, detail: Dict[str, Any]) -> "TransportHealth":
        return cls(state=HealthState.HEALTHY, available=True, detail=dict(detail), last_checked=utcnow())

    @classmethod
    def unhealthy(cls, error: str) -> "TransportHealth":
        return cls(state=HealthState.UNHEALTHY, available=False, last_checked=utcnow(), error=error or "unknown error")


class TransportOutcome(BaseModel):
    """What happened on one transport for one delivery request."""
    attempted: bool = False
    succeeded: bool = False
    detail: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    cid: Optional[str] = None
    gateway_urls: List[str] = Field(default_factory=list)
    published: Optional[bool] = None


class DeliveryResult(BaseModel):
    message_id: uuid.UUID
    per_transport: Dict[str, TransportOutcome]
    timed_out: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def succeeded(self) -> bool:
        return any(o.succeeded for o in self.per_transport.values())

    @computed_field  # type: ignore[prop-decorator]
    @property
    def transports_used(self) -> List[str]:
        return [name for name, o in self.per_transport.items() if o.succeeded]


# --- Live channel wire format ---

class ChannelFrame(BaseModel):
    """
    The JSON frame exchanged with clients over the live channel.
    The first frame on every connection must be a 'register' frame whose
    `sender` names the user the connection belongs to.
    """

    frame_id: str = Field(default_factory=new_frame_id, description="A unique identifier for the frame.")

    type: Literal[
        "register",
        "send_encrypted_message",
        "get_transport_status",
        "new_encrypted_message",
        "message_sent",
        "transport_status",
        "error",
    ] = Field(..., description="The type of the frame, determining its purpose.")

    sender: Optional[str] = Field(None, description="The user id of the sending connection.")
    recipient: Optional[str] = Field(None, description="The user id of the intended recipient.")

    request_id: Optional[str] = Field(None, description="For replies, the frame_id of the originating frame.")
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="The UTC timestamp of when the frame was created."
    )

    payload: Dict[str, Any] = Field(default_factory=dict, description="The frame body.")
