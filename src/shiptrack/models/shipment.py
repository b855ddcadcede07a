from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

ShipmentStatus = Literal["PENDING", "IN_TRANSIT", "OUT_FOR_DELIVERY", "DELIVERED", "CANCELED"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"DELIVERED", "CANCELED"})

PARTY_FIELDS = (
    "sender_name",
    "sender_country",
    "receiver_name",
    "receiver_address",
    "receiver_country",
    "receiver_phone",
    "receiver_email",
)

# Labels shown to the messaging user when a manifest is missing fields
REQUIRED_MANIFEST_FIELDS: dict[str, str] = {
    "receiver_name": "Receivers Name",
    "receiver_address": "Receivers Address",
    "receiver_phone": "Receivers Phone",
    "receiver_country": "Receivers Country",
    "sender_name": "Senders Name",
    "sender_country": "Senders Country",
}


class IncompleteManifest(ValueError):
    """Raised when a manifest lacks one or more required fields."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Manifest is missing: {', '.join(missing)}")


class OriginMessageRef(BaseModel):
    """The inbound bot message a shipment was created from.

    Notifications for the shipment are sent back to `sender_handle` as a reply
    to `message_id`. Both halves are always present together.
    """

    message_id: str = Field(min_length=1)
    sender_handle: str = Field(min_length=1)

    model_config = {"frozen": True}


class Manifest(BaseModel):
    sender_name: str
    sender_country: str
    receiver_name: str
    receiver_address: str
    receiver_country: str
    receiver_phone: str
    receiver_email: str | None = None

    @classmethod
    def from_fields(cls, fields: dict[str, str | None]) -> "Manifest":
        """Build a manifest from a partial field map, listing what is missing."""
        missing = [label for key, label in REQUIRED_MANIFEST_FIELDS.items() if not fields.get(key)]
        if missing:
            raise IncompleteManifest(missing)
        return cls(**{k: v or None for k, v in fields.items() if k in cls.model_fields})

    @property
    def duplicate_key(self) -> tuple[str, str, str, str]:
        return (self.receiver_phone, self.receiver_name, self.sender_name, self.receiver_country)


class ShipmentEvent(BaseModel):
    status: ShipmentStatus
    location: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    notes: str | None = None


class Shipment(BaseModel):
    tracking_id: str
    status: ShipmentStatus = "PENDING"
    is_archived: bool = False
    sender_name: str | None = None
    sender_country: str | None = None
    receiver_name: str | None = None
    receiver_address: str | None = None
    receiver_country: str | None = None
    receiver_phone: str | None = None
    receiver_email: str | None = None
    origin: OriginMessageRef | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_transition_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    out_for_delivery_at: datetime | None = None
    expected_delivery_at: datetime | None = None
    events: list[ShipmentEvent] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def public_view(self) -> dict:
        """Serialize for the public tracking page; the bot origin stays private."""
        return self.model_dump(mode="json", exclude={"origin"})
