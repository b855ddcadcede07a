from datetime import datetime

from pydantic import BaseModel, Field

from shiptrack.models.shipment import OriginMessageRef, ShipmentStatus


class QueuedNotification(BaseModel):
    """A status message that has not been confirmed as delivered yet.

    One entry exists per (tracking_id, status) pair at most.
    """

    tracking_id: str
    status: ShipmentStatus
    origin: OriginMessageRef
    payload: str
    retry_count: int = Field(default=0, ge=0)
    last_attempt_at: datetime
