import logging

from shiptrack.models.shipment import Manifest, Shipment, ShipmentEvent
from shiptrack.storage import database

logger = logging.getLogger(__name__)


def find_duplicate(manifest: Manifest) -> str | None:
    """Return the tracking id of a live shipment with the same manifest, if any.

    A manifest is a duplicate only when receiver phone, receiver name, sender
    name and receiver country all match an existing record exactly; no
    trimming or case folding is applied. If the store cannot be queried the
    manifest is admitted, so a storage hiccup never blocks intake.
    """
    try:
        return database.find_exact(*manifest.duplicate_key)
    except database.StoreUnavailable as e:
        logger.warning(f"Duplicate check failed, admitting manifest: {e}")
        return None


def create_unless_duplicate(shipment: Shipment, event: ShipmentEvent) -> str | None:
    """Insert `shipment` unless a live duplicate exists; return the duplicate's id.

    The check runs under the same write lock as the insert, so redelivered
    messages racing each other still create one shipment. If the guarded
    write fails the shipment is inserted without the check.
    """
    try:
        return database.create_shipment_unless_duplicate(shipment, event)
    except database.StoreUnavailable as e:
        logger.warning(f"Guarded insert failed, admitting manifest without duplicate check: {e}")
    database.create_shipment_with_event(shipment, event)
    return None
