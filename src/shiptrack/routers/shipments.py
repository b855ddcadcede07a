from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from shiptrack.auth import verify_auth
from shiptrack.models.shipment import Manifest, ShipmentStatus
from shiptrack.services import lifecycle
from shiptrack.services.lifecycle import Outcome
from shiptrack.storage import database

router = APIRouter(dependencies=[Depends(verify_auth)])


class StatusUpdate(BaseModel):
    status: ShipmentStatus
    location: str
    notes: str | None = None


class CancelRequest(BaseModel):
    location: str = "Origin"
    notes: str | None = "Shipment canceled"


def _check(outcome: Outcome, tracking_id: str) -> dict:
    if outcome is Outcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Shipment not found")
    if outcome is Outcome.INVALID_TRANSITION:
        raise HTTPException(status_code=409, detail="Status change not allowed")
    return {"tracking_id": tracking_id, "success": True}


@router.get("")
async def list_shipments():
    """List all shipments with per-status counts."""
    data = lifecycle.dashboard()
    return {
        "shipments": [s.model_dump(mode="json", exclude={"events"}) for s in data["shipments"]],
        "stats": data["stats"],
    }


@router.post("", status_code=201)
async def add_shipment(manifest: Manifest):
    """Manually add a shipment; operator shipments start in transit."""
    return {"tracking_id": lifecycle.create(manifest, operator=True)}


# Declared before /{tracking_id} so "archived" is not taken for an id
@router.delete("/archived")
async def delete_archived():
    """Delete every archived shipment."""
    return {"deleted": lifecycle.bulk_delete_archived()}


@router.get("/{tracking_id}")
async def get_shipment(tracking_id: str):
    shipment = lifecycle.get_tracking(tracking_id)
    if shipment is None:
        raise HTTPException(status_code=404, detail="Shipment not found")
    return shipment.model_dump(mode="json")


@router.post("/{tracking_id}/status")
async def update_status(tracking_id: str, update: StatusUpdate):
    """Apply a manual status change."""
    try:
        outcome = await lifecycle.transition(tracking_id, update.status, update.location, update.notes)
    except database.StoreUnavailable:
        raise HTTPException(status_code=503, detail="Could not update shipment")
    return _check(outcome, tracking_id)


@router.post("/{tracking_id}/deliver")
async def mark_delivered(tracking_id: str):
    try:
        outcome = await lifecycle.mark_delivered(tracking_id)
    except database.StoreUnavailable:
        raise HTTPException(status_code=503, detail="Could not update shipment")
    return _check(outcome, tracking_id)


@router.post("/{tracking_id}/cancel")
async def cancel_shipment(tracking_id: str, body: CancelRequest | None = None):
    body = body or CancelRequest()
    try:
        outcome = await lifecycle.cancel(tracking_id, body.location, body.notes)
    except database.StoreUnavailable:
        raise HTTPException(status_code=503, detail="Could not update shipment")
    return _check(outcome, tracking_id)


@router.delete("/{tracking_id}")
async def delete_shipment(tracking_id: str):
    """Delete a shipment."""
    return _check(lifecycle.delete(tracking_id), tracking_id)
