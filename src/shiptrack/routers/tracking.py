from fastapi import APIRouter, HTTPException

from shiptrack.services import lifecycle

router = APIRouter()


@router.get("/{tracking_id}")
async def track(tracking_id: str):
    """Public tracking lookup."""
    shipment = lifecycle.get_tracking(tracking_id.strip().upper())
    if shipment is None:
        raise HTTPException(status_code=404, detail="Shipment not found")
    return shipment.public_view()
