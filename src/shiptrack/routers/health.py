from fastapi import APIRouter, HTTPException

from shiptrack.storage import database

router = APIRouter()


@router.get("/health")
async def health():
    """Report whether the record store is reachable."""
    try:
        database.ping()
    except database.StoreUnavailable:
        raise HTTPException(status_code=503, detail="Record store unavailable")
    return {"status": "ok"}
