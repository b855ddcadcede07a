import logging

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from shiptrack.config import settings
from shiptrack.models.shipment import IncompleteManifest, Manifest, OriginMessageRef
from shiptrack.services import lifecycle, whatsapp
from shiptrack.services.manifest_parser import is_manifest_command, parse_lookup, parse_manifest
from shiptrack.storage import database

logger = logging.getLogger(__name__)

router = APIRouter()

INCOMPLETE_REPLY = (
    "⚠️ *Manifest incomplete*\n\n"
    "Please provide the following missing fields:\n\n"
    "{missing}"
)
DUPLICATE_REPLY = (
    "⚠️ *Information matches an existing manifest.*\n\n"
    "This shipment is already being processed. Tracking ID: *{tracking_id}*"
)
ACCEPTED_REPLY = (
    "✅ *Manifest received*\n\n"
    "Your Tracking ID is: *{tracking_id}*\n\n"
    "Status: PENDING\n"
    "Moves to IN_TRANSIT within {window} minutes."
)
LOOKUP_REPLY = (
    "📦 *Shipment {tracking_id}*\n\n"
    "Status: {status}\n"
    "Last update: {location}, {updated}\n"
    "Expected delivery: {expected}"
)
NOT_FOUND_REPLY = "❌ No shipment found with Tracking ID *{tracking_id}*."


class WhatsAppText(BaseModel):
    body: str


class WhatsAppMessage(BaseModel):
    id: str
    sender: str = Field(alias="from")
    type: str
    text: WhatsAppText | None = None


class WhatsAppValue(BaseModel):
    messages: list[WhatsAppMessage] = Field(default_factory=list)


class WhatsAppChange(BaseModel):
    value: WhatsAppValue


class WhatsAppEntry(BaseModel):
    changes: list[WhatsAppChange] = Field(default_factory=list)


class WhatsAppPayload(BaseModel):
    entry: list[WhatsAppEntry] = Field(default_factory=list)

    def first_message(self) -> WhatsAppMessage | None:
        if not self.entry or not self.entry[0].changes:
            return None
        messages = self.entry[0].changes[0].value.messages
        return messages[0] if messages else None


async def _reply(message: WhatsAppMessage, text: str) -> None:
    # Direct replies are best effort and are not queued for retry
    if not await whatsapp.send_text(message.sender, message.id, text):
        logger.warning(f"Could not reply to message {message.id}")


async def _answer_lookup(message: WhatsAppMessage, tracking_id: str) -> dict:
    shipment = lifecycle.get_tracking(tracking_id)
    if shipment is None:
        await _reply(message, NOT_FOUND_REPLY.format(tracking_id=tracking_id))
        return {"status": "lookup", "tracking_id": tracking_id, "found": False}

    latest = shipment.events[-1] if shipment.events else None
    expected = shipment.expected_delivery_at
    await _reply(
        message,
        LOOKUP_REPLY.format(
            tracking_id=tracking_id,
            status=shipment.status,
            location=latest.location if latest else "-",
            updated=shipment.last_transition_at.strftime("%Y-%m-%d %H:%M UTC"),
            expected=expected.strftime("%Y-%m-%d") if expected else "-",
        ),
    )
    return {"status": "lookup", "tracking_id": tracking_id, "found": True}


@router.get("/whatsapp")
async def verify_whatsapp(
    mode: str | None = Query(None, alias="hub.mode"),
    token: str | None = Query(None, alias="hub.verify_token"),
    challenge: str | None = Query(None, alias="hub.challenge"),
):
    """Answer Meta's webhook verification handshake."""
    if mode == "subscribe" and settings.whatsapp_verify_token and token == settings.whatsapp_verify_token:
        return PlainTextResponse(challenge or "")
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/whatsapp")
async def receive_whatsapp_message(payload: WhatsAppPayload):
    """Receive a chat message: create a shipment from a manifest or answer a status query."""
    message = payload.first_message()
    if message is None or message.type != "text" or message.text is None:
        return {"status": "ignored", "reason": "not a text message"}

    if settings.whatsapp_group_id and message.sender != settings.whatsapp_group_id:
        logger.info(f"Ignoring message {message.id} from unauthorized source")
        return {"status": "ignored", "reason": "unauthorized source"}

    if not is_manifest_command(message.text.body):
        return {"status": "ignored", "reason": "no trigger found"}

    tracking_id = parse_lookup(message.text.body)
    if tracking_id is not None:
        return await _answer_lookup(message, tracking_id)

    try:
        manifest = Manifest.from_fields(parse_manifest(message.text.body))
    except IncompleteManifest as e:
        logger.info(f"Manifest in message {message.id} missing {len(e.missing)} field(s)")
        await _reply(message, INCOMPLETE_REPLY.format(missing="\n".join(f"• {label}" for label in e.missing)))
        return {"status": "incomplete", "missing": e.missing}

    origin = OriginMessageRef(message_id=message.id, sender_handle=message.sender)
    try:
        result = lifecycle.ingest(manifest, origin)
    except (database.StoreUnavailable, database.TrackingIdConflict) as e:
        logger.error(f"Could not create shipment from message {message.id}: {e}")
        raise HTTPException(status_code=503, detail="Could not create shipment")

    if result.duplicate:
        await _reply(message, DUPLICATE_REPLY.format(tracking_id=result.tracking_id))
        return {"status": "duplicate", "tracking_id": result.tracking_id}

    await _reply(
        message,
        ACCEPTED_REPLY.format(tracking_id=result.tracking_id, window=settings.intake_window_minutes),
    )
    return {"status": "created", "tracking_id": result.tracking_id}
