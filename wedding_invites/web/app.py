"""
FastAPI Web Application - Wedding Invitations Admin API
========================================================

JSON API used by the admin page and the RSVP landing page.

Admin routes (/api/admin):
- senders, guests, update-send-status:   guest sheet reads and writes
- init-whatsapp, whatsapp-status:        link a sender's WhatsApp (QR code)
- send-invitations:                      send a batch and return the summary
- clear-session:                         drop a sender's saved login

Every failure is answered as {"success": false, "error": ...}; a traceback
is added under "details" only in debug mode.
"""

import functools
import logging
import traceback
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any, List, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..application import IdleReaper, InvitationDispatcher, SessionManager, SessionStore
from ..domain.errors import (
    AuthFailure,
    ConfigurationError,
    DataSourceError,
    InviteError,
    ReadinessTimeout,
)
from ..domain.models import Guest
from ..infrastructure.config import Settings, get_settings
from ..infrastructure.sheets import SpreadsheetGateway, WorkbookGateway, filter_guests_by_sender
from ..infrastructure.whatsapp import ConnectionFactory, WhatsAppClient

logger = logging.getLogger(__name__)


# ── Request Models ─────────────────────────────────────────────────

class InitWhatsAppRequest(BaseModel):
    sender: str = ""


class SendStatusRequest(BaseModel):
    phone: str = ""
    shouldSend: bool = False


class GuestPayload(BaseModel):
    name: str = ""
    phone: str = ""
    addons: Optional[str] = ""


class SendInvitationsRequest(BaseModel):
    sender: str = ""
    guests: Optional[List[GuestPayload]] = None


class RSVPRequest(BaseModel):
    # Validated by hand in the route so each bad field gets its own message
    name: Any = None
    phone: Any = None
    isAttending: Any = None
    numberOfGuests: Any = None


# ── Wiring ─────────────────────────────────────────────────────────

@dataclass
class Services:
    """Everything the routes talk to. Tests build one from fakes."""
    settings: Settings
    gateway: SpreadsheetGateway
    store: SessionStore
    manager: SessionManager
    dispatcher: InvitationDispatcher
    reaper: IdleReaper


def build_services(
    settings: Optional[Settings] = None,
    gateway: Optional[SpreadsheetGateway] = None,
    connection_factory: Optional[ConnectionFactory] = None,
) -> Services:
    """Wire the production components from settings."""
    settings = settings or get_settings()
    wa = settings.whatsapp

    if connection_factory is None:
        connection_factory = functools.partial(WhatsAppClient, settings=wa)

    store = SessionStore()
    manager = SessionManager(store, connection_factory, wa.auth_root, poll_interval=wa.poll_interval)
    return Services(
        settings=settings,
        gateway=gateway or WorkbookGateway(
            worksheet=settings.sheets.guest_worksheet,
            country_code=settings.invitation.country_code,
        ),
        store=store,
        manager=manager,
        dispatcher=InvitationDispatcher(
            manager,
            settings.invitation,
            send_attempts=wa.send_attempts,
            retry_backoff=wa.retry_backoff,
            message_delay=wa.message_delay,
        ),
        reaper=IdleReaper(
            store,
            manager,
            pairing_interval=wa.pairing_sweep_interval,
            stuck_interval=wa.stuck_sweep_interval,
            stale_after=wa.stale_after,
        ),
    )


def _parse_guest_count(value: Any) -> Optional[int]:
    """Non-negative guest count from a JSON number or numeric string."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        count = int(value) if isinstance(value, float) else int(str(value).strip())
    except (ValueError, OverflowError):
        return None
    return count if count >= 0 else None


def create_app(services: Optional[Services] = None) -> FastAPI:
    services = services or build_services()
    settings = services.settings

    # ── Lifespan ───────────────────────────────────────────────────
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for warning in settings.validate():
            logger.warning(warning)
        services.reaper.start()
        logger.info("Wedding invitations API ready")
        yield
        await services.reaper.stop()
        await services.manager.shutdown()
        logger.info("All WhatsApp sessions closed")

    app = FastAPI(
        title="Wedding Invitations",
        description="WhatsApp wedding invitations and RSVP collection",
        lifespan=lifespan,
    )
    app.state.services = services

    def failure(status_code: int, error: str, exc: Optional[BaseException] = None) -> JSONResponse:
        body = {"success": False, "error": error}
        if exc is not None and settings.debug:
            body["details"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(status_code=status_code, content=body)

    # ── Health ─────────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # ── Guest sheet ────────────────────────────────────────────────
    # Plain def: pandas I/O runs in FastAPI's thread pool

    @app.get("/api/admin/senders")
    def get_senders():
        try:
            sheet_id = settings.require_sheet("guest")
            senders = services.gateway.fetch_senders_distinct(sheet_id)
        except ConfigurationError as e:
            return failure(500, str(e), e)
        except DataSourceError as e:
            logger.exception(f"Error getting senders: {e}")
            return failure(500, "Failed to get senders", e)
        return {"success": True, "senders": senders}

    @app.get("/api/admin/guests/{sender}")
    def get_guests(sender: str):
        try:
            sheet_id = settings.require_sheet("guest")
            guests = services.gateway.fetch_guests(sheet_id)
        except ConfigurationError as e:
            return failure(500, str(e), e)
        except DataSourceError as e:
            logger.exception(f"Error getting guests: {e}")
            return failure(500, "Failed to get guests", e)

        # Every guest of the sender, not only those marked to send
        mine = filter_guests_by_sender(guests, sender, only_pending=False)
        return {"success": True, "guests": [asdict(guest) for guest in mine]}

    @app.post("/api/admin/update-send-status")
    def update_send_status(body: SendStatusRequest):
        try:
            sheet_id = settings.require_sheet("guest")
        except ConfigurationError as e:
            return failure(500, str(e), e)
        if not body.phone.strip():
            return failure(400, "Phone number is required")

        try:
            services.gateway.mark_send_status(sheet_id, body.phone, body.shouldSend)
        except DataSourceError as e:
            logger.exception(f"Error updating send status: {e}")
            return failure(500, str(e) or "Failed to update send status", e)
        return {"success": True, "message": "Send status updated"}

    # ── WhatsApp ───────────────────────────────────────────────────

    @app.post("/api/admin/init-whatsapp")
    async def init_whatsapp(body: InitWhatsAppRequest):
        sender = body.sender.strip()
        if not sender:
            return failure(400, "Sender is required")

        logger.info(f"[init-whatsapp] Request for {sender}")
        try:
            status = await services.manager.request_pairing_code(
                sender, settings.whatsapp.pairing_timeout * 1000
            )
        except ReadinessTimeout as e:
            logger.error(f"[init-whatsapp] {e}")
            return failure(504, "QR code not generated and client not ready. Check server logs for errors.", e)
        except AuthFailure as e:
            return failure(500, str(e), e)
        except InviteError as e:
            logger.exception(f"[init-whatsapp] Initialization error for {sender}")
            return failure(500, f"Failed to initialize WhatsApp: {e}. Check server logs for details.", e)

        if status.ready:
            return {
                "success": True,
                "qrCode": None,
                "ready": True,
                "message": "WhatsApp is ready using saved session.",
            }
        return {"success": True, "qrCode": status.pairing_code, "ready": False}

    @app.get("/api/admin/whatsapp-status/{sender}")
    async def whatsapp_status(sender: str):
        status = services.manager.get_status(sender)
        return {"success": True, "ready": status.ready, "qr": status.pairing_code}

    @app.post("/api/admin/send-invitations")
    async def send_invitations(body: SendInvitationsRequest):
        sender = body.sender.strip()
        if not sender or body.guests is None:
            return failure(400, "Sender and guests array are required")

        guests = [
            Guest(name=g.name, phone=g.phone, addons=g.addons or "", sender=sender)
            for g in body.guests
        ]
        logger.info(f"[send-invitations] Request received for sender: {sender}, guests: {len(guests)}")
        try:
            # No budget: the admin may still be scanning the QR code
            summary = await services.dispatcher.send_batch(sender, guests)
        except InviteError as e:
            logger.exception(f"Error sending invitations: {e}")
            return failure(500, str(e) or "Failed to send invitations", e)

        return {"success": True, **summary.to_dict()}

    @app.delete("/api/admin/clear-session/{sender}")
    async def clear_session(sender: str):
        try:
            had_login = await services.manager.clear_session(sender)
        except (OSError, InviteError) as e:
            logger.exception(f"Error clearing session: {e}")
            return failure(500, str(e) or "Failed to clear session", e)

        if had_login:
            message = f"Session cleared for {sender}. Next initialization will require QR code."
        else:
            message = f"No session found for {sender}."
        return {"success": True, "message": message}

    # ── RSVP ───────────────────────────────────────────────────────

    @app.post("/api/rsvp")
    def submit_rsvp(body: RSVPRequest):
        name = str(body.name or "").strip()
        phone = str(body.phone or "").strip()
        if not name or not phone:
            return failure(400, "Name and phone number are required")
        if not isinstance(body.isAttending, bool):
            return failure(400, "isAttending must be a boolean")
        guest_count = _parse_guest_count(body.numberOfGuests)
        if guest_count is None:
            return failure(400, "Number of guests must be a non-negative integer")

        try:
            sheet_id = settings.require_sheet("response")
            services.gateway.append_or_update_response(
                sheet_id, name, phone, body.isAttending, guest_count
            )
        except ConfigurationError as e:
            return failure(500, str(e), e)
        except DataSourceError as e:
            logger.exception(f"Error processing RSVP: {e}")
            return failure(500, "Failed to process RSVP. Please try again later.", e)

        return {"success": True, "message": "RSVP submitted successfully"}

    return app
