"""
Invitation Dispatcher - Sequential Batch Sending
=================================================

Sends one invitation per guest through the sender's WhatsApp connection.

SAFETY:
- Strictly sequential: one shared browser, and bulk bursts get numbers banned
- Fixed pause between guests (none after the last one)
- Only transient transport failures are retried, with a fixed backoff

A failed guest is recorded in the summary and the batch moves on.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence
from urllib.parse import quote

from ..domain.errors import TransportError
from ..domain.models import BatchSummary, DispatchResult, Guest
from ..domain.phone import normalize_phone
from ..infrastructure.config import InvitationSettings
from ..infrastructure.whatsapp.messaging_provider import Connection
from .lifecycle import SessionManager

logger = logging.getLogger(__name__)

# ── Message Templates ──────────────────────────────────────────
INVITATION_TEMPLATE = "שלום {name}, הינכם מוזמנים לחתונה של {couple}! לאישור הגעה לחצו על הקישור:"
INVITATION_WITH_ADDONS_TEMPLATE = "שלום {name} ו{addons}, הינכם מוזמנים לחתונה של {couple}! לאישור הגעה לחצו על הקישור:"
RSVP_LINE = "RSVP here: {link}"


class InvitationDispatcher:
    """
    Usage:
        dispatcher = InvitationDispatcher(manager, settings.invitation)
        summary = await dispatcher.send_batch("Yuval", guests)
        print(summary.successful, summary.failed)
    """

    def __init__(
        self,
        manager: SessionManager,
        invitation: InvitationSettings,
        send_attempts: int = 3,
        retry_backoff: float = 5.0,
        message_delay: float = 3.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._manager = manager
        self._invitation = invitation
        self._send_attempts = max(1, send_attempts)
        self._retry_backoff = retry_backoff
        self._message_delay = message_delay
        self._sleep = sleep

    def rsvp_link(self, phone: str) -> str:
        """Personal RSVP link; the landing page pre-fills the phone from it."""
        return f"{self._invitation.rsvp_base_url}?phone={quote(phone, safe='')}"

    def compose_message(self, guest: Guest) -> str:
        if guest.has_addons:
            greeting = INVITATION_WITH_ADDONS_TEMPLATE.format(
                name=guest.name, addons=guest.addons.strip(), couple=self._invitation.couple_names
            )
        else:
            greeting = INVITATION_TEMPLATE.format(name=guest.name, couple=self._invitation.couple_names)
        return f"{greeting}\n\n{RSVP_LINE.format(link=self.rsvp_link(guest.phone))}"

    async def send_batch(
        self,
        sender_id: str,
        guests: Sequence[Guest],
        max_wait_ms: Optional[float] = None,
    ) -> BatchSummary:
        """
        Send invitations to guests in order and return the aggregated outcome.

        Only raises when no ready connection can be obtained for the sender.
        """
        logger.info(f"[send-invitations] Waiting for WhatsApp to be ready for {sender_id}...")
        connection = await self._manager.wait_until_ready(sender_id, max_wait_ms)

        summary = BatchSummary(total=len(guests))
        logger.info(f"[send-invitations] Starting to send to {len(guests)} guests...")

        for index, guest in enumerate(guests):
            logger.info(
                f"[send-invitations] Sending to guest {index + 1}/{len(guests)}: "
                f"{guest.name} ({guest.phone})"
            )
            result = await self._dispatch_one(connection, guest)
            summary.record(result)
            logger.info(
                f"[send-invitations] Result for {guest.name}: "
                f"{'SUCCESS' if result.success else 'FAILED'} {result.error or ''}"
            )

            if index < len(guests) - 1 and self._message_delay > 0:
                await self._sleep(self._message_delay)

        logger.info(
            f"[send-invitations] Finished sending. "
            f"Success: {summary.successful}, Failed: {summary.failed}"
        )
        return summary

    async def _dispatch_one(self, connection: Connection, guest: Guest) -> DispatchResult:
        to = normalize_phone(guest.phone, self._invitation.country_code)
        if not to:
            logger.warning(f"Skipping {guest.name}: missing phone number")
            return DispatchResult(name=guest.name, phone=guest.phone, success=False,
                                  error="Missing phone number")

        message = self.compose_message(guest)
        try:
            message_id = await self._send_with_retry(connection, to, message)
        except TransportError as e:
            logger.error(f"Error sending WhatsApp to {to} ({e.kind.value}): {e}")
            return DispatchResult(name=guest.name, phone=guest.phone, success=False, to=to, error=str(e))
        except Exception as e:
            logger.exception(f"Exception sending to {guest.name}: {e}")
            return DispatchResult(name=guest.name, phone=guest.phone, success=False, to=to, error=str(e))

        return DispatchResult(name=guest.name, phone=guest.phone, success=True, to=to,
                              message_id=message_id)

    async def _send_with_retry(self, connection: Connection, to: str, message: str) -> str:
        for attempt in range(1, self._send_attempts + 1):
            try:
                return await self._manager.send(connection, to, message)
            except TransportError as e:
                if not e.transient or attempt == self._send_attempts:
                    raise
                logger.warning(
                    f"Attempt {attempt}/{self._send_attempts} to {to} failed "
                    f"({e.kind.value}); retrying in {self._retry_backoff:.0f}s"
                )
                await self._sleep(self._retry_backoff)
