"""
Campaign Runner - WhatsApp Wedding Invitations
===============================================

Sends invitations for one sender straight from the terminal:

    python run_campaign.py Yuval           # guests marked "v" for Yuval
    python run_campaign.py Yuval --all     # every guest of Yuval
    python run_campaign.py Yuval --yes     # skip the 5 second grace period

Guests that were sent successfully are unmarked in the guest sheet, so a
second run only retries the failures.
"""

import argparse
import asyncio
import logging
import sys

from wedding_invites.domain.errors import DataSourceError, InviteError, ReadinessTimeout
from wedding_invites.infrastructure.config import get_settings
from wedding_invites.infrastructure.sheets import filter_guests_by_sender
from wedding_invites.web.app import build_services

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

GRACE_SECONDS = 5
# How often a rotated QR code is re-printed while waiting for the scan
QR_REFRESH_MS = 5_000


async def wait_for_login(manager, sender: str) -> None:
    """Print QR codes as they are issued until the sender's WhatsApp is ready."""
    status = await manager.request_pairing_code(sender)
    if status.ready:
        print("WhatsApp ready (saved login)\n")
        return

    shown = None
    while True:
        code = manager.get_pairing_code(sender)
        if code and code != shown:
            shown = code
            print("=" * 60)
            print("SCAN THE QR CODE NOW")
            print("   Run with WHATSAPP_HEADLESS=false to scan it in the browser,")
            print("   or render this payload as a QR code:\n")
            print(f"   {code}\n")
            print("=" * 60)
        try:
            await manager.wait_until_ready(sender, QR_REFRESH_MS)
            print("\nWhatsApp ready!\n")
            return
        except ReadinessTimeout:
            continue


async def run_campaign(sender: str, include_all: bool = False, assume_yes: bool = False) -> int:
    """Run the invitation campaign for one sender. Returns the process exit code."""

    print("\n" + "=" * 60)
    print("   Wedding Invitations - Campaign Runner")
    print("=" * 60 + "\n")

    settings = get_settings()
    for warning in settings.validate():
        logger.warning(warning)

    services = build_services(settings)
    sheet_id = settings.require_sheet("guest")

    guests = await asyncio.to_thread(services.gateway.fetch_guests, sheet_id)
    pending = filter_guests_by_sender(guests, sender, only_pending=not include_all)
    if not pending:
        print(f"No guests to invite for {sender}. All done!")
        return 0

    print(f"Found {len(pending)} guests for {sender}\n")
    print("Launching WhatsApp Web...")

    try:
        await wait_for_login(services.manager, sender)

        if not assume_yes:
            print(f"Sending {len(pending)} invitations in {GRACE_SECONDS}s. Press Ctrl+C to cancel.")
            await asyncio.sleep(GRACE_SECONDS)

        summary = await services.dispatcher.send_batch(sender, pending)

        # Sent guests are no longer pending
        for result in summary.details:
            if not result.success:
                print(f"   FAILED {result.name} ({result.phone}): {result.error}")
                continue
            try:
                await asyncio.to_thread(services.gateway.mark_send_status, sheet_id, result.phone, False)
            except DataSourceError as e:
                logger.warning(f"Could not unmark {result.name}: {e}")
    finally:
        await services.manager.shutdown()

    # Summary
    print("\n" + "=" * 60)
    print("Campaign Complete!")
    print(f"   Total: {summary.total} | Sent: {summary.successful} | Failed: {summary.failed}")
    print("=" * 60 + "\n")
    return 0 if summary.failed == 0 else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Send WhatsApp wedding invitations for one sender.")
    parser.add_argument("sender", help="Sender name as written in the guest sheet")
    parser.add_argument("--all", dest="include_all", action="store_true",
                        help="Invite every guest of the sender, not only those marked to send")
    parser.add_argument("--yes", dest="assume_yes", action="store_true",
                        help="Start sending without the grace period")
    args = parser.parse_args()

    try:
        return asyncio.run(run_campaign(args.sender, args.include_all, args.assume_yes))
    except KeyboardInterrupt:
        print("\nCancelled")
        return 130
    except InviteError as e:
        logger.error(f"Campaign failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
