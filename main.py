"""
Wedding Invitations - Web Server Entry Point
============================================

Run this to start the admin API and RSVP endpoint:
    python main.py

Then open http://127.0.0.1:8080/health in your browser.

To send a sender's invitations from the terminal:
    python run_campaign.py <sender>
"""

import logging

import uvicorn

from wedding_invites.infrastructure.config import get_settings


def main():
    """Start the web server."""
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    print("\n" + "=" * 50)
    print("   Wedding Invitations - Admin API")
    print("=" * 50)
    print(f"\n   Starting server at http://{settings.host}:{settings.port}")
    print("   Press Ctrl+C to stop\n")

    uvicorn.run(
        "wedding_invites.web.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
