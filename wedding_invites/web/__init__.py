# Web Layer
# =========
# FastAPI JSON API for the admin page and the RSVP landing page.

from .app import Services, build_services, create_app

__all__ = ["Services", "build_services", "create_app"]
