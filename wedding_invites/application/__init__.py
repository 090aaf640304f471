# Application Layer
# =================
# Use cases built on the domain types and infrastructure adapters:
# - lifecycle:  one WhatsApp connection per sender (open, wait, pair, clear)
# - reaper:     periodic cleanup of stale QR codes and stuck sessions
# - dispatcher: sequential invitation sending with retry and pacing

from .dispatcher import InvitationDispatcher
from .lifecycle import SessionManager
from .reaper import IdleReaper
from .session_state import SessionState
from .session_store import Session, SessionStore

__all__ = [
    "IdleReaper",
    "InvitationDispatcher",
    "Session",
    "SessionManager",
    "SessionState",
    "SessionStore",
]
