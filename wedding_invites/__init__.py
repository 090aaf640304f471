# Wedding Invites - WhatsApp Invitation Sender
# ============================================
# Sends wedding invitations over WhatsApp Web and collects RSVPs.
#
# ARCHITECTURE LAYERS:
# - Presentation:   FastAPI routes and the campaign CLI
# - Application:    Session lifecycle, idle reaping, invitation dispatch
# - Domain:         Pure data types, phone normalization, error taxonomy
# - Infrastructure: External services (WhatsApp Web via Selenium, spreadsheets)
#
# One WhatsApp Web connection is kept per sender, so several family members
# can send from their own phones through the same server.

__version__ = "1.0.0"
