# Infrastructure Layer
# ====================
# Contains all external service integrations:
# - whatsapp/: Selenium-based WhatsApp Web connections, one per sender
# - sheets/:   Guest and RSVP spreadsheets (pandas workbooks)
# - config/:   Environment and settings management
