# === MODULE PURPOSE ===
# REST API for the trade journal.
# Provides the FastAPI app and bearer token authentication.

from tradejournal.web.app import create_app
from tradejournal.web.auth import TokenAuthenticator, require_user

__all__ = ["TokenAuthenticator", "create_app", "require_user"]
