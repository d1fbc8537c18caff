# === MODULE PURPOSE ===
# HTTP clients for external broker APIs.

from tradejournal.data.clients.propreports_client import PropReportsClient, PropReportsError

__all__ = ["PropReportsClient", "PropReportsError"]
