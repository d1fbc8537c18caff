# === MODULE PURPOSE ===
# TradePulse backend: trade journal API with real-time push notifications.

__version__ = "1.0.0"
