# === MODULE PURPOSE ===
# External data access (broker APIs).
