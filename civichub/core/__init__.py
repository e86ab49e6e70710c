"""Cross-cutting runtime helpers: trace context, locking, auth and database access."""
