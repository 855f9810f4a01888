"""Cross-cutting request middleware (logging, rate limits)."""
