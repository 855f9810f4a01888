"""Domain services: pure rule engines and DB-backed operations."""
