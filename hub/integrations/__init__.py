"""Outbound HTTP integrations."""
