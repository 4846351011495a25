"""Connectors to external advertising platforms."""
