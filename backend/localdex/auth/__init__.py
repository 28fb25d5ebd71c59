"""Credential refresh."""
