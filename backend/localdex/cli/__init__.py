"""Command line client."""
