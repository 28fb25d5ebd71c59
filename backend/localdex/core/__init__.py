"""Configuration, logging, metrics and errors."""
