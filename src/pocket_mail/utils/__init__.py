"""Shared utilities: errors, logging, configuration and console access."""
