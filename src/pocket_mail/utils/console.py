"""Shared rich console for the shell and its components."""

from functools import lru_cache

from rich.console import Console


@lru_cache(maxsize=None)
def get_console() -> Console:
    """Process-wide Console; syntax highlighting off so message text prints as-is."""
    return Console(highlight=False)
