"""IMAP session handling for a single mailbox.

This package provides:
- Server resolution from an email address
- Connection, fetch and delete over one IMAP session
- The in-memory envelope index of the listed window
- Parsing of raw messages into a flattened text view
"""
