"""Reusable UI components for message display."""

from .tables import MessageTable
from .panels import MessagePanel
from .prompts import ConfirmPrompt, InputPrompt
from .messages import StatusMessage

__all__ = [
    "MessageTable",
    "MessagePanel",
    "ConfirmPrompt",
    "InputPrompt",
    "StatusMessage",
]
