"""Base error type for ideup.

Concrete errors live next to the code that raises them; they all share this
base so the updater can attribute any failure to a plugin.
"""

from __future__ import annotations


class IdeupError(Exception):
    """Base error for all ideup exceptions."""

    def __init__(self, message: str, plugin_id: str | None = None):
        self.message = message
        self.plugin_id = plugin_id
        super().__init__(message)
