"""
Exception hierarchy for marketdesk.

Each external collaborator boundary raises its own error type so routes can
map failures to responses without inspecting messages.
"""

from __future__ import annotations


class MarketDeskError(Exception):
    """Base exception for all marketdesk failures."""


class StoreError(MarketDeskError):
    """Raised when the table store rejects or fails a request."""


class RecordValidationError(MarketDeskError):
    """Raised when a row does not fit its collection's record type."""


class StorageError(MarketDeskError):
    """Raised for object storage failures."""


class AuthError(MarketDeskError):
    """Raised when sign-in fails or a token cannot be resolved."""
