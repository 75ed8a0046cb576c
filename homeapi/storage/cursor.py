"""Opaque pagination cursors.

A cursor is the store's continuation token in URL-safe base64 without
padding. The token itself is never inspected here; whether it is stale or
meaningful is for the store to decide.
"""

from __future__ import annotations

import base64
import binascii

from homeapi.errors import InvalidCursorError


def encode(token: bytes) -> str:
    """Wrap a continuation token into a transport-safe cursor string."""
    return base64.urlsafe_b64encode(token).decode("ascii").rstrip("=")


def decode(cursor: str) -> bytes:
    """Unwrap a cursor produced by :func:`encode`.

    Raises:
        InvalidCursorError: If the cursor is empty or not valid base64
    """
    if not cursor:
        raise InvalidCursorError("Empty cursor")
    try:
        padded = cursor.encode("ascii") + b"=" * (-len(cursor) % 4)
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, UnicodeError, ValueError):
        raise InvalidCursorError() from None
