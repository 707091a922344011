"""Error taxonomy for link resolution and analytics.

Every error raised by the core derives from ``ShortenerError`` so the routing
layer can map it onto an HTTP status without inspecting messages.

Error Mapping
=============
::
    ShortenerError
    ├─ ValidationError          → 422  (bad URL, bad alias, oversized input)
    ├─ ConflictError            → 409  (requested alias already taken)
    ├─ NotFoundError            → 404  (no live link, including expired ones)
    ├─ KeyGenerationExhausted   → 500  (every generated key collided)
    └─ StoreUnavailable         → 500  (durable store fault)

Key Behaviours
===============
- Validation failures are raised before any store or cache access.
- Internal errors keep their detail for logging; the routing layer replaces
  it with a generic message before it reaches the client.
"""

__all__ = [
    "ShortenerError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "KeyGenerationExhausted",
    "StoreUnavailable",
]


class ShortenerError(Exception):
    """Base class for all errors raised by the short link core."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ShortenerError):
    """Input was rejected before any store mutation."""


class ConflictError(ShortenerError):
    """The requested key is already taken."""


class NotFoundError(ShortenerError):
    """The key has no live link."""


class KeyGenerationExhausted(ShortenerError):
    """Every generated key collided with an existing one."""


class StoreUnavailable(ShortenerError):
    """The durable store could not serve the request."""
