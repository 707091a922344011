"""Short key generation and custom alias validation.

Flow Diagram — generate_unique_key()
====================================
::
    ┌─────────────┐
    │ attempt = 1 │
    └──────┬──────┘
           ▼
    ┌─────────────┐      ┌─────────────┐
    │ nanoid(7,   │─────▶│ store.exists│
    │ URL-safe)   │      │ (key)?      │
    └─────────────┘      └──────┬──────┘
                         NO │       │ YES
                            ▼       ▼
                       ┌────────┐ ┌──────────────────┐
                       │ return │ │ attempt < max?   │
                       │ key    │ │ retry : raise    │
                       └────────┘ │ KeyGeneration-   │
                                  │ Exhausted        │
                                  └──────────────────┘

Key Behaviours
===============
- Generated keys are exactly ``KEY_LENGTH`` characters from ``KEY_ALPHABET``.
- Exhausting the attempt budget is fatal for that create call; there is no
  fallback to a longer key.
- A taken custom alias is a ``ConflictError``, never a retry.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from nanoid import generate
from prometheus_client import Counter

from shortlinks.errors import ConflictError, KeyGenerationExhausted, ValidationError
from shortlinks.store import LinkStore

__all__ = [
    "KEY_ALPHABET",
    "DEFAULT_KEY_LENGTH",
    "DEFAULT_MAX_ATTEMPTS",
    "ALIAS_MAX_LENGTH",
    "KeyGenerator",
    "generate_key",
    "validate_alias_format",
]

# URL-safe alphabet: letters, digits, hyphen and underscore.
KEY_ALPHABET = "_-0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
DEFAULT_KEY_LENGTH = 7
DEFAULT_MAX_ATTEMPTS = 10
ALIAS_MAX_LENGTH = 10

KEY_COLLISIONS_TOTAL = Counter(
    "shortlinks_key_collisions_total",
    "Generated keys that collided with an existing link",
)


def generate_key(length: int = DEFAULT_KEY_LENGTH) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(KEY_ALPHABET, length)


def validate_alias_format(alias: str, max_length: int = ALIAS_MAX_LENGTH) -> str:
    if not alias:
        raise ValidationError("Custom alias cannot be empty")
    # Measured in UTF-8 bytes, so non-ASCII aliases are shorter in characters.
    if len(alias.encode("utf-8")) > max_length:
        raise ValidationError(f"Custom alias exceeds maximum length of {max_length} bytes")
    if not all(c.isalnum() or c in "-_" for c in alias):
        raise ValidationError("Custom alias can only contain alphanumeric characters, hyphens, and underscores")
    return alias


class KeyGenerator:
    """Produces unique keys against a ``LinkStore`` with a bounded retry budget.

    Args:
        store: Store used for existence checks.
        length: Length of generated keys.
        max_attempts: Keys drawn before giving up, shared by collisions and
            rejected inserts.
        alias_max_length: Upper bound for custom aliases.
    """

    def __init__(
        self,
        store: LinkStore,
        length: int = DEFAULT_KEY_LENGTH,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        alias_max_length: int = ALIAS_MAX_LENGTH,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        assert max_attempts > 0, f"max_attempts must be positive, got {max_attempts!r}"
        self._store = store
        self.length = length
        self.max_attempts = max_attempts
        self.alias_max_length = alias_max_length
        self._logger = logger or logging.getLogger("shortlinks")

    async def unique_keys(self) -> AsyncIterator[str]:
        """Yield keys that are free at check time, one attempt each.

        A key the caller cannot use still spends its attempt; the iterator
        stops once ``max_attempts`` draws have been made.
        """
        for attempt in range(1, self.max_attempts + 1):
            key = generate_key(self.length)
            if await self._store.exists(key):
                KEY_COLLISIONS_TOTAL.inc()
                self._logger.debug(f"Generated key collided on attempt {attempt}: {key}")
                continue
            yield key

    async def generate_unique_key(self) -> str:
        async with aclosing(self.unique_keys()) as keys:
            async for key in keys:
                return key
        raise KeyGenerationExhausted(f"Failed to generate unique key after {self.max_attempts} attempts")

    async def claim_alias(self, alias: str) -> str:
        """Validate a requested alias and make sure it is still free.

        Raises:
            ValidationError: If the alias breaks the format rules.
            ConflictError: If a link already uses the alias.
        """
        validate_alias_format(alias, self.alias_max_length)
        if await self._store.exists(alias):
            raise ConflictError(f"Custom alias '{alias}' is already taken")
        return alias
