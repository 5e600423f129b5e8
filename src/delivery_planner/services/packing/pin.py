"""PIN policy for packing quantity edits."""

from __future__ import annotations

import hashlib
import hmac
import re
from typing import Optional, Protocol

from ...config import settings

PIN_PATTERN = re.compile(r"^\d{4}$")


class PinPolicy(Protocol):
    def is_pin_required(self) -> bool:
        ...

    def verify_pin(self, pin: str) -> bool:
        ...


def hash_pin(pin: str) -> str:
    return hashlib.sha256(pin.encode("utf-8")).hexdigest()


class HashedPinPolicy:
    """Compares a 4-digit PIN against a stored SHA-256 digest. No digest, no PIN."""

    def __init__(self, pin_hash: Optional[str] = None) -> None:
        self.pin_hash = pin_hash.lower() if pin_hash else None

    @classmethod
    def from_settings(cls) -> "HashedPinPolicy":
        return cls(settings.packing_quantity_pin_hash)

    def is_pin_required(self) -> bool:
        return self.pin_hash is not None

    def verify_pin(self, pin: str) -> bool:
        if self.pin_hash is None:
            return True
        if not pin or not PIN_PATTERN.match(pin):
            return False
        return hmac.compare_digest(hash_pin(pin), self.pin_hash)
