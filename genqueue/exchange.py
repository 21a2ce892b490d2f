"""
Ephemeral asset exchange: short-lived tokenized bytes served over HTTP so a
provider that only accepts URLs can fetch data this process already holds.

Entries expire EXCHANGE_TTL_SECONDS after `put`. Expiry is lazy: every call
sweeps expired entries first, so an expired token looks exactly like one
that was never issued.
"""

import base64
import binascii
import logging
import re
import secrets
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from genqueue.errors import InvalidInput
from genqueue.settings import settings

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp"}

DATA_URL_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


@dataclass(frozen=True)
class ExchangeEntry:
    content: bytes
    content_type: str
    created_at: float


class AssetExchange(ABC):
    @abstractmethod
    def put(self, content: bytes, content_type: str) -> str:
        """Store content, return an unguessable token."""

    @abstractmethod
    def get(self, token: str) -> Optional[ExchangeEntry]:
        """Return the entry, or None if unknown or expired."""


class InMemoryExchange(AssetExchange):
    """Process-local store guarded by one lock; payloads are small and short-lived."""

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds if ttl_seconds is not None else settings.EXCHANGE_TTL_SECONDS
        self._clock = clock
        self._entries: Dict[str, ExchangeEntry] = {}
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> None:
        # caller holds the lock
        expired = [t for t, e in self._entries.items() if now - e.created_at >= self.ttl]
        for t in expired:
            del self._entries[t]
        if expired:
            logger.debug("Exchange expired %d entr%s", len(expired), "y" if len(expired) == 1 else "ies")

    def put(self, content: bytes, content_type: str) -> str:
        token = secrets.token_urlsafe(32)  # 256 bits
        with self._lock:
            now = self._clock()
            self._sweep(now)
            self._entries[token] = ExchangeEntry(bytes(content), content_type, now)
        logger.info("Exchange stored %d bytes (%s)", len(content), content_type)
        return token

    def get(self, token: str) -> Optional[ExchangeEntry]:
        with self._lock:
            self._sweep(self._clock())
            return self._entries.get(token)

    def __len__(self) -> int:
        with self._lock:
            self._sweep(self._clock())
            return len(self._entries)


def parse_data_url(data_url: str) -> Tuple[str, bytes]:
    """
    Split `data:<mime>;base64,<payload>` into (content_type, bytes).
    Raises InvalidInput for anything else.
    """
    m = DATA_URL_RE.match(data_url.strip())
    if not m:
        raise InvalidInput("Invalid data URL")
    try:
        content = base64.b64decode(m.group(2), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidInput("Invalid base64 payload in data URL")
    return m.group(1), content


def validate_image_data_url(data_url: str, max_bytes: int | None = None) -> Tuple[str, bytes]:
    content_type, content = parse_data_url(data_url)
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise InvalidInput("Unsupported image type")
    limit = max_bytes if max_bytes is not None else settings.EXCHANGE_MAX_BYTES
    if len(content) > limit:
        raise InvalidInput(f"Image exceeds {limit // (1024 * 1024)}MB limit")
    return content_type, content


def exchange_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/api/exchange/{token}"


def publish_data_url(exchange: AssetExchange, data_url: str, base_url: str | None) -> str:
    """Put an inline image into the exchange and return its public URL."""
    if not base_url:
        raise InvalidInput("Unable to resolve base URL for exchange")
    content_type, content = validate_image_data_url(data_url)
    return exchange_url(base_url, exchange.put(content, content_type))


# created at import, lives for the process
exchange = InMemoryExchange()
