"""Short callback tokens for inline buttons that refer to panel clients.

Telegram limits callback data to 64 bytes, too little for an email plus an
inbound id. Handlers register the reference and put the token in the button.
"""

import secrets
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple


class CallbackRegistry:
    """Thread-safe LRU table of token -> value with TTL expiration.

    Each handler set owns its own registry; tokens from one are meaningless
    to another.
    """

    def __init__(self, max_size: int = 1000, ttl_seconds: int = 3600):
        """Initialize the registry.

        Args:
            max_size: Maximum number of live tokens; the oldest is evicted first
            ttl_seconds: Lifetime of a token
        """
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._entries: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def register(self, value: Any) -> str:
        """Store ``value`` and return a fresh token for it."""
        with self._lock:
            token = secrets.token_hex(4)
            while token in self._entries:
                token = secrets.token_hex(4)

            if len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)

            self._entries[token] = (value, time.time() + self.ttl_seconds)
            return token

    def resolve(self, token: str) -> Optional[Any]:
        """Value for ``token``, or None if unknown or expired."""
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return None

            value, expiry_time = entry
            if time.time() > expiry_time:
                del self._entries[token]
                return None

            self._entries.move_to_end(token)
            return value

    def discard(self, token: str) -> bool:
        with self._lock:
            return self._entries.pop(token, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            current_time = time.time()
            expired = sum(1 for _, expiry in self._entries.values() if current_time > expiry)
            return {
                "total_entries": len(self._entries),
                "expired_entries": expired,
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
            }
