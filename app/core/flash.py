import time
import uuid
from typing import Any, Dict, Optional, Tuple

FLASH_COOKIE = "flash"


class FlashStore:
    """
    Single-use results handed from POST /ask to the next GET /.

    The payload stays on the server; the browser only carries the token.
    """

    def __init__(self, ttl_seconds: int = 60):
        self.ttl_seconds = ttl_seconds
        # { token: (expires_at, payload) }
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    def put(self, payload: Dict[str, Any]) -> str:
        self._drop_expired()
        token = uuid.uuid4().hex
        self._entries[token] = (time.monotonic() + self.ttl_seconds, payload)
        return token

    def pop(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        """Return the payload for token once; None if unknown or expired."""
        if not token:
            return None
        entry = self._entries.pop(token, None)
        if entry is None:
            return None
        expires_at, payload = entry
        if expires_at < time.monotonic():
            return None
        return payload

    def __len__(self) -> int:
        return len(self._entries)

    def _drop_expired(self):
        now = time.monotonic()
        expired = [token for token, (expires_at, _) in self._entries.items() if expires_at < now]
        for token in expired:
            del self._entries[token]
