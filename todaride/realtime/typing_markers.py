"""Ephemeral per-(user, chat) typing markers with an idle expiry."""

from __future__ import annotations

import time
from typing import Callable


class TypingMarkers:
    def __init__(self, idle_seconds: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._markers: dict[tuple[str, str], float] = {}

    def set(self, user_id: str, chat_id: str, is_typing: bool) -> None:
        key = (user_id, chat_id)
        if is_typing:
            self._markers[key] = self._clock()
        else:
            self._markers.pop(key, None)

    def clear_user(self, user_id: str) -> list[str]:
        """Drop every marker of *user_id*; returns the affected chat ids."""
        keys = [key for key in self._markers if key[0] == user_id]
        for key in keys:
            del self._markers[key]
        return [chat_id for _, chat_id in keys]

    def active(self, chat_id: str) -> list[str]:
        """Users still typing in *chat_id*; expired markers are evicted."""
        self.evict_expired()
        return sorted(uid for uid, cid in self._markers if cid == chat_id)

    def evict_expired(self) -> int:
        cutoff = self._clock() - self.idle_seconds
        expired = [key for key, stamp in self._markers.items() if stamp <= cutoff]
        for key in expired:
            del self._markers[key]
        return len(expired)
