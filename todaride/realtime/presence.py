"""
Presence store: which user owns which live sockets.

A user is online while at least one bound socket remains.  The hub only
talks to the ``PresenceStore`` interface; ``InMemoryPresenceStore`` is
the single-process implementation and is rebuilt empty on restart.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional


class PresenceStore(ABC):
    @abstractmethod
    def bind(self, user_id: str, socket: Any) -> bool:
        """Bind *socket* to *user_id*.  True if this made the user online."""

    @abstractmethod
    def unbind(self, socket: Any) -> tuple[Optional[str], bool]:
        """Forget *socket*.  Returns ``(user_id, went_offline)``."""

    @abstractmethod
    def user_of(self, socket: Any) -> Optional[str]: ...

    @abstractmethod
    def sockets_of(self, user_id: str) -> list[Any]: ...

    @abstractmethod
    def online_users(self) -> list[str]: ...

    def is_online(self, user_id: str) -> bool:
        return bool(self.sockets_of(user_id))


class InMemoryPresenceStore(PresenceStore):
    def __init__(self):
        self._sockets: dict[str, set[Any]] = {}
        self._owners: dict[Any, str] = {}

    def bind(self, user_id: str, socket: Any) -> bool:
        current = self._owners.get(socket)
        if current == user_id:
            return False
        if current is not None:
            self.unbind(socket)
        sockets = self._sockets.setdefault(user_id, set())
        first = not sockets
        sockets.add(socket)
        self._owners[socket] = user_id
        return first

    def unbind(self, socket: Any) -> tuple[Optional[str], bool]:
        user_id = self._owners.pop(socket, None)
        if user_id is None:
            return None, False
        sockets = self._sockets.get(user_id, set())
        sockets.discard(socket)
        if sockets:
            return user_id, False
        self._sockets.pop(user_id, None)
        return user_id, True

    def user_of(self, socket: Any) -> Optional[str]:
        return self._owners.get(socket)

    def sockets_of(self, user_id: str) -> list[Any]:
        return list(self._sockets.get(user_id, ()))

    def online_users(self) -> list[str]:
        return sorted(self._sockets)
