"""Base transport interface for callrelay.

Transports handle the raw WebSocket lifecycle for one leg: sending,
receiving and closing with a close code. A closed connection surfaces as
:class:`TransportClosed` from :meth:`BaseTransport.recv`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

# RFC 6455 close codes
NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006
INTERNAL_ERROR = 1011


class TransportClosed(Exception):
    """Raised by ``recv`` once the connection is closed."""

    def __init__(self, code: int = ABNORMAL_CLOSURE, reason: str = "") -> None:
        super().__init__(f"Connection closed with code {code}: {reason or 'no reason'}")
        self.code = code
        self.reason = reason

    @property
    def normal(self) -> bool:
        return self.code == NORMAL_CLOSURE


class BaseTransport(ABC):
    """Abstract base class for leg connections."""

    @abstractmethod
    async def send(self, data: bytes | str) -> None:
        """Send one frame."""
        ...

    @abstractmethod
    async def recv(self) -> bytes | str:
        """Receive the next frame.

        Raises:
            TransportClosed: If the connection is closed.
        """
        ...

    @abstractmethod
    async def disconnect(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Close the connection with ``code`` and ``reason``."""
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the connection is currently open."""
        ...
