"""Base serializer interface for callrelay.

Serializers are pure message translators with no I/O. They turn a raw
WebSocket frame from one leg into a typed event and build the JSON frames
each leg expects on the way out.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any


class FrameDecodeError(ValueError):
    """A frame could not be parsed into the expected structure."""


class BaseSerializer(ABC):
    """Abstract base class for leg serializers.

    Key principles:
    - Serializers do NO I/O (no network calls, no file access)
    - They hold no call state (it lives in CallSession)
    - Malformed input raises :class:`FrameDecodeError`, never anything else
    """

    @abstractmethod
    def deserialize(self, raw: bytes | str | dict) -> Any:
        """Parse a raw frame from the leg into a typed event.

        Raises:
            FrameDecodeError: If the frame is not a well-formed message.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of this serializer (e.g., 'twilio')."""
        ...

    @staticmethod
    def parse_json(raw: bytes | str | dict) -> dict[str, Any]:
        """Normalise a raw WebSocket frame into a JSON object."""
        if isinstance(raw, dict):
            return raw
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode("utf-8")
            msg = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError, TypeError) as e:
            raise FrameDecodeError(f"Invalid JSON frame: {e}") from e
        if not isinstance(msg, dict):
            raise FrameDecodeError(f"Expected a JSON object, got {type(msg).__name__}")
        return msg

    @staticmethod
    def section(msg: dict[str, Any], key: str) -> dict[str, Any]:
        """Return a nested object, ``{}`` when absent."""
        value = msg.get(key)
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise FrameDecodeError(f"Field '{key}' must be an object")
        return value
