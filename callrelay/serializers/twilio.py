"""Twilio Media Streams WebSocket serializer.

Twilio streams caller audio as base64-encoded mu-law at 8kHz inside JSON
frames with an ``event`` field. The relay never touches the audio bytes on
this side; payloads are carried as base64 text.

Protocol reference:
    https://www.twilio.com/docs/voice/media-streams/websocket-messages
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from callrelay.core.events import (
    AnyTelephonyEvent,
    MarkReceived,
    MediaReceived,
    StreamConnected,
    StreamStarted,
    StreamStopped,
    TelephonyEventType,
    UnknownTelephonyEvent,
)
from callrelay.serializers.base import BaseSerializer, FrameDecodeError


class TwilioSerializer(BaseSerializer):
    """Serializer for the Twilio Media Streams WebSocket protocol.

    Inbound events handled:
        * ``connected`` -- handshake acknowledgement.
        * ``start``     -- stream metadata; produces :class:`StreamStarted`.
        * ``media``     -- audio payload; produces :class:`MediaReceived`.
        * ``mark``      -- playback checkpoint reached.
        * ``stop``      -- stream ended; produces :class:`StreamStopped`.

    Anything else is surfaced as :class:`UnknownTelephonyEvent`.
    """

    @property
    def name(self) -> str:
        return "twilio"

    # ------------------------------------------------------------------
    # Deserialization (Twilio -> relay)
    # ------------------------------------------------------------------

    def deserialize(self, raw: bytes | str | dict) -> AnyTelephonyEvent:
        msg = self.parse_json(raw)
        try:
            return self._decode(msg)
        except ValidationError as e:
            raise FrameDecodeError(f"Invalid {msg.get('event')!r} frame: {e}") from e

    def _decode(self, msg: dict[str, Any]) -> AnyTelephonyEvent:
        event = msg.get("event")
        if not isinstance(event, str) or not event:
            raise FrameDecodeError("Missing 'event' field")

        stream_sid = msg.get("streamSid") or ""
        if not isinstance(stream_sid, str):
            raise FrameDecodeError("streamSid must be a string")

        if event == TelephonyEventType.CONNECTED.value:
            return StreamConnected(
                protocol=str(msg.get("protocol", "")),
                version=str(msg.get("version", "")),
            )

        if event == TelephonyEventType.START.value:
            return self._handle_start(msg)

        if event == TelephonyEventType.MEDIA.value:
            payload = self.section(msg, "media").get("payload")
            if not isinstance(payload, str):
                raise FrameDecodeError("Media frame without a payload")
            return MediaReceived(stream_sid=stream_sid, payload=payload)

        if event == TelephonyEventType.MARK.value:
            name = self.section(msg, "mark").get("name", "")
            return MarkReceived(stream_sid=stream_sid, name=str(name))

        if event == TelephonyEventType.STOP.value:
            return StreamStopped(stream_sid=stream_sid)

        return UnknownTelephonyEvent(stream_sid=stream_sid, event=event, payload=msg)

    def _handle_start(self, msg: dict[str, Any]) -> StreamStarted:
        start = self.section(msg, "start")
        stream_sid = start.get("streamSid") or msg.get("streamSid")
        if not stream_sid or not isinstance(stream_sid, str):
            raise FrameDecodeError("Start frame without a streamSid")

        custom = start.get("customParameters") or {}
        if not isinstance(custom, dict):
            raise FrameDecodeError("customParameters must be an object")

        return StreamStarted(
            stream_sid=stream_sid,
            call_sid=str(start.get("callSid") or ""),
            # null parameters count as missing so the defaults apply
            custom_parameters={str(k): "" if v is None else str(v) for k, v in custom.items()},
        )

    # ------------------------------------------------------------------
    # Serialization (relay -> Twilio)
    # ------------------------------------------------------------------

    @staticmethod
    def media_message(stream_sid: str, payload: str) -> str:
        """Audio for the caller, base64 payload passed through untouched."""
        return json.dumps(
            {
                "event": "media",
                "streamSid": stream_sid,
                "media": {"payload": payload},
            }
        )

    @staticmethod
    def clear_message(stream_sid: str) -> str:
        """Instructs Twilio to discard audio buffered but not yet played."""
        return json.dumps({"event": "clear", "streamSid": stream_sid})

    @staticmethod
    def stop_message(stream_sid: str) -> str:
        return json.dumps({"event": "stop", "streamSid": stream_sid})


twilio_serializer = TwilioSerializer()


def decode_telephony_frame(raw: bytes | str | dict) -> AnyTelephonyEvent:
    """Decode one Twilio frame. Raises :class:`FrameDecodeError` if malformed."""
    return twilio_serializer.deserialize(raw)
