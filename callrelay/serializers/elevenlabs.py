"""ElevenLabs Conversational AI WebSocket serializer.

Every inbound message carries a ``type`` field. Each known type has its own
decoder; unknown types decode to :class:`UnknownAgentMessage` so that they
are logged and ignored rather than mistaken for a known variant.

Protocol reference:
    https://elevenlabs.io/docs/conversational-ai/api-reference/conversational-ai/websocket
"""

from __future__ import annotations

import json
from typing import Any, Callable

from pydantic import ValidationError

from callrelay.core.events import (
    AgentAudio,
    AgentError,
    AgentInterruption,
    AgentMessageType,
    AgentPing,
    AgentResponse,
    AnyAgentMessage,
    DynamicVariables,
    InitiationMetadata,
    UnknownAgentMessage,
    UserTranscript,
)
from callrelay.serializers.base import BaseSerializer, FrameDecodeError


class ElevenLabsSerializer(BaseSerializer):
    """Serializer for the ElevenLabs Conversational AI protocol."""

    def __init__(self) -> None:
        self._decoders: dict[AgentMessageType, Callable[[dict[str, Any]], AnyAgentMessage]] = {
            AgentMessageType.CONVERSATION_INITIATION_METADATA: self._decode_metadata,
            AgentMessageType.AUDIO: self._decode_audio,
            AgentMessageType.INTERRUPTION: self._decode_interruption,
            AgentMessageType.PING: self._decode_ping,
            AgentMessageType.AGENT_RESPONSE: self._decode_agent_response,
            AgentMessageType.USER_TRANSCRIPT: self._decode_user_transcript,
            AgentMessageType.ERROR: self._decode_error,
        }

    @property
    def name(self) -> str:
        return "elevenlabs"

    # ------------------------------------------------------------------
    # Deserialization (agent -> relay)
    # ------------------------------------------------------------------

    def deserialize(self, raw: bytes | str | dict) -> AnyAgentMessage:
        msg = self.parse_json(raw)
        msg_type = msg.get("type")
        if not isinstance(msg_type, str):
            raise FrameDecodeError("Missing 'type' field")

        try:
            kind = AgentMessageType(msg_type)
        except ValueError:
            return UnknownAgentMessage(type=msg_type, payload=msg)
        try:
            return self._decoders[kind](msg)
        except ValidationError as e:
            raise FrameDecodeError(f"Invalid {msg_type!r} message: {e}") from e

    def _decode_metadata(self, msg: dict[str, Any]) -> InitiationMetadata:
        event = self.section(msg, "conversation_initiation_metadata_event")
        return InitiationMetadata(
            conversation_id=str(event.get("conversation_id", "")),
            agent_output_audio_format=str(event.get("agent_output_audio_format", "")),
            user_input_audio_format=str(event.get("user_input_audio_format", "")),
        )

    def _decode_audio(self, msg: dict[str, Any]) -> AgentAudio:
        # Two payload shapes are in the wild: audio.chunk and
        # audio_event.audio_base_64.
        chunk = self.section(msg, "audio").get("chunk")
        if not chunk:
            chunk = self.section(msg, "audio_event").get("audio_base_64")
        if not isinstance(chunk, str) or not chunk:
            raise FrameDecodeError("Audio message without an audio payload")
        return AgentAudio(audio=chunk)

    def _decode_interruption(self, msg: dict[str, Any]) -> AgentInterruption:
        event = self.section(msg, "interruption_event")
        return AgentInterruption(reason=str(event.get("reason", "")))

    def _decode_ping(self, msg: dict[str, Any]) -> AgentPing:
        event = self.section(msg, "ping_event")
        event_id = event.get("event_id")
        if event_id is None or isinstance(event_id, bool) or not isinstance(event_id, (int, str)):
            raise FrameDecodeError("Ping message without an event_id")
        ping_ms = event.get("ping_ms")
        return AgentPing(
            event_id=event_id,
            ping_ms=ping_ms if isinstance(ping_ms, int) else None,
        )

    def _decode_agent_response(self, msg: dict[str, Any]) -> AgentResponse:
        event = self.section(msg, "agent_response_event")
        return AgentResponse(text=str(event.get("agent_response", "")))

    def _decode_user_transcript(self, msg: dict[str, Any]) -> UserTranscript:
        event = self.section(msg, "user_transcription_event")
        return UserTranscript(text=str(event.get("user_transcript", "")))

    def _decode_error(self, msg: dict[str, Any]) -> AgentError:
        event = self.section(msg, "error_event")
        text = event.get("message") or msg.get("message") or ""
        return AgentError(message=str(text), payload=msg)

    # ------------------------------------------------------------------
    # Serialization (relay -> agent)
    # ------------------------------------------------------------------

    @staticmethod
    def initiation_message(variables: DynamicVariables) -> str:
        """First message after connecting: dynamic variables only."""
        return json.dumps(
            {
                "type": "conversation_initiation_client_data",
                "dynamic_variables": variables.model_dump(),
            },
            ensure_ascii=False,
        )

    @staticmethod
    def user_audio_message(payload: str) -> str:
        return json.dumps({"user_audio_chunk": payload})

    @staticmethod
    def pong_message(event_id: int | str) -> str:
        return json.dumps({"type": "pong", "event_id": event_id})


elevenlabs_serializer = ElevenLabsSerializer()


def decode_agent_message(raw: bytes | str | dict) -> AnyAgentMessage:
    """Decode one agent message. Raises :class:`FrameDecodeError` if malformed."""
    return elevenlabs_serializer.deserialize(raw)
