"""Message model for both legs of the relay.

The telephony leg speaks Twilio's Media Streams protocol and the agent leg
speaks ElevenLabs' Conversational AI protocol. Serializers decode raw frames
from either side into these typed events so that the legs dispatch on a
closed set of variants instead of raw strings.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, Field


class TelephonyEventType(str, Enum):
    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    MARK = "mark"
    STOP = "stop"


class AgentMessageType(str, Enum):
    CONVERSATION_INITIATION_METADATA = "conversation_initiation_metadata"
    AUDIO = "audio"
    INTERRUPTION = "interruption"
    PING = "ping"
    AGENT_RESPONSE = "agent_response"
    USER_TRANSCRIPT = "user_transcript"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Telephony leg (Twilio -> relay)
# ---------------------------------------------------------------------------


class TelephonyEvent(BaseModel):
    """Base event decoded from a Twilio Media Streams frame."""

    event_type: TelephonyEventType | None = None
    stream_sid: str = ""


class StreamConnected(TelephonyEvent):
    """Twilio's initial ``connected`` handshake."""

    event_type: TelephonyEventType = TelephonyEventType.CONNECTED
    protocol: str = ""
    version: str = ""


class StreamStarted(TelephonyEvent):
    """Stream metadata; carries the identifiers and ``<Parameter>`` values."""

    event_type: TelephonyEventType = TelephonyEventType.START
    call_sid: str = ""
    custom_parameters: dict[str, str] = Field(default_factory=dict)


class MediaReceived(TelephonyEvent):
    """One chunk of caller audio, still base64-encoded."""

    event_type: TelephonyEventType = TelephonyEventType.MEDIA
    payload: str = ""


class MarkReceived(TelephonyEvent):
    event_type: TelephonyEventType = TelephonyEventType.MARK
    name: str = ""


class StreamStopped(TelephonyEvent):
    event_type: TelephonyEventType = TelephonyEventType.STOP


class UnknownTelephonyEvent(TelephonyEvent):
    """Any ``event`` value we do not handle."""

    event: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)


AnyTelephonyEvent = (
    StreamConnected
    | StreamStarted
    | MediaReceived
    | MarkReceived
    | StreamStopped
    | UnknownTelephonyEvent
)


# ---------------------------------------------------------------------------
# Agent leg (ElevenLabs -> relay)
# ---------------------------------------------------------------------------


class AgentMessage(BaseModel):
    """Base message decoded from the agent connection."""

    message_type: AgentMessageType | None = None


class InitiationMetadata(AgentMessage):
    message_type: AgentMessageType = AgentMessageType.CONVERSATION_INITIATION_METADATA
    conversation_id: str = ""
    agent_output_audio_format: str = ""
    user_input_audio_format: str = ""


class AgentAudio(AgentMessage):
    """A chunk of agent speech, base64-encoded, forwarded verbatim."""

    message_type: AgentMessageType = AgentMessageType.AUDIO
    audio: str = ""


class AgentInterruption(AgentMessage):
    """The caller barged in; buffered playback must be discarded."""

    message_type: AgentMessageType = AgentMessageType.INTERRUPTION
    reason: str = ""


class AgentPing(AgentMessage):
    message_type: AgentMessageType = AgentMessageType.PING
    event_id: int | str
    ping_ms: int | None = None


class AgentResponse(AgentMessage):
    message_type: AgentMessageType = AgentMessageType.AGENT_RESPONSE
    text: str = ""


class UserTranscript(AgentMessage):
    message_type: AgentMessageType = AgentMessageType.USER_TRANSCRIPT
    text: str = ""


class AgentError(AgentMessage):
    message_type: AgentMessageType = AgentMessageType.ERROR
    message: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)


class UnknownAgentMessage(AgentMessage):
    """Any ``type`` outside :class:`AgentMessageType`."""

    type: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)


AnyAgentMessage = (
    InitiationMetadata
    | AgentAudio
    | AgentInterruption
    | AgentPing
    | AgentResponse
    | UserTranscript
    | AgentError
    | UnknownAgentMessage
)


# ---------------------------------------------------------------------------
# Conversation start data
# ---------------------------------------------------------------------------


class DynamicVariables(BaseModel):
    """Variables substituted into the agent's conversation at start.

    Only variables are sent; the agent's configured prompt and first
    message are never overridden from the relay.
    """

    client_id: str = "unknown_call"
    phone_number: str = "unknown_number"
    name: str = "Cliente"
    organization: str = "Datágora"
    credit_amount: str = "50000"

    @classmethod
    def from_parameters(
        cls,
        parameters: Mapping[str, str] | None,
        call_sid: str | None = None,
    ) -> DynamicVariables:
        """Build variables from stream parameters; empty values use defaults."""
        params = parameters or {}
        defaults = cls()
        return cls(
            client_id=params.get("client_id") or call_sid or defaults.client_id,
            phone_number=params.get("phone_number") or defaults.phone_number,
            name=params.get("name") or defaults.name,
            organization=params.get("organization") or defaults.organization,
            credit_amount=params.get("credit_amount") or defaults.credit_amount,
        )
