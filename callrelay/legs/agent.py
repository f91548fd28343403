"""Agent leg: the outbound connection to the ElevenLabs conversational agent.

The leg owns the agent connection for one session. Setup fetches a fresh
signed URL, connects, sends the dynamic variables and then reads agent
messages in arrival order, dispatching one handler per message type.
Abnormal failures are retried through the ReconnectController while the
call is live.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable

from loguru import logger

from callrelay.core.events import (
    AgentAudio,
    AgentError,
    AgentInterruption,
    AgentMessageType,
    AgentPing,
    AgentResponse,
    AnyAgentMessage,
    InitiationMetadata,
    UnknownAgentMessage,
    UserTranscript,
)
from callrelay.reconnect import ReconnectController
from callrelay.serializers.base import FrameDecodeError
from callrelay.serializers.elevenlabs import ElevenLabsSerializer, decode_agent_message
from callrelay.serializers.translate import telephony_audio_to_agent
from callrelay.session import CallSession
from callrelay.transports.base import (
    INTERNAL_ERROR,
    NORMAL_CLOSURE,
    BaseTransport,
    TransportClosed,
)
from callrelay.transports.websocket import connect_agent

if TYPE_CHECKING:
    from callrelay.legs.telephony import TelephonyLeg

UrlProvider = Callable[[], Awaitable[str]]
Connector = Callable[[str], Awaitable[BaseTransport]]

MessageHandler = Callable[[AnyAgentMessage], Awaitable[None]]


class AgentLeg:
    """Adapter for the agent side of one call.

    Args:
        session: The call this leg serves.
        url_provider: Coroutine returning a fresh signed connection URL.
        connector: Coroutine opening a transport to a URL.
        reconnect_delay: Seconds before a reconnect attempt.
        hangup_grace: Seconds between telling Twilio to stop and closing
            its socket when the agent ends the call.
        max_reconnect_attempts: None for unlimited.
    """

    def __init__(
        self,
        session: CallSession,
        url_provider: UrlProvider,
        connector: Connector = connect_agent,
        reconnect_delay: float = 3.0,
        hangup_grace: float = 2.0,
        max_reconnect_attempts: int | None = 5,
    ) -> None:
        self.session = session
        self.telephony: TelephonyLeg | None = None
        self.hangup_grace = hangup_grace

        self._url_provider = url_provider
        self._connector = connector
        self._transport: BaseTransport | None = None
        self._connecting = False
        self._tasks: set[asyncio.Task] = set()

        self.reconnect = ReconnectController(
            session,
            action=self.start,
            delay=reconnect_delay,
            max_attempts=max_reconnect_attempts,
        )

        self._handlers: dict[AgentMessageType, MessageHandler] = {
            AgentMessageType.CONVERSATION_INITIATION_METADATA: self._on_metadata,
            AgentMessageType.AUDIO: self._on_audio,
            AgentMessageType.INTERRUPTION: self._on_interruption,
            AgentMessageType.PING: self._on_ping,
            AgentMessageType.AGENT_RESPONSE: self._on_agent_response,
            AgentMessageType.USER_TRANSCRIPT: self._on_user_transcript,
            AgentMessageType.ERROR: self._on_agent_error,
        }

    @property
    def is_open(self) -> bool:
        return self._transport is not None and self._transport.is_connected()

    @property
    def is_connecting(self) -> bool:
        return self._connecting

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Run setup in the background so the telephony leg keeps reading."""
        task = asyncio.create_task(self.setup())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def setup(self) -> None:
        """Connect to the agent and relay its messages until the connection closes."""
        if self._connecting or self.is_open:
            logger.debug("[ElevenLabs] Setup skipped: connection already pending or open")
            return
        if self.session.ended:
            logger.debug("[ElevenLabs] Setup skipped: call already ended")
            return

        self._connecting = True
        try:
            url = await self._url_provider()
            transport = await self._connector(url)
        except Exception as e:
            self._connecting = False
            logger.error(f"[ElevenLabs] Setup error: {e}")
            await self._on_error(e)
            return
        self._connecting = False

        if self.session.ended:
            # The call went away while we were connecting.
            logger.info("[ElevenLabs] Call ended during setup, closing new connection")
            await transport.disconnect(NORMAL_CLOSURE, "Call ended normally")
            return

        self._transport = transport
        await self._on_open(transport)
        await self._receive_loop(transport)

    async def _on_open(self, transport: BaseTransport) -> None:
        logger.info("[ElevenLabs] Connected to Conversational AI")
        self.session.reconnect_attempts = 0
        logger.info("[ElevenLabs] Sending initial config with dynamic variables")
        message = ElevenLabsSerializer.initiation_message(self.session.dynamic_variables())
        try:
            await transport.send(message)
        except TransportClosed:
            # The receive loop reports the close.
            pass

    async def _receive_loop(self, transport: BaseTransport) -> None:
        try:
            while True:
                raw = await transport.recv()
                await self.handle_message(raw)
        except TransportClosed as closed:
            self._release(transport)
            await self._on_close(closed.code, closed.reason)
        except Exception as e:
            logger.error(f"[ElevenLabs] WebSocket error details: {e}")
            # Close before releasing; a reconnect must not find this one open.
            await transport.disconnect(INTERNAL_ERROR, "Relay error")
            self._release(transport)
            await self._on_error(e)

    def _release(self, transport: BaseTransport) -> None:
        if self._transport is transport:
            self._transport = None

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Close the live agent connection, if any."""
        transport = self._transport
        if transport is not None and transport.is_connected():
            logger.info(f"[ElevenLabs] Closing connection: {reason}")
            await transport.disconnect(code, reason)

    async def shutdown(self, reason: str) -> None:
        """Session teardown: no more reconnects, close the connection."""
        self.reconnect.cancel()
        await self.close(NORMAL_CLOSURE, reason)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    async def _on_error(self, error: Exception) -> None:
        if not self.reconnect.schedule(f"error: {error}"):
            await self._end_call_if_active()

    async def _on_close(self, code: int, reason: str) -> None:
        logger.info(
            f"[ElevenLabs] Disconnected with code {code}. "
            f"Reason: {reason or 'No reason provided'}"
        )
        if self.reconnect.should_reconnect(code) and self.reconnect.schedule(
            f"close code {code}"
        ):
            return
        if not await self._end_call_if_active():
            logger.info("[ElevenLabs] Not reconnecting as call is no longer active")

    async def _end_call_if_active(self) -> bool:
        """Hang up the call because the agent is gone for good."""
        if not (self.session.is_active and self.session.stream_sid):
            return False
        logger.info("[Twilio] Ending call because ElevenLabs disconnected")
        if self.telephony is not None:
            await self.telephony.send_stop()
        self.session.end()
        if self.telephony is not None:
            self.telephony.hangup(self.hangup_grace)
        return True

    # ------------------------------------------------------------------
    # Relay -> agent
    # ------------------------------------------------------------------

    async def send_audio(self, payload: str) -> bool:
        """Forward one Twilio media payload. Dropped unless the connection is open.

        Raises:
            FrameDecodeError: If the payload is not valid base64.
        """
        transport = self._transport
        if transport is None or not transport.is_connected():
            return False
        message = telephony_audio_to_agent(payload)
        try:
            await transport.send(message)
        except TransportClosed:
            return False
        self.session.audio_frames_in += 1
        logger.trace("[ElevenLabs] .")
        return True

    async def _send(self, message: str) -> None:
        transport = self._transport
        if transport is None or not transport.is_connected():
            logger.debug("[ElevenLabs] Connection not open, message dropped")
            return
        try:
            await transport.send(message)
        except TransportClosed:
            logger.debug("[ElevenLabs] Connection closed while sending")

    # ------------------------------------------------------------------
    # Agent -> relay
    # ------------------------------------------------------------------

    async def handle_message(self, raw: bytes | str) -> None:
        """Decode and dispatch one agent message; malformed ones are dropped."""
        try:
            message = decode_agent_message(raw)
        except FrameDecodeError as e:
            logger.warning(f"[ElevenLabs] Error processing message: {e}")
            return

        if message.message_type is not AgentMessageType.AUDIO:
            logger.debug(f"[ElevenLabs] Message received type: {message.message_type or 'unknown'}")

        handler = self._handlers.get(message.message_type, self._on_unhandled)
        await handler(message)

    async def _on_metadata(self, message: InitiationMetadata) -> None:
        logger.info(
            f"[ElevenLabs] Received initiation metadata "
            f"(conversation {message.conversation_id or 'unknown'})"
        )

    async def _on_audio(self, message: AgentAudio) -> None:
        if self.telephony is None:
            return
        if not await self.telephony.send_media(message.audio):
            logger.info("[ElevenLabs] Received audio but the stream is not live, dropped")

    async def _on_interruption(self, message: AgentInterruption) -> None:
        if self.telephony is not None:
            await self.telephony.send_clear()

    async def _on_ping(self, message: AgentPing) -> None:
        await self._send(ElevenLabsSerializer.pong_message(message.event_id))

    async def _on_agent_response(self, message: AgentResponse) -> None:
        logger.info(f"[Twilio] Agent response: {message.text}")

    async def _on_user_transcript(self, message: UserTranscript) -> None:
        logger.info(f"[Twilio] User transcript: {message.text}")

    async def _on_agent_error(self, message: AgentError) -> None:
        logger.error(f"[ElevenLabs] Agent error: {message.message or message.payload}")

    async def _on_unhandled(self, message: UnknownAgentMessage) -> None:
        logger.info(f"[ElevenLabs] Unhandled message type: {message.type}")
