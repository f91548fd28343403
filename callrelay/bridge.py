"""CallRelay - per-call relay orchestrator.

For every Twilio media stream connection the relay:
1. creates a CallSession in the SessionStore
2. wires a TelephonyLeg (Twilio) to an AgentLeg (ElevenLabs)
3. starts agent setup in the background and reads Twilio frames in order
4. removes the session when the Twilio connection closes

Sessions share nothing; each call runs on its own tasks.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger

from callrelay.calls import CallPlacer
from callrelay.config import RelayConfig, load_config
from callrelay.legs.agent import AgentLeg, Connector, UrlProvider
from callrelay.legs.telephony import TelephonyLeg
from callrelay.session import SessionStore
from callrelay.signed_url import SignedUrlClient
from callrelay.transports.base import BaseTransport
from callrelay.transports.websocket import connect_agent


class CallRelay:
    """Bridges Twilio media streams to an ElevenLabs conversational agent.

    Usage:
        relay = CallRelay(RelayConfig.from_env())
        await relay.handle_telephony_connection(transport)

    Args:
        config: Relay configuration (YAML path, dict, RelayConfig or None
            for the environment).
        url_provider: Overrides the signed URL fetch (tests, proxies).
        connector: Overrides how the agent connection is opened.
        call_placer: Overrides outbound call placement.
    """

    def __init__(
        self,
        config: RelayConfig | dict | str | Path | None = None,
        url_provider: UrlProvider | None = None,
        connector: Connector | None = None,
        call_placer: Any = None,
    ) -> None:
        self.config = load_config(config)
        self.sessions = SessionStore()

        agent = self.config.agent
        self.signed_urls = SignedUrlClient(
            api_key=agent.api_key,
            agent_id=agent.agent_id,
            api_base=agent.api_base,
            timeout=agent.signed_url_timeout_s,
        )
        self.calls = call_placer or CallPlacer(
            account_sid=self.config.twilio.account_sid,
            auth_token=self.config.twilio.auth_token,
            from_number=self.config.twilio.phone_number,
        )
        self._url_provider = url_provider or self.signed_urls.get_signed_url
        self._connector = connector or connect_agent

    async def handle_telephony_connection(self, transport: BaseTransport) -> None:
        """Relay one call for the lifetime of the Twilio connection."""
        session = self.sessions.create()
        logger.info(f"[Server] Twilio connected to media stream: session={session.session_id}")

        agent_config = self.config.agent
        agent = AgentLeg(
            session,
            url_provider=self._url_provider,
            connector=self._connector,
            reconnect_delay=agent_config.reconnect_delay,
            hangup_grace=agent_config.hangup_grace,
            max_reconnect_attempts=agent_config.reconnect_limit,
        )
        telephony = TelephonyLeg(session, transport, agent)
        agent.telephony = telephony

        agent.start()
        try:
            await telephony.run()
        finally:
            self.sessions.remove(session.session_id)
            logger.info(
                f"Session ended: {session.session_id} "
                f"(audio in: {session.audio_frames_in}, out: {session.audio_frames_out})"
            )

    async def close(self) -> None:
        await self.signed_urls.close()
