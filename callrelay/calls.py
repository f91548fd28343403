"""Outbound call placement and the TwiML that connects it to the relay.

Placing a call asks Twilio to dial a number and fetch TwiML from
``/outbound-call-twiml``; that TwiML opens a Media Stream to
``/outbound-media-stream`` carrying the call parameters as ``<Parameter>``
values, which arrive back in the stream's ``start`` event.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping
from urllib.parse import urlencode

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient
from twilio.twiml.voice_response import Connect, VoiceResponse

# Parameters forwarded from the call request to the media stream, in order.
STREAM_PARAMETERS = (
    "phone_number",
    "name",
    "organization",
    "credit_amount",
    "client_id",
    "prompt",
    "first_message",
)

TWIML_PATH = "/outbound-call-twiml"
MEDIA_STREAM_PATH = "/outbound-media-stream"


class CallPlacementError(RuntimeError):
    """Twilio refused or failed to create the call."""


class OutboundCallRequest(BaseModel):
    """Body of ``POST /outbound-call``."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    phone_number: str = Field(min_length=1)
    name: str = "Cliente"
    organization: str = "Datágora"
    credit_amount: str = "50000"
    client_id: str = ""
    # Kept for older callers; forwarded as stream parameters only.
    prompt: str = ""
    first_message: str = ""

    def stream_parameters(self) -> dict[str, str]:
        return {key: getattr(self, key) for key in STREAM_PARAMETERS}


def build_twiml_url(host: str, request: OutboundCallRequest) -> str:
    """URL Twilio fetches the call's TwiML from."""
    return f"https://{host}{TWIML_PATH}?{urlencode(request.stream_parameters())}"


def build_stream_twiml(
    host: str,
    parameters: Mapping[str, Any],
    media_path: str = MEDIA_STREAM_PATH,
) -> str:
    """TwiML connecting the call to the relay's media stream endpoint."""
    response = VoiceResponse()
    connect = Connect()
    stream = connect.stream(url=f"wss://{host}{media_path}")
    for key in STREAM_PARAMETERS:
        stream.parameter(name=key, value=str(parameters.get(key, "") or ""))
    response.append(connect)
    return str(response)


class CallPlacer:
    """Places outbound calls from the configured Twilio number."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        client: Any = None,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = TwilioClient(self.account_sid, self.auth_token)
        return self._client

    async def place(self, request: OutboundCallRequest, host: str) -> str:
        """Dial ``request.phone_number``; returns the Twilio call SID.

        Raises:
            CallPlacementError: If Twilio rejects the request or is unreachable.
        """
        twiml_url = build_twiml_url(host, request)
        try:
            call = await asyncio.to_thread(
                self.client.calls.create,
                from_=self.from_number,
                to=request.phone_number,
                url=twiml_url,
            )
        except (TwilioException, OSError) as e:
            logger.error(f"Error initiating outbound call: {e}")
            raise CallPlacementError(str(e)) from e

        logger.info(f"Outbound call initiated: {call.sid} -> {request.phone_number}")
        return call.sid
