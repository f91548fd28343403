"""callrelay - Twilio Media Streams to ElevenLabs Conversational AI relay.

Places outbound calls through Twilio and relays the call audio, in both
directions and in real time, to an ElevenLabs conversational agent.

Quick start:
    $ pip install callrelay
    $ export ELEVENLABS_API_KEY=... ELEVENLABS_AGENT_ID=...
    $ export TWILIO_ACCOUNT_SID=... TWILIO_AUTH_TOKEN=... TWILIO_PHONE_NUMBER=...
    $ callrelay run

    $ curl -X POST https://<host>/outbound-call \\
        -H 'Content-Type: application/json' \\
        -d '{"phone_number": "+15551234567", "name": "Ana"}'
"""

__version__ = "0.1.0"

# Core
from callrelay.bridge import CallRelay
from callrelay.config import RelayConfig, load_config
from callrelay.session import CallSession, SessionStore
from callrelay.reconnect import ReconnectController

# Legs
from callrelay.legs.agent import AgentLeg
from callrelay.legs.telephony import TelephonyLeg

# Events
from callrelay.core.events import (
    AgentMessageType,
    DynamicVariables,
    TelephonyEventType,
)

# Serializers
from callrelay.serializers.base import FrameDecodeError
from callrelay.serializers.elevenlabs import ElevenLabsSerializer
from callrelay.serializers.twilio import TwilioSerializer

# Transports
from callrelay.transports.base import BaseTransport, TransportClosed

# Collaborators
from callrelay.calls import CallPlacementError, CallPlacer, OutboundCallRequest
from callrelay.signed_url import SignedUrlClient, SignedUrlError

__all__ = [
    # Core
    "CallRelay",
    "RelayConfig",
    "load_config",
    "CallSession",
    "SessionStore",
    "ReconnectController",
    # Legs
    "AgentLeg",
    "TelephonyLeg",
    # Events
    "AgentMessageType",
    "DynamicVariables",
    "TelephonyEventType",
    # Serializers
    "FrameDecodeError",
    "ElevenLabsSerializer",
    "TwilioSerializer",
    # Transports
    "BaseTransport",
    "TransportClosed",
    # Collaborators
    "CallPlacementError",
    "CallPlacer",
    "OutboundCallRequest",
    "SignedUrlClient",
    "SignedUrlError",
]
