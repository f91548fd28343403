"""Frame translation between the Twilio and ElevenLabs wire protocols."""

from callrelay.serializers.base import BaseSerializer, FrameDecodeError
from callrelay.serializers.elevenlabs import ElevenLabsSerializer
from callrelay.serializers.twilio import TwilioSerializer

__all__ = [
    "BaseSerializer",
    "ElevenLabsSerializer",
    "FrameDecodeError",
    "TwilioSerializer",
]
