"""Cross-protocol audio translation.

Both directions carry the same base64 audio (mu-law 8kHz on the agent side
is configured in the agent itself); only the envelopes differ.
"""

from __future__ import annotations

import base64
import binascii

from callrelay.serializers.base import FrameDecodeError
from callrelay.serializers.elevenlabs import ElevenLabsSerializer
from callrelay.serializers.twilio import TwilioSerializer


def telephony_audio_to_agent(payload: str) -> str:
    """Wrap a Twilio media payload as an agent ``user_audio_chunk`` message.

    The payload is decoded and re-encoded so the agent always receives
    canonical base64 of exactly the bytes Twilio sent.
    """
    try:
        audio = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FrameDecodeError(f"Invalid base64 media payload: {e}") from e
    return ElevenLabsSerializer.user_audio_message(base64.b64encode(audio).decode("ascii"))


def agent_audio_to_telephony(audio: str, stream_sid: str | None) -> str | None:
    """Wrap agent audio as a Twilio ``media`` frame for ``stream_sid``.

    Returns None when the stream id is not known yet; such audio is
    dropped, never queued.
    """
    if not stream_sid:
        return None
    return TwilioSerializer.media_message(stream_sid, audio)
