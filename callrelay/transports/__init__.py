"""Connection transports for the two legs."""

from callrelay.transports.base import NORMAL_CLOSURE, BaseTransport, TransportClosed

__all__ = ["NORMAL_CLOSURE", "BaseTransport", "TransportClosed"]
