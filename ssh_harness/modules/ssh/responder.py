"""
Server-side channel responder.

One ``ChannelResponder`` exists per inbound connection. It tracks the state of
each channel the peer opens and answers every text payload with the payload
prefixed by ``RESPONSE_PREFIX``.
"""
import logging
from enum import Enum
from typing import Dict, Optional

import paramiko

from .errors import EncodingError, ProtocolViolation

logger = logging.getLogger(__name__)


class ChannelState(Enum):
    OPENING = "opening"
    OPEN = "open"
    CLOSED = "closed"


class ChannelResponder:
    RESPONSE_PREFIX = "Server processed: "

    def __init__(self, peer: str = "", log: Optional[logging.Logger] = None):
        self.peer = peer
        self.log = log or logger
        self.channels: Dict[int, ChannelState] = {}

    def state(self, chanid: int) -> Optional[ChannelState]:
        return self.channels.get(chanid)

    def on_channel_open(self, chanid: int) -> bool:
        """Decide on a session channel request. Returns True to acknowledge it."""
        if chanid in self.channels:
            self.log.warning(f"{self.peer}: channel {chanid} requested twice")
            return False
        self.channels[chanid] = ChannelState.OPENING
        return True

    def on_channel_ready(self, chanid: int):
        """The open was acknowledged to the peer; the channel now carries data."""
        if self.channels.get(chanid) is not ChannelState.OPENING:
            raise ProtocolViolation(f"{self.peer}: channel {chanid} was never requested")
        self.channels[chanid] = ChannelState.OPEN
        self.log.info(f"{self.peer}: channel {chanid} open")

    def on_data(self, channel: paramiko.Channel, data: bytes):
        """
        Handle a payload received on an open channel.

        Raises:
            ProtocolViolation: the channel is not open
            EncodingError: the payload is not UTF-8; nothing is sent back
        """
        chanid = channel.get_id()
        self._require_open(chanid, "data")

        try:
            received = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncodingError(chanid, data, e.reason) from e
        self.log.info(f"{self.peer}: received data on channel {chanid}: {received}")

        response = self.respond(received)
        self.log.info(f"{self.peer}: sending response on channel {chanid}: {response}")
        channel.sendall(response.encode("utf-8"))

    def respond(self, received: str) -> str:
        return f"{self.RESPONSE_PREFIX}{received}"

    def on_channel_close(self, chanid: int):
        self._require_open(chanid, "close")
        self.channels[chanid] = ChannelState.CLOSED
        self.log.info(f"{self.peer}: channel {chanid} closed by client")

    def _require_open(self, chanid: int, what: str):
        current = self.channels.get(chanid)
        if current is not ChannelState.OPEN:
            state = current.value if current else "unknown"
            raise ProtocolViolation(f"{self.peer}: {what} event on {state} channel {chanid}")
