"""
Channel events

Turns a paramiko client channel into an ordered stream of ``ChannelEvent``s.

paramiko buffers all channel data in one pipe and records the exit status as
channel state, so the send order of data and exit status is lost once both
have arrived. The stream restores it: it counts the bytes paramiko feeds into
the channel and notes that count when the peer's ``exit-status`` request is
handled. Data up to that mark is delivered before ``ExitStatus``; anything the
peer sent after it is never read. EOF from the peer is not terminal (servers
may send an exit status after it) and is reported as ``Other("eof")``.
"""
import logging
import select
import threading
import time
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple, Union

import paramiko

from .errors import ConnectionLostError

logger = logging.getLogger(__name__)

# paramiko's value for "no exit status received"
NO_EXIT_STATUS = -1


@dataclass(frozen=True)
class DataReceived:
    data: bytes


@dataclass(frozen=True)
class ExitStatus:
    code: int


@dataclass(frozen=True)
class Closed:
    pass


@dataclass(frozen=True)
class Other:
    kind: str
    data: bytes = b""


ChannelEvent = Union[DataReceived, ExitStatus, Closed, Other]

TERMINAL_EVENTS = (ExitStatus, Closed)


class _StatusEvent(threading.Event):
    """Stand-in for ``Channel.status_event`` that reports every ``set``."""

    def __init__(self, on_set):
        super().__init__()
        self._on_set = on_set

    def set(self):
        self._on_set()
        super().set()


class ChannelEventStream:
    """
    Blocking reader of events on one channel.

    Create the stream before anything is sent on the channel, so every byte the
    peer sends is counted. ``next_event`` suspends until the peer sends
    something, the channel ends or ``inactivity_timeout`` seconds pass without
    any event. On timeout or when the transport dies without the peer finishing
    the channel, the transport is closed and ``ConnectionLostError`` is raised.
    """

    def __init__(self,
                 channel: paramiko.Channel,
                 inactivity_timeout: Optional[float] = 30,
                 wait_slice: float = 0.1,
                 read_size: int = 32768):
        self.channel = channel
        self.inactivity_timeout = inactivity_timeout
        self.wait_slice = wait_slice
        self.read_size = read_size
        self._finished = False
        self._eof_seen = False

        # written only on the transport thread
        self._fed = len(channel.in_buffer)
        self._exit: Optional[Tuple[int, int]] = None
        # written only by the reader
        self._consumed = 0
        self._watch(channel)

    def _watch(self, chan: paramiko.Channel):
        feed = chan.in_buffer.feed

        def counting_feed(data):
            feed(data)
            self._fed += len(data)

        chan.in_buffer.feed = counting_feed

        # the status arrived before the stream existed: everything buffered precedes it
        if chan.exit_status != NO_EXIT_STATUS:
            self._exit = (chan.exit_status, self._fed)

        status = _StatusEvent(self._on_status)
        if chan.status_event.is_set():
            status.set()
        chan.status_event = status

    def _on_status(self):
        # also fires when paramiko marks the channel closed; only a received status counts
        if self._exit is None and self.channel.exit_status != NO_EXIT_STATUS:
            self._exit = (self.channel.exit_status, self._fed)

    def __iter__(self) -> Iterator[ChannelEvent]:
        while not self._finished:
            yield self.next_event()

    def next_event(self) -> ChannelEvent:
        if self._finished:
            raise ConnectionLostError(f"channel {self.channel.get_id()} already finished")

        deadline = None
        if self.inactivity_timeout:
            deadline = time.monotonic() + self.inactivity_timeout

        while True:
            event = self._poll()
            if event is not None:
                if isinstance(event, TERMINAL_EVENTS):
                    self._finished = True
                return event

            if deadline is not None and time.monotonic() >= deadline:
                self._lose(f"no activity on channel {self.channel.get_id()} for {self.inactivity_timeout}s")
            if self._eof_seen:
                # the channel fd stays readable after EOF; only status changes remain
                self.channel.status_event.wait(self.wait_slice)
            else:
                select.select([self.channel], [], [], self.wait_slice)

    def _poll(self) -> Optional[ChannelEvent]:
        chan = self.channel
        # snapshot in this order: bytes counted before the exit check precede any exit status
        eof = chan.eof_received
        closed = chan.closed
        fed = self._fed
        exit_mark = self._exit

        limit = exit_mark[1] if exit_mark is not None else fed
        pending = limit - self._consumed
        if pending > 0 and chan.recv_ready():
            data = chan.recv(min(self.read_size, pending))
            self._consumed += len(data)
            return DataReceived(data)
        if chan.recv_stderr_ready():
            return Other("stderr", chan.recv_stderr(self.read_size))
        if exit_mark is not None:
            return ExitStatus(exit_mark[0])
        if eof and not self._eof_seen:
            self._eof_seen = True
            return Other("eof")
        if closed:
            transport = chan.get_transport()
            if not eof:
                # a dying transport marks its channels closed before it goes inactive
                transport.join(self.wait_slice)
            if eof or transport.is_active():
                return Closed()
            self._lose(f"connection lost while waiting on channel {chan.get_id()}")
        if not chan.get_transport().is_active():
            self._lose(f"connection lost while waiting on channel {chan.get_id()}")
        return None

    def _lose(self, reason: str):
        self._finished = True
        transport = self.channel.get_transport()
        logger.error(reason)
        transport.close()
        raise ConnectionLostError(reason)
