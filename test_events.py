"""
ChannelEventStream ordering and termination.

The channels here are real ``paramiko.Channel`` objects, fed through the same
handlers the transport thread calls when packets arrive.
"""
import threading
import time

import paramiko
import pytest

from ssh_harness.modules.ssh import ConnectionLostError
from ssh_harness.modules.ssh.events import ChannelEventStream, Closed, DataReceived, ExitStatus, Other


class ScriptedTransport:
    def __init__(self, active=True):
        self.active = active
        self.closed = False
        self.server_object = None

    def is_active(self):
        return self.active

    def join(self, timeout=None):
        pass

    def close(self):
        self.closed = True
        self.active = False


def make_channel(transport=None) -> paramiko.Channel:
    chan = paramiko.Channel(0)
    chan.transport = transport or ScriptedTransport()
    return chan


def arrive_data(chan, data: bytes):
    chan._feed(data)


def arrive_stderr(chan, data: bytes):
    m = paramiko.Message()
    m.add_int(1)
    m.add_string(data)
    m.rewind()
    chan._feed_extended(m)


def arrive_exit_status(chan, code: int):
    m = paramiko.Message()
    m.add_string("exit-status")
    m.add_boolean(False)
    m.add_int(code)
    m.rewind()
    chan._handle_request(m)


def arrive_eof(chan):
    chan._handle_eof(None)


def arrive_close(chan):
    with chan.lock:
        chan._set_closed()


def data_of(events) -> bytes:
    return b"".join(e.data for e in events if isinstance(e, DataReceived))


def test_data_before_exit_status_is_delivered_first():
    chan = make_channel()
    stream = ChannelEventStream(chan, inactivity_timeout=5)
    arrive_data(chan, b"one ")
    arrive_data(chan, b"two")
    arrive_exit_status(chan, 3)

    events = list(stream)

    assert data_of(events) == b"one two"
    assert events[-1] == ExitStatus(3)


def test_data_after_exit_status_is_not_read():
    chan = make_channel()
    stream = ChannelEventStream(chan, inactivity_timeout=5)
    arrive_data(chan, b"one ")
    arrive_data(chan, b"two")
    arrive_exit_status(chan, 3)
    arrive_data(chan, b"LATE")
    arrive_eof(chan)
    arrive_close(chan)

    events = list(stream)

    assert data_of(events) == b"one two"
    assert events[-1] == ExitStatus(3)
    assert chan.recv(100) == b"LATE"


def test_read_size_does_not_cross_the_exit_mark():
    chan = make_channel()
    stream = ChannelEventStream(chan, inactivity_timeout=5, read_size=3)
    arrive_data(chan, b"abcdefg")
    arrive_exit_status(chan, 0)
    arrive_data(chan, b"xyz")

    events = list(stream)

    assert events == [DataReceived(b"abc"), DataReceived(b"def"), DataReceived(b"g"), ExitStatus(0)]


def test_close_without_exit_status_is_not_an_exit():
    chan = make_channel()
    stream = ChannelEventStream(chan, inactivity_timeout=5)
    arrive_data(chan, b"x")
    arrive_stderr(chan, b"warn")
    arrive_eof(chan)
    arrive_close(chan)

    # paramiko reports a closed channel as "exited" with status -1
    assert chan.exit_status_ready()
    assert list(stream) == [DataReceived(b"x"), Other("stderr", b"warn"), Other("eof"), Closed()]


def test_exit_status_after_eof_is_reported():
    chan = make_channel()
    stream = ChannelEventStream(chan, inactivity_timeout=5)
    arrive_eof(chan)
    assert stream.next_event() == Other("eof")

    arrive_exit_status(chan, 2)
    assert stream.next_event() == ExitStatus(2)


def test_exit_status_ends_stream_even_after_eof():
    chan = make_channel()
    stream = ChannelEventStream(chan, inactivity_timeout=5)
    arrive_eof(chan)
    arrive_exit_status(chan, 2)
    arrive_close(chan)

    assert list(stream)[-1] == ExitStatus(2)


def test_exit_status_received_before_the_stream():
    chan = make_channel()
    arrive_exit_status(chan, 0)

    assert list(ChannelEventStream(chan, inactivity_timeout=5)) == [ExitStatus(0)]


def test_events_arriving_while_waiting():
    chan = make_channel()
    stream = ChannelEventStream(chan, inactivity_timeout=5, wait_slice=0.05)

    def peer():
        time.sleep(0.2)
        arrive_data(chan, b"hi")
        arrive_exit_status(chan, 5)
        arrive_data(chan, b"after")

    sender = threading.Thread(target=peer)
    sender.start()
    events = list(stream)
    sender.join()

    assert data_of(events) == b"hi"
    assert events[-1] == ExitStatus(5)


def test_close_on_dead_transport_is_connection_loss():
    transport = ScriptedTransport(active=False)
    chan = make_channel(transport)
    stream = ChannelEventStream(chan, inactivity_timeout=5)
    arrive_close(chan)

    with pytest.raises(ConnectionLostError):
        stream.next_event()
    assert transport.closed


def test_inactivity_timeout_closes_transport():
    transport = ScriptedTransport()
    stream = ChannelEventStream(make_channel(transport), inactivity_timeout=0.2, wait_slice=0.05)

    with pytest.raises(ConnectionLostError, match="no activity"):
        stream.next_event()
    assert transport.closed


def test_no_reads_after_terminal_event():
    chan = make_channel()
    stream = ChannelEventStream(chan, inactivity_timeout=5)
    arrive_exit_status(chan, 0)

    assert stream.next_event() == ExitStatus(0)
    with pytest.raises(ConnectionLostError):
        stream.next_event()
