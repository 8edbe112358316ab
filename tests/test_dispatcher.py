"""Tests for transport selection and the network retry policy."""
import socket
import time

import pytest

from conftest import FakeTransport, lan_printer, usb_printer
from printproxy.config import ConnectionSettings
from printproxy.errors import FailureKind, PrintTimeout, TransportFailure
from printproxy.models import ConnectionKind, PrinterDescriptor
from printproxy.printer.dispatcher import TransportDispatcher
from printproxy.printer.transports import NetworkTransport


def usb(address):
    return PrinterDescriptor.create("P", ConnectionKind.USB, address)


@pytest.mark.parametrize("printer, expected", [
    (lan_printer(), "network"),
    (usb("04B8:0E15"), "usb"),
    (usb("COM3"), "serial"),
    (usb("/dev/ttyUSB0"), "serial"),
    (usb("/dev/usb/lp0"), "device"),
    (usb("XP-80C"), "spooler"),
])
def test_select(printer, expected):
    assert TransportDispatcher.select(printer) == expected


def test_missing_transport():
    dispatcher = TransportDispatcher({})
    with pytest.raises(TransportFailure, match="No network transport"):
        dispatcher.send(lan_printer(), b"x", time.monotonic() + 5)


def test_network_send_retries_then_succeeds(transports):
    transports["network"].failures = 2
    sleeps = []
    dispatcher = TransportDispatcher(transports, ConnectionSettings(retry_count=3, retry_delay_ms=50),
                                     sleep=sleeps.append)
    dispatcher.send(lan_printer(), b"data", time.monotonic() + 5)
    assert transports["network"].attempts == 3
    assert transports["network"].sent == [("192.168.1.50:9100", b"data")]
    assert sleeps == [0.05, 0.05]


def test_network_send_gives_up_after_retry_count(transports):
    transports["network"].failures = 10
    dispatcher = TransportDispatcher(transports, ConnectionSettings(retry_count=3, retry_delay_ms=0),
                                     sleep=lambda _: None)
    with pytest.raises(TransportFailure) as excinfo:
        dispatcher.send(lan_printer(), b"data", time.monotonic() + 5)
    assert excinfo.value.attempts == 3
    assert excinfo.value.kind is FailureKind.CONNECTIVITY
    assert transports["network"].attempts == 3


def test_local_transports_get_one_attempt(transports):
    transports["usb"].failures = 1
    dispatcher = TransportDispatcher(transports, ConnectionSettings(retry_count=3), sleep=lambda _: None)
    with pytest.raises(TransportFailure):
        dispatcher.send(usb_printer(), b"data", time.monotonic() + 5)
    assert transports["usb"].attempts == 1


def test_retry_stops_at_deadline(transports):
    transports["network"].failures = 10
    dispatcher = TransportDispatcher(transports, ConnectionSettings(retry_count=5, retry_delay_ms=500),
                                     sleep=lambda _: None)
    with pytest.raises(PrintTimeout):
        dispatcher.send(lan_printer(), b"data", time.monotonic() + 0.2)
    assert transports["network"].attempts == 1


def _refused_address():
    # Bind then close to get a local port nothing listens on
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"127.0.0.1:{port}"


def test_refused_connection_is_retried_with_delay():
    connection = ConnectionSettings(timeout_ms=500, retry_count=3, retry_delay_ms=100)
    dispatcher = TransportDispatcher({"network": NetworkTransport(connection.connect_timeout)}, connection)
    printer = lan_printer("Nobody", _refused_address())

    begin = time.monotonic()
    with pytest.raises(TransportFailure) as excinfo:
        dispatcher.send(printer, b"data", time.monotonic() + 10)
    assert time.monotonic() - begin >= 2 * connection.retry_delay
    assert excinfo.value.attempts == 3
