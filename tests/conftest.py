"""Shared fixtures: fake transports and discovery sources."""
import threading
import time

import pytest

from printproxy.config import ProxySettings, TestingConfig
from printproxy.errors import FailureKind, TransportFailure
from printproxy.models import ConnectionKind, PrinterDescriptor, PrinterStatus
from printproxy.printer.discovery import DiscoveryAggregator
from printproxy.service import build_services

TRANSPORT_NAMES = ("network", "serial", "usb", "device", "spooler")


class FakeTransport:
    """Records every send; can fail a number of times or take a while."""

    def __init__(self, name="fake", online=True, failures=0, delay=0.0):
        self.name = name
        self.online = online
        self.failures = failures
        self.delay = delay
        self.sent = []
        self.attempts = 0
        self.probed = []
        self._lock = threading.Lock()

    def send(self, address, data, deadline):
        with self._lock:
            self.attempts += 1
            fail = self.failures > 0
            if fail:
                self.failures -= 1
        if self.delay:
            time.sleep(self.delay)
        if fail:
            raise TransportFailure(f"Connection refused by {address}", FailureKind.CONNECTIVITY, address)
        with self._lock:
            self.sent.append((address, data))

    def probe(self, address):
        self.probed.append(address)
        return self.online


class FakeSource:
    """Discovery source returning fixed printers, raising, or hanging."""

    def __init__(self, name, printers=(), error=None, delay=0.0):
        self.name = name
        self.printers = list(printers)
        self.error = error
        self.delay = delay
        self.calls = 0

    def discover(self):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.printers)


def lan_printer(name="Kitchen", address="192.168.1.50:9100", status=PrinterStatus.ONLINE):
    return PrinterDescriptor.create(name, ConnectionKind.LAN, address, status)


def usb_printer(name="XP-58 (USB Direct)", address="0FE6:811E", status=PrinterStatus.ONLINE):
    return PrinterDescriptor.create(name, ConnectionKind.USB, address, status)


def testing_settings(**overrides) -> ProxySettings:
    cfg = {key: getattr(TestingConfig, key) for key in dir(TestingConfig) if key.isupper()}
    cfg.update(overrides)
    return ProxySettings.from_mapping(cfg)


@pytest.fixture()
def settings():
    return testing_settings()


@pytest.fixture()
def transports():
    return {name: FakeTransport(name) for name in TRANSPORT_NAMES}


@pytest.fixture()
def printers():
    return [lan_printer(), usb_printer(), lan_printer("Bar", "192.168.1.51:9100", PrinterStatus.OFFLINE)]


@pytest.fixture()
def services(settings, transports, printers):
    aggregator = DiscoveryAggregator([FakeSource("fake", printers)], source_timeout=1.0)
    return build_services(settings, transports=transports, aggregator=aggregator)
