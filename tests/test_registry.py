"""Tests for printer lookup, snapshot caching and background refresh."""
import threading
import time

import pytest

from conftest import lan_printer, usb_printer
from printproxy.errors import PrinterNotFound
from printproxy.models import ConnectionKind, PrinterDescriptor, PrinterStatus
from printproxy.printer.registry import PrinterRegistry, RefreshScheduler, resolve_printer


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


class TestResolvePrinter:

    @pytest.fixture()
    def printers(self):
        return [
            lan_printer("Kitchen", "192.168.1.50:9100", PrinterStatus.OFFLINE),
            usb_printer("XP-58 (USB Direct)", "0FE6:811E"),
            PrinterDescriptor.create("lan_192_168_1_50_9100 copy", ConnectionKind.USB, "Front Desk"),
        ]

    def test_exact_id_wins_over_substring(self, printers):
        assert resolve_printer(printers, "lan_192_168_1_50_9100") is printers[0]

    def test_exact_name_is_case_insensitive(self, printers):
        assert resolve_printer(printers, "kitchen") is printers[0]

    def test_exact_address(self, printers):
        assert resolve_printer(printers, "0fe6:811e") is printers[1]

    def test_bare_ip_of_lan_printer(self, printers):
        assert resolve_printer(printers, "192.168.1.50") is printers[0]

    def test_substring_of_id_or_name(self, printers):
        assert resolve_printer(printers, "xp-58") is printers[1]
        assert resolve_printer(printers, "USB_0FE6") is printers[1]

    def test_empty_identifier_selects_first_online(self, printers):
        assert resolve_printer(printers, None) is printers[1]
        assert resolve_printer(printers, "  ") is printers[1]

    def test_no_online_printer(self):
        offline = [lan_printer(status=PrinterStatus.OFFLINE)]
        with pytest.raises(PrinterNotFound, match="No available printers found"):
            resolve_printer(offline, "")

    def test_unknown_identifier(self, printers):
        with pytest.raises(PrinterNotFound, match="Printer not found: nonexistent"):
            resolve_printer(printers, "nonexistent")


class TestPrinterRegistry:

    def test_first_read_refreshes(self):
        calls = []
        registry = PrinterRegistry(lambda: calls.append(1) or [lan_printer()], clock=FakeClock())
        assert len(registry.get_printers()) == 1
        assert len(calls) == 1

    def test_cache_is_reused_until_ttl(self):
        clock = FakeClock()
        calls = []
        registry = PrinterRegistry(lambda: calls.append(1) or [lan_printer()], cache_ttl=30, clock=clock)
        registry.get_printers()
        clock.now += 29
        registry.get_printers()
        assert len(calls) == 1
        clock.now += 1
        registry.get_printers()
        assert len(calls) == 2

    def test_refreshed_at_never_goes_backwards(self):
        clock = FakeClock(200.0)
        registry = PrinterRegistry(lambda: [], clock=clock)
        first = registry.refresh().refreshed_at
        clock.now = 150.0
        assert registry.refresh().refreshed_at >= first

    def test_failed_discovery_keeps_previous_snapshot(self):
        results = [[lan_printer()]]

        def discover():
            if not results:
                raise RuntimeError("spooler crashed")
            return results.pop()

        registry = PrinterRegistry(discover, clock=FakeClock())
        before = registry.refresh()
        assert registry.refresh() is before
        assert len(registry.snapshot) == 1

    def test_concurrent_refresh_does_not_wait(self):
        started = threading.Event()
        release = threading.Event()

        def slow_discover():
            started.set()
            release.wait(5)
            return [lan_printer()]

        registry = PrinterRegistry(slow_discover, clock=FakeClock())
        worker = threading.Thread(target=registry.refresh)
        worker.start()
        assert started.wait(5)

        begin = time.monotonic()
        snapshot = registry.refresh()
        assert time.monotonic() - begin < 1.0
        assert len(snapshot) == 0

        release.set()
        worker.join(5)
        assert len(registry.snapshot) == 1

    def test_record_result(self):
        registry = PrinterRegistry(lambda: [lan_printer()], clock=FakeClock())
        printer = registry.refresh().printers[0]

        registry.record_result(printer.id, "Connection refused")
        assert registry.snapshot.printers[0].last_error == "Connection refused"

        registry.record_result(printer.id)
        updated = registry.snapshot.printers[0]
        assert updated.last_error is None
        assert updated.last_seen >= printer.last_seen

    def test_available_count(self):
        registry = PrinterRegistry(
            lambda: [lan_printer(), usb_printer(status=PrinterStatus.OFFLINE)], clock=FakeClock())
        registry.refresh()
        assert registry.available_count() == 1

    def test_background_refresh_start_stop(self):
        refreshed = threading.Event()

        def discover():
            refreshed.set()
            return [lan_printer()]

        registry = PrinterRegistry(discover, cache_ttl=60)
        registry.start()
        try:
            assert refreshed.wait(5)
            assert registry.scheduler_running
        finally:
            registry.stop()
        assert not registry.scheduler_running
        assert len(registry.snapshot) == 1


def test_scheduler_repeats_and_survives_errors():
    calls = []

    def action():
        calls.append(1)
        raise RuntimeError("boom")

    scheduler = RefreshScheduler(0.01, action)
    scheduler.start()
    deadline = time.monotonic() + 5
    while len(calls) < 3 and time.monotonic() < deadline:
        time.sleep(0.01)
    scheduler.stop()
    assert len(calls) >= 3
    assert not scheduler.running
