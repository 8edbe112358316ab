"""Printer discovery: independent sources merged into one descriptor list."""
import glob
import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from printproxy.config import ProxySettings
from printproxy.errors import DiscoverySourceFailure
from printproxy.models import (
    ConnectionKind,
    PrinterDescriptor,
    PrinterStatus,
    usb_address,
)
from printproxy.printer.connection import USBPrinter
from printproxy.printer.transports import Transport

logger = logging.getLogger(__name__)

# Spooler queue names that usually belong to receipt printers
THERMAL_NAME_PATTERNS = (
    "XP", "XPRINTER", "POS", "EPSON", "THERMAL", "RECEIPT", "ESC", "58MM", "80MM",
    "STAR", "CITIZEN", "BIXOLON", "SEWOO", "RONGTA", "GAINSCHA", "HPRT", "TSC",
)


class DiscoverySource(Protocol):
    name: str

    def discover(self) -> List[PrinterDescriptor]:
        ...


@dataclass
class SourceResult:
    """What one source contributed to a discovery run."""
    source: str
    printers: List[PrinterDescriptor] = field(default_factory=list)
    error: Optional[DiscoverySourceFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def probe_descriptor(name: str, kind: ConnectionKind, address: str,
                     transport: Transport) -> PrinterDescriptor:
    """Build a descriptor whose status comes from a single accessibility check."""
    try:
        reachable = transport.probe(address)
    except Exception as e:
        logger.debug("Probe of %s failed: %s", address, e)
        return PrinterDescriptor.create(name, kind, address, PrinterStatus.ERROR, last_error=str(e))
    status = PrinterStatus.ONLINE if reachable else PrinterStatus.OFFLINE
    return PrinterDescriptor.create(name, kind, address, status)


def matches_patterns(name: str, patterns: Iterable[str]) -> bool:
    upper = name.upper()
    return any(pattern and pattern.upper() in upper for pattern in patterns)


class DeviceFileSource:
    """Character devices matching glob patterns (/dev/usb/lp*, /dev/ttyUSB*)."""
    name = "device-files"

    def __init__(self, patterns: Sequence[str], transport: Transport):
        self.patterns = list(patterns)
        self.transport = transport

    def discover(self) -> List[PrinterDescriptor]:
        printers = []
        for pattern in self.patterns:
            for path in sorted(glob.glob(pattern)):
                basename = path.rsplit("/", 1)[-1]
                printer = probe_descriptor(f"USB Printer ({basename})", ConnectionKind.USB, path, self.transport)
                logger.debug("Found USB printer: %s, Status: %s", path, printer.status.value)
                printers.append(printer)
        return printers


class LibUsbSource:
    """USB devices reachable through libusb that look like receipt printers."""
    name = "libusb"

    def __init__(self, transport: Transport, scan=USBPrinter.scan_devices):
        self.transport = transport
        self.scan = scan

    def discover(self) -> List[PrinterDescriptor]:
        printers = []
        for device in self.scan():
            address = usb_address(device["vendor_id"], device["product_id"])
            printer = probe_descriptor(f"{device['product_name']} (USB Direct)",
                                       ConnectionKind.USB, address, self.transport)
            logger.debug("Found LibUSB printer: %s at %s", printer.name, address)
            printers.append(printer)
        return printers


class SpoolerSource:
    """Spooler queues whose names look like receipt printers."""
    name = "spooler"

    def __init__(self, transport, extra_patterns: Sequence[str] = (), list_queues=None):
        self.transport = transport
        self.patterns = tuple(THERMAL_NAME_PATTERNS) + tuple(extra_patterns)
        self.list_queues = list_queues or transport.list_queues

    def discover(self) -> List[PrinterDescriptor]:
        printers = []
        for queue in self.list_queues():
            if not matches_patterns(queue, self.patterns):
                continue
            printers.append(probe_descriptor(f"{queue} (Spooler)", ConnectionKind.USB, queue, self.transport))
        return printers


class ConfiguredSource:
    """Explicitly configured printers of one transport family."""

    def __init__(self, name: str, entries: Sequence[Tuple[str, ConnectionKind, str]],
                 transport: Transport):
        self.name = name
        self.entries = list(entries)
        self.transport = transport

    def discover(self) -> List[PrinterDescriptor]:
        printers = []
        for display_name, kind, address in self.entries:
            printer = probe_descriptor(display_name, kind, address, self.transport)
            logger.debug("Configured printer %s at %s is %s", display_name, address, printer.status.value)
            printers.append(printer)
        return printers


def merge_results(results: Iterable[SourceResult]) -> List[PrinterDescriptor]:
    """Fold per-source results into one list keyed by id; first seen wins."""
    merged = {}
    for result in results:
        for printer in result.printers:
            if printer.id in merged:
                logger.debug("Ignoring duplicate printer %s from %s", printer.id, result.source)
                continue
            merged[printer.id] = printer
    return list(merged.values())


class DiscoveryAggregator:
    """Runs every source concurrently and merges whatever they return.

    A source that raises or overruns its time budget contributes nothing;
    the others are unaffected. Configured sources are merged after the
    auto-discovery ones, so a configured entry is only added when
    auto-discovery did not already report its id.
    """

    def __init__(self, sources: Sequence[DiscoverySource] = (),
                 configured_sources: Sequence[DiscoverySource] = (),
                 source_timeout: float = 10.0):
        self.sources = list(sources)
        self.configured_sources = list(configured_sources)
        self.source_timeout = source_timeout

    @property
    def all_sources(self) -> List[DiscoverySource]:
        return self.sources + self.configured_sources

    @staticmethod
    def _run_source(source: DiscoverySource) -> List[PrinterDescriptor]:
        return list(source.discover())

    def run_sources(self) -> List[SourceResult]:
        sources = self.all_sources
        if not sources:
            return []

        executor = ThreadPoolExecutor(max_workers=len(sources), thread_name_prefix="discovery")
        try:
            futures = [(source, executor.submit(self._run_source, source)) for source in sources]
            deadline = time.monotonic() + self.source_timeout
            results = []
            for source, future in futures:
                try:
                    printers = future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FutureTimeout:
                    failure = DiscoverySourceFailure(source.name, f"timed out after {self.source_timeout}s")
                    logger.warning("Discovery source failed: %s", failure)
                    results.append(SourceResult(source.name, error=failure))
                    continue
                except Exception as e:
                    failure = DiscoverySourceFailure(source.name, str(e) or type(e).__name__)
                    failure.__cause__ = e
                    logger.warning("Discovery source failed: %s", failure, exc_info=e)
                    results.append(SourceResult(source.name, error=failure))
                    continue
                if not printers:
                    logger.debug("Discovery source %s found no printers", source.name)
                results.append(SourceResult(source.name, printers))
            return results
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def discover(self) -> List[PrinterDescriptor]:
        results = self.run_sources()
        printers = merge_results(results)
        logger.info(
            "Discovery complete: %d printers from %d sources (%d failed)",
            len(printers), len(results), sum(1 for result in results if not result.ok),
        )
        return printers


def build_sources(settings: ProxySettings, transports: dict) -> DiscoveryAggregator:
    """Pick the discovery sources enabled by configuration for this platform."""
    sources = []
    if settings.auto_discover_usb:
        if sys.platform != "win32" and settings.usb_device_paths:
            sources.append(DeviceFileSource(settings.usb_device_paths, transports["device"]))
        if settings.use_libusb:
            sources.append(LibUsbSource(transports["usb"]))
        if settings.use_spooler:
            sources.append(SpoolerSource(transports["spooler"], settings.printer_name_patterns))
    else:
        logger.debug("USB auto-discovery is disabled")

    configured = []
    if settings.use_libusb:
        entries = [(p.name, ConnectionKind.USB, usb_address(p.vendor_id, p.product_id))
                   for p in settings.libusb_printers if p.enabled]
        if entries:
            configured.append(ConfiguredSource("configured-libusb", entries, transports["usb"]))
    if settings.use_spooler:
        entries = [(p.name, ConnectionKind.USB, p.printer_name)
                   for p in settings.spooler_printers if p.enabled]
        if entries:
            configured.append(ConfiguredSource("configured-spooler", entries, transports["spooler"]))
    if settings.use_serial:
        entries = [(p.name, ConnectionKind.USB, p.port) for p in settings.serial_ports if p.enabled]
        if entries:
            configured.append(ConfiguredSource("configured-serial", entries, transports["serial"]))
    if settings.use_network:
        entries = [(p.name, ConnectionKind.LAN, p.address) for p in settings.network_printers if p.enabled]
        if entries:
            configured.append(ConfiguredSource("configured-network", entries, transports["network"]))

    return DiscoveryAggregator(sources, configured, settings.discovery_source_timeout)
