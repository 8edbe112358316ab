"""Print service: resolve a printer, encode the job, run it through the queue."""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from printproxy.config import ProxySettings
from printproxy.errors import PrinterNotFound, PrinterUnavailable, ValidationError
from printproxy.models import PrinterDescriptor, PrinterStatus, PrintOptions, PrintOutcome
from printproxy.printer.discovery import DiscoveryAggregator, build_sources
from printproxy.printer.dispatcher import TransportDispatcher
from printproxy.printer.escpos import build_receipt, build_test_page
from printproxy.printer.queue import PrintQueue
from printproxy.printer.registry import PrinterRegistry
from printproxy.printer.transports import Transport, default_transports

logger = logging.getLogger(__name__)


class PrinterService:
    """Turns print requests into outcomes. Business errors never escape as exceptions."""

    def __init__(self, settings: ProxySettings, registry: PrinterRegistry,
                 dispatcher: TransportDispatcher, queue: PrintQueue):
        self.settings = settings
        self.registry = registry
        self.dispatcher = dispatcher
        self.queue = queue

    def print(self, content: Optional[str], printer_identifier: Optional[str] = None,
              options: Optional[PrintOptions] = None) -> PrintOutcome:
        """Print text content on the identified (or first online) printer."""
        try:
            if not isinstance(content, str) or not content.strip():
                raise ValidationError("Content is required")
            printer = self.registry.get_printer(printer_identifier)
            if printer.status is PrinterStatus.OFFLINE:
                raise PrinterUnavailable(f"Printer is offline: {printer.name}")
        except (ValidationError, PrinterNotFound, PrinterUnavailable) as e:
            logger.info("Print request rejected: %s", e)
            return PrintOutcome.fail(str(e))

        data = build_receipt(content, options, self.settings.print_defaults)
        logger.debug("Built %d bytes of ESC/POS commands for printer %s", len(data), printer.name)
        return self._submit(printer, data)

    def print_test_page(self, printer_identifier: Optional[str] = None) -> PrintOutcome:
        """Print the diagnostic page on the identified (or first online) printer."""
        try:
            printer = self.registry.get_printer(printer_identifier)
        except PrinterNotFound as e:
            logger.info("Test page request rejected: %s", e)
            return PrintOutcome.fail(str(e))

        logger.info("Printing test page to %s", printer.name)
        return self._submit(printer, build_test_page(printer.name))

    def _submit(self, printer: PrinterDescriptor, data: bytes) -> PrintOutcome:
        outcome = self.queue.execute(
            printer.id,
            self._send_action(printer, data),
            self.settings.connection.print_timeout,
            printer_name=printer.name,
        )
        self.registry.record_result(printer.id, None if outcome.success else (outcome.error or outcome.message))
        return outcome

    def _send_action(self, printer: PrinterDescriptor, data: bytes) -> Callable[[float], None]:
        def send(deadline: float) -> None:
            self.dispatcher.send(printer, data, deadline)
        return send

    def available_count(self) -> int:
        return self.registry.available_count()


@dataclass
class ProxyServices:
    """The wired-up core, one instance per application."""
    settings: ProxySettings
    aggregator: DiscoveryAggregator
    registry: PrinterRegistry
    dispatcher: TransportDispatcher
    queue: PrintQueue
    printer_service: PrinterService
    started_at: float = field(default_factory=time.monotonic)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at


def build_services(settings: ProxySettings, transports: Optional[Dict[str, Transport]] = None,
                   aggregator: Optional[DiscoveryAggregator] = None) -> ProxyServices:
    """Assemble transports, discovery, registry, dispatcher and queue from settings."""
    if transports is None:
        transports = default_transports(settings.connection, settings.serial_ports)
    if aggregator is None:
        aggregator = build_sources(settings, transports)
    registry = PrinterRegistry(aggregator.discover, cache_ttl=settings.cache_refresh_interval)
    dispatcher = TransportDispatcher(transports, settings.connection)
    queue = PrintQueue()
    return ProxyServices(
        settings=settings,
        aggregator=aggregator,
        registry=registry,
        dispatcher=dispatcher,
        queue=queue,
        printer_service=PrinterService(settings, registry, dispatcher, queue),
    )
