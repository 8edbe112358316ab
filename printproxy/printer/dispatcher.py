"""Route a payload to the transport that matches a printer's channel."""
import logging
import time
from typing import Callable, Dict, Optional

from printproxy.config import ConnectionSettings
from printproxy.errors import FailureKind, PrintTimeout, TransportFailure
from printproxy.models import (
    ConnectionKind,
    PrinterDescriptor,
    is_device_file_address,
    is_serial_address,
    is_usb_address,
)
from printproxy.printer.transports import Transport

logger = logging.getLogger(__name__)


class TransportDispatcher:
    """Picks a transport per descriptor and applies the retry policy.

    Network sends are retried ``retry_count`` times with a fixed pause;
    local transports (USB, serial, device file, spooler) get one attempt.
    """

    def __init__(self, transports: Dict[str, Transport],
                 connection: Optional[ConnectionSettings] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.transports = transports
        self.connection = connection or ConnectionSettings()
        self._sleep = sleep

    @staticmethod
    def select(printer: PrinterDescriptor) -> str:
        """Name of the transport for a printer's connection kind and address."""
        if printer.connection_kind is ConnectionKind.LAN:
            return "network"
        if is_usb_address(printer.address):
            return "usb"
        if is_serial_address(printer.address):
            return "serial"
        if is_device_file_address(printer.address):
            return "device"
        return "spooler"

    def transport_for(self, printer: PrinterDescriptor) -> Transport:
        name = self.select(printer)
        try:
            return self.transports[name]
        except KeyError:
            raise TransportFailure(f"No {name} transport available for {printer.name}",
                                   FailureKind.UNKNOWN, printer.address) from None

    def send(self, printer: PrinterDescriptor, data: bytes, deadline: float) -> None:
        """Deliver data to a printer before the monotonic ``deadline``."""
        if not printer.address:
            raise TransportFailure(f"Printer {printer.name} has no address", FailureKind.UNKNOWN)
        transport = self.transport_for(printer)
        logger.debug("Sending %d bytes to %s via %s", len(data), printer.name, transport.name)
        if printer.connection_kind is ConnectionKind.LAN:
            self._send_with_retry(transport, printer.address, data, deadline)
        else:
            transport.send(printer.address, data, deadline)

    def _send_with_retry(self, transport: Transport, address: str, data: bytes, deadline: float) -> None:
        attempts = max(1, self.connection.retry_count)
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                logger.debug("Sending %d bytes to network printer %s (attempt %d/%d)",
                             len(data), address, attempt, attempts)
                transport.send(address, data, deadline)
                return
            except PrintTimeout:
                raise
            except (TransportFailure, OSError) as e:
                last_error = e
                logger.warning("Error sending to printer %s (attempt %d/%d): %s",
                               address, attempt, attempts, e)

            if attempt < attempts:
                remaining = deadline - time.monotonic()
                if remaining <= self.connection.retry_delay:
                    raise PrintTimeout(f"Deadline reached while retrying {address}") from last_error
                self._sleep(self.connection.retry_delay)

        logger.error("Failed to send data to printer %s after %d attempts", address, attempts)
        kind = last_error.kind if isinstance(last_error, TransportFailure) else FailureKind.CONNECTIVITY
        raise TransportFailure(
            f"Failed to send data to {address} after {attempts} attempts: {last_error}",
            kind=kind,
            address=address,
            attempts=attempts,
        ) from last_error
