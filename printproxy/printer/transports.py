"""Transports: one capability object per channel kind.

Every transport offers ``send(address, data, deadline)`` and
``probe(address)``. ``deadline`` is an absolute ``time.monotonic()`` value;
blocking calls are bounded by the time left before it.
"""
import logging
import os
import subprocess
import sys
import time
from typing import Dict, Iterable, List, Protocol

from serial.tools import list_ports

from printproxy.config import SerialPortConfig
from printproxy.errors import FailureKind, PrintTimeout, TransportFailure
from printproxy.models import USB_ID_PATTERN, split_host_port
from printproxy.printer.connection import (
    DevicePrinter,
    NetworkPrinter,
    SerialPrinter,
    SpoolerPrinter,
    USBPrinter,
)

logger = logging.getLogger(__name__)


class Transport(Protocol):
    name: str

    def send(self, address: str, data: bytes, deadline: float) -> None:
        ...

    def probe(self, address: str) -> bool:
        ...


def time_left(deadline: float) -> float:
    """Seconds until the deadline; raises PrintTimeout once it has passed."""
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise PrintTimeout("Deadline exceeded before the operation could start")
    return remaining


class NetworkTransport:
    """Raw TCP socket printing."""
    name = "network"

    def __init__(self, connect_timeout: float = 5.0, print_timeout: float = 30.0):
        self.connect_timeout = connect_timeout
        self.print_timeout = print_timeout

    def send(self, address: str, data: bytes, deadline: float) -> None:
        host, port = split_host_port(address)
        printer = NetworkPrinter(host, port, timeout=min(self.connect_timeout, time_left(deadline)))
        printer.connect()
        try:
            printer.write_timeout = min(self.print_timeout, time_left(deadline))
            printer.write(data)
        finally:
            printer.disconnect()

    def probe(self, address: str) -> bool:
        host, port = split_host_port(address)
        printer = NetworkPrinter(host, port, timeout=self.connect_timeout)
        try:
            printer.connect()
            return True
        except TransportFailure as e:
            logger.debug("Network printer %s unreachable: %s", address, e)
            return False
        finally:
            printer.disconnect()


class SerialTransport:
    """COM / tty serial port printing."""
    name = "serial"

    def __init__(self, ports: Iterable[SerialPortConfig] = (), print_timeout: float = 30.0):
        self.ports = {entry.port.lower(): entry for entry in ports}
        self.print_timeout = print_timeout

    def settings_for(self, port: str) -> SerialPortConfig:
        """Configured framing for a port; unconfigured ports run 9600 8N1."""
        return self.ports.get(port.lower()) or SerialPortConfig(port, port)

    def send(self, address: str, data: bytes, deadline: float) -> None:
        timeout = min(self.print_timeout, time_left(deadline))
        cfg = self.settings_for(address)
        SerialPrinter(
            address,
            cfg.baudrate,
            timeout=timeout,
            parity=cfg.parity,
            data_bits=cfg.data_bits,
            stop_bits=cfg.stop_bits,
        ).print_data(data)

    @staticmethod
    def list_ports() -> List[str]:
        return [port.device for port in list_ports.comports()]

    def probe(self, address: str) -> bool:
        available = {device.lower() for device in self.list_ports()}
        if address.lower() in available:
            return True
        # USB-serial adapters are not always reported by comports()
        return address.startswith("/dev/") and os.path.exists(address)


class UsbTransport:
    """Direct USB bulk transfers through libusb."""
    name = "usb"

    def __init__(self, print_timeout: float = 30.0):
        self.print_timeout = print_timeout

    @staticmethod
    def parse_address(address: str) -> tuple:
        match = USB_ID_PATTERN.match(address)
        if not match:
            raise TransportFailure(f"Not a USB vendor:product address: {address}",
                                   FailureKind.UNKNOWN, address)
        return tuple(int(part, 16) for part in match.groups())

    def send(self, address: str, data: bytes, deadline: float) -> None:
        vendor_id, product_id = self.parse_address(address)
        timeout = min(self.print_timeout, time_left(deadline))
        USBPrinter(vendor_id, product_id, timeout=timeout).print_data(data)

    def probe(self, address: str) -> bool:
        try:
            vendor_id, product_id = self.parse_address(address)
            return USBPrinter(vendor_id, product_id).find() is not None
        except TransportFailure as e:
            logger.debug("USB device %s not accessible: %s", address, e)
            return False


class DeviceFileTransport:
    """Character device printing, e.g. /dev/usb/lp0."""
    name = "device"

    def send(self, address: str, data: bytes, deadline: float) -> None:
        time_left(deadline)
        DevicePrinter(address).print_data(data)

    def probe(self, address: str) -> bool:
        if not os.path.exists(address):
            return False
        try:
            with open(address, "wb", buffering=0):
                return True
        except PermissionError:
            logger.warning("Permission denied for device: %s. Add the user to the 'lp' or 'dialout' group.",
                           address)
        except OSError as e:
            logger.debug("Device not accessible: %s - %s", address, e)
        return False


class SpoolerTransport:
    """OS print spooler (Windows spooler or CUPS) fed RAW jobs."""
    name = "spooler"

    def __init__(self, print_timeout: float = 30.0):
        self.print_timeout = print_timeout

    def send(self, address: str, data: bytes, deadline: float) -> None:
        timeout = min(self.print_timeout, time_left(deadline))
        if not SpoolerPrinter(address, timeout=timeout).print_data(data):
            raise TransportFailure(f"Spooler accepted only part of the job for {address}",
                                   FailureKind.UNKNOWN, address)

    def probe(self, address: str) -> bool:
        if sys.platform == "win32":
            import pywintypes
            import win32print
            try:
                handle = win32print.OpenPrinter(address)
            except pywintypes.error:
                return False
            win32print.ClosePrinter(handle)
            return True
        try:
            result = subprocess.run(["lpstat", "-p", address], capture_output=True, timeout=5)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("lpstat unavailable for %s: %s", address, e)
            return False
        return result.returncode == 0

    @staticmethod
    def list_queues() -> List[str]:
        """Names of the printer queues the spooler knows about."""
        if sys.platform == "win32":
            import win32print
            flags = win32print.PRINTER_ENUM_LOCAL | win32print.PRINTER_ENUM_CONNECTIONS
            return [printer[2] for printer in win32print.EnumPrinters(flags)]
        out = subprocess.check_output(["lpstat", "-a"], timeout=10).decode(errors="replace")
        return [line.split()[0] for line in out.splitlines() if line.strip()]


def default_transports(connection, serial_ports=()) -> Dict[str, Transport]:
    """Build the transport set from connection settings and serial port config."""
    return {
        NetworkTransport.name: NetworkTransport(connection.connect_timeout, connection.print_timeout),
        SerialTransport.name: SerialTransport(serial_ports, print_timeout=connection.print_timeout),
        UsbTransport.name: UsbTransport(connection.print_timeout),
        DeviceFileTransport.name: DeviceFileTransport(),
        SpoolerTransport.name: SpoolerTransport(connection.print_timeout),
    }
