"""Printer connection handlers for Network, Serial, USB, device file and spooler channels."""
import logging
import socket
import subprocess
import sys
from abc import ABC, abstractmethod
from typing import Optional

import serial
import usb.core
import usb.util

from printproxy.errors import FailureKind, TransportFailure, classify_os_error

logger = logging.getLogger(__name__)


class PrinterConnection(ABC):
    """Abstract base class for printer connections."""

    @abstractmethod
    def connect(self) -> bool:
        """Establish connection to the printer."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Close connection to the printer."""
        pass

    @abstractmethod
    def write(self, data: bytes) -> bool:
        """Send data to the printer."""
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if printer is connected."""
        pass

    def print_data(self, data: bytes) -> bool:
        """Connect, send data, and disconnect."""
        self.connect()
        try:
            return self.write(data)
        finally:
            self.disconnect()

    def _failure(self, action: str, error: BaseException,
                 kind: Optional[FailureKind] = None) -> TransportFailure:
        failure = TransportFailure(
            f"Failed to {action} {self!r}: {error}",
            kind=kind or classify_os_error(error),
            address=self.address,
        )
        failure.__cause__ = error
        return failure

    @property
    @abstractmethod
    def address(self) -> str:
        """Channel address this connection talks to."""


class NetworkPrinter(PrinterConnection):
    """TCP/IP network printer connection (raw port 9100)."""

    def __init__(self, ip: str, port: int = 9100, timeout: float = 5.0,
                 write_timeout: Optional[float] = None):
        self.ip = ip
        self.port = port
        self.timeout = timeout
        self.write_timeout = write_timeout if write_timeout is not None else timeout
        self._socket: Optional[socket.socket] = None

    @property
    def address(self) -> str:
        return f"{self.ip}:{self.port}"

    def connect(self) -> bool:
        """Connect to network printer."""
        try:
            self._socket = socket.create_connection((self.ip, self.port), timeout=self.timeout)
            return True
        except OSError as e:
            self._socket = None
            raise self._failure("connect to", e, FailureKind.CONNECTIVITY)

    def disconnect(self) -> None:
        """Close network connection."""
        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

    def write(self, data: bytes) -> bool:
        """Send data to network printer."""
        if not self._socket:
            raise TransportFailure("Not connected", FailureKind.CONNECTIVITY, self.address)
        try:
            self._socket.settimeout(self.write_timeout)
            self._socket.sendall(data)
            return True
        except OSError as e:
            raise self._failure("send data to", e, FailureKind.CONNECTIVITY)

    def is_connected(self) -> bool:
        """Check if socket is connected."""
        return self._socket is not None

    def __repr__(self):
        return f"NetworkPrinter({self.ip}:{self.port})"


class SerialPrinter(PrinterConnection):
    """Serial port printer connection."""

    PARITIES = {
        "none": serial.PARITY_NONE,
        "odd": serial.PARITY_ODD,
        "even": serial.PARITY_EVEN,
        "mark": serial.PARITY_MARK,
        "space": serial.PARITY_SPACE,
    }
    DATA_BITS = {
        5: serial.FIVEBITS,
        6: serial.SIXBITS,
        7: serial.SEVENBITS,
        8: serial.EIGHTBITS,
    }
    STOP_BITS = {
        "one": serial.STOPBITS_ONE,
        "onepointfive": serial.STOPBITS_ONE_POINT_FIVE,
        "two": serial.STOPBITS_TWO,
    }

    def __init__(self, port: str, baudrate: int = 9600, timeout: float = 3.0,
                 parity: str = "none", data_bits: int = 8, stop_bits: str = "one"):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.parity = self.PARITIES[parity.lower()]
        self.bytesize = self.DATA_BITS[int(data_bits)]
        self.stopbits = self.STOP_BITS[stop_bits.lower()]
        self._serial: Optional[serial.Serial] = None

    @property
    def address(self) -> str:
        return self.port

    def connect(self) -> bool:
        """Connect to serial printer."""
        try:
            self._serial = serial.Serial(
                self.port,
                self.baudrate,
                bytesize=self.bytesize,
                parity=self.parity,
                stopbits=self.stopbits,
                timeout=self.timeout,
                write_timeout=self.timeout,
            )
            return True
        except serial.SerialException as e:
            self._serial = None
            raise self._failure("connect to", e, _serial_kind(e))

    def disconnect(self) -> None:
        """Close serial connection."""
        if self._serial:
            try:
                self._serial.close()
            except serial.SerialException:
                pass
            self._serial = None

    def write(self, data: bytes) -> bool:
        """Send data to serial printer."""
        if not self._serial:
            raise TransportFailure("Not connected", FailureKind.CONNECTIVITY, self.address)
        try:
            self._serial.write(data)
            self._serial.flush()
            return True
        except serial.SerialTimeoutException as e:
            raise self._failure("send data to", e, FailureKind.DEVICE_BUSY)
        except serial.SerialException as e:
            raise self._failure("send data to", e, _serial_kind(e))

    def is_connected(self) -> bool:
        """Check if serial port is open."""
        return self._serial is not None and self._serial.is_open

    def __repr__(self):
        return f"SerialPrinter({self.port}@{self.baudrate} {self.bytesize}{self.parity}{self.stopbits})"


def _serial_kind(error: serial.SerialException) -> FailureKind:
    # pyserial keeps the OS errno when it has one
    if error.errno is not None:
        return classify_os_error(error)
    text = str(error).lower()
    if "permission" in text or "access is denied" in text:
        return FailureKind.PERMISSION_DENIED
    if "busy" in text:
        return FailureKind.DEVICE_BUSY
    if "could not open port" in text or "no such file" in text:
        return FailureKind.CONNECTIVITY
    return FailureKind.UNKNOWN


class USBPrinter(PrinterConnection):
    """Direct USB printer connection via libusb."""

    # Common thermal printer vendor IDs
    KNOWN_VENDORS = {
        0x0416: "Winbond",
        0x0483: "STMicroelectronics",
        0x0493: "MAG-TEK",
        0x04b8: "Epson",
        0x0519: "Star Micronics",
        0x067b: "Prolific",
        0x0dd4: "Custom",
        0x0fe6: "Bixolon",
        0x1008: "Gprinter",
        0x1504: "Sewoo",
        0x154f: "SNBC",
        0x1659: "ShenZhen",
        0x1a86: "QinHeng (CH340)",
        0x20d1: "Xprinter",
        0x2730: "Citizen",
        0x28e9: "GD32",
        0x4348: "WCH (CH341)",
        0x6868: "Rongta",
    }

    def __init__(self, vendor_id: int, product_id: int, timeout: float = 5.0):
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.timeout = timeout
        self._device = None
        self._endpoint_out = None

    @property
    def address(self) -> str:
        return f"{self.vendor_id:04X}:{self.product_id:04X}"

    def find(self):
        """Look the device up on the bus without claiming it."""
        try:
            return usb.core.find(idVendor=self.vendor_id, idProduct=self.product_id)
        except usb.core.NoBackendError as e:
            raise self._failure("find", e, FailureKind.UNKNOWN)
        except usb.core.USBError as e:
            raise self._failure("find", e, _usb_kind(e))

    def connect(self) -> bool:
        """Connect to USB printer."""
        self._device = self.find()
        if not self._device:
            raise TransportFailure(
                f"USB device {self.address} not found",
                FailureKind.CONNECTIVITY,
                self.address,
            )

        # Detach kernel driver if active
        try:
            if self._device.is_kernel_driver_active(0):
                self._device.detach_kernel_driver(0)
        except (usb.core.USBError, NotImplementedError):
            pass

        # Set configuration
        try:
            self._device.set_configuration()
        except usb.core.USBError:
            pass  # May already be configured

        # Find OUT endpoint
        try:
            cfg = self._device.get_active_configuration()
            intf = cfg[(0, 0)]
            self._endpoint_out = usb.util.find_descriptor(
                intf,
                custom_match=lambda e: usb.util.endpoint_direction(e.bEndpointAddress) == usb.util.ENDPOINT_OUT
            )
        except usb.core.USBError as e:
            raise self._failure("claim", e, _usb_kind(e))

        if not self._endpoint_out:
            raise TransportFailure("Could not find USB OUT endpoint", FailureKind.UNKNOWN, self.address)

        return True

    def disconnect(self) -> None:
        """Release USB device."""
        if self._device:
            try:
                usb.util.dispose_resources(self._device)
            except usb.core.USBError:
                pass
            self._device = None
            self._endpoint_out = None

    def write(self, data: bytes) -> bool:
        """Send data to USB printer."""
        if not self._endpoint_out:
            raise TransportFailure("Not connected", FailureKind.CONNECTIVITY, self.address)
        try:
            self._endpoint_out.write(data, timeout=int(self.timeout * 1000))
            return True
        except usb.core.USBError as e:
            raise self._failure("send data to", e, _usb_kind(e))

    def is_connected(self) -> bool:
        """Check if USB device is connected."""
        return self._device is not None and self._endpoint_out is not None

    PRODUCT_HINTS = ("printer", "pos", "thermal", "receipt", "xp-", "58", "80")

    @classmethod
    def scan_devices(cls) -> list:
        """Scan the bus for devices that look like receipt printers.

        A device qualifies when its vendor is a known thermal printer vendor
        or its product string suggests a printer.
        """
        try:
            devices = list(usb.core.find(find_all=True))
        except usb.core.NoBackendError as e:
            raise TransportFailure(f"libusb backend not available: {e}", FailureKind.UNKNOWN) from e

        found = []
        for dev in devices:
            product = _usb_string(dev, "iProduct")
            manufacturer = _usb_string(dev, "iManufacturer")
            vendor_name = cls.KNOWN_VENDORS.get(dev.idVendor)
            looks_like_printer = vendor_name is not None or (
                product is not None and any(hint in product.lower() for hint in cls.PRODUCT_HINTS)
            )
            if not looks_like_printer:
                continue
            found.append({
                "vendor_id": dev.idVendor,
                "product_id": dev.idProduct,
                "vendor_name": vendor_name or manufacturer or "Unknown",
                "product_name": product or f"USB Device {dev.idVendor:04X}:{dev.idProduct:04X}",
                "vendor_id_hex": f"{dev.idVendor:04x}",
                "product_id_hex": f"{dev.idProduct:04x}",
            })
        return found

    def __repr__(self):
        return f"USBPrinter({self.vendor_id:04x}:{self.product_id:04x})"


def _usb_string(dev, attribute: str) -> Optional[str]:
    """Read a string descriptor; unreadable without permissions on most systems."""
    index = getattr(dev, attribute, 0)
    if not index:
        return None
    try:
        return usb.util.get_string(dev, index)
    except (usb.core.USBError, ValueError, NotImplementedError):
        return None


def _usb_kind(error: usb.core.USBError) -> FailureKind:
    # libusb reports access, busy and no-device conditions through errno
    if error.errno == 13:
        return FailureKind.PERMISSION_DENIED
    if error.errno == 16:
        return FailureKind.DEVICE_BUSY
    if error.errno in (19, 110):
        return FailureKind.CONNECTIVITY
    return FailureKind.UNKNOWN


class DevicePrinter(PrinterConnection):
    """Printer exposed as a character device, e.g. /dev/usb/lp0."""

    def __init__(self, path: str):
        self.path = path
        self._file = None

    @property
    def address(self) -> str:
        return self.path

    def connect(self) -> bool:
        """Open the device for writing."""
        try:
            self._file = open(self.path, "wb", buffering=0)
            return True
        except OSError as e:
            self._file = None
            raise self._failure("open", e)

    def disconnect(self) -> None:
        """Close the device."""
        if self._file:
            try:
                self._file.close()
            except OSError:
                pass
            self._file = None

    def write(self, data: bytes) -> bool:
        """Write data to the device."""
        if not self._file:
            raise TransportFailure("Not connected", FailureKind.CONNECTIVITY, self.address)
        try:
            self._file.write(data)
            return True
        except OSError as e:
            raise self._failure("write to", e)

    def is_connected(self) -> bool:
        return self._file is not None

    def __repr__(self):
        return f"DevicePrinter({self.path})"


class SpoolerPrinter(PrinterConnection):
    """Printer queue managed by the OS spooler, fed a RAW job.

    Uses win32print on Windows and CUPS `lp` elsewhere.
    """

    DOCUMENT_NAME = "printproxy RAW receipt"

    def __init__(self, printer_name: str, timeout: float = 30.0):
        self.printer_name = printer_name
        self.timeout = timeout
        self._handle = None
        self._opened = False

    @property
    def address(self) -> str:
        return self.printer_name

    def connect(self) -> bool:
        """Open the spooler queue."""
        if sys.platform == "win32":
            import pywintypes
            import win32print
            try:
                self._handle = win32print.OpenPrinter(self.printer_name)
            except pywintypes.error as e:
                raise self._failure("open", e, _win32_kind(e))
        self._opened = True
        return True

    def disconnect(self) -> None:
        """Close the spooler queue."""
        if self._handle is not None:
            import pywintypes
            import win32print
            try:
                win32print.ClosePrinter(self._handle)
            except pywintypes.error as e:
                logger.debug("Error closing printer %s: %s", self.printer_name, e)
            self._handle = None
        self._opened = False

    def write(self, data: bytes) -> bool:
        """Submit data as a single RAW job."""
        if not self._opened:
            raise TransportFailure("Not connected", FailureKind.CONNECTIVITY, self.address)
        if sys.platform == "win32":
            return self._write_win32(data)
        return self._write_cups(data)

    def _write_win32(self, data: bytes) -> bool:
        import pywintypes
        import win32print
        try:
            win32print.StartDocPrinter(self._handle, 1, (self.DOCUMENT_NAME, None, "RAW"))
            try:
                win32print.StartPagePrinter(self._handle)
                written = win32print.WritePrinter(self._handle, data)
                win32print.EndPagePrinter(self._handle)
            finally:
                win32print.EndDocPrinter(self._handle)
        except pywintypes.error as e:
            raise self._failure("write to", e, _win32_kind(e))
        return written == len(data)

    def _write_cups(self, data: bytes) -> bool:
        try:
            result = subprocess.run(
                ["lp", "-d", self.printer_name, "-o", "raw", "-t", self.DOCUMENT_NAME],
                input=data,
                capture_output=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise self._failure("submit job to", e, FailureKind.CONNECTIVITY)
        except OSError as e:
            raise self._failure("submit job to", e, FailureKind.UNKNOWN)
        if result.returncode != 0:
            message = result.stderr.decode(errors="replace").strip()
            raise TransportFailure(
                f"lp rejected job for {self.printer_name}: {message}",
                FailureKind.UNKNOWN,
                self.address,
            )
        return True

    def is_connected(self) -> bool:
        return self._opened

    def __repr__(self):
        return f"SpoolerPrinter({self.printer_name})"


def _win32_kind(error: Exception) -> FailureKind:
    winerror = getattr(error, "winerror", None)
    if winerror == 5:  # ERROR_ACCESS_DENIED
        return FailureKind.PERMISSION_DENIED
    if winerror in (1801, 1722):  # ERROR_INVALID_PRINTER_NAME, RPC_S_SERVER_UNAVAILABLE
        return FailureKind.CONNECTIVITY
    return FailureKind.UNKNOWN
