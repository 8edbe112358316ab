"""In-memory models: printer descriptors, print options, jobs and outcomes."""
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class ConnectionKind(Enum):
    """Physical connection family. USB covers direct USB, serial and spooler devices."""
    USB = "USB"
    LAN = "LAN"


class PrinterStatus(Enum):
    """Point-in-time probe result."""
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"
    BUSY = "busy"
    UNKNOWN = "unknown"


# Address shapes
USB_ID_PATTERN = re.compile(r"^([0-9a-fA-F]{1,4}):([0-9a-fA-F]{1,4})$")
SERIAL_PORT_PATTERN = re.compile(r"^(COM\d+|/dev/(tty|cu)[\w.\-]+)$", re.IGNORECASE)

_ID_UNSAFE = re.compile(r"[^0-9a-z_\-]+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_usb_address(address: str) -> bool:
    """True for a "vendorHex:productHex" address."""
    return bool(USB_ID_PATTERN.match(address or ""))


def is_serial_address(address: str) -> bool:
    """True for COM port names and /dev/tty* style device names."""
    return bool(SERIAL_PORT_PATTERN.match(address or ""))


def is_device_file_address(address: str) -> bool:
    return (address or "").startswith("/dev/")


def usb_address(vendor_id: int, product_id: int) -> str:
    return f"{vendor_id:04X}:{product_id:04X}"


def split_host_port(address: str, default_port: int = 9100) -> tuple:
    """Split "ip:port" or "[ipv6]:port" into (host, port).

    A bare host, including an unbracketed IPv6 literal, gets the default port.
    """
    address = address or ""
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
        return host, int(port) if port.isdigit() else default_port
    host, sep, port = address.rpartition(":")
    if not sep or ":" in host or not port.isdigit():
        return address, default_port
    return host, int(port)


def _sanitize(value: str) -> str:
    return _ID_UNSAFE.sub("_", value.strip().lower().replace(".", "_")).strip("_")


def make_printer_id(kind: ConnectionKind, address: str) -> str:
    """Derive the stable printer id for (connection kind, address).

    The same physical channel always yields the same id, so ids survive
    repeated discovery runs.
    """
    address = (address or "").strip()
    if kind is ConnectionKind.LAN:
        host, port = split_host_port(address)
        return f"lan_{_sanitize(host.replace(':', '_'))}_{port}"

    match = USB_ID_PATTERN.match(address)
    if match:
        vendor_id, product_id = (int(part, 16) for part in match.groups())
        return f"usb_{vendor_id:04X}_{product_id:04X}"
    if is_serial_address(address):
        return f"serial_{address.rsplit('/', 1)[-1].lower()}"
    if is_device_file_address(address):
        return f"usb_{address.rsplit('/', 1)[-1]}"
    return f"spool_{_sanitize(address)}"


@dataclass(frozen=True)
class PrinterDescriptor:
    """One discovered or configured printer."""
    id: str
    name: str
    connection_kind: ConnectionKind
    address: str
    status: PrinterStatus = PrinterStatus.UNKNOWN
    last_seen: datetime = field(default_factory=utcnow)
    last_error: Optional[str] = None

    @classmethod
    def create(cls, name: str, kind: ConnectionKind, address: str,
               status: PrinterStatus = PrinterStatus.UNKNOWN,
               last_error: Optional[str] = None) -> "PrinterDescriptor":
        """Build a descriptor whose id is derived from its channel."""
        return cls(
            id=make_printer_id(kind, address),
            name=name,
            connection_kind=kind,
            address=address,
            status=status,
            last_error=last_error,
        )

    @property
    def device_path(self) -> Optional[str]:
        return self.address if self.connection_kind is ConnectionKind.USB else None

    @property
    def ip_address(self) -> Optional[str]:
        if self.connection_kind is not ConnectionKind.LAN:
            return None
        return split_host_port(self.address)[0]

    @property
    def port(self) -> Optional[int]:
        if self.connection_kind is not ConnectionKind.LAN:
            return None
        return split_host_port(self.address)[1]

    @property
    def is_online(self) -> bool:
        return self.status is PrinterStatus.ONLINE

    def to_dict(self):
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "connectionType": self.connection_kind.value,
            "devicePath": self.device_path,
            "ipAddress": self.ip_address,
            "port": self.port,
            "status": self.status.value,
            "lastSeen": self.last_seen.isoformat() if self.last_seen else None,
        }

    def __repr__(self):
        return f"<PrinterDescriptor {self.id} ({self.status.value})>"


@dataclass
class PrintOptions:
    """Per-request formatting options. Unset fields fall back to the defaults."""
    font_size: Optional[str] = None
    alignment: Optional[str] = None
    cut_paper: Optional[bool] = None
    bold: Optional[bool] = None
    encoding: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "PrintOptions":
        """Parse the camelCase "options" object of a print request."""
        data = data or {}
        if not isinstance(data, dict):
            raise TypeError("options must be an object")
        return cls(
            font_size=_typed(data, "fontSize", str),
            alignment=_typed(data, "alignment", str),
            cut_paper=_typed(data, "cutPaper", bool),
            bold=_typed(data, "bold", bool),
            encoding=_typed(data, "encoding", str),
        )


def _typed(data: dict, key: str, expected: type):
    """Optional request field; None or a value of the expected type."""
    value = data.get(key)
    if value is not None and not isinstance(value, expected):
        raise TypeError(f"{key} must be a {'boolean' if expected is bool else 'string'}")
    return value


class JobState(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass
class PrintOutcome:
    """Terminal result of a print or test-print request."""
    state: JobState
    message: str
    printer_used: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def success(self) -> bool:
        return self.state is JobState.SUCCESS

    @classmethod
    def ok(cls, message: str, printer_used: Optional[str] = None) -> "PrintOutcome":
        return cls(JobState.SUCCESS, message, printer_used=printer_used)

    @classmethod
    def fail(cls, message: str, error: Optional[str] = None,
             printer_used: Optional[str] = None) -> "PrintOutcome":
        return cls(JobState.FAILURE, message, printer_used=printer_used, error=error)

    @classmethod
    def timeout(cls, message: str, error: Optional[str] = None,
                printer_used: Optional[str] = None) -> "PrintOutcome":
        return cls(JobState.TIMEOUT, message, printer_used=printer_used, error=error)

    def to_dict(self):
        """Convert to dictionary for API responses."""
        result = {
            "success": self.success,
            "message": self.message,
            "printerUsed": self.printer_used,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.error is not None:
            result["error"] = self.error
        return result


def new_job_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass
class PrintJob:
    """A job accepted by the print queue. Lives only until its outcome is returned."""
    printer_id: str
    printer_name: Optional[str] = None
    job_id: str = field(default_factory=new_job_id)
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    outcome: Optional[PrintOutcome] = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def __repr__(self):
        return f"<PrintJob {self.job_id} -> {self.printer_id}>"
