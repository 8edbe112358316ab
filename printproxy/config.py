"""Application configuration."""
import logging
import os
from dataclasses import dataclass, field, fields
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Base configuration."""
    HOST = os.environ.get("HOST", "127.0.0.1")
    PORT = int(os.environ.get("PORT", 5050))

    # Discovery
    AUTO_DISCOVER_USB = _env_bool("AUTO_DISCOVER_USB", True)
    USE_LIBUSB = _env_bool("USE_LIBUSB", True)
    USE_SPOOLER = _env_bool("USE_SPOOLER", True)
    USE_SERIAL = _env_bool("USE_SERIAL", True)
    USE_NETWORK = _env_bool("USE_NETWORK", True)
    USB_DEVICE_PATHS = ["/dev/usb/lp*", "/dev/ttyUSB*"]
    PRINTER_NAME_PATTERNS = ["XP", "POS", "THERMAL", "RECEIPT", "ESC"]
    CACHE_REFRESH_INTERVAL_SECONDS = int(os.environ.get("CACHE_REFRESH_INTERVAL_SECONDS", 30))
    DISCOVERY_SOURCE_TIMEOUT_SECONDS = 10
    START_BACKGROUND_REFRESH = True

    # Statically configured printers
    LIBUSB_PRINTERS = []    # [{"name", "vendor_id", "product_id", "enabled"}]
    SPOOLER_PRINTERS = []   # [{"name", "printer_name", "enabled"}]
    SERIAL_PORTS = []       # [{"name", "port", "baudrate", "parity", "data_bits", "stop_bits", "enabled"}]
    NETWORK_PRINTERS = []   # [{"name", "ip_address", "port", "enabled"}]

    PRINT_DEFAULTS = {
        "paper_cut": True,
        "encoding": "CP866",
        "alignment": "left",
        "font_size": "normal",
    }
    CONNECTION = {
        "timeout_ms": 5000,
        "retry_count": 3,
        "retry_delay_ms": 500,
        "print_timeout_ms": 30000,
    }

    LOG_FILE = os.environ.get("LOG_FILE")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    AUTO_DISCOVER_USB = False
    USE_LIBUSB = False
    USE_SPOOLER = False
    START_BACKGROUND_REFRESH = False
    CONNECTION = {
        "timeout_ms": 200,
        "retry_count": 1,
        "retry_delay_ms": 0,
        "print_timeout_ms": 2000,
    }


config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}


# Typed views over the configuration mapping

@dataclass(frozen=True)
class PrintDefaults:
    paper_cut: bool = True
    encoding: str = "CP866"
    alignment: str = "left"
    font_size: str = "normal"
    bold: bool = False


@dataclass(frozen=True)
class ConnectionSettings:
    timeout_ms: int = 5000
    retry_count: int = 3
    retry_delay_ms: int = 500
    print_timeout_ms: int = 30000

    @property
    def connect_timeout(self) -> float:
        return self.timeout_ms / 1000

    @property
    def retry_delay(self) -> float:
        return self.retry_delay_ms / 1000

    @property
    def print_timeout(self) -> float:
        return self.print_timeout_ms / 1000


@dataclass(frozen=True)
class LibUsbPrinterConfig:
    name: str
    vendor_id: int
    product_id: int
    enabled: bool = True


@dataclass(frozen=True)
class SpoolerPrinterConfig:
    name: str
    printer_name: str
    enabled: bool = True


@dataclass(frozen=True)
class SerialPortConfig:
    name: str
    port: str
    baudrate: int = 9600
    parity: str = "none"
    data_bits: int = 8
    stop_bits: str = "one"
    enabled: bool = True


@dataclass(frozen=True)
class NetworkPrinterConfig:
    name: str
    ip_address: str
    port: int = 9100
    enabled: bool = True

    @property
    def address(self) -> str:
        return f"{self.ip_address}:{self.port}"


def _hex_or_int(value) -> int:
    """USB ids may be configured as ints or hex strings ("04b8", "0x04b8")."""
    if isinstance(value, str):
        return int(value, 16)
    return int(value)


def _known_fields(cls, entry: Mapping) -> dict:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in entry.items() if key in names}


def _parse_entries(cls, entries, required: tuple, convert=None) -> list:
    parsed = []
    for entry in entries or []:
        if not isinstance(entry, Mapping) or any(not entry.get(key) for key in required):
            logger.warning("Skipping malformed %s entry: %r", cls.__name__, entry)
            continue
        values = _known_fields(cls, entry)
        try:
            if convert:
                values = convert(values)
            values.setdefault("name", str(entry.get(required[-1])))
            parsed.append(cls(**values))
        except (TypeError, ValueError) as e:
            logger.warning("Skipping invalid %s entry %r: %s", cls.__name__, entry, e)
    return parsed


def _convert_usb(values: dict) -> dict:
    values["vendor_id"] = _hex_or_int(values["vendor_id"])
    values["product_id"] = _hex_or_int(values["product_id"])
    values.setdefault("name", f"USB Printer {values['vendor_id']:04X}:{values['product_id']:04X}")
    return values


# Serial framing names, matched case-insensitively
SERIAL_PARITIES = ("none", "odd", "even", "mark", "space")
SERIAL_DATA_BITS = (5, 6, 7, 8)
SERIAL_STOP_BITS = ("one", "onepointfive", "two")


def _choice(key: str, value, allowed: tuple):
    if isinstance(value, str):
        value = value.strip().lower()
    if value not in allowed:
        raise ValueError(f"{key} must be one of {', '.join(map(str, allowed))}")
    return value


def _convert_serial(values: dict) -> dict:
    values["port"] = str(values["port"])
    if "baudrate" in values:
        values["baudrate"] = int(values["baudrate"])
    if "parity" in values:
        values["parity"] = _choice("parity", values["parity"], SERIAL_PARITIES)
    if "data_bits" in values:
        values["data_bits"] = _choice("data_bits", int(values["data_bits"]), SERIAL_DATA_BITS)
    if "stop_bits" in values:
        values["stop_bits"] = _choice("stop_bits", values["stop_bits"], SERIAL_STOP_BITS)
    return values


def _convert_network(values: dict) -> dict:
    if "port" in values:
        values["port"] = int(values["port"])
    return values


@dataclass
class ProxySettings:
    """Everything the printing core consumes from configuration."""
    auto_discover_usb: bool = True
    use_libusb: bool = True
    use_spooler: bool = True
    use_serial: bool = True
    use_network: bool = True
    usb_device_paths: List[str] = field(default_factory=list)
    printer_name_patterns: List[str] = field(default_factory=list)
    libusb_printers: List[LibUsbPrinterConfig] = field(default_factory=list)
    spooler_printers: List[SpoolerPrinterConfig] = field(default_factory=list)
    serial_ports: List[SerialPortConfig] = field(default_factory=list)
    network_printers: List[NetworkPrinterConfig] = field(default_factory=list)
    print_defaults: PrintDefaults = field(default_factory=PrintDefaults)
    connection: ConnectionSettings = field(default_factory=ConnectionSettings)
    cache_refresh_interval: float = 30.0
    discovery_source_timeout: float = 10.0

    @classmethod
    def from_mapping(cls, cfg: Optional[Mapping] = None) -> "ProxySettings":
        """Build settings from a Flask config (or any mapping of upper-case keys)."""
        cfg = cfg or {}
        defaults = Config
        return cls(
            auto_discover_usb=bool(cfg.get("AUTO_DISCOVER_USB", defaults.AUTO_DISCOVER_USB)),
            use_libusb=bool(cfg.get("USE_LIBUSB", defaults.USE_LIBUSB)),
            use_spooler=bool(cfg.get("USE_SPOOLER", defaults.USE_SPOOLER)),
            use_serial=bool(cfg.get("USE_SERIAL", defaults.USE_SERIAL)),
            use_network=bool(cfg.get("USE_NETWORK", defaults.USE_NETWORK)),
            usb_device_paths=list(cfg.get("USB_DEVICE_PATHS", defaults.USB_DEVICE_PATHS)),
            printer_name_patterns=list(cfg.get("PRINTER_NAME_PATTERNS", defaults.PRINTER_NAME_PATTERNS)),
            libusb_printers=_parse_entries(
                LibUsbPrinterConfig, cfg.get("LIBUSB_PRINTERS"),
                ("vendor_id", "product_id"), _convert_usb),
            spooler_printers=_parse_entries(
                SpoolerPrinterConfig, cfg.get("SPOOLER_PRINTERS"), ("printer_name",)),
            serial_ports=_parse_entries(
                SerialPortConfig, cfg.get("SERIAL_PORTS"), ("port",), _convert_serial),
            network_printers=_parse_entries(
                NetworkPrinterConfig, cfg.get("NETWORK_PRINTERS"), ("ip_address",), _convert_network),
            print_defaults=PrintDefaults(**_known_fields(
                PrintDefaults, {**defaults.PRINT_DEFAULTS, **cfg.get("PRINT_DEFAULTS", {})})),
            connection=ConnectionSettings(**_known_fields(
                ConnectionSettings, {**defaults.CONNECTION, **cfg.get("CONNECTION", {})})),
            cache_refresh_interval=float(cfg.get(
                "CACHE_REFRESH_INTERVAL_SECONDS", defaults.CACHE_REFRESH_INTERVAL_SECONDS)),
            discovery_source_timeout=float(cfg.get(
                "DISCOVERY_SOURCE_TIMEOUT_SECONDS", defaults.DISCOVERY_SOURCE_TIMEOUT_SECONDS)),
        )
