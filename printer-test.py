#!/usr/bin/env python3
"""
Thermal Receipt Printer Connectivity Tester
Discovers printers and tests them over USB, serial, device file, spooler or network
using the same transports the print proxy service uses.
"""

import sys
import time

from printproxy.config import Config, ProxySettings, SerialPortConfig
from printproxy.errors import PrintProxyError
from printproxy.models import ConnectionKind, PrinterDescriptor, usb_address
from printproxy.printer import TransportDispatcher, build_sources, build_test_page, default_transports
from printproxy.printer.connection import USBPrinter


def load_settings() -> ProxySettings:
    return ProxySettings.from_mapping({
        key: getattr(Config, key) for key in dir(Config) if key.isupper()
    })


def list_printers(settings: ProxySettings) -> bool:
    """Run every discovery source and print what was found."""
    print("Discovering printers...")
    transports = default_transports(settings.connection, settings.serial_ports)
    printers = build_sources(settings, transports).discover()
    if not printers:
        print("  No printers found")
        return False
    for printer in printers:
        mark = "✓" if printer.is_online else "✗"
        print(f"  {mark} {printer.name:<40} {printer.id:<32} {printer.status.value}")
    return True


def test_printer(settings: ProxySettings, printer: PrinterDescriptor, print_test: bool = True) -> bool:
    """Probe a printer and optionally send the test page."""
    transports = default_transports(settings.connection, settings.serial_ports)
    dispatcher = TransportDispatcher(transports, settings.connection)
    transport = dispatcher.transport_for(printer)

    print(f"Testing {transport.name} connection to {printer.address}...")
    if not transport.probe(printer.address):
        print(f"✗ {printer.address} is not reachable")
        return False
    print(f"✓ Reached {printer.address}")

    if print_test:
        try:
            deadline = time.monotonic() + settings.connection.print_timeout
            dispatcher.send(printer, build_test_page(printer.name), deadline)
        except PrintProxyError as e:
            print(f"✗ Error: {e}")
            return False
        print("✓ Test page sent")
    return True


def main():
    import argparse

    parser = argparse.ArgumentParser(
        description="Thermal Receipt Printer Connectivity Tester",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python printer-test.py list
  python printer-test.py net 192.168.1.100
  python printer-test.py net 192.168.1.100 9100 --no-print
  python printer-test.py serial COM3
  python printer-test.py serial /dev/ttyUSB0 115200
  python printer-test.py usb
  python printer-test.py usb 04b8 0e15 --no-print
  python printer-test.py device /dev/usb/lp0
  python printer-test.py spooler "XP-58"
        """
    )

    parser.add_argument("--no-print", action="store_true",
                        help="Skip printing test page (connection test only)")

    subparsers = parser.add_subparsers(dest="mode", required=True)

    subparsers.add_parser("list", help="Discover printers with the default settings")

    net_parser = subparsers.add_parser("net", help="Test network printer")
    net_parser.add_argument("ip", help="Printer IP address")
    net_parser.add_argument("port", nargs="?", type=int, default=9100,
                            help="Port number (default: 9100)")

    serial_parser = subparsers.add_parser("serial", help="Test serial printer")
    serial_parser.add_argument("port", help="Serial port (e.g., COM3, /dev/ttyUSB0)")
    serial_parser.add_argument("baudrate", nargs="?", type=int, default=9600,
                               help="Baud rate (default: 9600)")

    usb_parser = subparsers.add_parser("usb", help="Test USB printer (lists devices without ids)")
    usb_parser.add_argument("vendor_id", nargs="?", help="Vendor ID in hex (e.g., 04b8)")
    usb_parser.add_argument("product_id", nargs="?", help="Product ID in hex (e.g., 0e15)")

    device_parser = subparsers.add_parser("device", help="Test character device printer")
    device_parser.add_argument("path", help="Device path (e.g., /dev/usb/lp0)")

    spooler_parser = subparsers.add_parser("spooler", help="Test OS spooler printer")
    spooler_parser.add_argument("name", help="Spooler printer name")

    args = parser.parse_args()

    print("=" * 40)
    print("Thermal Printer Connectivity Tester")
    print("=" * 40 + "\n")

    settings = load_settings()
    print_test = not args.no_print
    mode = args.mode

    if mode == "list":
        ok = list_printers(settings)

    elif mode == "net":
        address = f"{args.ip}:{args.port}"
        ok = test_printer(settings, PrinterDescriptor.create(address, ConnectionKind.LAN, address), print_test)

    elif mode == "serial":
        settings.serial_ports.append(SerialPortConfig(args.port, args.port, args.baudrate))
        ok = test_printer(settings, PrinterDescriptor.create(args.port, ConnectionKind.USB, args.port), print_test)

    elif mode == "usb":
        if args.vendor_id and args.product_id:
            address = usb_address(int(args.vendor_id, 16), int(args.product_id, 16))
            ok = test_printer(settings, PrinterDescriptor.create(address, ConnectionKind.USB, address), print_test)
        else:
            print("Scanning for USB printers...")
            try:
                devices = USBPrinter.scan_devices()
            except PrintProxyError as e:
                print(f"✗ Error: {e}")
                sys.exit(1)
            for dev in devices:
                print(f"  Found: {dev['vendor_name']} - {dev['vendor_id_hex']}:{dev['product_id_hex']}"
                      f" ({dev['product_name']})")
            if not devices:
                print("  No known printer vendors detected")
            ok = bool(devices)

    elif mode == "device":
        ok = test_printer(settings, PrinterDescriptor.create(args.path, ConnectionKind.USB, args.path), print_test)

    else:
        ok = test_printer(settings, PrinterDescriptor.create(args.name, ConnectionKind.USB, args.name), print_test)

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
