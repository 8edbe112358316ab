"""Printer module: discovery, ESC/POS encoding and job delivery."""
from printproxy.printer.connection import (
    PrinterConnection,
    NetworkPrinter,
    SerialPrinter,
    USBPrinter,
    DevicePrinter,
    SpoolerPrinter,
)
from printproxy.printer.discovery import DiscoveryAggregator, build_sources
from printproxy.printer.dispatcher import TransportDispatcher
from printproxy.printer.escpos import ESCPOSBuilder, build_receipt, build_test_page
from printproxy.printer.queue import PrintQueue
from printproxy.printer.registry import PrinterRegistry, resolve_printer
from printproxy.printer.transports import default_transports

__all__ = [
    "PrinterConnection",
    "NetworkPrinter",
    "SerialPrinter",
    "USBPrinter",
    "DevicePrinter",
    "SpoolerPrinter",
    "DiscoveryAggregator",
    "build_sources",
    "TransportDispatcher",
    "ESCPOSBuilder",
    "build_receipt",
    "build_test_page",
    "PrintQueue",
    "PrinterRegistry",
    "resolve_printer",
    "default_transports",
]
