"""ESC/POS command builder for thermal receipt printers."""
import logging
import re
from datetime import datetime
from typing import Optional

from printproxy.config import PrintDefaults
from printproxy.models import PrintOptions

logger = logging.getLogger(__name__)

LINE_SPLIT = re.compile(r"\r\n|\n")

DEFAULT_ENCODING = "CP866"


class ESCPOSBuilder:
    """Builder for ESC/POS printer commands.

    Holds an ordered command buffer for a single build; each method appends a
    fixed byte sequence and returns the builder for chaining.
    """

    # ESC/POS Command Constants
    ESC = b'\x1b'
    GS = b'\x1d'

    # Initialize printer
    INIT = ESC + b'\x40'  # ESC @

    # Text formatting
    BOLD_ON = ESC + b'\x45\x01'   # ESC E 1
    BOLD_OFF = ESC + b'\x45\x00'  # ESC E 0

    # Character size. GS ! and ESC M are separate command families.
    SIZE_NORMAL = GS + b'\x21\x00'      # GS ! 0
    SIZE_LARGE = GS + b'\x21\x11'       # GS ! 17 - double width and height
    SMALL_FONT_ON = ESC + b'\x4d\x01'   # ESC M 1 - font B
    SMALL_FONT_OFF = ESC + b'\x4d\x00'  # ESC M 0 - font A

    # Alignment
    ALIGN_LEFT = ESC + b'\x61\x00'    # ESC a 0
    ALIGN_CENTER = ESC + b'\x61\x01'  # ESC a 1
    ALIGN_RIGHT = ESC + b'\x61\x02'   # ESC a 2

    # Paper control
    CUT_FULL = GS + b'\x56\x00'         # GS V 0 - Full cut
    CUT_PARTIAL = GS + b'\x56\x42\x00'  # GS V 66 0 - Feed and partial cut
    FEED_LINES = ESC + b'\x64'          # ESC d n
    FEED_LINE = b'\n'
    CUT_FEED_LINES = 3

    # Character code tables
    CODEPAGE_CP866 = ESC + b'\x74\x11'    # ESC t 17
    CODEPAGE_WIN1251 = ESC + b'\x74\x2e'  # ESC t 46

    ALIGNMENTS = {
        "left": ALIGN_LEFT,
        "center": ALIGN_CENTER,
        "right": ALIGN_RIGHT,
    }

    FONT_SIZES = {
        "normal": SIZE_NORMAL + SMALL_FONT_OFF,
        "large": SIZE_LARGE + SMALL_FONT_OFF,
        "small": SMALL_FONT_ON,
    }

    # Requested name -> (Python codec, codepage selection command)
    ENCODINGS = {
        "CP866": ("cp866", CODEPAGE_CP866),
        "WINDOWS-1251": ("cp1251", CODEPAGE_WIN1251),
        "WIN1251": ("cp1251", CODEPAGE_WIN1251),
        "1251": ("cp1251", CODEPAGE_WIN1251),
        "UTF-8": ("utf-8", b''),
        "UTF8": ("utf-8", b''),
    }

    def __init__(self, encoding: str = DEFAULT_ENCODING):
        """Initialize builder.

        Args:
            encoding: Text encoding used by text() when none is given per call
        """
        self.codec, _ = self.resolve_encoding(encoding)
        self._buffer = bytearray()

    @classmethod
    def resolve_encoding(cls, name: Optional[str]) -> tuple:
        """Return (codec, codepage command) for an encoding name.

        Unrecognized names fall back to CP866 instead of failing the build.
        """
        key = (name or DEFAULT_ENCODING).strip().upper()
        if key not in cls.ENCODINGS:
            logger.warning("Unknown encoding %r, falling back to %s", name, DEFAULT_ENCODING)
            key = DEFAULT_ENCODING
        return cls.ENCODINGS[key]

    def reset(self) -> "ESCPOSBuilder":
        """Clear the buffer."""
        self._buffer = bytearray()
        return self

    def initialize(self) -> "ESCPOSBuilder":
        """Reset printer state (ESC @)."""
        self._buffer.extend(self.INIT)
        return self

    def codepage(self, encoding: Optional[str] = None) -> "ESCPOSBuilder":
        """Select the code table matching an encoding. UTF-8 needs none."""
        self.codec, command = self.resolve_encoding(encoding)
        self._buffer.extend(command)
        return self

    def align(self, alignment: Optional[str] = None) -> "ESCPOSBuilder":
        """Set alignment: left, center or right. Anything else is left."""
        key = (alignment or "left").strip().lower()
        self._buffer.extend(self.ALIGNMENTS.get(key, self.ALIGN_LEFT))
        return self

    def font_size(self, size: Optional[str] = None) -> "ESCPOSBuilder":
        """Set font size: normal, small or large. Anything else is normal."""
        key = (size or "normal").strip().lower()
        self._buffer.extend(self.FONT_SIZES.get(key, self.FONT_SIZES["normal"]))
        return self

    def bold(self, on: bool = True) -> "ESCPOSBuilder":
        """Set bold mode."""
        self._buffer.extend(self.BOLD_ON if on else self.BOLD_OFF)
        return self

    def text(self, content: str, encoding: Optional[str] = None) -> "ESCPOSBuilder":
        """Add encoded text without a line feed."""
        codec = self.resolve_encoding(encoding)[0] if encoding else self.codec
        self._buffer.extend(content.encode(codec, errors="replace"))
        return self

    def line(self, content: str = "", encoding: Optional[str] = None) -> "ESCPOSBuilder":
        """Add text followed by a line feed."""
        return self.text(content, encoding).newline()

    def newline(self, count: int = 1) -> "ESCPOSBuilder":
        """Add line feed(s)."""
        self._buffer.extend(self.FEED_LINE * count)
        return self

    def feed(self, lines: int = 1) -> "ESCPOSBuilder":
        """Feed paper by number of lines (ESC d n)."""
        self._buffer.extend(self.FEED_LINES)
        self._buffer.append(max(0, min(lines, 255)))
        return self

    def separator(self, char: str = "=", width: int = 32) -> "ESCPOSBuilder":
        """Print a horizontal line."""
        return self.line(char * width)

    def cut(self, partial: bool = True) -> "ESCPOSBuilder":
        """Feed the content past the cutter, then cut."""
        self.feed(self.CUT_FEED_LINES)
        self._buffer.extend(self.CUT_PARTIAL if partial else self.CUT_FULL)
        return self

    # Build output

    def build(self) -> bytes:
        """Build and return the command buffer."""
        return bytes(self._buffer)

    def __bytes__(self) -> bytes:
        """Allow bytes() conversion."""
        return self.build()

    def __len__(self) -> int:
        """Return buffer length."""
        return len(self._buffer)


def split_lines(content: str) -> list:
    """Split on both \\n and \\r\\n line endings."""
    return LINE_SPLIT.split(content)


def build_receipt(content: str, options: Optional[PrintOptions] = None,
                  defaults: Optional[PrintDefaults] = None) -> bytes:
    """Build a text receipt.

    Options override defaults field by field. The merged encoding applies to
    the whole receipt.
    """
    options = options or PrintOptions()
    defaults = defaults or PrintDefaults()

    def merged(name: str, default_name: Optional[str] = None):
        value = getattr(options, name)
        return value if value is not None else getattr(defaults, default_name or name)

    encoding = merged("encoding")
    bold = bool(merged("bold"))

    builder = ESCPOSBuilder(encoding)
    (builder.initialize()
        .codepage(encoding)
        .align(merged("alignment"))
        .font_size(merged("font_size")))

    if bold:
        builder.bold(True)

    for text in split_lines(content):
        builder.line(text)

    if bold:
        builder.bold(False)

    if merged("cut_paper", "paper_cut"):
        builder.cut()

    return builder.build()


def build_test_page(printer_name: str, now: Optional[datetime] = None) -> bytes:
    """Build the fixed diagnostic page. Only the timestamp varies between runs."""
    timestamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")

    builder = ESCPOSBuilder()
    (builder.initialize()
        .codepage("CP866")
        .align("center")
        .separator("=", 32)
        .font_size("large")
        .line("PRINTPROXY TEST")
        .font_size("normal")
        .separator("=", 32)
        .newline()
        .align("left")
        .line(f"Printer: {printer_name}")
        .line(f"Time: {timestamp}")
        .line("Status: OK")
        .newline()
        .align("center")
        .line("Hello World!")
        .line("Привет Мир!")
        .newline()
        .separator("=", 32)
        .cut())

    return builder.build()
