"""Tests for the ESC/POS encoder."""
from datetime import datetime

from printproxy.config import PrintDefaults
from printproxy.models import PrintOptions
from printproxy.printer.escpos import ESCPOSBuilder, build_receipt, build_test_page, split_lines

B = ESCPOSBuilder
FEED_AND_CUT = B.FEED_LINES + bytes([3]) + B.CUT_PARTIAL


class TestBuildReceipt:

    def test_centered_receipt_layout(self):
        options = PrintOptions(alignment="center", cut_paper=True, encoding="CP866")
        data = build_receipt("Hello\nWorld", options)
        assert data == (
            B.INIT + B.CODEPAGE_CP866 + B.ALIGN_CENTER
            + B.SIZE_NORMAL + B.SMALL_FONT_OFF
            + b"Hello\nWorld\n"
            + FEED_AND_CUT
        )

    def test_mixed_line_endings_give_three_lines(self):
        data = build_receipt("A\nB\r\nC", PrintOptions(cut_paper=False))
        assert data.endswith(b"A\nB\nC\n")
        assert b"\r" not in data

    def test_no_cut_when_disabled(self):
        data = build_receipt("Hello", PrintOptions(cut_paper=False))
        assert B.CUT_PARTIAL not in data
        assert data.endswith(b"Hello\n")

    def test_cut_follows_defaults(self):
        data = build_receipt("Hello", None, PrintDefaults(paper_cut=False))
        assert not data.endswith(B.CUT_PARTIAL)
        assert build_receipt("Hello").endswith(FEED_AND_CUT)

    def test_bold_is_reset_after_content(self):
        data = build_receipt("Total", PrintOptions(bold=True, cut_paper=False))
        assert data.endswith(B.BOLD_ON + b"Total\n" + B.BOLD_OFF)

    def test_large_and_small_fonts(self):
        large = build_receipt("x", PrintOptions(font_size="large", cut_paper=False))
        small = build_receipt("x", PrintOptions(font_size="small", cut_paper=False))
        assert B.SIZE_LARGE + B.SMALL_FONT_OFF in large
        assert B.SMALL_FONT_ON in small
        assert B.SIZE_LARGE not in small

    def test_cyrillic_in_cp866(self):
        data = build_receipt("Привет", PrintOptions(cut_paper=False))
        assert "Привет".encode("cp866") in data

    def test_windows_1251(self):
        data = build_receipt("Привет", PrintOptions(encoding="windows-1251", cut_paper=False))
        assert data.startswith(B.INIT + B.CODEPAGE_WIN1251)
        assert "Привет".encode("cp1251") in data

    def test_utf8_has_no_codepage_command(self):
        data = build_receipt("Hi", PrintOptions(encoding="UTF-8", cut_paper=False))
        assert data.startswith(B.INIT + B.ALIGN_LEFT)

    def test_unknown_encoding_falls_back_to_cp866(self, caplog):
        data = build_receipt("Привет", PrintOptions(encoding="KLINGON", cut_paper=False))
        assert data.startswith(B.INIT + B.CODEPAGE_CP866)
        assert "Привет".encode("cp866") in data
        assert "Unknown encoding" in caplog.text

    def test_unencodable_characters_are_replaced(self):
        data = build_receipt("snow ☃", PrintOptions(cut_paper=False))
        assert b"snow ?" in data

    def test_options_override_defaults(self):
        defaults = PrintDefaults(alignment="right", font_size="large")
        data = build_receipt("x", PrintOptions(alignment="left"), defaults)
        assert B.ALIGN_LEFT + B.SIZE_LARGE in data


def test_split_lines():
    assert split_lines("A\nB\r\nC") == ["A", "B", "C"]
    assert split_lines("single") == ["single"]


def test_feed_is_clamped():
    assert B().feed(300).build() == B.FEED_LINES + bytes([255])
    assert B().feed(-1).build() == B.FEED_LINES + bytes([0])


def test_builder_len_and_reset():
    builder = B().initialize().line("abc")
    assert len(builder) == len(B.INIT) + 4
    assert bytes(builder.reset()) == b""


class TestTestPage:

    def test_is_deterministic_for_fixed_time(self):
        now = datetime(2024, 1, 2, 3, 4, 5)
        assert build_test_page("Kitchen", now) == build_test_page("Kitchen", now)

    def test_contents(self):
        data = build_test_page("Kitchen", datetime(2024, 1, 2, 3, 4, 5))
        assert data.startswith(B.INIT + B.CODEPAGE_CP866 + B.ALIGN_CENTER)
        assert b"Printer: Kitchen\n" in data
        assert b"Time: 2024-01-02 03:04:05\n" in data
        assert "Привет Мир!".encode("cp866") in data
        assert data.count(b"=" * 32) == 3
        assert data.endswith(FEED_AND_CUT)
