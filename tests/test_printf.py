import pytest

from melemu.printf import FormatError, cformat, cprintf, snformat, vformat


def test_plain_text_passes_through():
    assert vformat("no conversions here", []) == "no conversions here"


@pytest.mark.parametrize("value", [0, 1, -1, 42, -2147483648, 2147483647])
def test_decimal(value):
    assert cformat("%d", value) == str(value)
    assert cformat("%i", value) == str(value)


def test_int_wraps_to_32_bits():
    assert cformat("%d", 2**32 + 5) == str(5)


def test_lower_case_hex_prints_upper_case():
    assert cformat("%x", 0xABC) == format(0xABC, "X")


def test_zero_padded_hex():
    assert cformat("%08X", 0x1F) == format(0x1F, "08X")


def test_width():
    assert cformat("%5d", 42) == format(42, "5d")


def test_octal_and_unsigned():
    assert cformat("%o", 511) == format(511, "o")
    assert cformat("%u", -1) == str(2**32 - 1)


def test_char_length_modifier():
    assert cformat("%hhd", 255) == "-1"


def test_short_length_modifier():
    assert cformat("%hu", 0x12345) == str(0x2345)


def test_long_long():
    assert cformat("%lld", -(2**40)) == str(-(2**40))
    assert cformat("%llu", 2**63) == str(2**63)


def test_size_and_pointer():
    assert cformat("%zu", 1234) == str(1234)
    assert cformat("%p", 0xDEADBEEF) == format(0xDEADBEEF, "X")


def test_plus_flag():
    assert cformat("%+d", 7) == "+7"


def test_left_justify_flag_is_ignored():
    assert cformat("%-4d", 3) == "3".rjust(4)


def test_star_width():
    assert cformat("%*d", 6, 3) == "3".rjust(6)


def test_star_precision_consumes_argument():
    assert cformat("%.*d|%d", 5, 7, 8) == "7|8"


def test_string_and_char():
    assert cformat("[%s:%c]", "abc", 65) == "[abc:" + chr(65) + "]"


def test_percent_literal():
    assert cformat("%%") == "%"


def test_mixed_text():
    assert cformat("a=%d b=%s", 1, "two") == "a=" + str(1) + " b=two"


@pytest.mark.parametrize("fmt", ["%.2d", "%n", "%Lf", "%q", "%hs", "%lc"])
def test_rejected_formats(fmt):
    with pytest.raises(FormatError):
        cformat(fmt, 1)


def test_missing_argument():
    with pytest.raises(FormatError):
        cformat("%d %d", 1)


def test_wrong_argument_type():
    with pytest.raises(FormatError):
        cformat("%d", "x")
    with pytest.raises(FormatError):
        cformat("%s", 5)


def test_width_too_large_for_number_buffer():
    with pytest.raises(FormatError):
        cformat("%40x", 1)


def test_snformat_truncates():
    assert snformat(5, "%s", "abcdefgh") == "abcdefgh"[:4]
    assert snformat(100, "%d", 12) == str(12)


def test_snformat_rejects_empty_buffer():
    with pytest.raises(ValueError):
        snformat(0, "x")


def test_cprintf_writes_stderr(capsys):
    count = cprintf("v=%d\n", 9)
    err = capsys.readouterr().err
    assert err == "v=" + str(9) + "\n"
    assert count == len(err)