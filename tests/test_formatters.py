from decimal import Decimal

from formatters import (
    format_decimal_br,
    format_price,
    extract_phone_digits,
    format_phone,
    hex_to_hsl,
    build_theme_styles,
    is_valid_hex_color,
    to_decimal,
)


def test_format_price():
    assert format_price(Decimal("1234.5")) == "R$ 1.234,50"
    assert format_price(0) == "R$ 0,00"
    assert format_price(-5) == "-R$ 5,00"
    assert format_decimal_br("1000000") == "1.000.000,00"


def test_phone_digits_and_mask():
    assert extract_phone_digits("(11) 98765-4321") == "11987654321"
    assert extract_phone_digits("+55 11 98765-4321") == "55119876543"
    assert extract_phone_digits(None) == ""
    assert extract_phone_digits(11987654321) == "11987654321"
    assert format_phone("11987654321") == "(11) 98765-4321"
    assert format_phone("1134567890") == "(11) 3456-7890"
    assert format_phone("119") == "(11) 9"


def test_hex_to_hsl():
    assert hex_to_hsl("#ff0000") == "0 100% 50%"
    assert hex_to_hsl("00ff00") == "120 100% 50%"
    assert hex_to_hsl("#0000FF") == "240 100% 50%"
    assert hex_to_hsl("#ffffff") == "0 0% 100%"
    assert hex_to_hsl("zzz") == "0 0% 0%"


def test_theme_styles_default_colors():
    styles = build_theme_styles()
    assert styles["--primary"] == hex_to_hsl("#ea580c")
    assert styles["--secondary"] == hex_to_hsl("#1e293b")
    assert styles["--ring"] == styles["--primary"]
    assert len(styles) == 7


def test_hex_validation():
    assert is_valid_hex_color("#AABBCC")
    assert not is_valid_hex_color("#abc")
    assert not is_valid_hex_color(None)


def test_to_decimal():
    assert to_decimal("10,5") == Decimal("10.5")
    assert to_decimal("", Decimal("0")) == Decimal("0")
    assert to_decimal("abc", 0) == 0
    assert to_decimal("NaN") is None
    assert to_decimal(" 7.50 ") == Decimal("7.50")
