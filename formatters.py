# formatters.py
import math
import re
from decimal import Decimal, InvalidOperation

from database import money


DEFAULT_PRIMARY_COLOR = "#ea580c"
DEFAULT_SECONDARY_COLOR = "#1e293b"

_HEX_RE = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)
_NON_DIGIT_RE = re.compile(r"\D")


def format_decimal_br(value) -> str:
    """pt-BR number with two decimals, e.g. ``1.234,56``."""
    whole = f"{money(value):,.2f}"
    return whole.replace(",", "_").replace(".", ",").replace("_", ".")


def format_price(value) -> str:
    amount = money(value)
    sign = "-" if amount < 0 else ""
    return f"{sign}R$ {format_decimal_br(abs(amount))}"


def extract_phone_digits(value) -> str:
    return _NON_DIGIT_RE.sub("", str(value) if value is not None else "")[:11]


def format_phone(value) -> str:
    digits = extract_phone_digits(value)
    if len(digits) <= 2:
        return digits
    if len(digits) <= 6:
        return f"({digits[:2]}) {digits[2:]}"
    if len(digits) <= 10:
        return f"({digits[:2]}) {digits[2:6]}-{digits[6:]}"
    return f"({digits[:2]}) {digits[2:7]}-{digits[7:]}"


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def hex_to_hsl(hex_color) -> str:
    m = _HEX_RE.match(hex_color or "")
    if not m:
        return "0 0% 0%"

    r, g, b = (int(part, 16) / 255 for part in m.groups())
    mx = max(r, g, b)
    mn = min(r, g, b)
    h = 0.0
    s = 0.0
    l = (mx + mn) / 2

    if mx != mn:
        d = mx - mn
        s = d / (2 - mx - mn) if l > 0.5 else d / (mx + mn)
        if mx == r:
            h = ((g - b) / d + (6 if g < b else 0)) / 6
        elif mx == g:
            h = ((b - r) / d + 2) / 6
        else:
            h = ((r - g) / d + 4) / 6

    return f"{_round_half_up(h * 360)} {_round_half_up(s * 100)}% {_round_half_up(l * 100)}%"


def build_theme_styles(primary_color=None, secondary_color=None):
    primary = hex_to_hsl(primary_color or DEFAULT_PRIMARY_COLOR)
    secondary = hex_to_hsl(secondary_color or DEFAULT_SECONDARY_COLOR)
    return {
        "--primary": primary,
        "--ring": primary,
        "--secondary": secondary,
        "--sidebar-primary": primary,
        "--sidebar-accent": secondary,
        "--store-primary": primary,
        "--store-secondary": secondary,
    }


def is_valid_hex_color(value) -> bool:
    return bool(_HEX_RE.match(value or ""))


def to_decimal(value, default=None):
    if value is None or value == "":
        return default
    try:
        amount = Decimal(str(value).strip().replace(",", "."))
    except InvalidOperation:
        return default
    return amount if amount.is_finite() else default
