"""Australian business identifier checks used by business profiles."""

import re

ABN_WEIGHTS = (10, 1, 3, 5, 7, 9, 11, 13, 15, 17, 19)

_WHITESPACE = re.compile(r"\s")
_BSB_SEPARATORS = re.compile(r"[-\s]")


def validate_abn(abn: str) -> bool:
    """Return whether ``abn`` is a valid 11 digit ABN.

    Spaces are ignored. The first digit is reduced by one, every digit is
    multiplied by its weight and the sum must be divisible by 89.
    """
    cleaned = _WHITESPACE.sub("", abn)
    if len(cleaned) != 11 or not cleaned.isascii() or not cleaned.isdigit():
        return False

    digits = [int(c) for c in cleaned]
    digits[0] -= 1
    return sum(d * w for d, w in zip(digits, ABN_WEIGHTS)) % 89 == 0


def format_abn(abn: str) -> str:
    """Format an ABN as ``XX XXX XXX XXX``. Other input comes back unspaced."""
    cleaned = _WHITESPACE.sub("", abn)
    if len(cleaned) != 11:
        return cleaned
    return f"{cleaned[:2]} {cleaned[2:5]} {cleaned[5:8]} {cleaned[8:]}"


def validate_bsb(bsb: str) -> bool:
    cleaned = _BSB_SEPARATORS.sub("", bsb)
    return len(cleaned) == 6 and cleaned.isascii() and cleaned.isdigit()


def format_bsb(bsb: str) -> str:
    """Format a BSB as ``XXX-XXX``."""
    cleaned = _BSB_SEPARATORS.sub("", bsb)
    if len(cleaned) != 6:
        return cleaned
    return f"{cleaned[:3]}-{cleaned[3:]}"
