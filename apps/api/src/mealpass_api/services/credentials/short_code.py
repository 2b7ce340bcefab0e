"""Human-typeable short codes printed under each kiosk QR."""

from __future__ import annotations

import re
import secrets

# 32 symbols without 0/O/1/I; 256 % 32 == 0 so ``byte % 32`` is unbiased.
ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
BITS_PER_SYMBOL = 5
MIN_LENGTH = 8
MAX_LENGTH = 12
DEFAULT_LENGTH = 10

_VALID_PATTERN = re.compile(rf"^[{ALPHABET}]{{{MIN_LENGTH},{MAX_LENGTH}}}$")


def generate_short_code(length: int = DEFAULT_LENGTH) -> str:
    """Return ``length`` random symbols (``length * 5`` bits of entropy)."""

    if length < MIN_LENGTH or length > MAX_LENGTH:
        raise ValueError(f"short code length must be between {MIN_LENGTH} and {MAX_LENGTH}")
    raw = secrets.token_bytes(length)
    return "".join(ALPHABET[byte % len(ALPHABET)] for byte in raw)


def format_short_code(code: str) -> str:
    """Group a code into blocks of four for display, e.g. ``3K7P-9WXR-QZ``."""

    return "-".join(code[index : index + 4] for index in range(0, len(code), 4)) or code


def normalize_short_code(code: str) -> str:
    return re.sub(r"[\s-]", "", code).upper()


def is_valid_short_code(code: str) -> bool:
    return bool(_VALID_PATTERN.match(normalize_short_code(code)))


__all__ = [
    "ALPHABET",
    "BITS_PER_SYMBOL",
    "DEFAULT_LENGTH",
    "format_short_code",
    "generate_short_code",
    "is_valid_short_code",
    "normalize_short_code",
]
