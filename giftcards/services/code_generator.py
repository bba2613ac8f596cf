"""
Code Generator - Formatted gift card codes.

Codes are 16 characters from A-Z0-9 shown as XXXX-XXXX-XXXX-XXXX.
Uniqueness is enforced by the card store, not here.
"""

import re
import secrets
from random import Random

CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
CODE_LENGTH = 16
GROUP_SIZE = 4
SEPARATOR = "-"

CANONICAL_CODE_PATTERN = re.compile(r"^[A-Z0-9]{4}(-[A-Z0-9]{4}){3}$")
_STRIP_PATTERN = re.compile(r"[\s\-_]+")


def format_code(raw: str) -> str:
    """Group 16 characters as XXXX-XXXX-XXXX-XXXX."""
    return SEPARATOR.join(raw[i : i + GROUP_SIZE] for i in range(0, len(raw), GROUP_SIZE))


def normalize_code(raw: str) -> str:
    """
    Normalize user input to the canonical display form.

    Strips whitespace and separators and uppercases. Input that does not
    reduce to 16 alphanumerics is returned stripped so it matches no card.
    """
    compact = _STRIP_PATTERN.sub("", raw.strip()).upper()
    if len(compact) == CODE_LENGTH and compact.isascii() and compact.isalnum():
        return format_code(compact)
    return compact


def mask_code(code: str) -> str:
    """Mask all but the last group, for logs."""
    return f"****-****-****-{code[-GROUP_SIZE:]}"


class CodeGenerator:
    """Produces random formatted codes from an injectable entropy source."""

    def __init__(self, rng: Random | None = None) -> None:
        self._rng = rng if rng is not None else secrets.SystemRandom()

    def generate(self) -> str:
        raw = "".join(self._rng.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
        return format_code(raw)
