from __future__ import annotations

import re
import secrets
import string
from typing import Callable

REDEMPTION_CODE_PATTERN = re.compile(r"[A-Z][0-9]{2}-[0-9]{3}")

CodeGenerator = Callable[[], str]


def generate_redemption_code() -> str:
    """Gera um código no formato A12-345 (letra, 2 dígitos, hífen, 3 dígitos)."""
    letter = secrets.choice(string.ascii_uppercase)
    head = secrets.randbelow(100)
    tail = secrets.randbelow(1000)
    return f"{letter}{head:02d}-{tail:03d}"


def is_valid_redemption_code(value: str | None) -> bool:
    if not isinstance(value, str):
        return False
    return REDEMPTION_CODE_PATTERN.fullmatch(value) is not None


def normalize_redemption_code(value: str | None) -> str:
    return (value or "").strip().upper()
