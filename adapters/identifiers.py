from __future__ import annotations

import re
from typing import Any

from adapters.errors import ValidationError


IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


def is_valid_identifier(name: Any) -> bool:
    return isinstance(name, str) and bool(IDENTIFIER_PATTERN.match(name))


def validate_identifier(name: Any, kind: str = "table") -> str:
    if not is_valid_identifier(name):
        raise ValidationError(f"Invalid {kind} name", details=f"{kind} names must match {IDENTIFIER_PATTERN.pattern}")
    return name
