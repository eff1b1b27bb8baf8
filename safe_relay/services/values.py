"""Validation for call data and uint256 amounts taken from requests."""

from __future__ import annotations

import re

from ..core.errors import ValidationError

MAX_UINT256 = 2**256 - 1

_HEX_DATA_RE = re.compile(r"^0x(?:[0-9a-fA-F]{2})*$")


def require_hex_data(data: object, field: str = "data") -> str:
    """Return ``data`` if it is 0x-prefixed, even-length hex; raise ``ValidationError`` otherwise."""

    if not isinstance(data, str) or not _HEX_DATA_RE.fullmatch(data):
        raise ValidationError(f"{field} must be 0x-prefixed hex with an even number of digits")
    return data


def require_uint256(value: int, field: str = "value") -> int:
    if value < 0:
        raise ValidationError(f"{field} must not be negative")
    if value > MAX_UINT256:
        raise ValidationError(f"{field} does not fit in uint256")
    return value


__all__ = ["MAX_UINT256", "require_hex_data", "require_uint256"]
