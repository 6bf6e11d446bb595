"""Small string helpers."""

from __future__ import annotations

import os
import re

__all__ = ["split_string", "get_env_or_default", "parse_int_or_float"]

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_WS = r"[ \t\n\v\f\r]*"
_INT_RE = re.compile(_WS + r"[+-]?[0-9]+")
_DEC_RE = re.compile(_WS + r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_SPECIAL_RE = re.compile(
    _WS + r"[+-]?(?:inf(?:inity)?|nan(?:\([A-Za-z0-9_]*\))?)", re.IGNORECASE
)
_HEX_RE = re.compile(
    _WS + r"([+-]?)(0[xX](?:[0-9a-fA-F]+\.?[0-9a-fA-F]*|\.[0-9a-fA-F]+)(?:[pP][+-]?[0-9]+)?)"
)


def split_string(text: str, sep: str) -> list[str]:
    """Split ``text`` on ``sep``, dropping empty pieces."""
    return [piece for piece in text.split(sep) if piece]


def get_env_or_default(name: str, default: str) -> str:
    """Return the environment variable ``name``, or ``default`` if unset."""
    return os.environ.get(name, default)


def parse_int_or_float(text: str) -> int | float:
    """Parse ``text`` as a whole integer, else as a whole float.

    An empty string parses as the integer 0. Integers are clamped to the
    signed 64-bit range. Raises ValueError if neither form consumes the
    whole string.
    """
    if text == "":
        return 0
    if _INT_RE.fullmatch(text):
        return max(_INT64_MIN, min(_INT64_MAX, int(text.strip())))
    if _DEC_RE.fullmatch(text):
        return float(text.strip())
    special = _SPECIAL_RE.fullmatch(text)
    if special:
        body = text.strip().lower()
        sign = -1.0 if body.startswith("-") else 1.0
        body = body.lstrip("+-")
        return sign * (float("inf") if body.startswith("inf") else float("nan"))
    hexed = _HEX_RE.fullmatch(text)
    if hexed:
        sign, body = hexed.groups()
        if "p" not in body.lower():
            body += "p0"
        value = float.fromhex(body)
        return -value if sign == "-" else value
    raise ValueError(f"cannot parse {text!r} as an integer or a float")