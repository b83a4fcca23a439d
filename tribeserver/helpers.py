"""Small conversion helpers: tokens, integer parsing, invoices and dates."""

from __future__ import annotations

import base64
import datetime as _dt
import logging
import re
import secrets

logger = logging.getLogger(__name__)

_UINT_RE = re.compile(r"[0-9]+")
_INT_RE = re.compile(r"[+-]?[0-9]+")

_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BECH32_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_CHECKSUM_LENGTH = 6
_TIMESTAMP_GROUPS = 7
_SIGNATURE_GROUPS = 104
_KNOWN_CURRENCIES = frozenset({"bc", "tb", "bcrt", "sb", "tbs"})
_HRP_RE = re.compile(r"ln([a-z]+?)(?:([0-9]+)([munp]?))?")
_MSAT_PER_UNIT = {
    "": 100_000_000_000,
    "m": 100_000_000,
    "u": 100_000,
    "n": 100,
}


class InvoiceDecodeError(ValueError):
    """Raised when a payment request cannot be decoded."""


def get_random_token(length: int) -> str:
    """A random base32 token cut to the given length (at most 56 characters)."""
    encoded = base64.b32encode(secrets.token_bytes(32)).decode("ascii")
    if length < 0 or length > len(encoded):
        raise ValueError(f"token length must be between 0 and {len(encoded)}")
    return encoded[:length]


def convert_string_to_uint(number: str) -> int:
    """Parse a base-10 unsigned 32-bit integer; raises ValueError otherwise."""
    if not _UINT_RE.fullmatch(number):
        raise ValueError(f"could not parse {number!r} as an unsigned integer")
    value = int(number)
    if value > 0xFFFFFFFF:
        raise ValueError(f"{number!r} is out of range")
    return value


def convert_string_to_int(number: str) -> int:
    """Parse a base-10 signed 32-bit integer; raises ValueError otherwise."""
    if not _INT_RE.fullmatch(number):
        raise ValueError(f"could not parse {number!r} as an integer")
    value = int(number)
    if not -(2**31) <= value <= 2**31 - 1:
        raise ValueError(f"{number!r} is out of range")
    return value


def _polymod(values: list[int]) -> int:
    checksum = 1
    for value in values:
        top = checksum >> 25
        checksum = (checksum & 0x1FFFFFF) << 5 ^ value
        for bit, generator in enumerate(_BECH32_GENERATORS):
            if (top >> bit) & 1:
                checksum ^= generator
    return checksum


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _bech32_decode(text: str) -> tuple[str, list[int]]:
    if text != text.lower() and text != text.upper():
        raise InvoiceDecodeError("mixed case in payment request")
    text = text.lower()
    separator = text.rfind("1")
    if separator < 1 or separator + _CHECKSUM_LENGTH + 1 > len(text):
        raise InvoiceDecodeError("invalid separator position")
    hrp = text[:separator]
    if any(not 33 <= ord(c) <= 126 for c in hrp):
        raise InvoiceDecodeError("invalid character in human-readable part")
    try:
        data = [_BECH32_CHARSET.index(c) for c in text[separator + 1 :]]
    except ValueError as exc:
        raise InvoiceDecodeError("invalid character in data part") from exc
    if _polymod(_hrp_expand(hrp) + data) != 1:
        raise InvoiceDecodeError("invalid checksum")
    return hrp, data[:-_CHECKSUM_LENGTH]


def decode_invoice_msat(payment_request: str) -> int:
    """The amount in millisatoshis encoded in a BOLT 11 payment request."""
    hrp, data = _bech32_decode(payment_request)
    if len(data) < _TIMESTAMP_GROUPS + _SIGNATURE_GROUPS:
        raise InvoiceDecodeError("payment request is too short")
    match = _HRP_RE.fullmatch(hrp)
    if match is None:
        raise InvoiceDecodeError(f"invalid prefix {hrp!r}")
    currency, amount, multiplier = match.groups()
    if currency not in _KNOWN_CURRENCIES:
        raise InvoiceDecodeError(f"unknown currency {currency!r}")
    if amount is None:
        return 0
    value = int(amount)
    if multiplier == "p":
        if value % 10:
            raise InvoiceDecodeError("pico amount is not a whole millisatoshi")
        return value // 10
    return value * _MSAT_PER_UNIT[multiplier]


def get_invoice_amount(payment_request: str) -> int:
    """The amount in satoshis of a payment request, or 0 if it cannot be decoded."""
    try:
        msat = decode_invoice_msat(payment_request)
    except InvoiceDecodeError as exc:
        logger.warning("could not decode invoice: %s", exc)
        return 0
    return msat // 1000


def get_date_days_difference(created_date: int, paid_date: _dt.datetime) -> int:
    """Whole days from a Unix timestamp to a datetime, truncated toward zero."""
    return int((paid_date.timestamp() - created_date) / 86400)