from __future__ import annotations

import base64
import hashlib
import re
from datetime import date


NIP_WEIGHTS = (6, 5, 7, 2, 3, 4, 5, 6, 7)
KSEF_NUMBER_LENGTH = 35
_KSEF_NUMBER_RE = re.compile(r"^(\d{10})-(\d{8})-([0-9A-F]{12})-([0-9A-F]{2})$")
_NIP_SEPARATORS_RE = re.compile(r"[\s-]")


def normalize_nip(value: str) -> str:
    """Strip spaces, dashes and an optional ``PL`` prefix."""

    cleaned = _NIP_SEPARATORS_RE.sub("", value.strip())
    if cleaned.upper().startswith("PL"):
        cleaned = cleaned[2:]
    return cleaned


def is_valid_nip(value: str | None) -> bool:
    if not value:
        return False
    nip = normalize_nip(value)
    if len(nip) != 10 or not nip.isdigit():
        return False
    checksum = sum(int(digit) * weight for digit, weight in zip(nip[:9], NIP_WEIGHTS)) % 11
    if checksum == 10:
        return False
    return checksum == int(nip[9])


def crc8(data: bytes, *, polynomial: int = 0x31, initial: int = 0x00) -> int:
    crc = initial
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 0x80:
                crc = ((crc << 1) ^ polynomial) & 0xFF
            else:
                crc = (crc << 1) & 0xFF
    return crc


def ksef_number_checksum(prefix: str) -> str:
    return format(crc8(prefix.encode("ascii")), "02X")


def is_valid_ksef_number(value: str | None) -> bool:
    """Check the ``NIP-YYYYMMDD-HEX12-CRC`` layout, the issue date and the CRC-8 suffix."""

    if not value or len(value) != KSEF_NUMBER_LENGTH:
        return False
    match = _KSEF_NUMBER_RE.match(value)
    if match is None:
        return False
    nip, day, _, checksum = match.groups()
    if not is_valid_nip(nip):
        return False
    try:
        date(int(day[:4]), int(day[4:6]), int(day[6:8]))
    except ValueError:
        return False
    return ksef_number_checksum(value[:32]) == checksum


def build_ksef_number(nip: str, issued_on: date, unique_part: str) -> str:
    prefix = f"{normalize_nip(nip)}-{issued_on.strftime('%Y%m%d')}-{unique_part.upper()}"
    return f"{prefix}-{ksef_number_checksum(prefix)}"


def sha256_base64url(content: bytes | str) -> str:
    """SHA-256 digest in unpadded base64url, the form KSeF uses in verification links."""

    raw = content.encode("utf-8") if isinstance(content, str) else content
    digest = hashlib.sha256(raw).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
