# -*- coding: utf-8 -*-
"""Secure random credential generation.

Every generator draws from the operating system's cryptographic source via
``secrets``. None of them re-sample; the output length is exact for every call.
"""

import base64
import secrets
import string
import time
import uuid
from enum import Enum

from .exceptions import UnsupportedCharset, UnsupportedGuidFormat, InvalidPasswordLength, \
    RandomSourceError

ALPHANUMERIC = string.ascii_lowercase + string.ascii_uppercase + string.digits
ASCII_PRINTABLE = ALPHANUMERIC + "!@#$%^&*()-_=+[]{}|;:,.<>?/"

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


class PasswordCharset(Enum):
    ALPHANUMERIC = "alphanumeric"
    ASCII_PRINTABLE = "ascii-printable"
    HEX = "hex"
    BASE64 = "base64"

    @classmethod
    def parse(cls, value, default=None):
        """Map a raw charset string onto the enum, empty means ``default`` (hex if unset)."""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.parse(default) if default else cls.HEX
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedCharset(value, [c.value for c in cls]) from None


class GuidFormat(Enum):
    UUIDV4 = "uuidv4"
    UUIDV7 = "uuidv7"
    SHORT_UUID = "short-uuid"

    @classmethod
    def parse(cls, value, default=None):
        """Map a raw format string onto the enum, empty means ``default`` (uuidv4 if unset)."""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.parse(default) if default else cls.UUIDV4
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedGuidFormat(value, [f.value for f in cls]) from None


def _random_bytes(n):
    try:
        return secrets.token_bytes(n)
    except (OSError, NotImplementedError) as e:
        raise RandomSourceError(e) from e


def _choose(alphabet, n):
    try:
        return "".join(secrets.choice(alphabet) for _ in range(n))
    except (OSError, NotImplementedError) as e:
        raise RandomSourceError(e) from e


def alphanumeric(n):
    return _choose(ALPHANUMERIC, n)


def ascii_printable(n):
    return _choose(ASCII_PRINTABLE, n)


def hex_password(n):
    # odd lengths drop the final hex digit rather than drawing again
    return _random_bytes((n + 1) // 2).hex()[:n]


def base64_password(n):
    raw = _random_bytes((n * 3 + 3) // 4)
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")[:n]


def _format_uuid(raw, version):
    raw = bytearray(raw)
    raw[6] = (raw[6] & 0x0F) | (version << 4)
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def uuidv4():
    return _format_uuid(_random_bytes(16), 4)


def uuidv7(now=None):
    """
    Time ordered UUID, the leading 48 bits hold Unix time in milliseconds.

    :param now: optional Unix time in seconds, defaults to the current time
    :return: textual UUID
    """
    if now is None:
        now = time.time()
    millis = int(now * 1000) & 0xFFFFFFFFFFFF
    return _format_uuid(millis.to_bytes(6, "big") + _random_bytes(10), 7)


def short_uuid():
    """Opaque 128 bit token, URL-safe base64 without padding (22 characters)."""
    return base64.urlsafe_b64encode(_random_bytes(16)).rstrip(b"=").decode("ascii")


_PASSWORD_GENERATORS = {
    PasswordCharset.ALPHANUMERIC: alphanumeric,
    PasswordCharset.ASCII_PRINTABLE: ascii_printable,
    PasswordCharset.HEX: hex_password,
    PasswordCharset.BASE64: base64_password,
}

_GUID_GENERATORS = {
    GuidFormat.UUIDV4: uuidv4,
    GuidFormat.UUIDV7: uuidv7,
    GuidFormat.SHORT_UUID: short_uuid,
}


def validate_password_length(length):
    if not isinstance(length, int) or isinstance(length, bool) or \
            not MIN_PASSWORD_LENGTH <= length <= MAX_PASSWORD_LENGTH:
        raise InvalidPasswordLength(length, MIN_PASSWORD_LENGTH, MAX_PASSWORD_LENGTH)
    return length


def generate_password(length, charset):
    """Generate a password of exactly ``length`` characters from ``charset``.

    Args:
        length (int): number of characters, between 8 and 128.
        charset (PasswordCharset or str): the alphabet/encoding to use.

    Returns:
        str: the new password.

    Raises:
        InvalidPasswordLength: length outside the allowed range.
        UnsupportedCharset: an unknown charset string.
        RandomSourceError: the secure random source failed.
    """
    return _PASSWORD_GENERATORS[PasswordCharset.parse(charset)](validate_password_length(length))


def generate_guid(guid_format):
    return _GUID_GENERATORS[GuidFormat.parse(guid_format)]()
