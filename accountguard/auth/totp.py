"""
TOTP (Time-based One-Time Password) Implementation

Implements RFC 6238 TOTP (on top of RFC 4226 HOTP) for two-factor
authentication.

Features:
- TOTP code generation and verification
- Time drift tolerance (+/- 1 step by default)
- Matched time step reported back so callers can refuse replays
- otpauth:// provisioning URI and QR code rendering

Compatible with Google Authenticator, Authy, Microsoft Authenticator and
any other RFC 6238 authenticator.
"""

import base64
import hashlib
import hmac
import io
import struct
import secrets
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import qrcode
import qrcode.image.svg
from qrcode.constants import ERROR_CORRECT_M


# TOTP configuration (RFC 6238 defaults)
TOTP_DIGITS = 6           # Number of digits in OTP
TOTP_TIME_STEP = 30       # Time step in seconds
TOTP_SECRET_BYTES = 20    # Secret key length (160 bits for SHA-1)
TOTP_ALGORITHM = 'SHA1'   # Hash algorithm
TOTP_DRIFT_TOLERANCE = 1  # Accept codes from +/- this many time steps

_HASHES = {
    'SHA1': hashlib.sha1,
    'SHA256': hashlib.sha256,
    'SHA512': hashlib.sha512,
}


def generate_secret(length: int = TOTP_SECRET_BYTES) -> bytes:
    """Cryptographically secure random TOTP secret."""
    return secrets.token_bytes(length)


def secret_to_base32(secret: bytes) -> str:
    """Encode a secret as unpadded base32 (the form authenticator apps use)."""
    return base64.b32encode(secret).decode('ascii').rstrip('=')


def base32_to_secret(encoded: str) -> bytes:
    """
    Decode a base32 secret, tolerating missing padding, spaces and case.

    Raises:
        ValueError: if the string is not valid base32
    """
    cleaned = encoded.replace(' ', '').upper()
    padding = -len(cleaned) % 8
    try:
        return base64.b32decode(cleaned + '=' * padding)
    except (ValueError, TypeError) as exc:
        raise ValueError("invalid base32 secret") from exc


def get_time_counter(timestamp: Optional[float] = None,
                     time_step: int = TOTP_TIME_STEP) -> int:
    """Time counter T = floor(unix_time / time_step)."""
    if timestamp is None:
        timestamp = time.time()
    return int(timestamp) // time_step


def hotp(secret: bytes, counter: int, digits: int = TOTP_DIGITS,
         algorithm: str = TOTP_ALGORITHM) -> str:
    """
    HOTP value for ``counter`` (RFC 4226).

    Args:
        secret: Shared secret key
        counter: 8-byte counter value
        digits: Number of digits in the OTP
        algorithm: SHA1, SHA256 or SHA512

    Returns:
        Zero-padded OTP string
    """
    counter_bytes = struct.pack('>Q', counter)
    hash_algo = _HASHES.get(algorithm.upper(), hashlib.sha1)
    hmac_hash = hmac.new(secret, counter_bytes, hash_algo).digest()

    # Dynamic truncation: offset from the low 4 bits of the last byte
    offset = hmac_hash[-1] & 0x0F
    truncated = struct.unpack('>I', hmac_hash[offset:offset + 4])[0] & 0x7FFFFFFF

    return str(truncated % (10 ** digits)).zfill(digits)


def totp(secret: bytes, timestamp: Optional[float] = None,
         digits: int = TOTP_DIGITS,
         time_step: int = TOTP_TIME_STEP,
         algorithm: str = TOTP_ALGORITHM) -> str:
    """TOTP value for ``timestamp`` (RFC 6238)."""
    return hotp(secret, get_time_counter(timestamp, time_step), digits, algorithm)


def normalize_code(code) -> str:
    """Strip whitespace and separators users type between digit groups."""
    return str(code).replace(' ', '').replace('-', '').strip()


def match_totp_step(secret: bytes, code: str,
                    timestamp: Optional[float] = None,
                    digits: int = TOTP_DIGITS,
                    time_step: int = TOTP_TIME_STEP,
                    algorithm: str = TOTP_ALGORITHM,
                    drift_tolerance: int = TOTP_DRIFT_TOLERANCE) -> Optional[int]:
    """
    Find the time step a code belongs to.

    Every step in the drift window is compared in constant time and the
    loop does not stop early, so timing does not reveal which step (if
    any) matched.

    Returns:
        The matching time counter, or None if the code is invalid
    """
    code = normalize_code(code)
    if len(code) != digits or not (code.isascii() and code.isdigit()):
        return None

    current = get_time_counter(timestamp, time_step)
    matched = None
    for offset in range(-drift_tolerance, drift_tolerance + 1):
        counter = current + offset
        expected = hotp(secret, counter, digits, algorithm)
        if hmac.compare_digest(code, expected) and matched is None:
            matched = counter
    return matched


def verify_totp(secret: bytes, code: str,
                timestamp: Optional[float] = None,
                digits: int = TOTP_DIGITS,
                time_step: int = TOTP_TIME_STEP,
                algorithm: str = TOTP_ALGORITHM,
                drift_tolerance: int = TOTP_DRIFT_TOLERANCE) -> bool:
    """True if ``code`` is valid within the drift window."""
    return match_totp_step(secret, code, timestamp, digits, time_step,
                           algorithm, drift_tolerance) is not None


def get_remaining_seconds(timestamp: Optional[float] = None,
                          time_step: int = TOTP_TIME_STEP) -> int:
    """Seconds until the next code."""
    if timestamp is None:
        timestamp = time.time()
    return time_step - (int(timestamp) % time_step)


def build_provisioning_uri(secret: bytes, account_name: str, issuer: str,
                           digits: int = TOTP_DIGITS,
                           time_step: int = TOTP_TIME_STEP,
                           algorithm: str = TOTP_ALGORITHM) -> str:
    """
    otpauth:// URI for authenticator apps (Key URI Format).
    """
    label = f"{issuer}:{account_name}"
    params = {
        'secret': secret_to_base32(secret),
        'issuer': issuer,
        'algorithm': algorithm,
        'digits': str(digits),
        'period': str(time_step),
    }
    param_str = '&'.join(f"{k}={quote(str(v))}" for k, v in params.items())
    return f"otpauth://totp/{quote(label)}?{param_str}"


@dataclass(frozen=True)
class ProvisioningDisplay:
    """Renderable enrollment artifact derived from a provisioning URI."""
    uri: str

    def _qr(self) -> qrcode.QRCode:
        qr = qrcode.QRCode(
            version=None,
            error_correction=ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(self.uri)
        qr.make(fit=True)
        return qr

    def svg(self) -> bytes:
        """QR code as an SVG document."""
        image = self._qr().make_image(image_factory=qrcode.image.svg.SvgPathImage)
        buffer = io.BytesIO()
        image.save(buffer)
        return buffer.getvalue()

    def data_url(self) -> str:
        """QR code as a data: URL the UI can drop into an <img> tag."""
        encoded = base64.b64encode(self.svg()).decode('ascii')
        return f"data:image/svg+xml;base64,{encoded}"

    def ascii(self) -> str:
        """QR code drawn with text characters (terminals, demos)."""
        out = io.StringIO()
        self._qr().print_ascii(out=out)
        return out.getvalue()


class TOTPGenerator:
    """
    TOTP generator and verifier for one secret.

    Example:
        >>> gen = TOTPGenerator()
        >>> gen.verify(gen.generate())
        True
    """

    def __init__(self, secret: Optional[bytes] = None,
                 digits: int = TOTP_DIGITS,
                 time_step: int = TOTP_TIME_STEP,
                 algorithm: str = TOTP_ALGORITHM,
                 drift_tolerance: int = TOTP_DRIFT_TOLERANCE):
        if digits not in (6, 8):
            raise ValueError("TOTP digits must be 6 or 8")
        if algorithm.upper() not in _HASHES:
            raise ValueError(f"unsupported TOTP algorithm: {algorithm}")
        self._secret = secret or generate_secret()
        self._digits = digits
        self._time_step = time_step
        self._algorithm = algorithm.upper()
        self._drift_tolerance = drift_tolerance

    @property
    def secret(self) -> bytes:
        return self._secret

    @property
    def secret_base32(self) -> str:
        return secret_to_base32(self._secret)

    @property
    def time_step(self) -> int:
        return self._time_step

    @property
    def digits(self) -> int:
        return self._digits

    def counter(self, timestamp: Optional[float] = None) -> int:
        return get_time_counter(timestamp, self._time_step)

    def generate(self, timestamp: Optional[float] = None) -> str:
        return totp(self._secret, timestamp, self._digits, self._time_step, self._algorithm)

    def match(self, code: str, timestamp: Optional[float] = None) -> Optional[int]:
        """Time step the code belongs to, or None."""
        return match_totp_step(self._secret, code, timestamp, self._digits,
                               self._time_step, self._algorithm, self._drift_tolerance)

    def verify(self, code: str, timestamp: Optional[float] = None) -> bool:
        return self.match(code, timestamp) is not None

    def provisioning_uri(self, account_name: str, issuer: str) -> str:
        return build_provisioning_uri(self._secret, account_name, issuer,
                                      self._digits, self._time_step, self._algorithm)

    def provisioning_display(self, account_name: str, issuer: str) -> ProvisioningDisplay:
        return ProvisioningDisplay(self.provisioning_uri(account_name, issuer))

    def remaining_seconds(self, timestamp: Optional[float] = None) -> int:
        return get_remaining_seconds(timestamp, self._time_step)

    def __repr__(self) -> str:
        return f"TOTPGenerator(digits={self._digits}, time_step={self._time_step})"
