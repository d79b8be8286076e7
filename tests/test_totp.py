"""
Unit tests for TOTP.

Tests:
- RFC 4226 HOTP and RFC 6238 TOTP test vectors
- Interoperability with pyotp
- Drift window and step matching
- Provisioning URI and QR rendering
"""

import pyotp
import pytest

from accountguard.auth.totp import (
    TOTP_DIGITS,
    TOTPGenerator,
    base32_to_secret,
    build_provisioning_uri,
    generate_secret,
    get_remaining_seconds,
    hotp,
    match_totp_step,
    secret_to_base32,
    totp,
    verify_totp,
)


RFC_SECRET = b"12345678901234567890"


class TestHOTP:
    """RFC 4226 Appendix D."""

    @pytest.mark.parametrize("counter,expected", [
        (0, "755224"),
        (1, "287082"),
        (2, "359152"),
        (3, "969429"),
        (4, "338314"),
        (5, "254676"),
        (6, "287922"),
        (7, "162583"),
        (8, "399871"),
        (9, "520489"),
    ])
    def test_rfc4226_vectors(self, counter, expected):
        assert hotp(RFC_SECRET, counter) == expected


class TestTOTP:
    """RFC 6238 Appendix B (SHA-1, 8 digits)."""

    @pytest.mark.parametrize("timestamp,expected", [
        (59, "94287082"),
        (1111111109, "07081804"),
        (1111111111, "14050471"),
        (1234567890, "89005924"),
        (2000000000, "69279037"),
    ])
    def test_rfc6238_vectors(self, timestamp, expected):
        assert totp(RFC_SECRET, timestamp, digits=8) == expected

    def test_default_digits(self):
        assert len(totp(generate_secret())) == TOTP_DIGITS

    def test_matches_pyotp(self):
        """Codes should agree with an independent implementation."""
        secret = generate_secret()
        reference = pyotp.TOTP(secret_to_base32(secret))
        for timestamp in (0, 59, 1_700_000_000, 1_700_000_029, 1_700_000_030):
            assert totp(secret, timestamp) == reference.at(timestamp)


class TestVerification:
    """Drift window and matched step."""

    def test_current_code(self):
        gen = TOTPGenerator()
        now = 1_700_000_000
        assert gen.match(gen.generate(now), now) == gen.counter(now)

    def test_previous_step_within_drift(self):
        gen = TOTPGenerator()
        now = 1_700_000_000
        assert gen.match(gen.generate(now - 30), now) == gen.counter(now) - 1

    def test_next_step_within_drift(self):
        gen = TOTPGenerator()
        now = 1_700_000_000
        assert gen.verify(gen.generate(now + 30), now)

    def test_outside_drift_rejected(self):
        gen = TOTPGenerator()
        now = 1_700_000_000
        assert gen.match(gen.generate(now - 90), now) is None

    def test_wrong_code_rejected(self):
        gen = TOTPGenerator()
        code = gen.generate(1_700_000_000)
        wrong = str((int(code) + 1) % 1_000_000).zfill(6)
        assert not gen.verify(wrong, 1_700_000_000)

    def test_malformed_codes_rejected(self):
        secret = generate_secret()
        for code in ("", "12345", "1234567", "abcdef", "12 34 5x"):
            assert match_totp_step(secret, code, 1_700_000_000) is None

    def test_spaces_ignored(self):
        """'123 456' as typed by a user should still verify."""
        gen = TOTPGenerator()
        code = gen.generate(1_700_000_000)
        assert verify_totp(gen.secret, f"{code[:3]} {code[3:]}", 1_700_000_000)

    def test_zero_drift(self):
        gen = TOTPGenerator(drift_tolerance=0)
        assert not gen.verify(gen.generate(1_700_000_000 - 30), 1_700_000_000)

    def test_invalid_digits(self):
        with pytest.raises(ValueError):
            TOTPGenerator(digits=7)

    def test_remaining_seconds(self):
        assert get_remaining_seconds(1_700_000_010) == 30 - (1_700_000_010 % 30)


class TestSecretEncoding:

    def test_base32_roundtrip_tolerates_formatting(self):
        secret = generate_secret()
        encoded = secret_to_base32(secret)
        assert "=" not in encoded
        assert base32_to_secret(encoded.lower()) == secret

    def test_invalid_base32(self):
        with pytest.raises(ValueError):
            base32_to_secret("not base32!!")


class TestProvisioning:
    """otpauth:// URI and QR rendering."""

    def test_uri_contents(self):
        uri = build_provisioning_uri(RFC_SECRET, "alice@example.com", "AccountGuard")
        assert uri.startswith("otpauth://totp/AccountGuard%3Aalice%40example.com?")
        assert f"secret={secret_to_base32(RFC_SECRET)}" in uri
        assert "issuer=AccountGuard" in uri
        assert "digits=6" in uri
        assert "period=30" in uri

    def test_uri_parses_with_pyotp(self):
        """Authenticator apps should recover the same secret and issuer."""
        gen = TOTPGenerator()
        parsed = pyotp.parse_uri(gen.provisioning_uri("alice@example.com", "Market Place"))
        assert parsed.secret == gen.secret_base32
        assert parsed.issuer == "Market Place"
        assert parsed.at(1_700_000_000) == gen.generate(1_700_000_000)

    def test_qr_svg(self):
        display = TOTPGenerator().provisioning_display("alice@example.com", "AccountGuard")
        assert b"<svg" in display.svg()
        assert display.data_url().startswith("data:image/svg+xml;base64,")

    def test_qr_ascii(self):
        display = TOTPGenerator().provisioning_display("alice@example.com", "AccountGuard")
        assert len(display.ascii().splitlines()) > 10
