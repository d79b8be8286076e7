"""
Secret Sealing

AES-256-GCM encryption of TOTP secrets before they reach the store. The
owning user id is bound in as associated data, so a sealed secret copied
onto another user's record fails to open.

`derive_key` hands out HKDF subkeys of the same key for other purposes
(backup-code digests).

Sealed format (base64): nonce (12 bytes) | ciphertext | tag (16 bytes)
"""

import base64
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF


KEY_SIZE = 32    # 256 bits
NONCE_SIZE = 12  # 96 bits for GCM


class SealingError(Exception):
    """A sealed value could not be opened (wrong key, owner or tampering)."""


class SecretSealer:
    """
    Seals and opens small secrets with AES-256-GCM.

    Example:
        >>> sealer = SecretSealer()
        >>> token = sealer.seal(b"secret", "user-1")
        >>> sealer.unseal(token, "user-1")
        b'secret'
    """

    def __init__(self, key: Optional[bytes] = None):
        """
        Args:
            key: 32-byte key. A random per-process key is generated if
                omitted, which only suits single-process deployments.
        """
        if key is None:
            key = secrets.token_bytes(KEY_SIZE)
        if len(key) != KEY_SIZE:
            raise ValueError("sealing key must be 32 bytes")
        self._key = key
        self._aesgcm = AESGCM(key)

    def derive_key(self, info: bytes, length: int = KEY_SIZE) -> bytes:
        """
        Derive an independent subkey (HKDF-SHA256) for another purpose.

        Args:
            info: Purpose label; distinct labels give unrelated keys
            length: Subkey length in bytes
        """
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=length,
            salt=None,
            info=info,
        )
        return hkdf.derive(self._key)

    def seal(self, plaintext: bytes, owner: str) -> str:
        nonce = secrets.token_bytes(NONCE_SIZE)
        ciphertext_with_tag = self._aesgcm.encrypt(nonce, plaintext, owner.encode('utf-8'))
        return base64.b64encode(nonce + ciphertext_with_tag).decode('ascii')

    def unseal(self, sealed: str, owner: str) -> bytes:
        """
        Raises:
            SealingError: if the value was tampered with or sealed for
                another owner/key
        """
        try:
            raw = base64.b64decode(sealed.encode('ascii'), validate=True)
        except ValueError as exc:
            raise SealingError("sealed value is not valid base64") from exc

        nonce, ciphertext_with_tag = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            return self._aesgcm.decrypt(nonce, ciphertext_with_tag, owner.encode('utf-8'))
        except (InvalidTag, ValueError) as exc:
            raise SealingError("sealed value failed authentication") from exc
