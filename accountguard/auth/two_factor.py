"""
Two-Factor Authentication Manager

TOTP enrollment, login verification and backup-code lifecycle.

State machine per user:
    Unset -> PendingSetup -> Enabled -> (disable) -> Unset

- begin_setup stores a sealed pending secret (short TTL) and returns the
  secret plus a scannable provisioning artifact
- confirm_setup checks a code for that secret, promotes it to an enabled
  credential and issues 10 single-use backup codes (plaintext returned
  once, only keyed hashes stored)
- verify_login accepts each time step at most once per credential
- verify_backup_code consumes a code atomically
- disable requires the current password, not just a live session

Security considerations:
- Secrets are AES-GCM sealed at rest and never returned after setup
- Codes are compared in constant time
- Never log secrets or codes
"""

import hashlib
import hmac
import logging
import secrets
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..config import BACKUP_CODE_COUNT, PENDING_SETUP_TTL_SECONDS, TOTP_ISSUER
from ..errors import (
    InvalidCredentialsError,
    InvalidTwoFactorCodeError,
    TwoFactorNotEnabledError,
    UnknownAuthError,
)
from ..integration.event_logger import EventLogger, EventType, get_identity_hash_short
from ..store.base import SecurityStore, StoreError, update_atomically
from .passwords import SecurePasswordHasher
from .sealing import SealingError, SecretSealer
from .totp import (
    TOTP_DIGITS,
    TOTP_DRIFT_TOLERANCE,
    TOTP_TIME_STEP,
    ProvisioningDisplay,
    TOTPGenerator,
    base32_to_secret,
    generate_secret,
    secret_to_base32,
)


logger = logging.getLogger(__name__)


PENDING_PREFIX = "2fa:pending:"
CREDENTIAL_PREFIX = "2fa:credential:"

BACKUP_CODE_BYTES = 5             # 40 bits -> 8 base32 characters
BACKUP_CODE_GROUP = 4             # shown as XXXX-XXXX
BACKUP_CODE_KEY_INFO = b"accountguard backup codes"


def generate_backup_code() -> str:
    """Random single-use backup code, formatted XXXX-XXXX."""
    raw = secret_to_base32(secrets.token_bytes(BACKUP_CODE_BYTES))
    return f"{raw[:BACKUP_CODE_GROUP]}-{raw[BACKUP_CODE_GROUP:]}"


def normalize_backup_code(code: str) -> str:
    return str(code).replace('-', '').replace(' ', '').strip().upper()


def hash_backup_code(key: bytes, user_id: str, code: str) -> str:
    """
    HMAC-SHA256 of the normalized code, bound to its owner.

    Keyed so that a dump of the store alone cannot be searched offline.
    """
    material = f"{user_id}:{normalize_backup_code(code)}".encode('utf-8')
    return hmac.new(key, material, hashlib.sha256).hexdigest()


@dataclass
class TwoFactorCredential:
    """Enabled TOTP credential as persisted (secret sealed, codes hashed)."""
    user_id: str
    sealed_secret: str
    enabled: bool = True
    backup_code_hashes: List[str] = field(default_factory=list)
    created_at: float = 0.0
    last_used_step: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TwoFactorCredential':
        return cls(**data)


@dataclass(frozen=True)
class SetupChallenge:
    """Returned by begin_setup; the only time the secret leaves the core."""
    secret: str
    provisioning_uri: str
    display: ProvisioningDisplay
    expires_at: float

    @property
    def qr_code(self) -> str:
        return self.display.data_url()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'secret': self.secret,
            'otpauthUrl': self.provisioning_uri,
            'qrCode': self.qr_code,
            'expiresAt': self.expires_at,
        }


class TwoFactorManager:
    """
    TOTP two-factor authentication for many users.

    Example:
        >>> manager = TwoFactorManager(MemoryStore())
        >>> challenge = manager.begin_setup("user-1", "alice@example.com")
        >>> code = TOTPGenerator(base32_to_secret(challenge.secret)).generate()
        >>> backup_codes = manager.confirm_setup("user-1", challenge.secret, code)
        >>> len(backup_codes)
        10
    """

    def __init__(self, store: SecurityStore,
                 issuer: str = TOTP_ISSUER,
                 sealer: Optional[SecretSealer] = None,
                 password_verifier: Optional[Callable[[str, str], bool]] = None,
                 password_hash_lookup: Optional[Callable[[str], Optional[str]]] = None,
                 backup_code_count: int = BACKUP_CODE_COUNT,
                 pending_ttl: int = PENDING_SETUP_TTL_SECONDS,
                 clock: Callable[[], float] = time.time,
                 event_logger: Optional[EventLogger] = None):
        """
        Args:
            store: Backing store
            issuer: Service name shown in authenticator apps
            sealer: Encrypts secrets at rest (per-process key if omitted)
            password_verifier: (user_id, password) -> bool, used by disable
            password_hash_lookup: user_id -> stored Argon2 hash; used with
                SecurePasswordHasher when no password_verifier is given
            backup_code_count: Codes issued per generation
            pending_ttl: Seconds a pending setup stays valid
            clock: Time source
            event_logger: Optional audit trail
        """
        self._store = store
        self._issuer = issuer
        self._sealer = sealer or SecretSealer()
        self._backup_key = self._sealer.derive_key(BACKUP_CODE_KEY_INFO)
        self._backup_code_count = backup_code_count
        self._pending_ttl = pending_ttl
        self._clock = clock
        self._events = event_logger

        if password_verifier is None and password_hash_lookup is not None:
            hasher = SecurePasswordHasher()

            def password_verifier(user_id: str, password: str) -> bool:
                return hasher.verify_password(password, password_hash_lookup(user_id) or '')

        self._password_verifier = password_verifier

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _user(user_id: str) -> str:
        if not isinstance(user_id, str) or not user_id.strip():
            raise UnknownAuthError("A user id is required.", fail_closed=True)
        return user_id.strip()

    def _event(self, event_type: EventType, user_id: str, **details) -> None:
        if self._events is not None:
            self._events.log(event_type, user_id, **details)

    def _store_failure(self, operation: str, user_id: str, exc: Exception) -> UnknownAuthError:
        logger.error("Two-factor store failed during %s for user %s: %s",
                     operation, get_identity_hash_short(user_id), exc)
        self._event(EventType.STORE_FAILURE, user_id, operation=operation)
        return UnknownAuthError(
            "Two-factor authentication is temporarily unavailable.",
            fail_closed=True,
        )

    def _credential(self, user_id: str) -> Optional[TwoFactorCredential]:
        data = self._store.get(CREDENTIAL_PREFIX + user_id)
        return TwoFactorCredential.from_dict(data) if data is not None else None

    def _generator(self, secret: bytes) -> TOTPGenerator:
        return TOTPGenerator(secret, digits=TOTP_DIGITS, time_step=TOTP_TIME_STEP,
                             drift_tolerance=TOTP_DRIFT_TOLERANCE)

    def _open_secret(self, credential: TwoFactorCredential) -> bytes:
        try:
            return self._sealer.unseal(credential.sealed_secret, credential.user_id)
        except SealingError:
            logger.error("Sealed TOTP secret for user %s could not be opened",
                         get_identity_hash_short(credential.user_id))
            raise UnknownAuthError("Two-factor authentication is temporarily unavailable.")

    def _new_backup_codes(self) -> List[str]:
        codes = set()
        while len(codes) < self._backup_code_count:
            codes.add(generate_backup_code())
        return sorted(codes)

    # ========================================================================
    # Enrollment
    # ========================================================================

    def begin_setup(self, user_id: str, account_name: Optional[str] = None) -> SetupChallenge:
        """
        Start enrollment with a fresh secret.

        Any earlier pending setup is replaced. An already enabled
        credential keeps working until a new one is confirmed.

        Args:
            user_id: User identifier
            account_name: Label shown in the authenticator (usually email)
        """
        user_id = self._user(user_id)
        secret = generate_secret()
        now = self._clock()
        pending = {
            'sealed_secret': self._sealer.seal(secret, user_id),
            'created_at': now,
        }
        try:
            self._store.set(PENDING_PREFIX + user_id, pending, ttl=self._pending_ttl)
        except StoreError as exc:
            raise self._store_failure("begin_setup", user_id, exc)

        generator = self._generator(secret)
        label = account_name or user_id
        self._event(EventType.TWO_FACTOR_SETUP_STARTED, user_id)
        return SetupChallenge(
            secret=generator.secret_base32,
            provisioning_uri=generator.provisioning_uri(label, self._issuer),
            display=generator.provisioning_display(label, self._issuer),
            expires_at=now + self._pending_ttl,
        )

    def confirm_setup(self, user_id: str, secret: str, code: str) -> List[str]:
        """
        Finish enrollment by proving the authenticator produces valid codes.

        Args:
            user_id: User identifier
            secret: Base32 secret from begin_setup
            code: Current code from the authenticator app

        Returns:
            Plaintext backup codes (shown once, never retrievable again)

        Raises:
            InvalidTwoFactorCodeError: no matching pending setup, wrong
                code, or the code was already used
            UnknownAuthError: store unavailable
        """
        user_id = self._user(user_id)
        now = self._clock()
        pending_key = PENDING_PREFIX + user_id
        try:
            pending = self._store.get(pending_key)
        except StoreError as exc:
            raise self._store_failure("confirm_setup", user_id, exc)

        if pending is None:
            raise InvalidTwoFactorCodeError("Two-factor setup has expired. Please start again.")

        try:
            pending_secret = self._sealer.unseal(pending['sealed_secret'], user_id)
            offered_secret = base32_to_secret(secret)
        except (SealingError, ValueError):
            raise InvalidTwoFactorCodeError()

        if not hmac.compare_digest(pending_secret, offered_secret):
            self._event(EventType.TOTP_FAILED, user_id, stage="setup")
            raise InvalidTwoFactorCodeError()

        step = self._generator(pending_secret).match(code, now)
        if step is None:
            self._event(EventType.TOTP_FAILED, user_id, stage="setup")
            raise InvalidTwoFactorCodeError()

        backup_codes = self._new_backup_codes()
        credential = TwoFactorCredential(
            user_id=user_id,
            sealed_secret=self._sealer.seal(pending_secret, user_id),
            enabled=True,
            backup_code_hashes=[hash_backup_code(self._backup_key, user_id, c)
                                for c in backup_codes],
            created_at=now,
            last_used_step=step,
        )

        try:
            # Consuming the pending record is the claim: only one confirm wins
            if not self._store.compare_and_swap(pending_key, pending, None):
                self._event(EventType.TOTP_REPLAY_REJECTED, user_id, stage="setup")
                raise InvalidTwoFactorCodeError()
            self._store.set(CREDENTIAL_PREFIX + user_id, credential.to_dict())
        except StoreError as exc:
            raise self._store_failure("confirm_setup", user_id, exc)

        logger.info("Two-factor authentication enabled for user %s",
                    get_identity_hash_short(user_id))
        self._event(EventType.TWO_FACTOR_ENABLED, user_id)
        return backup_codes

    def cancel_setup(self, user_id: str) -> bool:
        """Drop a pending setup. Returns True if one existed."""
        user_id = self._user(user_id)
        try:
            return self._store.delete(PENDING_PREFIX + user_id)
        except StoreError as exc:
            raise self._store_failure("cancel_setup", user_id, exc)

    # ========================================================================
    # Verification
    # ========================================================================

    def verify_login(self, user_id: str, code: str) -> bool:
        """
        Check a TOTP code for an enabled credential.

        Each time step is accepted at most once; a code for a step at or
        before the last accepted one is refused.

        Raises:
            UnknownAuthError: store unavailable (fail closed)
        """
        user_id = self._user(user_id)
        now = self._clock()
        key = CREDENTIAL_PREFIX + user_id
        try:
            credential = self._credential(user_id)
            if credential is None or not credential.enabled:
                return False

            step = self._generator(self._open_secret(credential)).match(code, now)
            if step is None:
                self._event(EventType.TOTP_FAILED, user_id, stage="login")
                return False

            def mutate(current):
                if current is None or current['sealed_secret'] != credential.sealed_secret:
                    return current, False
                last = current.get('last_used_step')
                if last is not None and step <= last:
                    return current, False
                updated = dict(current, last_used_step=step)
                return updated, True

            accepted = update_atomically(self._store, key, mutate)
        except StoreError as exc:
            raise self._store_failure("verify_login", user_id, exc)

        if not accepted:
            logger.warning("Replayed TOTP code refused for user %s",
                           get_identity_hash_short(user_id))
            self._event(EventType.TOTP_REPLAY_REJECTED, user_id, stage="login")
            return False

        self._event(EventType.TOTP_VERIFIED, user_id)
        return True

    def verify_backup_code(self, user_id: str, code: str) -> bool:
        """
        Consume a backup code. Each code succeeds exactly once.

        Raises:
            UnknownAuthError: store unavailable (fail closed)
        """
        user_id = self._user(user_id)
        if not code or not normalize_backup_code(code):
            return False
        offered = hash_backup_code(self._backup_key, user_id, code)

        def mutate(current):
            if current is None or not current.get('enabled'):
                return current, False
            hashes = current.get('backup_code_hashes', [])
            match_index = None
            for index, stored in enumerate(hashes):
                if hmac.compare_digest(stored, offered) and match_index is None:
                    match_index = index
            if match_index is None:
                return current, False
            remaining = hashes[:match_index] + hashes[match_index + 1:]
            return dict(current, backup_code_hashes=remaining), True

        try:
            used = update_atomically(self._store, CREDENTIAL_PREFIX + user_id, mutate)
        except StoreError as exc:
            raise self._store_failure("verify_backup_code", user_id, exc)

        if used:
            self._event(EventType.BACKUP_CODE_USED, user_id)
        else:
            self._event(EventType.BACKUP_CODE_FAILED, user_id)
        return used

    # ========================================================================
    # Management
    # ========================================================================

    def regenerate_backup_codes(self, user_id: str) -> List[str]:
        """
        Replace every backup code with a fresh set.

        Raises:
            TwoFactorNotEnabledError: no enabled credential
            UnknownAuthError: store unavailable
        """
        user_id = self._user(user_id)
        codes = self._new_backup_codes()
        hashes = [hash_backup_code(self._backup_key, user_id, c) for c in codes]

        def mutate(current):
            if current is None or not current.get('enabled'):
                return current, False
            return dict(current, backup_code_hashes=hashes), True

        try:
            replaced = update_atomically(self._store, CREDENTIAL_PREFIX + user_id, mutate)
        except StoreError as exc:
            raise self._store_failure("regenerate_backup_codes", user_id, exc)

        if not replaced:
            raise TwoFactorNotEnabledError()

        self._event(EventType.BACKUP_CODES_REGENERATED, user_id, count=len(codes))
        return codes

    def disable(self, user_id: str, current_password: str) -> None:
        """
        Turn 2FA off after re-checking the user's password.

        Raises:
            InvalidCredentialsError: password does not match
            TwoFactorNotEnabledError: nothing to disable
            UnknownAuthError: store unavailable or no password verifier
        """
        user_id = self._user(user_id)
        if self._password_verifier is None:
            raise UnknownAuthError("Password re-authentication is not configured.")

        if not current_password or not self._password_verifier(user_id, current_password):
            self._event(EventType.LOGIN_FAILED, user_id, stage="2fa_disable")
            raise InvalidCredentialsError(message="Invalid password.")

        try:
            removed_credential = self._store.delete(CREDENTIAL_PREFIX + user_id)
            removed_pending = self._store.delete(PENDING_PREFIX + user_id)
        except StoreError as exc:
            raise self._store_failure("disable", user_id, exc)

        if not (removed_credential or removed_pending):
            raise TwoFactorNotEnabledError()

        logger.info("Two-factor authentication disabled for user %s",
                    get_identity_hash_short(user_id))
        self._event(EventType.TWO_FACTOR_DISABLED, user_id)

    def is_enabled(self, user_id: str) -> bool:
        """
        Raises:
            UnknownAuthError: store unavailable (callers gating login must deny)
        """
        user_id = self._user(user_id)
        try:
            credential = self._credential(user_id)
        except StoreError as exc:
            raise self._store_failure("is_enabled", user_id, exc)
        return credential is not None and credential.enabled

    def remaining_backup_codes(self, user_id: str) -> int:
        user_id = self._user(user_id)
        try:
            credential = self._credential(user_id)
        except StoreError as exc:
            raise self._store_failure("remaining_backup_codes", user_id, exc)
        if credential is None or not credential.enabled:
            return 0
        return len(credential.backup_code_hashes)
