"""
Login Flow

Runs a login attempt through the security core in order:

    RateLimiter -> LockoutController -> credential check (external)
        -> email verification (external) -> TwoFactorManager -> success

Any failure is turned into a ClassifiedError by AuthErrorClassifier, so
callers only ever see the closed error taxonomy.

Security considerations:
- The lock check always runs before the credential check
- Unknown identities and wrong passwords are indistinguishable
- Failed second-factor codes count toward lockout
- Never log passwords or codes
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..config import ACTION_LOGIN, SecurityConfig
from ..errors import (
    AuthError,
    EmailNotVerifiedError,
    InvalidTwoFactorCodeError,
    UnknownAuthError,
)
from ..integration.event_logger import EventLogger, get_identity_hash_short
from ..store.base import SecurityStore
from .classifier import AuthErrorClassifier, ClassifiedError
from .lockout import LockoutController, normalize_identity
from .rate_limit import RateLimiter
from .sealing import SecretSealer
from .two_factor import TwoFactorManager


logger = logging.getLogger(__name__)


METHOD_PASSWORD = "password"
METHOD_TOTP = "totp"
METHOD_BACKUP = "backup"


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a login attempt."""
    success: bool
    user_id: Optional[str] = None
    method: Optional[str] = None
    requires_two_factor: bool = False
    remaining_backup_codes: Optional[int] = None
    error: Optional[ClassifiedError] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'success': self.success}
        if self.user_id is not None:
            result['userId'] = self.user_id
        if self.method is not None:
            result['method'] = self.method
        if self.requires_two_factor:
            result['requires2FA'] = True
        if self.remaining_backup_codes is not None:
            result['remainingBackupCodes'] = self.remaining_backup_codes
        if self.error is not None:
            result['error'] = self.error.to_dict()
        return result


class LoginManager:
    """
    Complete login gate with rate limiting, lockout and 2FA.

    Example:
        >>> manager = LoginManager(
        ...     rate_limiter=RateLimiter(store),
        ...     lockout=LockoutController(store),
        ...     credential_verifier=lambda identity, password: users.check(identity, password),
        ... )
        >>> result = manager.login("alice@example.com", "Tr0ub4dor&Horse")
        >>> result.success
        True
    """

    def __init__(self, rate_limiter: RateLimiter,
                 lockout: LockoutController,
                 credential_verifier: Callable[[str, str], Optional[str]],
                 two_factor: Optional[TwoFactorManager] = None,
                 email_verified: Optional[Callable[[str], bool]] = None,
                 classifier: Optional[AuthErrorClassifier] = None):
        """
        Args:
            rate_limiter: Request-volume gate
            lockout: Failed-credential gate
            credential_verifier: (identity, password) -> user_id, or None
                when the credentials are wrong or the identity is unknown
            two_factor: Optional 2FA manager
            email_verified: Optional user_id -> bool check
            classifier: Error formatter
        """
        self._rate_limiter = rate_limiter
        self._lockout = lockout
        self._credential_verifier = credential_verifier
        self._two_factor = two_factor
        self._email_verified = email_verified
        self._classifier = classifier or AuthErrorClassifier()

    @classmethod
    def from_config(cls, config: SecurityConfig, store: SecurityStore,
                    credential_verifier: Callable[[str, str], Optional[str]],
                    email_verified: Optional[Callable[[str], bool]] = None,
                    password_hash_lookup: Optional[Callable[[str], Optional[str]]] = None,
                    clock: Callable[[], float] = time.time,
                    event_logger: Optional[EventLogger] = None) -> 'LoginManager':
        """Build every component from one SecurityConfig and store."""
        return cls(
            rate_limiter=RateLimiter(store, config.rate_limits, clock=clock,
                                     event_logger=event_logger),
            lockout=LockoutController(store, config.max_attempts,
                                      config.lockout_duration_seconds,
                                      clock=clock, event_logger=event_logger),
            credential_verifier=credential_verifier,
            two_factor=TwoFactorManager(
                store,
                issuer=config.totp_issuer,
                sealer=SecretSealer(config.secret_key),
                password_hash_lookup=password_hash_lookup,
                backup_code_count=config.backup_code_count,
                pending_ttl=config.pending_setup_ttl_seconds,
                clock=clock,
                event_logger=event_logger,
            ),
            email_verified=email_verified,
        )

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def lockout(self) -> LockoutController:
        return self._lockout

    @property
    def two_factor(self) -> Optional[TwoFactorManager]:
        return self._two_factor

    def login(self, identity: str, password: str,
              totp_code: Optional[str] = None,
              backup_code: Optional[str] = None) -> LoginResult:
        """
        Authenticate ``identity``.

        When the user has 2FA enabled and no code is supplied, the result
        has ``requires_two_factor=True``; the client repeats the call with
        ``totp_code`` or ``backup_code``.

        Returns:
            LoginResult; ``error`` is set whenever ``success`` is False
            and a second factor is not merely pending
        """
        try:
            return self._login(identity, password, totp_code, backup_code)
        except AuthError as exc:
            return LoginResult(success=False, error=self._classifier.classify(exc))

    def _login(self, identity: str, password: str,
               totp_code: Optional[str], backup_code: Optional[str]) -> LoginResult:
        identity = normalize_identity(identity)
        self._rate_limiter.enforce(identity, ACTION_LOGIN)
        self._lockout.ensure_unlocked(identity)

        user_id = self._check_credentials(identity, password)
        if user_id is None:
            record = self._lockout.record_failure(identity)
            raise self._lockout.failure_error(record)

        if self._email_verified is not None and not self._email_verified(user_id):
            raise EmailNotVerifiedError()

        method = METHOD_PASSWORD
        remaining_backup_codes = None
        if self._two_factor is not None and self._two_factor.is_enabled(user_id):
            if not totp_code and not backup_code:
                return LoginResult(success=False, user_id=user_id, requires_two_factor=True)

            if totp_code and self._two_factor.verify_login(user_id, totp_code):
                method = METHOD_TOTP
            elif backup_code and self._two_factor.verify_backup_code(user_id, backup_code):
                method = METHOD_BACKUP
                remaining_backup_codes = self._two_factor.remaining_backup_codes(user_id)
            else:
                record = self._lockout.record_failure(identity)
                locked = self._lockout.lock_error(record)
                if locked is not None:
                    raise locked
                raise InvalidTwoFactorCodeError()

        self._lockout.record_success(identity)
        logger.info("Login succeeded for identity %s via %s",
                    get_identity_hash_short(identity), method)
        return LoginResult(
            success=True,
            user_id=user_id,
            method=method,
            remaining_backup_codes=remaining_backup_codes,
        )

    def _check_credentials(self, identity: str, password: str) -> Optional[str]:
        if not password:
            return None
        try:
            return self._credential_verifier(identity, password)
        except AuthError:
            raise
        except Exception:
            logger.exception("Credential verifier failed for identity %s",
                             get_identity_hash_short(identity))
            raise UnknownAuthError(fail_closed=True)
