"""
Password Hashing

Argon2id hashing for stored passwords, gated by the password policy.

Security considerations:
- Never store plaintext passwords
- Salt is generated per hash by argon2-cffi
- Verification is constant-time inside argon2
- A candidate is checked against PasswordPolicyEngine before hashing
"""

import logging
from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from .password_policy import PasswordPolicyEngine


logger = logging.getLogger(__name__)


# Argon2id configuration
# - time_cost: number of iterations
# - memory_cost: memory usage in KiB
# - parallelism: number of parallel threads
ARGON2_CONFIG = {
    'time_cost': 3,
    'memory_cost': 65536,    # 64 MiB
    'parallelism': 4,
    'hash_len': 32,
    'salt_len': 16,
    'type': Type.ID,
}


class SecurePasswordHasher:
    """
    Argon2id hasher that refuses passwords the policy rejects.

    Example:
        >>> hasher = SecurePasswordHasher()
        >>> stored = hasher.hash_password("Tr0ub4dor&Horse")
        >>> hasher.verify_password("Tr0ub4dor&Horse", stored)
        True
    """

    def __init__(self, policy: Optional[PasswordPolicyEngine] = None, **kwargs):
        """
        Args:
            policy: Policy engine used as the acceptance gate
            **kwargs: Override default Argon2 parameters
        """
        config = ARGON2_CONFIG.copy()
        config.update(kwargs)

        self._policy = policy or PasswordPolicyEngine()
        self._hasher = PasswordHasher(
            time_cost=config['time_cost'],
            memory_cost=config['memory_cost'],
            parallelism=config['parallelism'],
            hash_len=config['hash_len'],
            salt_len=config['salt_len'],
            type=config['type'],
        )

    def hash_password(self, password: str) -> str:
        """
        Hash a password after enforcing the policy.

        Raises:
            WeakPasswordError: if the policy rejects the password
        """
        self._policy.enforce(password)
        return self._hasher.hash(password)

    def verify_password(self, password: str, hash_str: str) -> bool:
        """Check a password against a stored Argon2 hash."""
        if not hash_str:
            return False
        try:
            return self._hasher.verify(hash_str, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("Stored password hash could not be verified")
            return False

    def needs_rehash(self, hash_str: str) -> bool:
        """True if the hash was made with weaker parameters than now configured."""
        return self._hasher.check_needs_rehash(hash_str)
