"""
Password Policy Engine

One canonical password scorer. The registration/password-change gate
and the interactive strength meter both call this module, so the two can
never drift apart.

Scoring (0-5), one point per check:
- minLength     at least 8 characters
- hasUppercase  A-Z
- hasLowercase  a-z
- hasNumber     0-9
- hasSpecial    anything non-alphanumeric

A password is acceptable when it meets minLength and scores at least 3,
and then survives the weak-pattern layer:
- common prefixes ("password", "qwerty", "123456", ...)
- 3-character ascending runs ("abc", "xyz", "012", "789")
"""

import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional

from ..errors import WeakPasswordError


PASSWORD_MIN_LENGTH = 8
MIN_ACCEPTABLE_SCORE = 3

REQUIREMENT_MIN_LENGTH = 'minLength'
REQUIREMENT_UPPERCASE = 'hasUppercase'
REQUIREMENT_LOWERCASE = 'hasLowercase'
REQUIREMENT_NUMBER = 'hasNumber'
REQUIREMENT_SPECIAL = 'hasSpecial'

_CHECKS = (
    (REQUIREMENT_MIN_LENGTH, lambda pw: len(pw) >= PASSWORD_MIN_LENGTH),
    (REQUIREMENT_UPPERCASE, lambda pw: re.search(r'[A-Z]', pw) is not None),
    (REQUIREMENT_LOWERCASE, lambda pw: re.search(r'[a-z]', pw) is not None),
    (REQUIREMENT_NUMBER, lambda pw: re.search(r'[0-9]', pw) is not None),
    (REQUIREMENT_SPECIAL, lambda pw: re.search(r'[^A-Za-z0-9]', pw) is not None),
)

# Shown for unmet requirements, in check order
_MISSING_TEXT = {
    REQUIREMENT_MIN_LENGTH: f'at least {PASSWORD_MIN_LENGTH} characters',
    REQUIREMENT_UPPERCASE: 'uppercase letter',
    REQUIREMENT_LOWERCASE: 'lowercase letter',
    REQUIREMENT_NUMBER: 'number',
    REQUIREMENT_SPECIAL: 'special character',
}

COMMON_PREFIXES = (
    '123456', 'password', 'qwerty', 'abc123', '111111',
    'admin', 'letmein', 'welcome', 'monkey', 'dragon',
)

_ALPHABET = 'abcdefghijklmnopqrstuvwxyz'
_DIGITS = '0123456789'
SEQUENTIAL_RUNS = tuple(
    seq[i:i + 3]
    for seq in (_ALPHABET, _DIGITS)
    for i in range(len(seq) - 2)
)
_SEQUENTIAL_RE = re.compile('|'.join(SEQUENTIAL_RUNS), re.IGNORECASE)

# Rejection reasons
REASON_REQUIREMENTS = 'requirements_not_met'
REASON_COMMON_PATTERN = 'common_pattern'
REASON_SEQUENTIAL = 'sequential_characters'

STRENGTH_LABELS = {
    5: 'Very Strong',
    4: 'Strong',
    3: 'Good',
    2: 'Fair',
    1: 'Weak',
    0: 'Very Weak',
}


def strength_label(score: int) -> str:
    """Human-readable label for a 0-5 score."""
    return STRENGTH_LABELS[max(0, min(5, score))]


@dataclass(frozen=True)
class PasswordAssessment:
    """Result of scoring a candidate password. Never persisted."""
    score: int
    requirements: Dict[str, bool]
    is_acceptable: bool
    message: str
    reason: Optional[str] = None
    strength: str = field(default='')

    def __post_init__(self):
        if not self.strength:
            object.__setattr__(self, 'strength', strength_label(self.score))

    @property
    def requirements_met(self) -> FrozenSet[str]:
        return frozenset(name for name, met in self.requirements.items() if met)

    def to_dict(self) -> Dict:
        """Payload rendered by requirement checklists and strength meters."""
        return {
            'isValid': self.is_acceptable,
            'score': self.score,
            'strength': self.strength,
            'message': self.message,
            'reason': self.reason,
            'requirements': dict(self.requirements),
        }


def has_common_pattern(password: str) -> bool:
    """True if the password starts with a well-known weak prefix."""
    lowered = password.lower()
    return any(lowered.startswith(prefix) for prefix in COMMON_PREFIXES)


def has_sequential_characters(password: str) -> bool:
    """True if the password contains an ascending 3-character run."""
    return _SEQUENTIAL_RE.search(password) is not None


class PasswordPolicyEngine:
    """
    Stateless password scorer.

    Example:
        >>> engine = PasswordPolicyEngine()
        >>> engine.assess("Password1!").is_acceptable
        False
        >>> engine.assess_strength("abc12345").strength
        'Good'
    """

    def assess_strength(self, password: str) -> PasswordAssessment:
        """
        Score character-class requirements only (live strength meter).

        Args:
            password: Candidate password

        Returns:
            PasswordAssessment without the weak-pattern layer applied
        """
        if not password or not isinstance(password, str):
            return PasswordAssessment(
                score=0,
                requirements={name: False for name, _ in _CHECKS},
                is_acceptable=False,
                message='Password is required',
                reason=REASON_REQUIREMENTS,
            )

        requirements = {name: check(password) for name, check in _CHECKS}
        score = sum(requirements.values())
        acceptable = requirements[REQUIREMENT_MIN_LENGTH] and score >= MIN_ACCEPTABLE_SCORE

        if acceptable:
            return PasswordAssessment(
                score=score,
                requirements=requirements,
                is_acceptable=True,
                message='Password is strong',
            )

        missing = [_MISSING_TEXT[name] for name, met in requirements.items() if not met]
        return PasswordAssessment(
            score=score,
            requirements=requirements,
            is_acceptable=False,
            message=f"Password must contain {', '.join(missing[:3])}",
            reason=REASON_REQUIREMENTS,
        )

    def assess(self, password: str) -> PasswordAssessment:
        """
        Full acceptance check used before storing a password.

        Runs ``assess_strength`` and, if that passes, the weak-pattern
        layer. A weak-pattern match forces ``is_acceptable=False`` while
        keeping the score and requirement map intact.
        """
        base = self.assess_strength(password)
        if not base.is_acceptable:
            return base

        if has_common_pattern(password):
            return PasswordAssessment(
                score=base.score,
                requirements=base.requirements,
                is_acceptable=False,
                message='Password contains common patterns. '
                        'Please choose a more unique password.',
                reason=REASON_COMMON_PATTERN,
            )

        if has_sequential_characters(password):
            return PasswordAssessment(
                score=base.score,
                requirements=base.requirements,
                is_acceptable=False,
                message='Password contains sequential characters. '
                        'Please choose a more complex password.',
                reason=REASON_SEQUENTIAL,
            )

        return base

    def enforce(self, password: str) -> PasswordAssessment:
        """
        Raise ``WeakPasswordError`` unless the password is acceptable.

        Returns:
            The (acceptable) assessment
        """
        assessment = self.assess(password)
        if not assessment.is_acceptable:
            raise WeakPasswordError(assessment)
        return assessment


_default_engine = PasswordPolicyEngine()


def assess_password(password: str) -> PasswordAssessment:
    """Convenience wrapper around the module-level engine."""
    return _default_engine.assess(password)
