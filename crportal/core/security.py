"""
Password policy, strength meter and hashing
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional

import bcrypt

from crportal.core.config import settings


MIN_PASSWORD_LENGTH = 8

_UPPER = re.compile(r'[A-Z]')
_LOWER = re.compile(r'[a-z]')
_DIGIT = re.compile(r'[0-9]')


@dataclass
class PasswordChecks:
    """Result of each password rule"""
    length: bool
    uppercase: bool
    lowercase: bool
    number: bool
    max_length: bool = True

    @property
    def passed(self) -> bool:
        return self.length and self.uppercase and self.lowercase and self.number and self.max_length

    def first_failure(self) -> Optional[str]:
        """Message for the first rule that failed, in the order the form shows them"""
        for ok, message in (
            (self.length, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"),
            (self.max_length, "Password is too long"),
            (self.uppercase, "Password must contain at least one uppercase letter"),
            (self.lowercase, "Password must contain at least one lowercase letter"),
            (self.number, "Password must contain at least one number"),
        ):
            if not ok:
                return message
        return None


@dataclass
class PasswordStrength:
    score: int
    label: str

    def to_dict(self) -> Dict[str, object]:
        return {"score": self.score, "label": self.label}


def check_password(password: str, max_length: Optional[int] = None) -> PasswordChecks:
    """Evaluate password against the portal rules; max_length only applies on change"""
    password = password or ""
    return PasswordChecks(
        length=len(password) >= MIN_PASSWORD_LENGTH,
        uppercase=bool(_UPPER.search(password)),
        lowercase=bool(_LOWER.search(password)),
        number=bool(_DIGIT.search(password)),
        max_length=max_length is None or len(password) <= max_length,
    )


def password_strength(password: str) -> PasswordStrength:
    """25 points per satisfied rule"""
    if not password:
        return PasswordStrength(score=0, label="")

    checks = check_password(password)
    score = 25 * sum([checks.length, checks.uppercase, checks.lowercase, checks.number])

    if score <= 25:
        label = "Weak"
    elif score <= 50:
        label = "Fair"
    elif score <= 75:
        label = "Good"
    else:
        label = "Strong"
    return PasswordStrength(score=score, label=label)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password"""
    # Bcrypt has a 72 byte limit - truncate password if necessary
    password_bytes = plain_password.encode('utf-8')[:72]
    try:
        return bcrypt.checkpw(password_bytes, hashed_password.encode('utf-8'))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def get_password_hash(password: str) -> str:
    """Hash password with configurable rounds (BCRYPT_ROUNDS in .env)"""
    # Bcrypt has a 72 byte limit - truncate password if necessary
    password_bytes = password.encode('utf-8')[:72]
    hashed = bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS))
    return hashed.decode('utf-8')
