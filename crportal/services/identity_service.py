"""
Identity & Session Manager

Users live under user:<lowercased email> with every email also listed in
users:list. The active session is one record under current:session in the
client's own scope; logging in overwrites it and logging out removes it.
"""

import re
import secrets
from typing import Dict, List, Optional, Union

from crportal.core.exceptions import (
    DuplicateUserError,
    InvalidCredentialsError,
    RecordDecodeError,
    SessionNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from crportal.core.kv_store import KeyValueStore, get_store
from crportal.core.logging_config import logger, set_user_email
from crportal.core.security import check_password, get_password_hash, verify_password
from crportal.schemas.records import Role, Session, User
from crportal.services.record_codec import (
    decode_index,
    decode_record,
    encode_index,
    encode_record,
    utc_timestamp,
)


USERS_INDEX_KEY = "users:list"
SESSION_KEY = "current:session"

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
MAX_FULL_NAME_LENGTH = 100
MAX_EMAIL_LENGTH = 100
MAX_CHANGED_PASSWORD_LENGTH = 50


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def user_key(email: str) -> str:
    return f"user:{normalize_email(email)}"


class IdentityService:
    """Registration, login, password change and the current session"""

    def __init__(self, store: Optional[KeyValueStore] = None):
        self.store = store or get_store()

    async def register(
        self,
        full_name: str,
        email: str,
        password: str,
        confirm_password: str,
        role: Union[Role, str],
    ) -> User:
        full_name = (full_name or "").strip()
        email = normalize_email(email)
        errors: Dict[str, str] = {}

        if not full_name:
            errors["fullName"] = "Full name is required"
        elif len(full_name) > MAX_FULL_NAME_LENGTH:
            errors["fullName"] = f"Full name must be {MAX_FULL_NAME_LENGTH} characters or less"

        if not email:
            errors["email"] = "Email is required"
        elif len(email) > MAX_EMAIL_LENGTH:
            errors["email"] = f"Email must be {MAX_EMAIL_LENGTH} characters or less"
        elif not EMAIL_PATTERN.match(email):
            errors["email"] = "Please enter a valid email address"

        if not password:
            errors["password"] = "Password is required"
        else:
            checks = check_password(password)
            if not checks.passed:
                errors["password"] = checks.first_failure()

        if not confirm_password:
            errors["confirmPassword"] = "Please confirm your password"
        elif confirm_password != password:
            errors["confirmPassword"] = "Passwords do not match"

        try:
            role = Role(role)
        except ValueError:
            errors["role"] = "Please select a valid role"

        if errors:
            logger.log_auth_event("register", success=False, user_email=email, reason="validation")
            raise ValidationError.from_errors(errors)

        key = user_key(email)
        if await self.store.get_or_none(key) is not None:
            logger.log_auth_event("register", success=False, user_email=email, reason="duplicate email")
            raise DuplicateUserError(email)

        user = User(
            email=email,
            full_name=full_name,
            password_hash=get_password_hash(password),
            role=role,
            registered_at=utc_timestamp(),
            status="active",
        )
        await self.store.set(key, encode_record(user))

        users = await self.list_user_emails()
        if email not in users:
            users.append(email)
            await self.store.set(USERS_INDEX_KEY, encode_index(users))

        logger.log_auth_event("register", success=True, user_email=email)
        return user

    async def login(self, email: str, password: str) -> Session:
        email = normalize_email(email)
        errors: Dict[str, str] = {}
        if not email:
            errors["email"] = "Email is required"
        if not password:
            errors["password"] = "Password is required"
        if errors:
            raise ValidationError.from_errors(errors)

        user = await self.get_user(email)
        if user is None:
            logger.log_auth_event("login", success=False, user_email=email, reason="unknown user")
            raise InvalidCredentialsError()
        if not self._password_matches(user, password):
            logger.log_auth_event("login", success=False, user_email=email, reason="wrong password")
            raise InvalidCredentialsError()

        if user.password_hash is None:
            user.password_hash = get_password_hash(password)
            user.password = None
            await self.store.set(user_key(email), encode_record(user))
            logger.info(f"Upgraded legacy plaintext password for {email}")

        session = Session(
            full_name=user.full_name,
            email=user.email,
            role=user.role,
            login_at=utc_timestamp(),
        )
        await self.store.set(SESSION_KEY, encode_record(session), shared=False)
        set_user_email(email)

        logger.log_auth_event("login", success=True, user_email=email)
        return session

    async def change_password(
        self,
        session: Session,
        old_password: str,
        new_password: str,
        confirm_password: str,
    ) -> User:
        errors: Dict[str, str] = {}

        if not old_password:
            errors["oldPassword"] = "Current password is required"

        if not new_password:
            errors["newPassword"] = "New password is required"
        else:
            checks = check_password(new_password, max_length=MAX_CHANGED_PASSWORD_LENGTH)
            if not checks.passed:
                errors["newPassword"] = checks.first_failure()
            elif new_password == old_password:
                errors["newPassword"] = "New password must be different from current password"

        if not confirm_password:
            errors["confirmPassword"] = "Please confirm your new password"
        elif confirm_password != new_password:
            errors["confirmPassword"] = "Passwords do not match"

        if errors:
            logger.log_auth_event("change_password", success=False, user_email=session.email, reason="validation")
            raise ValidationError.from_errors(errors)

        user = await self.get_user(session.email)
        if user is None:
            logger.log_auth_event("change_password", success=False, user_email=session.email, reason="user missing")
            raise UserNotFoundError(session.email)

        if not self._password_matches(user, old_password):
            logger.log_auth_event("change_password", success=False, user_email=session.email, reason="wrong password")
            raise InvalidCredentialsError()

        user.password_hash = get_password_hash(new_password)
        user.password = None
        user.password_changed_at = utc_timestamp()
        await self.store.set(user_key(user.email), encode_record(user))

        logger.log_auth_event("change_password", success=True, user_email=session.email)
        return user

    async def logout(self) -> None:
        await self.store.delete(SESSION_KEY, shared=False)
        set_user_email("")
        logger.log_auth_event("logout", success=True)

    async def current_session(self) -> Optional[Session]:
        """The stored session, or None when nobody is logged in"""
        raw = await self.store.get_or_none(SESSION_KEY, shared=False)
        try:
            return decode_record(Session, raw, key=SESSION_KEY)
        except RecordDecodeError as e:
            logger.warning(f"Discarding unreadable session: {e.message}")
            return None

    async def require_session(self) -> Session:
        session = await self.current_session()
        if session is None:
            raise SessionNotFoundError()
        set_user_email(session.email)
        return session

    async def get_user(self, email: str) -> Optional[User]:
        key = user_key(email)
        return decode_record(User, await self.store.get_or_none(key), key=key)

    async def list_user_emails(self) -> List[str]:
        return decode_index(await self.store.get_or_none(USERS_INDEX_KEY), key=USERS_INDEX_KEY)

    @staticmethod
    def _password_matches(user: User, password: str) -> bool:
        if user.password_hash:
            return verify_password(password, user.password_hash)
        if user.password is not None:
            return secrets.compare_digest(user.password.encode("utf-8"), password.encode("utf-8"))
        return False
