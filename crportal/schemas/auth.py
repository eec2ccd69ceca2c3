from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from crportal.schemas.records import Role, User


class AuthModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserRegister(AuthModel):
    full_name: str = ""
    email: str = ""
    password: str = ""
    confirm_password: str = ""
    role: str = ""


class UserLogin(AuthModel):
    email: str = ""
    password: str = ""


class PasswordChange(AuthModel):
    old_password: str = ""
    new_password: str = ""
    confirm_password: str = ""


class PasswordStrengthRequest(AuthModel):
    password: str = ""


class PasswordStrengthResponse(AuthModel):
    score: int
    label: str


class UserResponse(AuthModel):
    """User record without credentials"""
    email: str
    full_name: str
    role: Role
    registered_at: Optional[str] = None
    status: str
    password_changed_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            email=user.email,
            full_name=user.full_name,
            role=user.role,
            registered_at=user.registered_at,
            status=user.status,
            password_changed_at=user.password_changed_at,
        )
