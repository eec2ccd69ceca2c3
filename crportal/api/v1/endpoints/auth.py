from fastapi import APIRouter, Depends, status

from crportal.api.deps import get_current_session, get_identity_service
from crportal.core.security import password_strength
from crportal.schemas.auth import (
    PasswordChange,
    PasswordStrengthRequest,
    PasswordStrengthResponse,
    UserLogin,
    UserRegister,
    UserResponse,
)
from crportal.schemas.records import Session
from crportal.services.identity_service import IdentityService


router = APIRouter()


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    identity: IdentityService = Depends(get_identity_service)
):
    """Register a new user. Every invalid field is reported at once."""
    user = await identity.register(
        full_name=user_data.full_name,
        email=user_data.email,
        password=user_data.password,
        confirm_password=user_data.confirm_password,
        role=user_data.role,
    )
    return UserResponse.from_user(user)


@router.post("/login", response_model=Session)
async def login(
    credentials: UserLogin,
    identity: IdentityService = Depends(get_identity_service)
):
    """Log in and replace the current session"""
    return await identity.login(credentials.email, credentials.password)


@router.post("/logout")
async def logout(identity: IdentityService = Depends(get_identity_service)):
    await identity.logout()
    return {"success": True, "message": "Logged out successfully"}


@router.get("/session", response_model=Session)
async def get_session(session: Session = Depends(get_current_session)):
    return session


@router.post("/change-password")
async def change_password(
    request: PasswordChange,
    session: Session = Depends(get_current_session),
    identity: IdentityService = Depends(get_identity_service)
):
    await identity.change_password(
        session,
        old_password=request.old_password,
        new_password=request.new_password,
        confirm_password=request.confirm_password,
    )
    return {"success": True, "message": "Password changed successfully"}


@router.post("/password-strength", response_model=PasswordStrengthResponse)
async def check_password_strength(request: PasswordStrengthRequest):
    return PasswordStrengthResponse(**password_strength(request.password).to_dict())
