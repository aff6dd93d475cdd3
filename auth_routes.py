from typing import Any, Dict

from fastapi import APIRouter, Depends

from account_service import AccountService
from database import public_user
from dependencies import get_account_service, get_current_user
from ratelimit import rate_limit
from schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
    ResetPasswordRequest,
    TokenRequest,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", status_code=201, dependencies=[Depends(rate_limit("register"))])
def register(body: RegisterRequest, accounts: AccountService = Depends(get_account_service)):
    return accounts.register(body)


@router.post("/login", dependencies=[Depends(rate_limit("login"))])
def login(body: LoginRequest, accounts: AccountService = Depends(get_account_service)):
    return accounts.login(body.email, body.password)


@router.post("/verify-email", dependencies=[Depends(rate_limit("strict"))])
def verify_email(body: TokenRequest, accounts: AccountService = Depends(get_account_service)):
    return accounts.verify_email(body.token)


@router.post("/forgot-password", dependencies=[Depends(rate_limit("strict"))])
def forgot_password(body: ForgotPasswordRequest, accounts: AccountService = Depends(get_account_service)):
    return accounts.forgot_password(body.email)


@router.post("/reset-password", dependencies=[Depends(rate_limit("strict"))])
def reset_password(body: ResetPasswordRequest, accounts: AccountService = Depends(get_account_service)):
    return accounts.reset_password(body)


@router.post("/logout")
def logout(current: Dict[str, Any] = Depends(get_current_user), accounts: AccountService = Depends(get_account_service)):
    return accounts.logout(current)


@router.get("/me")
def me(current: Dict[str, Any] = Depends(get_current_user)):
    return public_user(current)


@router.get("/stats")
def stats(current: Dict[str, Any] = Depends(get_current_user), accounts: AccountService = Depends(get_account_service)):
    return accounts.stats(current)


@router.put("/profile")
def update_profile(body: ProfileUpdate, current: Dict[str, Any] = Depends(get_current_user),
                   accounts: AccountService = Depends(get_account_service)):
    return accounts.update_profile(current, body)


@router.put("/change-password", dependencies=[Depends(rate_limit("strict"))])
def change_password(body: ChangePasswordRequest, current: Dict[str, Any] = Depends(get_current_user),
                    accounts: AccountService = Depends(get_account_service)):
    return accounts.change_password(current, body)
