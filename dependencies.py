from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, Header, HTTPException, Request
from pymongo.database import Database

from account_service import AccountService
from config import Settings
from database import USERS, get_db
from product_service import ProductService
from security import ACCESS_TOKEN, TokenError, TokenService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def get_account_service(request: Request, db: Database = Depends(get_db)) -> AccountService:
    return AccountService(
        db,
        request.app.state.settings,
        pwd_context=request.app.state.pwd_context,
        tokens=request.app.state.tokens,
    )


def get_product_service(db: Database = Depends(get_db)) -> ProductService:
    return ProductService(db)


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    tokens: TokenService = Depends(get_token_service),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="No token provided")
    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = tokens.decode(token, ACCESS_TOKEN)
    except TokenError as exc:
        raise HTTPException(status_code=401, detail="Token expired" if exc.expired else "Invalid token")
    try:
        user = db[USERS].find_one({"_id": ObjectId(payload["sub"])})
    except InvalidId:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_roles(*roles: str):
    def dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if roles and user.get("role", "user") not in roles:
            raise HTTPException(status_code=403, detail="Forbidden: insufficient role")
        return user

    return dependency


def get_verified_user(
    user: Dict[str, Any] = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    if settings.require_email_verification and not (user.get("verification") or {}).get("email_verified"):
        raise HTTPException(status_code=403, detail="Please verify your email first")
    return user
