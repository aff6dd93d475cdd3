"""
Password hashing, JWT tokens and the login lockout rules.

The lockout helpers are pure: they take the stored ``security`` sub-document
and the current time and return the MongoDB update to apply, so the rules can
be exercised without a database.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from config import Settings
from helpers import as_utc

ACCESS_TOKEN = "access"
EMAIL_VERIFICATION_TOKEN = "email-verification"
PASSWORD_RESET_TOKEN = "password-reset"


class TokenError(Exception):
    def __init__(self, message: str, expired: bool = False):
        super().__init__(message)
        self.expired = expired


def make_password_context(rounds: int = 12) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


class TokenService:
    """Issues and checks the three kinds of JWT the API hands out."""

    def __init__(self, settings: Settings):
        self.secret = settings.jwt_secret
        self.algorithm = settings.jwt_algorithm
        self.lifetimes = {
            ACCESS_TOKEN: timedelta(minutes=settings.access_token_expire_minutes),
            EMAIL_VERIFICATION_TOKEN: timedelta(minutes=settings.email_verification_expire_minutes),
            PASSWORD_RESET_TOKEN: timedelta(minutes=settings.password_reset_expire_minutes),
        }

    def lifetime(self, token_type: str) -> timedelta:
        return self.lifetimes[token_type]

    def create(self, user_id: str, token_type: str, claims: Optional[Dict[str, Any]] = None,
               now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        to_encode = dict(claims or {})
        to_encode.update({
            "sub": user_id,
            "type": token_type,
            "iat": now,
            "exp": now + self.lifetimes[token_type],
        })
        return jwt.encode(to_encode, self.secret, algorithm=self.algorithm)

    def create_access_token(self, user: Dict[str, Any]) -> str:
        return self.create(
            str(user["_id"]),
            ACCESS_TOKEN,
            {"email": user["email"], "role": user.get("role", "user")},
        )

    def decode(self, token: str, expected_type: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenError("Token has expired", expired=True)
        except JWTError:
            raise TokenError("Invalid token")
        if payload.get("type") != expected_type:
            raise TokenError("Invalid token type")
        if not payload.get("sub"):
            raise TokenError("Invalid token")
        return payload


# --------------------- Lockout ---------------------

@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    lock_duration: timedelta = timedelta(hours=2)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LockoutPolicy":
        return cls(
            max_attempts=settings.max_login_attempts,
            lock_duration=timedelta(minutes=settings.lock_duration_minutes),
        )


def is_locked(security: Optional[Dict[str, Any]], now: datetime) -> bool:
    lock_until = as_utc((security or {}).get("lock_until"))
    return bool(lock_until and lock_until > now)


def failed_login_update(security: Optional[Dict[str, Any]], now: datetime,
                        policy: LockoutPolicy = LockoutPolicy()) -> Dict[str, Any]:
    security = security or {}
    lock_until = as_utc(security.get("lock_until"))

    # An expired lock starts a fresh count
    if lock_until and lock_until <= now:
        return {
            "$set": {"security.login_attempts": 1},
            "$unset": {"security.lock_until": ""},
        }

    update: Dict[str, Any] = {"$inc": {"security.login_attempts": 1}}
    attempts = security.get("login_attempts", 0) + 1
    if attempts >= policy.max_attempts and not is_locked(security, now):
        update["$set"] = {"security.lock_until": now + policy.lock_duration}
    return update


def successful_login_update(now: datetime) -> Dict[str, Any]:
    return {
        "$set": {"security.login_attempts": 0, "stats.last_active": now},
        "$unset": {"security.lock_until": ""},
    }
