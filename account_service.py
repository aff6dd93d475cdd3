import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from passlib.context import CryptContext
from pymongo.database import Database

from config import Settings
from database import USERS, public_user, to_object_id
from errors import (
    AccountLockedError,
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from helpers import as_utc, flatten_update
from schemas import (
    ChangePasswordRequest,
    Preferences,
    Profile,
    ProfileUpdate,
    RegisterRequest,
    ResetPasswordRequest,
    User,
    UserLocation,
)
from security import (
    EMAIL_VERIFICATION_TOKEN,
    PASSWORD_RESET_TOKEN,
    LockoutPolicy,
    TokenError,
    TokenService,
    failed_login_update,
    is_locked,
    make_password_context,
    successful_login_update,
)

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, db: Database, settings: Settings,
                 pwd_context: Optional[CryptContext] = None,
                 tokens: Optional[TokenService] = None):
        self.users = db[USERS]
        self.settings = settings
        self.pwd_context = pwd_context or make_password_context(settings.bcrypt_rounds)
        self.tokens = tokens or TokenService(settings)
        self.lockout = LockoutPolicy.from_settings(settings)

    # --------------------- Utility ---------------------

    def hash_password(self, password: str) -> str:
        return self.pwd_context.hash(password)

    def verify_password(self, password: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        return self.pwd_context.verify(password, password_hash)

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.users.find_one({"email": email.strip().lower()})

    def get_user(self, user_id: Any) -> Dict[str, Any]:
        user = self.users.find_one({"_id": to_object_id(user_id, "user id")})
        if not user:
            raise NotFoundError("User not found")
        return user

    def _decode(self, token: str, token_type: str, label: str) -> Dict[str, Any]:
        try:
            return self.tokens.decode(token, token_type)
        except TokenError as exc:
            if exc.expired:
                raise ValidationError(f"{label} token has expired")
            raise ValidationError(f"Invalid {label.lower()} token")

    def _issue(self, user: Dict[str, Any], token_type: str, field: str) -> str:
        now = datetime.now(timezone.utc)
        token = self.tokens.create(str(user["_id"]), token_type, now=now)
        self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {
                f"verification.{field}_token": token,
                f"verification.{field}_expires": now + self.tokens.lifetime(token_type),
                "updated_at": now,
            }},
        )
        return token

    # --------------------- Registration ---------------------

    def register(self, data: RegisterRequest) -> Dict[str, Any]:
        email = data.email.lower()
        if self.find_by_email(email):
            raise ConflictError("email", "Email already registered")

        user = User(
            name=data.name.strip(),
            email=email,
            password_hash=self.hash_password(data.password),
            profile=data.profile or Profile(),
            location=data.location or UserLocation(),
            preferences=data.preferences or Preferences(),
        )
        doc = user.model_dump()
        doc["_id"] = self.users.insert_one(doc).inserted_id
        logger.info("Registered user %s", doc["_id"])

        verification_token = self._issue(doc, EMAIL_VERIFICATION_TOKEN, "email_verification")
        # No mail delivery; the token is only returned when expose_tokens is set
        response = {
            "message": "User registered successfully. Please verify your email.",
            "user": public_user(self.get_user(doc["_id"])),
            "token": self.tokens.create_access_token(doc),
        }
        if self.settings.expose_tokens:
            response["verification_token"] = verification_token
        return response

    def verify_email(self, token: str) -> Dict[str, Any]:
        payload = self._decode(token, EMAIL_VERIFICATION_TOKEN, "Verification")
        user = self.get_user(payload["sub"])
        verification = user.get("verification") or {}

        if verification.get("email_verified"):
            raise ValidationError("Email already verified")
        if verification.get("email_verification_token") != token:
            raise ValidationError("Invalid verification token")
        expires = as_utc(verification.get("email_verification_expires"))
        if expires and expires < datetime.now(timezone.utc):
            raise ValidationError("Verification token has expired")

        self.users.update_one(
            {"_id": user["_id"]},
            {
                "$set": {"verification.email_verified": True, "updated_at": datetime.now(timezone.utc)},
                "$unset": {
                    "verification.email_verification_token": "",
                    "verification.email_verification_expires": "",
                },
            },
        )
        logger.info("Email verified for user %s", user["_id"])
        return {"message": "Email verified successfully"}

    # --------------------- Login ---------------------

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self.find_by_email(email)
        if not user:
            raise AuthenticationError("Invalid credentials")

        now = datetime.now(timezone.utc)
        security = user.get("security") or {}
        if is_locked(security, now):
            logger.warning("Login attempt for locked account %s", user["_id"])
            raise AccountLockedError("Account is temporarily locked due to multiple failed login attempts")

        if not self.verify_password(password, user.get("password_hash", "")):
            update = failed_login_update(security, now, self.lockout)
            self.users.update_one({"_id": user["_id"]}, update)
            if "security.lock_until" in update.get("$set", {}):
                logger.warning("Account %s locked after %d failed login attempts", user["_id"], self.lockout.max_attempts)
            raise AuthenticationError("Invalid credentials")

        self.users.update_one({"_id": user["_id"]}, successful_login_update(now))
        user = self.get_user(user["_id"])
        return {
            "message": "Login successful",
            "user": public_user(user),
            "token": self.tokens.create_access_token(user),
        }

    def logout(self, user: Dict[str, Any]) -> Dict[str, Any]:
        self.users.update_one({"_id": user["_id"]}, {"$set": {"stats.last_active": datetime.now(timezone.utc)}})
        return {"message": "Logged out successfully"}

    # --------------------- Passwords ---------------------

    def forgot_password(self, email: str) -> Dict[str, Any]:
        response: Dict[str, Any] = {
            "message": "If an account with that email exists, a password reset link has been sent"
        }
        user = self.find_by_email(email)
        if not user:
            return response

        reset_token = self._issue(user, PASSWORD_RESET_TOKEN, "password_reset")
        logger.info("Password reset requested for user %s", user["_id"])
        if self.settings.expose_tokens:
            response["reset_token"] = reset_token
        return response

    def _set_password(self, user: Dict[str, Any], password: str, extra: Optional[Dict[str, Any]] = None) -> None:
        now = datetime.now(timezone.utc)
        update: Dict[str, Any] = {
            "$set": {
                "password_hash": self.hash_password(password),
                "security.last_password_change": now,
                "updated_at": now,
            }
        }
        if extra:
            for operator, fields in extra.items():
                update.setdefault(operator, {}).update(fields)
        self.users.update_one({"_id": user["_id"]}, update)

    def reset_password(self, data: ResetPasswordRequest) -> Dict[str, Any]:
        payload = self._decode(data.token, PASSWORD_RESET_TOKEN, "Password reset")
        user = self.get_user(payload["sub"])
        verification = user.get("verification") or {}

        if verification.get("password_reset_token") != data.token:
            raise ValidationError("Invalid password reset token")
        expires = as_utc(verification.get("password_reset_expires"))
        if expires and expires < datetime.now(timezone.utc):
            raise ValidationError("Password reset token has expired")

        self._set_password(user, data.new_password, {
            "$set": {"security.login_attempts": 0},
            "$unset": {
                "verification.password_reset_token": "",
                "verification.password_reset_expires": "",
                "security.lock_until": "",
            },
        })
        logger.info("Password reset for user %s", user["_id"])
        return {"message": "Password reset successfully"}

    def change_password(self, user: Dict[str, Any], data: ChangePasswordRequest) -> Dict[str, Any]:
        if not self.verify_password(data.current_password, user.get("password_hash", "")):
            raise AuthenticationError("Current password is incorrect")
        self._set_password(user, data.new_password)
        return {"message": "Password changed successfully"}

    # --------------------- Profile ---------------------

    def update_profile(self, user: Dict[str, Any], data: ProfileUpdate) -> Dict[str, Any]:
        changes = data.model_dump(exclude_unset=True)
        update: Dict[str, Any] = {}
        if changes.get("name"):
            update["name"] = changes["name"].strip()
        for section in ("profile", "location", "preferences"):
            if changes.get(section):
                update.update(flatten_update(changes[section], section))
        update["updated_at"] = datetime.now(timezone.utc)

        self.users.update_one({"_id": user["_id"]}, {"$set": update})
        return {"message": "Profile updated successfully", "user": public_user(self.get_user(user["_id"]))}

    def stats(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return self.get_user(user["_id"]).get("stats", {})
