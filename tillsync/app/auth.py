"""
Account security on top of the state repository.

Users and invites are ordinary replicated records; this module owns every
rule about them: the login state machine, lockout, password rotation,
recovery and invitation-based registration. Outcomes are returned as enums,
nothing here raises for a wrong password.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ValidationError

from . import mfa
from .logs import json_log
from .security import (
    generate_invite_code,
    generate_recovery_code,
    generate_salt,
    hash_password,
    hash_security_answer,
    normalize_code,
    validate_password_policy,
    verify_password,
    verify_security_answer,
)
from .validation import Username


class LoginResult(str, Enum):
    SUCCESS = "SUCCESS"
    INVALID = "INVALID"
    LOCKED = "LOCKED"
    SECOND_FACTOR_REQUIRED = "SECOND_FACTOR_REQUIRED"
    INVALID_SECOND_FACTOR = "INVALID_SECOND_FACTOR"


class PasswordChangeResult(str, Enum):
    SUCCESS = "SUCCESS"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID_CURRENT = "INVALID_CURRENT"
    WEAK_PASSWORD = "WEAK_PASSWORD"


class RecoveryStatus(str, Enum):
    SUCCESS = "SUCCESS"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID = "INVALID"
    WEAK_PASSWORD = "WEAK_PASSWORD"


class RegistrationOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    INVALID_CODE = "INVALID_CODE"
    INVALID_USERNAME = "INVALID_USERNAME"
    USERNAME_EXISTS = "USERNAME_EXISTS"
    WEAK_PASSWORD = "WEAK_PASSWORD"
    INVALID_SECOND_FACTOR = "INVALID_SECOND_FACTOR"


class RecoveryMethod(str, Enum):
    QUESTION = "QUESTION"
    CODE = "CODE"


@dataclass
class RecoveryOutcome:
    status: RecoveryStatus
    # Fresh master code issued when a recovery code was consumed.
    new_recovery_code: Optional[str] = None
    problems: Optional[list] = None


@dataclass
class TwoFactorEnrollment:
    secret: str
    uri: str


class Registration(BaseModel):
    username: Username
    password: str
    full_name: str = ""
    security_question: Optional[str] = None
    security_answer: Optional[str] = None
    two_factor_secret: Optional[str] = None
    two_factor_code: Optional[str] = None


def _recovery_method(method) -> RecoveryMethod:
    if isinstance(method, RecoveryMethod):
        return method
    return RecoveryMethod(str(method or "").strip().upper())


def _parse_lockout(value) -> Optional[datetime]:
    # Replicated from other devices; anything unparseable counts as expired.
    try:
        until = datetime.fromisoformat(str(value))
    except (TypeError, ValueError):
        return None
    if until.tzinfo is None:
        until = until.replace(tzinfo=timezone.utc)
    return until


class AuthService:
    def __init__(
        self,
        repository,
        clock: Optional[Callable[[], datetime]] = None,
        max_failed_attempts: int = 5,
        lockout_minutes: int = 15,
    ):
        self.repo = repository
        self.clock = clock or repository.clock
        self.max_failed_attempts = max_failed_attempts
        self.lockout = timedelta(minutes=lockout_minutes)
        self.is_locked = False

    @property
    def current_user(self) -> Optional[dict]:
        return self.repo.current_user

    def _security_event(self, event: str, user: Optional[dict], details: str, action: str = "SECURITY") -> None:
        json_log("warning" if action == "SECURITY" else "info", event, user_id=(user or {}).get("id"))
        self.repo.record_activity(action, details, actor=self.repo.current_user or user)

    # ---- bootstrap -------------------------------------------------------

    def ensure_initial_admin(self, username: str = "admin", password: str = "Admin@123456") -> Optional[str]:
        """
        Make sure at least one ADMIN exists. Returns the recovery code of a
        freshly created admin, None when one already existed.
        """
        if any(u.get("role") == "ADMIN" for u in self.repo.users):
            return None
        salt = generate_salt()
        code = generate_recovery_code()
        self.repo.seed_user(
            {
                "username": username,
                "full_name": "Administrator",
                "role": "ADMIN",
                "password_hash": hash_password(password, salt),
                "salt": salt,
                "recovery_code": code,
            }
        )
        json_log("info", "auth.initial_admin_created", username=username)
        return code

    # ---- login -----------------------------------------------------------

    def login(self, username: str, password: str, code: Optional[str] = None) -> LoginResult:
        user = self.repo.find_user_by_username(username)
        if not user or not user.get("active", True):
            return LoginResult.INVALID

        now = self.clock()
        if user.get("lockout_until"):
            until = _parse_lockout(user["lockout_until"])
            if until is None:
                json_log("warning", "auth.bad_lockout_value", user_id=user.get("id"))
            elif until > now:
                return LoginResult.LOCKED
            user["lockout_until"] = None
            user["failed_login_attempts"] = 0
            self.repo.update_user(user)

        if not verify_password(password, user.get("salt"), user.get("password_hash")):
            user["failed_login_attempts"] = int(user.get("failed_login_attempts") or 0) + 1
            if user["failed_login_attempts"] >= self.max_failed_attempts:
                user["lockout_until"] = (now + self.lockout).isoformat()
                self.repo.update_user(user)
                self._security_event("auth.lockout", user, f"Account locked after failed logins: {user['username']}")
            else:
                self.repo.update_user(user)
            return LoginResult.INVALID

        if user.get("two_factor_enabled"):
            if not code:
                return LoginResult.SECOND_FACTOR_REQUIRED
            if not mfa.verify_totp_code(user.get("two_factor_secret"), code, for_time=now):
                json_log("warning", "auth.second_factor_failed", user_id=user.get("id"))
                return LoginResult.INVALID_SECOND_FACTOR

        user["failed_login_attempts"] = 0
        user["lockout_until"] = None
        user["last_login"] = now.isoformat()
        user["last_active"] = now.isoformat()
        self.repo.update_user(user)
        self.repo.set_current_user(user)
        self.is_locked = False
        self.repo.record_activity("LOGIN", f"Login: {user['username']}", actor=user)
        return LoginResult.SUCCESS

    def logout(self) -> None:
        self.repo.clear_current_user()
        self.is_locked = False

    def lock(self) -> None:
        if self.repo.current_user:
            self.is_locked = True

    def unlock(self, password: str) -> bool:
        user = self.repo.current_user
        if not user:
            return False
        fresh = self.repo.get_user(user.get("id")) or user
        if not verify_password(password, fresh.get("salt"), fresh.get("password_hash")):
            return False
        self.is_locked = False
        return True

    # ---- passwords -------------------------------------------------------

    def _set_password(self, user: dict, new_password: str) -> dict:
        # The security answer keeps the salt it was hashed with.
        if user.get("security_answer_hash") and not user.get("security_salt"):
            user["security_salt"] = user.get("salt")
        salt = generate_salt()
        user["salt"] = salt
        user["password_hash"] = hash_password(new_password, salt)
        user["failed_login_attempts"] = 0
        user["lockout_until"] = None
        return user

    def change_password(self, user_id, current: str, new: str) -> PasswordChangeResult:
        user = self.repo.get_user(user_id)
        if not user:
            return PasswordChangeResult.USER_NOT_FOUND
        if not verify_password(current, user.get("salt"), user.get("password_hash")):
            return PasswordChangeResult.INVALID_CURRENT
        if validate_password_policy(new):
            return PasswordChangeResult.WEAK_PASSWORD
        self.repo.update_user(self._set_password(user, new))
        self._security_event("auth.password_changed", user, f"Password changed: {user['username']}")
        return PasswordChangeResult.SUCCESS

    def admin_reset_password(self, user_id, new: str) -> PasswordChangeResult:
        user = self.repo.get_user(user_id)
        if not user:
            return PasswordChangeResult.USER_NOT_FOUND
        if validate_password_policy(new):
            return PasswordChangeResult.WEAK_PASSWORD
        self.repo.update_user(self._set_password(user, new))
        self._security_event("auth.password_reset", user, f"Password reset by admin: {user['username']}")
        return PasswordChangeResult.SUCCESS

    def deactivate_user(self, user_id) -> bool:
        user = self.repo.get_user(user_id)
        if not user:
            return False
        user["active"] = False
        self.repo.update_user(user)
        self._security_event("auth.user_deactivated", user, f"User deactivated: {user['username']}", "USER_MGMT")
        return True

    def unlock_user(self, user_id) -> bool:
        user = self.repo.get_user(user_id)
        if not user:
            return False
        user["failed_login_attempts"] = 0
        user["lockout_until"] = None
        self.repo.update_user(user)
        self._security_event("auth.user_unlocked", user, f"Lockout cleared: {user['username']}")
        return True

    def set_security_question(self, user_id, question: str, answer: str) -> bool:
        user = self.repo.get_user(user_id)
        if not user or not (question or "").strip() or not (answer or "").strip():
            return False
        user["security_salt"] = user.get("salt")
        user["security_question"] = question.strip()
        user["security_answer_hash"] = hash_security_answer(answer, user["security_salt"])
        self.repo.update_user(user)
        return True

    # ---- recovery --------------------------------------------------------

    def get_user_public_info(self, username: str) -> Optional[dict]:
        user = self.repo.find_user_by_username(username)
        if not user or not user.get("active", True):
            return None
        return {
            "username": user["username"],
            "security_question": user.get("security_question"),
            "has_recovery_code": bool(user.get("recovery_code")),
        }

    def _check_recovery(self, user: dict, method, payload: str) -> bool:
        method = _recovery_method(method)
        if method == RecoveryMethod.QUESTION:
            if not user.get("security_answer_hash"):
                return False
            salt = user.get("security_salt") or user.get("salt")
            return verify_security_answer(payload, salt, user.get("security_answer_hash"))
        stored = user.get("recovery_code")
        return bool(stored) and normalize_code(payload) == normalize_code(stored)

    def verify_recovery_attempt(self, username: str, method, payload: str) -> bool:
        user = self.repo.find_user_by_username(username)
        if not user:
            return False
        return self._check_recovery(user, method, payload)

    def recover_account(self, username: str, method, payload: str, new_password: str) -> RecoveryOutcome:
        user = self.repo.find_user_by_username(username)
        if not user:
            return RecoveryOutcome(RecoveryStatus.USER_NOT_FOUND)
        if not self._check_recovery(user, method, payload):
            json_log("warning", "auth.recovery_failed", user_id=user.get("id"))
            return RecoveryOutcome(RecoveryStatus.INVALID)
        problems = validate_password_policy(new_password)
        if problems:
            return RecoveryOutcome(RecoveryStatus.WEAK_PASSWORD, problems=problems)

        self._set_password(user, new_password)
        fresh_code = None
        if _recovery_method(method) == RecoveryMethod.CODE:
            fresh_code = generate_recovery_code()
            user["recovery_code"] = fresh_code
        self.repo.update_user(user)
        self._security_event("auth.account_recovered", user, f"Account recovered: {user['username']}", "RECOVERY")
        return RecoveryOutcome(RecoveryStatus.SUCCESS, new_recovery_code=fresh_code)

    # ---- invites & registration ------------------------------------------

    def generate_invite(self, role) -> Optional[str]:
        admin = self.repo.current_user
        if not admin or admin.get("role") != "ADMIN":
            return None
        role = str(role or "").strip().upper()
        code = generate_invite_code()
        self.repo.add_invite(
            {
                "code": code,
                "role": role,
                "created_at": self.clock().isoformat(),
                "created_by": admin.get("username"),
            }
        )
        self._security_event("auth.invite_created", admin, f"Invite generated for role {role}", "USER_MGMT")
        return code

    def revoke_invite(self, code: str) -> bool:
        return self.repo.delete_invite(code)

    def begin_two_factor_enrollment(self, username: str) -> TwoFactorEnrollment:
        secret = mfa.new_totp_secret()
        return TwoFactorEnrollment(secret=secret, uri=mfa.provisioning_uri(secret, username))

    def register_with_invite(self, code: str, registration) -> RegistrationOutcome:
        invite = self.repo.find_invite(code)
        if not invite:
            return RegistrationOutcome.INVALID_CODE
        try:
            reg = registration if isinstance(registration, Registration) else Registration.model_validate(registration)
        except ValidationError:
            return RegistrationOutcome.INVALID_USERNAME
        if self.repo.find_user_by_username(reg.username):
            return RegistrationOutcome.USERNAME_EXISTS
        if validate_password_policy(reg.password):
            return RegistrationOutcome.WEAK_PASSWORD
        if reg.two_factor_secret and not mfa.verify_totp_code(reg.two_factor_secret, reg.two_factor_code, for_time=self.clock()):
            return RegistrationOutcome.INVALID_SECOND_FACTOR

        salt = generate_salt()
        record = {
            "username": reg.username,
            "full_name": reg.full_name or reg.username,
            "role": invite["role"],
            "password_hash": hash_password(reg.password, salt),
            "salt": salt,
            "two_factor_enabled": bool(reg.two_factor_secret),
            "two_factor_secret": reg.two_factor_secret,
        }
        if (reg.security_question or "").strip() and (reg.security_answer or "").strip():
            record["security_question"] = reg.security_question.strip()
            record["security_salt"] = salt
            record["security_answer_hash"] = hash_security_answer(reg.security_answer, salt)
        user = self.repo.add_user(record, log=False)
        self.repo.delete_invite(invite["code"])
        self._security_event("auth.user_registered", user, f"User registered via invite: {user['username']}", "USER_MGMT")
        return RegistrationOutcome.SUCCESS

    # ---- second factor ---------------------------------------------------

    def enable_two_factor(self, user_id, secret: str, code: str) -> bool:
        user = self.repo.get_user(user_id)
        if not user or not mfa.verify_totp_code(secret, code, for_time=self.clock()):
            return False
        user["two_factor_enabled"] = True
        user["two_factor_secret"] = secret
        self.repo.update_user(user)
        self._security_event("auth.two_factor_enabled", user, f"Two-factor enabled: {user['username']}")
        return True

    def disable_two_factor(self, user_id, code: str) -> bool:
        user = self.repo.get_user(user_id)
        if not user or not user.get("two_factor_enabled"):
            return False
        if not mfa.verify_totp_code(user.get("two_factor_secret"), code, for_time=self.clock()):
            return False
        user["two_factor_enabled"] = False
        user["two_factor_secret"] = None
        self.repo.update_user(user)
        self._security_event("auth.two_factor_disabled", user, f"Two-factor disabled: {user['username']}")
        return True

