"""
Authentication Service

Credential checks, session token issuance and validation, email
verification and password reset. Session tokens are signed JWTs carrying
the account id (``sub``) and the ``role`` claim; they are never stored.
"""
from __future__ import annotations

import logging
import re
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

import jwt
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from marketplace.config import Config
from marketplace.errors import (
    AccountNotFound,
    Conflict,
    InvalidCredentials,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from marketplace.models import Account, AccountRole, as_utc, utcnow
from marketplace.observability import increment_counter
from marketplace.services.mailer import Mailer
from marketplace.services.product_service import clean_text

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AuthService:
    def __init__(
        self,
        db_session: Session,
        mailer: Optional[Mailer] = None,
        password_min_length: Optional[int] = None,
        frontend_url: Optional[str] = None,
    ) -> None:
        self.db = db_session
        self.mailer = mailer or Mailer()
        self.password_min_length = password_min_length or Config.PASSWORD_MIN_LENGTH
        self.frontend_url = (frontend_url or Config.FRONTEND_URL).rstrip("/")
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def register(
        self,
        username: Optional[str],
        email: Optional[str],
        password: Optional[str],
        full_name: Optional[str] = None,
    ) -> Account:
        username = (username or "").strip()
        email = (email or "").strip().lower()
        if not username or not email or not password:
            raise ValidationError("Username, email and password are required.")
        if not _EMAIL_PATTERN.match(email):
            raise ValidationError("Email address is not valid.")
        self._check_password(password)

        existing = (
            self.db.query(Account)
            .filter(or_(Account.username == username, func.lower(Account.email) == email))
            .first()
        )
        if existing is not None:
            raise Conflict("Username or email is already registered.")

        account = Account(
            username=username,
            email=email,
            full_name=clean_text(full_name) or None,
            role=AccountRole.USER,
            is_verified=False,
        )
        account.passwordHash = generate_password_hash(password)
        self._issue_verification_token(account)
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # Lost a race against a concurrent registration
            self.db.rollback()
            raise Conflict("Username or email is already registered.") from exc

        increment_counter("accounts_registered_total")
        self.logger.info("Account registered", extra={"account_id": account.accountID})
        self._send_verification(account)
        return account

    def verify_email(self, token: Optional[str]) -> Account:
        if not token:
            raise ValidationError("Verification token is required.")
        account = self.db.query(Account).filter(Account.verification_token == token).first()
        if account is None:
            raise ValidationError("Verification link is invalid.")
        expires = as_utc(account.verification_token_expires)
        if expires is not None and expires < utcnow():
            raise ValidationError("Verification link has expired.")

        account.is_verified = True
        account.verification_token = None
        account.verification_token_expires = None
        self.db.commit()
        self.logger.info("Email verified", extra={"account_id": account.accountID})
        return account

    def resend_verification(self, email: Optional[str]) -> None:
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("Email is required.")
        account = self.db.query(Account).filter(func.lower(Account.email) == email).first()
        if account is None or account.is_verified:
            # Same answer either way so addresses cannot be probed
            return
        self._issue_verification_token(account)
        self.db.commit()
        self._send_verification(account)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------
    def request_password_reset(self, email: Optional[str]) -> None:
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("Email is required.")
        account = self.db.query(Account).filter(func.lower(Account.email) == email).first()
        if account is None:
            self.logger.info("Password reset requested for unknown address")
            return

        account.reset_password_token = secrets.token_urlsafe(32)
        account.reset_password_expires = utcnow() + timedelta(minutes=Config.RESET_TOKEN_TTL_MINUTES)
        self.db.commit()
        link = f"{self.frontend_url}/reset-password?token={account.reset_password_token}"
        self.mailer.send_password_reset(account.email, account.display_name, link)

    def reset_password(self, token: Optional[str], new_password: Optional[str]) -> Account:
        if not token or not new_password:
            raise ValidationError("Token and new password are required.")
        self._check_password(new_password)
        account = self.db.query(Account).filter(Account.reset_password_token == token).first()
        expires = as_utc(account.reset_password_expires) if account is not None else None
        if account is None or expires is None or expires < utcnow():
            raise ValidationError("Reset link is invalid or has expired.")

        account.passwordHash = generate_password_hash(new_password)
        account.reset_password_token = None
        account.reset_password_expires = None
        self.db.commit()
        self.logger.info("Password reset completed", extra={"account_id": account.accountID})
        return account

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def login(self, username: Optional[str], password: Optional[str]) -> Tuple[Account, str]:
        """Check credentials and return the account with a fresh session token.

        Unknown usernames and wrong passwords are indistinguishable to the caller.
        """
        username = (username or "").strip()
        if not username or not password:
            raise ValidationError("Username and password are required.")

        account = self.db.query(Account).filter(Account.username == username).first()
        if account is None or not check_password_hash(account.passwordHash, password):
            increment_counter("login_failures_total")
            raise InvalidCredentials()

        increment_counter("logins_total", labels={"role": AccountRole(account.role).value})
        return account, self.issue_token(account)

    def issue_token(self, account: Account, expires_delta: Optional[timedelta] = None) -> str:
        # Needs an app context: signing key and default TTL come from app.config
        kwargs: Dict[str, Any] = {}
        if expires_delta is not None:
            kwargs["expires_delta"] = expires_delta
        return create_access_token(
            identity=str(account.accountID),
            additional_claims={"role": AccountRole(account.role).value},
            **kwargs,
        )

    def decode(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            raise TokenInvalid("A session token is required.")
        try:
            claims = decode_token(token)
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except (jwt.InvalidTokenError, JWTExtendedException) as exc:
            raise TokenInvalid() from exc

        try:
            account_id = int(claims["sub"])
            role = AccountRole(claims["role"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid() from exc
        return {"account_id": account_id, "role": role.value, "exp": claims.get("exp")}

    def authenticate(self, token: Optional[str]) -> Tuple[Account, Dict[str, Any]]:
        """Validate ``token`` and load the account it names."""
        claims = self.decode(token)
        account = self.db.get(Account, claims["account_id"])
        if account is None:
            raise AccountNotFound()
        return account, claims

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------
    def ensure_bootstrap_admin(self, username: str, password: str, email: Optional[str] = None) -> Optional[Account]:
        if not username or not password:
            return None
        account = self.db.query(Account).filter(Account.username == username).first()
        if account is not None:
            return account

        account = Account(
            username=username,
            email=(email or "").strip().lower() or None,
            full_name="Super Admin",
            role=AccountRole.ADMIN,
            is_verified=True,
        )
        account.passwordHash = generate_password_hash(password)
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError:
            # Another worker created it first
            self.db.rollback()
            return self.db.query(Account).filter(Account.username == username).first()
        self.logger.info("Bootstrap admin account created", extra={"username": username})
        return account

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _check_password(self, password: str) -> None:
        if len(password) < self.password_min_length:
            raise ValidationError(
                f"Password must be at least {self.password_min_length} characters long."
            )

    def _issue_verification_token(self, account: Account) -> None:
        account.verification_token = secrets.token_urlsafe(32)
        account.verification_token_expires = utcnow() + timedelta(hours=Config.VERIFICATION_TOKEN_TTL_HOURS)

    def _send_verification(self, account: Account) -> None:
        link = f"{self.frontend_url}/verify-email?token={account.verification_token}"
        self.mailer.send_verification(account.email, account.display_name, link)
