from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from marketplace.config import Config
from marketplace.errors import Conflict, Forbidden, ValidationError
from marketplace.models import Account, Product
from marketplace.services.product_service import clean_text


class AccountService:
    """Profile reads and self-service updates for the signed-in account."""

    PROFILE_FIELDS = ("full_name", "phone", "address", "bio")

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def update_profile(self, account: Account, changes: Mapping[str, Any]) -> Account:
        if account.is_admin:
            raise Forbidden("Admin accounts cannot change profile attributes.")

        new_username = changes.get("username")
        if new_username is not None:
            new_username = str(new_username).strip()
            if not new_username:
                raise ValidationError("Username cannot be empty.")
            if new_username != account.username:
                taken = (
                    self.db.query(Account.accountID)
                    .filter(Account.username == new_username, Account.accountID != account.accountID)
                    .first()
                )
                if taken:
                    raise Conflict("Username is already taken.")
                account.username = new_username

        for field in self.PROFILE_FIELDS:
            if field in changes:
                value = changes[field]
                setattr(account, field, clean_text(value) if value is not None else None)

        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise Conflict("Username is already taken.") from exc
        self.logger.info("Profile updated", extra={"account_id": account.accountID})
        return account

    def change_password(self, account: Account, current_password: str, new_password: str) -> None:
        if not current_password or not new_password:
            raise ValidationError("Current and new password are required.")
        if not check_password_hash(account.passwordHash, current_password):
            raise ValidationError("Current password is incorrect.")
        if len(new_password) < Config.PASSWORD_MIN_LENGTH:
            raise ValidationError(
                f"Password must be at least {Config.PASSWORD_MIN_LENGTH} characters long."
            )
        account.passwordHash = generate_password_hash(new_password)
        self.db.commit()
        self.logger.info("Password changed", extra={"account_id": account.accountID})

    def own_products(self, account: Account) -> List[Product]:
        return (
            self.db.query(Product)
            .filter(Product.sellerID == account.accountID)
            .order_by(Product.created_at.desc(), Product.productID.desc())
            .all()
        )

    @staticmethod
    def profile(account: Account) -> Dict[str, Any]:
        data = account.to_summary()
        data.update(
            {
                "phone": account.phone,
                "address": account.address,
                "bio": account.bio or "",
                "created_at": account.created_at.isoformat() if account.created_at else None,
            }
        )
        return data
