"""User accounts: registration and profile upkeep.

Passwords and tokens belong to the auth layer; this module only keeps the
marketplace's view of a user (name, email, wallet, role) consistent.
"""

from __future__ import annotations

import logging

from .exceptions import NotFound, ValidationFailed
from .models import FieldViolation, Role, User
from .store import RecordStore
from .validators import validate_email, validate_user

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, store: RecordStore):
        self.store = store

    def register_user(
        self,
        name: str | None,
        email: str | None,
        wallet_ref: str | None,
        role: str | None,
    ) -> User:
        """Create a user. Email and wallet must both be unused."""
        violations = validate_user(name, email, wallet_ref, role)
        if violations:
            raise ValidationFailed(violations)
        assert name and email and wallet_ref and role

        email = email.strip().lower()
        wallet_ref = wallet_ref.strip()
        violations = self._uniqueness(email, wallet_ref)
        if violations:
            raise ValidationFailed(violations)

        user = self.store.create_user(name.strip(), email, wallet_ref, Role(role))
        logger.info("Registered %s %s", user.role.value, user.id)
        return user

    def get_profile(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFound("User", user_id)
        return user

    def update_profile(
        self,
        user_id: str,
        name: str | None = None,
        email: str | None = None,
        wallet_ref: str | None = None,
    ) -> User:
        """Change the given fields; blanks and Nones leave a field untouched."""
        self.get_profile(user_id)

        changes: dict[str, str] = {}
        violations: list[FieldViolation] = []
        if name and name.strip():
            changes["name"] = name.strip()
        if email and email.strip():
            violations.extend(validate_email(email))
            changes["email"] = email.strip().lower()
        if wallet_ref and wallet_ref.strip():
            changes["wallet_ref"] = wallet_ref.strip()
        if violations:
            raise ValidationFailed(violations)

        violations = self._uniqueness(
            changes.get("email"), changes.get("wallet_ref"), exclude_user_id=user_id
        )
        if violations:
            raise ValidationFailed(violations)

        if not changes:
            return self.get_profile(user_id)
        user = self.store.update_user(user_id, **changes)
        if user is None:
            raise NotFound("User", user_id)
        return user

    def _uniqueness(
        self,
        email: str | None,
        wallet_ref: str | None,
        exclude_user_id: str | None = None,
    ) -> list[FieldViolation]:
        violations: list[FieldViolation] = []
        if email:
            other = self.store.find_user_by_email(email)
            if other and other.id != exclude_user_id:
                violations.append(FieldViolation(field="email", message="User already exists"))
        if wallet_ref:
            other = self.store.find_user_by_wallet(wallet_ref)
            if other and other.id != exclude_user_id:
                violations.append(
                    FieldViolation(field="wallet_ref", message="Wallet address already registered")
                )
        return violations
