"""
User accounts: registration, login, logout and password changes.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import bcrypt

from recordkeeper.documents import Role, fold_name
from recordkeeper.errors import (
    AuthenticationError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from recordkeeper.lifecycle import Attachment, RecordLifecycleManager
from recordkeeper.sessions import IssuedToken, SessionTokenService

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72


def parse_roles(value: Any) -> List[str]:
    """Accept a list of roles or a comma separated string such as ``"admin, customer"``."""
    if value is None or value == "" or value == []:
        return [Role.CUSTOMER.value]
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    roles = [str(item).strip() for item in items if str(item).strip()]
    return roles or [Role.CUSTOMER.value]


class AccountService:
    def __init__(
        self,
        users: RecordLifecycleManager,
        tokens: SessionTokenService,
        *,
        bcrypt_rounds: int = 12,
    ):
        self.users = users
        self.tokens = tokens
        self.bcrypt_rounds = bcrypt_rounds

    def hash_password(self, password: str) -> str:
        encoded = self._encode_password(password)
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode("utf-8")

    def check_password(self, password: str, hashed: str) -> bool:
        encoded = password.encode("utf-8")
        if not hashed or len(encoded) > MAX_PASSWORD_BYTES:
            return False
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))

    def register(
        self, fields: Mapping[str, Any], attachments: Sequence[Attachment] = ()
    ) -> dict:
        prepared: Dict[str, Any] = dict(fields)
        if not prepared.get("password"):
            raise ValidationError("Password is required")
        self._ensure_email_available(prepared.get("email"))
        prepared["password"] = self.hash_password(prepared["password"])
        prepared["roles"] = parse_roles(prepared.get("roles"))
        return self.users.create(prepared, attachments)

    def update_profile(
        self,
        user_id: str,
        fields: Mapping[str, Any],
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> dict:
        prepared: Dict[str, Any] = dict(fields)
        if prepared.get("password"):
            prepared["password"] = self.hash_password(prepared["password"])
        else:
            prepared.pop("password", None)
        if prepared.get("roles"):
            prepared["roles"] = parse_roles(prepared["roles"])
        else:
            prepared.pop("roles", None)
        if prepared.get("email"):
            self._ensure_email_available(prepared["email"], exclude_id=user_id)
        return self.users.update(user_id, prepared, attachments)

    def login(self, email: str, password: str) -> Tuple[dict, IssuedToken]:
        user = self.users.store.find_one_case_insensitive(self.users.spec.name, "email", email)
        if user is None:
            raise AuthenticationError("Wrong email or password")
        if not self.check_password(password, user.get("password", "")):
            raise AuthenticationError("Wrong email or password")
        issued = self.tokens.issue(user["email"], user.get("roles") or [])
        logger.info("User %s logged in", user["id"])
        return self.users.public_view(user), issued

    def logout(self, token: Optional[str]) -> None:
        if not token:
            raise AuthenticationError("You are not logged in")
        self.tokens.revoke(token)

    def update_password(
        self,
        user_id: str,
        old_password: str,
        new_password: str,
        confirm_password: str,
        identity: Optional[str] = None,
    ) -> dict:
        """
        Change a password after checking the old one. When ``identity`` is
        given it must be the email of the account being changed.
        """
        user = self.users.store.find_by_id(self.users.spec.name, user_id)
        if user is None:
            raise NotFoundError("User not found")
        if identity is not None and fold_name(identity) != fold_name(user.get("email", "")):
            raise AuthenticationError("You can only change your own password")
        if not self.check_password(old_password, user.get("password", "")):
            raise AuthenticationError("Invalid old password")
        if new_password != confirm_password:
            raise ValidationError("Passwords do not match")
        updated = self.users.store.update_by_id(
            self.users.spec.name,
            user_id,
            {"password": self.hash_password(new_password)},
            validate=True,
        )
        if updated is None:
            raise NotFoundError("User not found")
        logger.info("Password changed for user %s", user_id)
        return self.users.public_view(updated)

    def _ensure_email_available(
        self, email: Optional[str], exclude_id: Optional[str] = None
    ) -> None:
        if not isinstance(email, str) or not email:
            return
        existing = self.users.store.find_one_case_insensitive(
            self.users.spec.name, "email", email, exclude_id=exclude_id
        )
        if existing is not None:
            raise DuplicateError(f"Email {email} is already registered")

    def _encode_password(self, password: str) -> bytes:
        encoded = password.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise ValidationError(
                f"Password must be at most {MAX_PASSWORD_BYTES} bytes long"
            )
        return encoded
