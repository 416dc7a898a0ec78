"""
User directory.

The lab runs with at most one faculty account and eight member accounts.
Each account gets an encryption key at creation, which is shown next to the
user's audit entries.
"""

from __future__ import annotations

import logging
import secrets
import string
from typing import Optional

import pydantic
from pydantic import BaseModel, EmailStr

from cognilab.db.repositories import UserRepository
from cognilab.db.store import Store
from cognilab.engines.audit import AuditTrail
from cognilab.engines.errors import BusinessRuleError, ValidationError
from cognilab.models import Actor, AuditAction, User, UserRole, UserStatus, utcnow

logger = logging.getLogger(__name__)

KEY_PREFIX = "ENC_KEY_"
KEY_ALPHABET = string.ascii_uppercase + string.digits
KEY_LENGTH = 9


def generate_encryption_key() -> str:
    """ENC_KEY_ followed by 9 uppercase letters or digits."""
    return KEY_PREFIX + "".join(secrets.choice(KEY_ALPHABET) for _ in range(KEY_LENGTH))


class UserForm(BaseModel):
    full_name: str
    email: EmailStr
    role: UserRole = UserRole.MEMBER
    department: str


_REQUIRED = {
    "full_name": "Full name is required",
    "email": "Email is required",
    "department": "Department is required",
}


def validate_user(data: dict) -> UserForm:
    errors = {
        field: message for field, message in _REQUIRED.items()
        if not str(data.get(field) or "").strip()
    }
    if errors:
        raise ValidationError(errors)
    try:
        return UserForm(
            full_name=str(data["full_name"]).strip(),
            email=str(data["email"]).strip(),
            role=data.get("role") or UserRole.MEMBER,
            department=str(data["department"]).strip(),
        )
    except pydantic.ValidationError as e:
        raise ValidationError({
            str(err["loc"][0]): err["msg"] for err in e.errors()
        }) from e


class UserDirectory:
    """Create, edit and remove lab accounts within the role caps."""

    def __init__(
        self,
        repository: Optional[UserRepository] = None,
        audit: Optional[AuditTrail] = None,
        store: Optional[Store] = None,
    ):
        self._repo = repository or UserRepository(store)
        self.audit = audit or AuditTrail(store=self._repo.store)

    def counts(self, exclude_id: Optional[str] = None) -> dict[str, int]:
        """Accounts per role, optionally leaving one account out."""
        counts = {role.value: 0 for role in UserRole}
        for user in self._repo.list():
            if user.id != exclude_id:
                counts[user.role.value] += 1
        return counts

    def _check_cap(self, role: UserRole, exclude_id: Optional[str] = None) -> None:
        if self.counts(exclude_id)[role.value] >= role.limit:
            message = f"Maximum {role.limit} {role.value} user{'s' if role.limit > 1 else ''} allowed"
            raise BusinessRuleError(message, details={"role": message})

    def _check_email(self, email: str, exclude_id: Optional[str] = None) -> None:
        existing = self._repo.get_by_email(email)
        if existing is not None and existing.id != exclude_id:
            raise BusinessRuleError(
                "Email is already in use",
                details={"email": "Email is already in use"},
            )

    def create(self, data: dict, actor: Optional[Actor] = None) -> Optional[User]:
        """
        Add an account.

        Raises ValidationError for a bad form and BusinessRuleError when the
        role is full or the email is taken.
        """
        form = validate_user(data)
        self._check_cap(form.role)
        self._check_email(form.email)

        user = self._repo.create({
            **form.model_dump(mode="json"),
            "status": UserStatus.ACTIVE.value,
            "encryption_key": generate_encryption_key(),
        })
        if user is None:
            return None
        self.audit.append(
            AuditAction.EDIT,
            resource=user.full_name,
            resource_type="user",
            description=f"Created {user.role.value} user {user.full_name} ({user.email})",
            actor=actor,
        )
        return user

    def update(self, user_id: str, data: dict, actor: Optional[Actor] = None) -> Optional[User]:
        """Edit name, email, role or department. The encryption key is kept."""
        user = self._repo.get_by_id(user_id)
        if user is None:
            return None

        current = {
            "full_name": user.full_name,
            "email": user.email,
            "role": user.role.value,
            "department": user.department,
        }
        form = validate_user({**current, **{k: v for k, v in data.items() if k in current}})
        if form.role != user.role:
            self._check_cap(form.role, exclude_id=user_id)
        if form.email.lower() != user.email.lower():
            self._check_email(form.email, exclude_id=user_id)

        changed = {
            field: value for field, value in form.model_dump(mode="json").items()
            if current[field] != value
        }
        if not changed:
            return user

        updated = self._repo.update(user_id, **changed)
        if updated is None:
            return None
        self.audit.append(
            AuditAction.EDIT,
            resource=updated.full_name,
            resource_type="user",
            description=f"Updated user {updated.full_name}: {', '.join(sorted(changed))}",
            actor=actor,
        )
        return updated

    def delete(self, user_id: str, actor: Optional[Actor] = None) -> bool:
        user = self._repo.get_by_id(user_id)
        if user is None:
            return False
        if actor is not None and actor.id == user_id:
            raise BusinessRuleError("You cannot delete your own account")
        if not self._repo.delete(user_id):
            return False
        self.audit.append(
            AuditAction.DELETE,
            resource=user.full_name,
            resource_type="user",
            description=f"Deleted {user.role.value} user {user.full_name} ({user.email})",
            actor=actor,
        )
        return True

    def record_login(self, user_id: str) -> Optional[User]:
        """Stamp last_login. Not audited; the sign-in itself is."""
        return self._repo.update(user_id, last_login=utcnow().isoformat())

    def get(self, user_id: str) -> Optional[User]:
        return self._repo.get_by_id(user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        return self._repo.get_by_email(email)

    def list(self, role: Optional[UserRole | str] = None) -> list[User]:
        if role:
            return self._repo.list(role=UserRole(role).value)
        return self._repo.list()
