"""
User account models for CogniLab.

Accounts are either members (medical technologists) or faculty (laboratory
director/administrator). The lab runs with at most one faculty account and
eight member accounts.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from cognilab.models.lab import utcnow


MAX_FACULTY_USERS = 1
MAX_MEMBER_USERS = 8


class UserRole(str, Enum):
  """User roles for access control."""

  MEMBER = "member"    # MedTech
  FACULTY = "faculty"  # Admin / laboratory director

  @property
  def limit(self) -> int:
    return MAX_FACULTY_USERS if self is UserRole.FACULTY else MAX_MEMBER_USERS


class UserStatus(str, Enum):
  ACTIVE = "active"
  INACTIVE = "inactive"


class User(BaseModel):
  """
  User profile.

  Links to Supabase auth.users by email and carries the encryption key
  shown next to the user's audit entries.
  """

  id: str
  full_name: str
  email: str
  role: UserRole = UserRole.MEMBER
  department: str = ""
  status: UserStatus = UserStatus.ACTIVE
  encryption_key: str = "N/A"
  join_date: Optional[date] = None
  last_login: Optional[datetime] = None
  created_at: datetime = Field(default_factory=utcnow)
  updated_at: datetime = Field(default_factory=utcnow)

  class Config:
    from_attributes = True

  @property
  def is_faculty(self) -> bool:
    """Check if user is the faculty administrator."""
    return self.role == UserRole.FACULTY

  @classmethod
  def from_db(cls, data: dict) -> "User":
    """Create User from database row."""
    return cls(
      id=str(data["id"]),
      full_name=data.get("full_name") or "",
      email=data.get("email") or "",
      role=data.get("role") or UserRole.MEMBER,
      department=data.get("department") or "",
      status=data.get("status") or UserStatus.ACTIVE,
      encryption_key=data.get("encryption_key") or "N/A",
      join_date=data.get("join_date"),
      last_login=data.get("last_login"),
      created_at=data.get("created_at") or utcnow(),
      updated_at=data.get("updated_at") or utcnow(),
    )
