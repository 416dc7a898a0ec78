"""
Audit log models.

Audit entries are append-only: they are never updated or deleted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from cognilab.models.lab import utcnow


class AuditAction(str, Enum):
  LOGIN = "login"
  LOGOUT = "logout"
  VIEW = "view"
  EDIT = "edit"
  DELETE = "delete"
  DOWNLOAD = "download"


@dataclass(frozen=True)
class Actor:
  """Who performed an action, as recorded in the audit log."""
  name: str
  encryption_key: str = "N/A"
  id: Optional[str] = None
  ip_address: Optional[str] = None


SYSTEM_ACTOR = Actor(name="System", encryption_key="SYSTEM")


class AuditLogEntry(BaseModel):
  """A single audit record."""

  id: str
  user_id: Optional[str] = None
  user_name: str
  encryption_key: str = "N/A"
  action: AuditAction
  resource: str
  resource_type: str
  description: str = ""
  ip_address: str = "N/A"
  created_at: datetime = Field(default_factory=utcnow)

  @classmethod
  def from_db(cls, data: dict) -> "AuditLogEntry":
    """Create AuditLogEntry from a database row."""
    return cls(
      id=str(data["id"]),
      user_id=str(data["user_id"]) if data.get("user_id") else None,
      user_name=data.get("user_name") or "",
      encryption_key=data.get("encryption_key") or "N/A",
      action=data["action"],
      resource=data.get("resource") or "",
      resource_type=data.get("resource_type") or "",
      description=data.get("description") or "",
      ip_address=data.get("ip_address") or "N/A",
      created_at=data.get("created_at") or utcnow(),
    )
