"""
Repository classes for database operations.

Each repository handles CRUD operations for one lab table and converts rows
into models. Storage failures never reach the caller: they are logged and
surface as "no result" (None, [] or False).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from cognilab.db.store import Store, StoreError, get_store
from cognilab.models import (
  AuditLogEntry,
  BillingEntry,
  Patient,
  TestResult,
  User,
  utcnow,
)

logger = logging.getLogger(__name__)


class BaseRepository:
  """Base class for all repositories: read and insert."""

  table_name: str = ""
  model: Any = None
  order_column: str = "created_at"

  def __init__(self, store: Optional[Store] = None):
    """
    Initialize repository with optional store.

    Args:
      store: Store to use. If None, gets the configured store.
    """
    self._store = store or get_store()

  @property
  def store(self) -> Store:
    return self._store

  def _to_dict(self, obj: Any) -> dict:
    """Convert object to dict for storage."""
    if hasattr(obj, "model_dump"):
      return obj.model_dump(mode="json", exclude_none=True)
    elif isinstance(obj, dict):
      return obj
    else:
      raise ValueError(f"Cannot convert {type(obj)} to dict")

  def _wrap(self, row: Optional[dict]):
    return self.model.from_db(row) if row else None

  def get_by_id(self, row_id: str) -> Optional[Any]:
    """Get a row by ID."""
    try:
      rows = self._store.select(self.table_name, filters={"id": str(row_id)})
    except StoreError as e:
      logger.error("Error fetching %s %s: %s", self.table_name, row_id, e)
      return None
    return self._wrap(rows[0]) if rows else None

  def list(self, desc: bool = True, **filters) -> list:
    """List rows, most recent first by default."""
    try:
      rows = self._store.select(
        self.table_name,
        filters=filters or None,
        order_by=self.order_column,
        desc=desc,
      )
    except StoreError as e:
      logger.error("Error fetching %s: %s", self.table_name, e)
      return []
    return [self._wrap(row) for row in rows]

  def create(self, data: Any) -> Optional[Any]:
    """Insert a new row."""
    row = dict(self._to_dict(data))
    row.setdefault(self.order_column, utcnow().isoformat())
    try:
      stored = self._store.insert(self.table_name, row)
    except StoreError as e:
      logger.error("Error adding %s: %s", self.table_name, e)
      return None
    return self._wrap(stored)


class MutableRepository(BaseRepository):
  """Repository whose rows may be updated and deleted."""

  def update(self, row_id: str, **fields) -> Optional[Any]:
    """Update a row."""
    try:
      stored = self._store.update(self.table_name, str(row_id), fields)
    except StoreError as e:
      logger.error("Error updating %s %s: %s", self.table_name, row_id, e)
      return None
    return self._wrap(stored)

  def delete(self, row_id: str) -> bool:
    """Delete a row."""
    try:
      return self._store.delete(self.table_name, str(row_id))
    except StoreError as e:
      logger.error("Error deleting %s %s: %s", self.table_name, row_id, e)
      return False


class UserRepository(MutableRepository):
  """Repository for user accounts."""

  table_name = "users"
  model = User

  def get_by_email(self, email: str) -> Optional[User]:
    """Get user by email (case-insensitive)."""
    wanted = email.strip().lower()
    for user in self.list():
      if user.email.lower() == wanted:
        return user
    return None

  def update(self, row_id: str, **fields) -> Optional[User]:
    fields.setdefault("updated_at", utcnow().isoformat())
    return super().update(row_id, **fields)


class PatientRepository(MutableRepository):
  """Repository for registered patients."""

  table_name = "patients"
  model = Patient
  order_column = "date_registered"

  def get_by_patient_id_no(self, patient_id_no: str) -> Optional[Patient]:
    patients = self.list(patient_id_no=patient_id_no)
    return patients[0] if patients else None


class TestResultRepository(MutableRepository):
  """Repository for test results."""

  __test__ = False

  table_name = "test_results"
  model = TestResult
  order_column = "date_created"

  def get_by_patient(self, patient_id: str) -> list[TestResult]:
    return self.list(patient_id=str(patient_id))

  def get_by_patient_name(self, patient_name: str) -> list[TestResult]:
    return self.list(patient_name=patient_name)


class BillingRepository(MutableRepository):
  """
  Repository for billing entries.

  The amount column is written once, on insert.
  """

  table_name = "billing"
  model = BillingEntry

  def update(self, row_id: str, **fields) -> Optional[BillingEntry]:
    if "amount" in fields:
      raise ValueError("Billing amount is fixed at creation")
    return super().update(row_id, **fields)

  def find(self, test_name: str, patient_name: str) -> Optional[BillingEntry]:
    """Most recent line for an exact (test name, patient name) pair."""
    entries = self.list(test_name=test_name, patient_name=patient_name)
    return entries[0] if entries else None

  def get_by_patient(self, patient_id: str) -> list[BillingEntry]:
    return self.list(patient_id=str(patient_id))

  def get_by_patient_name(self, patient_name: str) -> list[BillingEntry]:
    return self.list(patient_name=patient_name)


class AuditLogRepository(BaseRepository):
  """Repository for the append-only audit log. No update or delete."""

  table_name = "audit_logs"
  model = AuditLogEntry
