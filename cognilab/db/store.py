"""
Persistence backends.

The workflow engine talks to storage only through the Store interface:
generic select/insert/update/delete against the named lab tables. Two
implementations share the same row shapes:

- SupabaseStore: the hosted Postgres database
- MemoryStore: a deterministic in-memory fixture set for demos and tests

Backends raise StoreError on failure. The repository layer catches it.
"""

import copy
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import uuid4

import httpx
from postgrest.exceptions import APIError

from cognilab.config import get_lab_config
from cognilab.db.client import SupabaseClient, get_storage_client, is_configured

logger = logging.getLogger(__name__)

TABLES = ("users", "patients", "test_results", "billing", "audit_logs")


class StoreError(Exception):
  """The storage backend reported an error."""


class Store(ABC):
  """Generic table access used by the repositories."""

  @abstractmethod
  def select(
    self,
    table: str,
    filters: Optional[dict[str, Any]] = None,
    order_by: Optional[str] = None,
    desc: bool = False,
  ) -> list[dict]:
    """Rows matching every filter (equality), optionally ordered."""

  @abstractmethod
  def insert(self, table: str, row: dict) -> Optional[dict]:
    """Insert a row and return it as stored."""

  @abstractmethod
  def update(self, table: str, row_id: str, fields: dict) -> Optional[dict]:
    """Update a row by id; None when no row matched."""

  @abstractmethod
  def delete(self, table: str, row_id: str) -> bool:
    """Delete a row by id; False when no row matched."""


# =============================================================================
# SUPABASE
# =============================================================================


class SupabaseStore(Store):
  """Store backed by Supabase/Postgres tables."""

  def __init__(self, client: SupabaseClient):
    self._client = client

  def select(self, table, filters=None, order_by=None, desc=False):
    try:
      query = self._client.table(table).select("*")
      for column, value in (filters or {}).items():
        query = query.eq(column, value)
      if order_by:
        query = query.order(order_by, desc=desc)
      response = query.execute()
    except (APIError, httpx.HTTPError) as e:
      raise StoreError(f"select from {table} failed: {e}") from e
    return response.data or []

  def insert(self, table, row):
    try:
      response = self._client.table(table).insert(row).execute()
    except (APIError, httpx.HTTPError) as e:
      raise StoreError(f"insert into {table} failed: {e}") from e
    return response.data[0] if response.data else None

  def update(self, table, row_id, fields):
    try:
      response = self._client.table(table).update(fields).eq("id", row_id).execute()
    except (APIError, httpx.HTTPError) as e:
      raise StoreError(f"update of {table} failed: {e}") from e
    return response.data[0] if response.data else None

  def delete(self, table, row_id):
    try:
      response = self._client.table(table).delete().eq("id", row_id).execute()
    except (APIError, httpx.HTTPError) as e:
      raise StoreError(f"delete from {table} failed: {e}") from e
    return bool(response.data)


# =============================================================================
# IN-MEMORY
# =============================================================================


def _sort_key(item: tuple[int, dict], column: str) -> tuple:
  seq, row = item
  value = row.get(column)
  # Missing values sort before present ones
  if value is None:
    return (False, "", seq)
  return (True, value, seq)


class MemoryStore(Store):
  """
  In-memory tables with the same row shapes as the Supabase schema.

  Rows are copied on the way in and out, so callers never share state with
  the store. Ties in the ordering column fall back to insertion order.
  """

  def __init__(self, fixtures: Optional[dict[str, list[dict]]] = None):
    self._lock = threading.Lock()
    self._seq = itertools.count()
    self._tables: dict[str, list[tuple[int, dict]]] = {name: [] for name in TABLES}
    for table, rows in (fixtures or {}).items():
      for row in rows:
        self.insert(table, row)

  def _rows(self, table: str) -> list[tuple[int, dict]]:
    if table not in self._tables:
      raise StoreError(f"unknown table: {table}")
    return self._tables[table]

  def select(self, table, filters=None, order_by=None, desc=False):
    with self._lock:
      rows = [
        (seq, row) for seq, row in self._rows(table)
        if all(row.get(column) == value for column, value in (filters or {}).items())
      ]
      if order_by:
        rows.sort(key=lambda item: _sort_key(item, order_by), reverse=desc)
      return [copy.deepcopy(row) for _, row in rows]

  def insert(self, table, row):
    stored = copy.deepcopy(row)
    stored.setdefault("id", str(uuid4()))
    with self._lock:
      rows = self._rows(table)
      if any(existing["id"] == stored["id"] for _, existing in rows):
        raise StoreError(f"duplicate id in {table}: {stored['id']}")
      rows.append((next(self._seq), stored))
    return copy.deepcopy(stored)

  def update(self, table, row_id, fields):
    with self._lock:
      for _, row in self._rows(table):
        if row["id"] == row_id:
          row.update(copy.deepcopy(fields))
          return copy.deepcopy(row)
    return None

  def delete(self, table, row_id):
    with self._lock:
      rows = self._rows(table)
      for index, (_, row) in enumerate(rows):
        if row["id"] == row_id:
          del rows[index]
          return True
    return False


# -----------------------------------------------------------------------------
# Singleton
# -----------------------------------------------------------------------------

_store: Optional[Store] = None


def use_mock_data() -> bool:
  """Mock data is used when requested or when Supabase is not configured."""
  return get_lab_config().use_mock_data or not is_configured()


def get_store() -> Store:
  """
  Get the active store (singleton).

  Selects the in-memory fixture store or Supabase from configuration.
  """
  global _store
  if _store is None:
    if use_mock_data():
      from cognilab.db.fixtures import fixture_tables
      logger.info("Using in-memory fixture store")
      _store = MemoryStore(fixture_tables())
    else:
      client = get_storage_client()
      _store = SupabaseStore(client)
  return _store


def set_store(store: Store) -> None:
  """Swap in a different store."""
  global _store
  _store = store


def reset_store() -> None:
  global _store
  _store = None
