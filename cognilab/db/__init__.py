"""
Database module for CogniLab.

Provides the Supabase client, the storage backends and repository classes
for data access.
"""

from cognilab.db.client import get_client, get_storage_client, SupabaseClient
from cognilab.db.store import (
  Store,
  StoreError,
  SupabaseStore,
  MemoryStore,
  get_store,
  set_store,
  reset_store,
  use_mock_data,
)
from cognilab.db.repositories import (
  UserRepository,
  PatientRepository,
  TestResultRepository,
  BillingRepository,
  AuditLogRepository,
)

__all__ = [
  "get_client",
  "get_storage_client",
  "SupabaseClient",
  "Store",
  "StoreError",
  "SupabaseStore",
  "MemoryStore",
  "get_store",
  "set_store",
  "reset_store",
  "use_mock_data",
  "UserRepository",
  "PatientRepository",
  "TestResultRepository",
  "BillingRepository",
  "AuditLogRepository",
]
