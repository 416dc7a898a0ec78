"""
Supabase connection for CogniLab.

Two clients are kept: the anon-key client carries user sign-in, and the
storage client reads and writes the lab tables. The storage client uses the
service-role key when one is set so that audit rows are never blocked by
per-user Row Level Security policies.
"""

import logging
import os
from typing import Optional

from supabase import create_client, Client

logger = logging.getLogger(__name__)


class SupabaseSettings:
  """Connection settings read from SUPABASE_* environment variables."""

  def __init__(self):
    self.url = os.environ.get("SUPABASE_URL")
    self.anon_key = os.environ.get("SUPABASE_ANON_KEY")
    self.service_key = os.environ.get("SUPABASE_SERVICE_KEY")

  @property
  def is_configured(self) -> bool:
    return bool(self.url and self.anon_key)

  def require(self) -> None:
    """Raise ValueError naming the first missing variable."""
    for name, value in (("SUPABASE_URL", self.url), ("SUPABASE_ANON_KEY", self.anon_key)):
      if not value:
        raise ValueError(f"{name} environment variable not set")


class SupabaseClient:
  """
  Thin wrapper over supabase.Client.

  Exposes table access for the store and the three auth calls the Supabase
  auth provider makes.
  """

  def __init__(self, client: Client):
    self._client = client

  def table(self, name: str):
    return self._client.table(name)

  def sign_in_with_password(self, email: str, password: str):
    return self._client.auth.sign_in_with_password({"email": email, "password": password})

  def sign_out(self) -> None:
    self._client.auth.sign_out()

  def get_user(self, access_token: str):
    """Resolve a bearer token to its Supabase user."""
    return self._client.auth.get_user(access_token)


# -----------------------------------------------------------------------------
# Singleton instances
# -----------------------------------------------------------------------------

_settings: Optional[SupabaseSettings] = None
_client: Optional[SupabaseClient] = None
_storage_client: Optional[SupabaseClient] = None


def get_settings() -> SupabaseSettings:
  global _settings
  if _settings is None:
    _settings = SupabaseSettings()
  return _settings


def is_configured() -> bool:
  """Check if Supabase is configured without raising errors."""
  return get_settings().is_configured


def get_client() -> SupabaseClient:
  """The anon-key client used for sign-in (singleton)."""
  global _client
  if _client is None:
    settings = get_settings()
    settings.require()
    _client = SupabaseClient(create_client(settings.url, settings.anon_key))
  return _client


def get_storage_client() -> SupabaseClient:
  """
  The client the store writes through (singleton).

  Falls back to the anon-key client when no service-role key is set.
  """
  global _storage_client
  if _storage_client is None:
    settings = get_settings()
    if settings.service_key:
      settings.require()
      _storage_client = SupabaseClient(create_client(settings.url, settings.service_key))
    else:
      logger.warning("SUPABASE_SERVICE_KEY not set; lab tables are accessed with the anon key")
      _storage_client = get_client()
  return _storage_client


def reset_clients() -> None:
  """Reset client singletons (useful for testing)."""
  global _settings, _client, _storage_client
  _settings = None
  _client = None
  _storage_client = None
