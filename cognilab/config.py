"""
Application configuration for CogniLab.

Settings come from environment variables. Supabase connection settings live
in cognilab.db.client; this module holds the lab-level switches.
"""

import logging
import os
from typing import Optional

_TRUTHY = {"1", "true", "yes", "on"}


class LabConfig:
  """Lab-level configuration."""

  def __init__(self):
    self.use_mock_data = os.environ.get("COGNILAB_USE_MOCK_DATA", "").strip().lower() in _TRUTHY
    self.log_level = os.environ.get("COGNILAB_LOG_LEVEL", "INFO").upper()
    # Signs mock-mode session tokens; Supabase signs its own
    self.jwt_secret = os.environ.get("COGNILAB_JWT_SECRET", "cognilab-dev-secret")
    self.session_hours = int(os.environ.get("COGNILAB_SESSION_HOURS", "8"))


_config: Optional[LabConfig] = None


def get_lab_config() -> LabConfig:
  """Get the lab configuration (singleton)."""
  global _config
  if _config is None:
    _config = LabConfig()
  return _config


def reset_lab_config() -> None:
  """Reset the configuration singleton (useful for testing)."""
  global _config
  _config = None


def configure_logging(level: Optional[str] = None) -> None:
  """Configure root logging for the server and CLI."""
  logging.basicConfig(
    level=(level or get_lab_config().log_level),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
  )
