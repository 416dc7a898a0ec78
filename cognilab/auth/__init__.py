"""
Authentication module for CogniLab.

Provides session providers and user context for FastAPI.
"""

from cognilab.auth.middleware import (
  AuthenticatedUser,
  get_current_user,
  get_current_user_optional,
  get_faculty_user,
)
from cognilab.auth.provider import (
  SIGNED_IN,
  SIGNED_OUT,
  AuthError,
  AuthProvider,
  MockAuthProvider,
  Session,
  SupabaseAuthProvider,
  get_auth_provider,
  reset_auth_provider,
  set_auth_provider,
)

__all__ = [
  "AuthenticatedUser",
  "get_current_user",
  "get_current_user_optional",
  "get_faculty_user",
  "SIGNED_IN",
  "SIGNED_OUT",
  "AuthError",
  "AuthProvider",
  "MockAuthProvider",
  "Session",
  "SupabaseAuthProvider",
  "get_auth_provider",
  "reset_auth_provider",
  "set_auth_provider",
]
