"""
Authentication providers.

SupabaseAuthProvider delegates to Supabase Auth. MockAuthProvider signs its
own HS256 session tokens for the fixture accounts and is used whenever the
lab runs on mock data. Both resolve a session to the lab's own User profile,
matched by email.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from jose import JWTError, jwt

from cognilab.config import get_lab_config
from cognilab.db.client import SupabaseClient, get_client
from cognilab.db.fixtures import MOCK_CREDENTIALS
from cognilab.db.repositories import UserRepository
from cognilab.db.store import use_mock_data
from cognilab.models import User, UserStatus, utcnow

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

AuthListener = Callable[[str, Optional["Session"]], None]


class AuthError(Exception):
  """Sign-in refused or session token rejected."""


@dataclass
class Session:
  """A signed-in user and the bearer token that identifies them."""
  access_token: str
  user: User
  expires_at: Optional[datetime] = None


class AuthProvider(ABC):
  """Sign-in, sign-out and session lookup."""

  def __init__(self, users: Optional[UserRepository] = None):
    self._users = users or UserRepository()
    self._listeners: dict[int, AuthListener] = {}
    self._tokens = itertools.count(1)
    self._lock = threading.Lock()

  @abstractmethod
  def sign_in_with_password(self, email: str, password: str) -> Session:
    """Sign in; raises AuthError on bad credentials."""

  @abstractmethod
  def sign_out(self, access_token: str) -> None:
    """End the session identified by access_token."""

  @abstractmethod
  def get_session(self, access_token: str) -> Optional[Session]:
    """The live session for a token, None if the token is not valid."""

  def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
    """
    Call callback(event, session) on SIGNED_IN and SIGNED_OUT.

    Returns an unsubscribe function.
    """
    with self._lock:
      token = next(self._tokens)
      self._listeners[token] = callback

    def unsubscribe() -> None:
      with self._lock:
        self._listeners.pop(token, None)

    return unsubscribe

  def _emit(self, event: str, session: Optional[Session]) -> None:
    with self._lock:
      listeners = list(self._listeners.values())
    for callback in listeners:
      try:
        callback(event, session)
      except Exception:
        logger.exception("Auth listener failed on %s", event)

  def _profile(self, email: Optional[str]) -> Optional[User]:
    if not email:
      return None
    user = self._users.get_by_email(email)
    if user is None or user.status != UserStatus.ACTIVE:
      return None
    return user


# =============================================================================
# SUPABASE
# =============================================================================


class SupabaseAuthProvider(AuthProvider):
  """Supabase Auth for credentials; the users table for the lab profile."""

  def __init__(self, client: Optional[SupabaseClient] = None, users: Optional[UserRepository] = None):
    super().__init__(users)
    self._client = client or get_client()

  def sign_in_with_password(self, email, password):
    try:
      response = self._client.sign_in_with_password(email, password)
    except Exception as e:
      logger.info("Supabase sign-in refused for %s: %s", email, e)
      raise AuthError("Invalid email or password") from e

    if not response or not response.session:
      raise AuthError("Invalid email or password")
    user = self._profile(response.user.email if response.user else email)
    if user is None:
      raise AuthError("No active lab account for this email")

    expires_at = None
    if getattr(response.session, "expires_at", None):
      expires_at = datetime.fromtimestamp(response.session.expires_at).astimezone()
    session = Session(access_token=response.session.access_token, user=user, expires_at=expires_at)
    self._emit(SIGNED_IN, session)
    return session

  def sign_out(self, access_token):
    session = self.get_session(access_token)
    try:
      self._client.sign_out()
    except Exception as e:
      logger.warning("Supabase sign-out failed: %s", e)
    self._emit(SIGNED_OUT, session)

  def get_session(self, access_token):
    try:
      response = self._client.get_user(access_token)
    except Exception as e:
      logger.debug("Token rejected by Supabase: %s", e)
      return None
    if not response or not response.user:
      return None
    user = self._profile(response.user.email)
    if user is None:
      return None
    return Session(access_token=access_token, user=user)


# =============================================================================
# MOCK
# =============================================================================


class MockAuthProvider(AuthProvider):
  """
  Local sign-in against the fixture credentials.

  Tokens are HS256 JWTs signed with COGNILAB_JWT_SECRET. Signing out
  revokes the token for the life of the process.
  """

  def __init__(
    self,
    users: Optional[UserRepository] = None,
    credentials: Optional[dict[str, str]] = None,
    secret: Optional[str] = None,
    session_hours: Optional[int] = None,
  ):
    super().__init__(users)
    config = get_lab_config()
    source = MOCK_CREDENTIALS if credentials is None else credentials
    self._credentials = {email.lower(): password for email, password in source.items()}
    self._secret = secret or config.jwt_secret
    self._session_hours = session_hours or config.session_hours
    self._revoked: set[str] = set()

  def sign_in_with_password(self, email, password):
    expected = self._credentials.get((email or "").strip().lower())
    if expected is None or expected != password:
      raise AuthError("Invalid email or password")
    user = self._profile(email.strip())
    if user is None:
      raise AuthError("No active lab account for this email")

    issued = utcnow()
    expires_at = issued + timedelta(hours=self._session_hours)
    claims = {
      "sub": user.id,
      "email": user.email,
      "role": user.role.value,
      "iat": int(issued.timestamp()),
      "exp": int(expires_at.timestamp()),
      "jti": uuid4().hex,
    }
    token = jwt.encode(claims, self._secret, algorithm=ALGORITHM)
    session = Session(access_token=token, user=user, expires_at=expires_at)
    self._emit(SIGNED_IN, session)
    return session

  def sign_out(self, access_token):
    session = self.get_session(access_token)
    if session is None:
      return
    with self._lock:
      self._revoked.add(self._claims(access_token)["jti"])
    self._emit(SIGNED_OUT, session)

  def _claims(self, access_token: str) -> dict:
    return jwt.decode(access_token, self._secret, algorithms=[ALGORITHM])

  def get_session(self, access_token):
    try:
      claims = self._claims(access_token)
    except JWTError as e:
      logger.debug("Mock token rejected: %s", e)
      return None
    with self._lock:
      if claims.get("jti") in self._revoked:
        return None
    user = self._profile(claims.get("email"))
    if user is None or user.id != claims.get("sub"):
      return None
    return Session(
      access_token=access_token,
      user=user,
      expires_at=datetime.fromtimestamp(claims["exp"]).astimezone(),
    )


# -----------------------------------------------------------------------------
# Singleton instance
# -----------------------------------------------------------------------------

_provider: Optional[AuthProvider] = None


def get_auth_provider() -> AuthProvider:
  """Mock provider on mock data, Supabase otherwise (singleton)."""
  global _provider
  if _provider is None:
    _provider = MockAuthProvider() if use_mock_data() else SupabaseAuthProvider()
  return _provider


def set_auth_provider(provider: AuthProvider) -> None:
  global _provider
  _provider = provider


def reset_auth_provider() -> None:
  """Reset the provider singleton (useful for testing)."""
  global _provider
  _provider = None
