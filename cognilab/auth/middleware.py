"""
FastAPI dependencies that turn a bearer token into a lab user.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from cognilab.auth.provider import Session, get_auth_provider
from cognilab.models import Actor, UserRole


# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)


@dataclass
class AuthenticatedUser:
  """The signed-in lab user behind a request."""
  id: str
  email: str
  full_name: str
  role: str = UserRole.MEMBER.value
  encryption_key: str = "N/A"
  access_token: str = ""
  ip_address: Optional[str] = None

  @property
  def is_faculty(self) -> bool:
    return self.role == UserRole.FACULTY.value

  def as_actor(self) -> Actor:
    """The audit identity for actions taken by this user."""
    return Actor(
      name=self.full_name,
      encryption_key=self.encryption_key,
      id=self.id,
      ip_address=self.ip_address,
    )

  @classmethod
  def from_session(cls, session: Session, ip_address: Optional[str] = None) -> "AuthenticatedUser":
    user = session.user
    return cls(
      id=user.id,
      email=user.email,
      full_name=user.full_name,
      role=user.role.value,
      encryption_key=user.encryption_key,
      access_token=session.access_token,
      ip_address=ip_address,
    )


def client_ip(request: Request) -> Optional[str]:
  forwarded = request.headers.get("x-forwarded-for")
  if forwarded:
    return forwarded.split(",")[0].strip()
  return request.client.host if request.client else None


def _resolve(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[AuthenticatedUser]:
  if not credentials:
    return None
  session = get_auth_provider().get_session(credentials.credentials)
  if session is None:
    return None
  return AuthenticatedUser.from_session(session, ip_address=client_ip(request))


async def get_current_user(
  request: Request,
  credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
  """The signed-in user; 401 when the token is missing, revoked or expired."""
  if not credentials:
    raise HTTPException(
      status_code=status.HTTP_401_UNAUTHORIZED,
      detail="Authentication required",
      headers={"WWW-Authenticate": "Bearer"},
    )

  user = _resolve(request, credentials)
  if user is None:
    raise HTTPException(
      status_code=status.HTTP_401_UNAUTHORIZED,
      detail="Invalid or expired token",
      headers={"WWW-Authenticate": "Bearer"},
    )
  return user


async def get_current_user_optional(
  request: Request,
  credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[AuthenticatedUser]:
  """The signed-in user, or None for anonymous requests and bad tokens."""
  return _resolve(request, credentials)


async def get_faculty_user(
  user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
  """The signed-in user, who must hold the faculty role (403 otherwise)."""
  if not user.is_faculty:
    raise HTTPException(
      status_code=status.HTTP_403_FORBIDDEN,
      detail="Faculty access required",
    )
  return user
