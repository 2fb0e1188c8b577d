from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import Forbidden, Unauthenticated
from app.modules.users.models import UserRole

# Password hashing context
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS
)


class Principal(BaseModel):
    """The authenticated caller extracted from a verified token"""
    id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # Unparseable stored hash
        return False


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def create_access_token(user_id: int, role: UserRole, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token embedding the user's id and role"""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = datetime.now(timezone.utc) + expires_delta

    role = UserRole.parse(role)
    if role is None:
        raise ValueError("Cannot issue a token for an unknown role")

    to_encode = {
        "sub": str(user_id),
        "id": user_id,
        "role": role.value,
        "type": "access",
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate JWT token signature and expiry"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise Unauthenticated("Invalid or expired token")


def normalize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Flatten a token payload.

    Older tokens nest the claims as ``{"user": {"id": ..., "role": ...}}``;
    current ones are flat. Top-level registered claims (exp, type) are kept.
    """
    nested = payload.get("user")
    if isinstance(nested, dict):
        flat = {key: value for key, value in payload.items() if key != "user"}
        flat.update(nested)
        return flat
    return dict(payload)


def verify_token(token: Optional[str]) -> Principal:
    """Verify a bearer token and return the principal it carries"""
    if not token:
        raise Unauthenticated("No token provided")

    payload = normalize_payload(decode_token(token))

    token_type = payload.get("type", "access")
    if token_type != "access":
        raise Unauthenticated("Invalid token type")

    raw_id = payload.get("id", payload.get("sub"))
    try:
        user_id = int(raw_id)
    except (TypeError, ValueError):
        raise Unauthenticated("Invalid token payload")

    role = UserRole.parse(payload.get("role"))
    if role is None:
        raise Unauthenticated("Invalid token payload")

    return Principal(id=user_id, role=role)


def require_role(principal: Principal, role: UserRole) -> Principal:
    """Fail with Forbidden unless the principal holds the given role"""
    required = UserRole.parse(role)
    if required is None or principal.role != required:
        raise Forbidden(f"Access denied. {str(role).capitalize()} role required.")
    return principal
