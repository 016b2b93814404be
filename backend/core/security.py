"""
SalesCast Security Utilities

JWT issuance/verification and password hashing.
"""

import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from core.config import get_settings
from core.errors import UnauthenticatedError
from core.tenancy import Caller, Role

# Password hashing
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a password for storage."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    runtime_settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=runtime_settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, runtime_settings.jwt_secret, algorithm=runtime_settings.jwt_algorithm)


def create_token_for_user(user) -> str:
    """Issue a token carrying the claims the tenant gate needs."""
    return create_access_token(
        {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role,
            "company_id": str(user.company_id) if user.company_id else None,
        }
    )


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a locally issued access token."""
    runtime_settings = get_settings()
    try:
        return jwt.decode(
            token,
            runtime_settings.jwt_secret,
            algorithms=[runtime_settings.jwt_algorithm],
        )
    except JWTError:
        return None


def verify(token: str) -> Caller:
    """Resolve a bearer token to a Caller or raise UnauthenticatedError."""
    payload = decode_access_token(token)
    if payload is None:
        raise UnauthenticatedError("Invalid or expired token")

    try:
        user_id = uuid.UUID(str(payload["sub"]))
        role = Role(payload.get("role"))
        company_id = uuid.UUID(str(payload["company_id"])) if payload.get("company_id") else None
    except (KeyError, ValueError):
        raise UnauthenticatedError("Token is missing identity claims")

    if role == Role.COMPANY and company_id is None:
        raise UnauthenticatedError("Company token is missing company_id")
    return Caller(user_id=user_id, role=role, company_id=company_id)
