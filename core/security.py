# core/security.py
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from core.config import settings
from core.database import get_store
from core.errors import NotAuthenticated
from models.models import User
from services.store import SQLStore


# ========================================
# 🔑 JWT / APP CONFIG
# ========================================
SECRET_KEY = settings.SECRET_KEY
ALGORITHM = settings.ALGORITHM or "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


# ========================================
# 🔐 Password Hashing (Argon2)
# ========================================
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "one uppercase letter"),
    (re.compile(r"[a-z]"), "one lowercase letter"),
    (re.compile(r"\d"), "one number"),
    (re.compile(r"[^A-Za-z0-9]"), "one special character"),
)


def hash_password(password: str) -> str:
    """Hash password using Argon2."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify password using Argon2. Accounts without a password never match."""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def password_problems(password: str) -> list:
    """Human-readable list of unmet password rules (empty when the password is acceptable)."""
    problems = []
    if len(password) < 8:
        problems.append("at least 8 characters")
    problems.extend(label for pattern, label in PASSWORD_RULES if not pattern.search(password))
    return problems


# ========================================
# 🔑 Token Helpers
# ========================================
def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def create_token_for_user(user: User) -> str:
    return create_access_token({"sub": user.email, "user_id": user.id})


def decode_token(token: str) -> dict:
    """Decode JWT and return payload."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise NotAuthenticated("Invalid or expired token.")


def generate_token() -> str:
    """Secure random token for invitation, password reset and account deletion links."""
    return secrets.token_urlsafe(32)


# ========================================
# 👤 Authentication
# ========================================
async def get_current_user(
    token: str = Depends(oauth2_scheme),
    store: SQLStore = Depends(get_store),
) -> User:
    """Extract user from token and load full record from the store."""
    payload = decode_token(token)
    user_id = payload.get("user_id")
    if not user_id:
        raise NotAuthenticated("Invalid token payload")

    user = await store.get_user(user_id)
    if not user:
        raise NotAuthenticated("User not found")
    return user
