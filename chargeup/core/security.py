"""
JWT helpers. Tokens are issued by the identity provider; `sub` is the uid.
"""
from datetime import timedelta
from typing import Any, Dict, Optional

from jose import jwt

from .clock import utcnow
from .config import settings


def create_access_token(user_id: str, email: Optional[str] = None, expires_minutes: int = 60) -> str:
    """Mint a token the API accepts (local development and tests)."""
    now = utcnow()
    claims: Dict[str, Any] = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    if email:
        claims["email"] = email
    if settings.JWT_AUDIENCE:
        claims["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Raises jose.JWTError (or ExpiredSignatureError) on a bad token."""
    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    kwargs = {"audience": settings.JWT_AUDIENCE} if settings.JWT_AUDIENCE else {}
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.ALGORITHM], options=options, **kwargs)
