"""
Authentication dependencies
"""
from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from ..core.security import decode_token
from ..db import get_db
from ..models.user import User
from ..services.users import UserService


def _bearer_claims(request: Request) -> dict:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header"
        )

    token = auth_header[7:]  # Remove "Bearer " prefix

    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject"
        )
    return payload


def get_current_user_id(request: Request) -> str:
    """Identity provider uid from the bearer token's `sub` claim."""
    return str(_bearer_claims(request)["sub"])


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """The authenticated user, created on first sight."""
    claims = _bearer_claims(request)
    return UserService.get_or_create(db, str(claims["sub"]), claims.get("email"))
