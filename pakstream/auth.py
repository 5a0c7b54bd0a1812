"""
Authentication dependencies.

User tokens are issued by the auth service and only verified here. Edge
servers authenticate server-to-server calls with a pre-shared api key in the
``X-Api-Key`` header.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from .config import get_settings
from .models.edge_server import EdgeServer

settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

ACCESS_TOKEN_MINUTES = 60


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token (ops scripts and tests)."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_MINUTES))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str, expected_type: str = "access") -> Optional[dict]:
    """Verify a JWT token and return its payload."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        if payload.get("type", "access") != expected_type:
            return None
        return payload
    except JWTError:
        return None


def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[dict]:
    """Claims of the caller's token (optional auth)."""
    if not token:
        return None

    payload = verify_token(token, "access")
    if not payload or payload.get("sub") is None:
        return None

    return {
        "id": str(payload["sub"]),
        "role": payload.get("role", "user"),
    }


def get_required_user(current_user: Optional[dict] = Depends(get_current_user)) -> dict:
    """Get the current user, raising 401 if not authenticated."""
    if not current_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return current_user


def require_admin(current_user: dict = Depends(get_required_user)) -> dict:
    """Get the current user, raising 403 unless they are an admin."""
    if current_user["role"] != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


def get_edge_server(request: Request, x_api_key: Optional[str] = Header(None)) -> EdgeServer:
    """Authenticate an edge server by its api key."""
    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="API key required")

    server = request.app.state.edge_registry.find_by_api_key(x_api_key)
    if server is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
    return server
