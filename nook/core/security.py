from dataclasses import dataclass
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from nook.core.config import settings
from nook.core.logging import logger

# Tokens are issued by the identity provider; this service only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/token")

ROLE_PARENT = "parent"
ROLE_ADMIN = "admin"

@dataclass(frozen=True)
class Principal:
    """Trusted caller identity produced from a verified token."""
    user_id: int
    role: str

def decode_principal(token: str) -> Principal:
    """Verify a bearer token and extract the (user id, role) pair."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning(f"Token validation failed: {type(e).__name__}: {e}")
        raise credentials_exception

    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role not in (ROLE_PARENT, ROLE_ADMIN):
        logger.warning(f"Token payload missing subject or carrying unknown role: {role}")
        raise credentials_exception

    try:
        return Principal(user_id=int(user_id), role=role)
    except ValueError:
        logger.warning(f"Invalid user id in token subject: {user_id}")
        raise credentials_exception

async def get_current_user(token: str = Depends(oauth2_scheme)) -> Principal:
    """Get the current authenticated principal."""
    return decode_principal(token)

async def require_parent(current_user: Principal = Depends(get_current_user)) -> Principal:
    if current_user.role not in (ROLE_PARENT, ROLE_ADMIN):
        raise HTTPException(status_code=403, detail="Parent access required")
    return current_user

async def require_admin(current_user: Principal = Depends(get_current_user)) -> Principal:
    if current_user.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return current_user
