from datetime import timedelta
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from loguru import logger

from mspark.core.clock import utcnow
from mspark.core.config import settings
from mspark.models.user import User, UserRole
from mspark.services.container import Services

jwt_bearer = HTTPBearer()


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a JWT for a user (used by the auth service and in tests)"""
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode = {
        "sub": user.email,
        "user_id": str(user.id),
        "role": user.role.value,
        "exp": expire,
    }
    try:
        return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
    except JWTError as e:
        logger.error(f"JWT encoding error: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Token creation failed"
        )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(jwt_bearer)
) -> User:
    """Resolve the user behind the bearer JWT"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(credentials.credentials, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        logger.error(f"Authentication error: {str(e)}")
        raise credentials_exception

    user_id = payload.get("user_id")
    email = payload.get("sub")
    if user_id:
        user = await User.get_or_none(id=user_id, is_deleted=False)
    elif email:
        user = await User.get_or_none(email=email, is_deleted=False)
    else:
        raise credentials_exception

    if not user:
        logger.warning(f"Token for unknown user {user_id or email}")
        raise credentials_exception
    return user


async def get_current_active_user(user: User = Depends(get_current_user)) -> User:
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Inactive user"
        )
    return user


async def admin_required(user: User = Depends(get_current_active_user)) -> User:
    if not user.is_admin:
        logger.warning(f"Admin access denied for user: {user.email}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return user


def require_roles(*roles: UserRole):
    async def checker(user: User = Depends(get_current_active_user)) -> User:
        if not user.has_role(*roles):
            logger.warning(f"User {user.email} with role {user.role.value} denied, needs {[r.value for r in roles]}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not authorized"
            )
        return user
    return checker


def get_services(request: Request) -> Services:
    return request.app.state.services
