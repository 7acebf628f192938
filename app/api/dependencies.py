"""
Dependency injection functions for FastAPI.
Provides database sessions, JWT authentication and the chat gateway.
"""
from typing import Generator
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from db.database import SessionLocal
from db.repository import ChatRepository
from db.models import User, UserStatus
from core.security import decode_access_token, token_subject
from realtime.gateway import ChatGateway

security = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Automatically closes the session when request completes.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    JWT bearer authentication dependency.

    Verifies the token signature and expiry, resolves the ``sub`` claim to
    a user and requires an ACTIVE account.

    Raises:
        HTTPException: 401 if the token is missing, invalid or the user is
            unknown; 403 if the account is not active
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided",
            headers={"WWW-Authenticate": "Bearer"}
        )

    subject = token_subject(decode_access_token(credentials.credentials))
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user = ChatRepository(db).get_user_by_id(user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if user.status != UserStatus.ACTIVE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is not active"
        )

    return user


def get_chat_gateway(request: Request) -> ChatGateway:
    """The gateway instance installed on the application state."""
    return request.app.state.chat_gateway
