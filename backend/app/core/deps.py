from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.security import decode_token
from app.db.session import get_session
from app.models.user import User
from app.repositories.import_store import SqlImportStore
from app.services.audit_log import SqlAuditTrail
from app.services.import_jobs import ImportJobService
from app.services.storage import FileStorage, MinioFileStorage

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_session)],
) -> User:
    """Validate JWT and return the User ORM object."""
    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token)
        if payload.get("type") != "access":
            raise credentials_exc
        user_id: str = payload.get("sub")
        if not user_id:
            raise credentials_exc
        user_uuid = UUID(user_id)
    except (JWTError, ValueError):
        raise credentials_exc

    result = await db.execute(select(User).where(User.id == user_uuid))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active or user.deleted_at is not None:
        raise credentials_exc
    return user


def require_role(*roles: str):
    """Dependency factory: raises 403 if user role not in allowed list."""
    async def check(user=Depends(get_current_user)):
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{user.role}' is not permitted for this action.",
            )
        return user
    return check


# ─── Import pipeline ───

def get_file_storage(request: Request) -> FileStorage:
    """The storage client built at start-up; created lazily if start-up skipped it."""
    storage = getattr(request.app.state, "file_storage", None)
    if storage is None:
        storage = MinioFileStorage.from_settings(get_settings())
        request.app.state.file_storage = storage
    return storage


def get_import_service(
    db: Annotated[AsyncSession, Depends(get_session)],
    files: Annotated[FileStorage, Depends(get_file_storage)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ImportJobService:
    return ImportJobService(
        store=SqlImportStore(db),
        files=files,
        audit_trail=SqlAuditTrail(db),
        settings=settings,
    )
