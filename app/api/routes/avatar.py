"""
Avatar upload endpoint.
"""
import logging
from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core import config
from app.core.auth_dependency import get_current_user
from app.db.models.user import User
from app.db.session import get_db
from app.services.avatar_service import (
    AvatarStorage,
    AvatarStorageError,
    AvatarValidationError,
    upload_avatar,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/avatar", tags=["Avatar"])


def get_avatar_storage(request: Request) -> AvatarStorage:
    """Avatar storage built at application startup."""
    return request.app.state.avatar_storage


@router.post("/upload")
async def upload(
    file: UploadFile = File(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: AvatarStorage = Depends(get_avatar_storage),
):
    if file is None:
        return JSONResponse(status_code=400, content={"error": "No file uploaded"})

    # One byte past the limit is enough to reject oversized uploads
    data = await file.read(config.AVATAR_MAX_BYTES + 1)

    try:
        url = upload_avatar(db, storage, user, file.filename, data, file.content_type)
    except AvatarValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except AvatarStorageError as e:
        logger.error(f"Avatar upload failed: user_id={user.id}: {e}")
        return JSONResponse(status_code=500, content={"error": "Upload failed"})

    return {"url": url, "message": "Avatar uploaded successfully"}
