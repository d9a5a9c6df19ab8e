"""Share API routes - post media to X"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile

from sharekit.api.deps import get_container
from sharekit.core.container import ServiceContainer
from sharekit.core.security import current_user_id, ensure_owner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/twitter", tags=["share"])


@router.post("/share")
async def share_to_twitter(
    request: Request,
    media: UploadFile = File(...),
    caption: str = Form(""),
    subject_id: str = Form(...),
    user_id: Optional[str] = Form(None),
    session_user_id: Optional[str] = Depends(current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """Upload an image and post it with a caption

    Posts as the X account connected in this browser session, or as the app's
    posting account when none is connected. A user_id field, if sent, must
    name the session's own account.
    """
    if user_id:
        if not session_user_id:
            raise HTTPException(401, "Not authenticated. Please connect your X account.")
        ensure_owner(request, session_user_id, user_id)

    media_bytes = await media.read()
    post_url = await container.share.submit(
        media_bytes,
        media.content_type or "application/octet-stream",
        caption,
        subject_id,
        user_id=session_user_id,
    )
    return {"success": True, "post_url": post_url}


@router.get("/share/status")
async def share_status(subject_id: Optional[str] = None, container: ServiceContainer = Depends(get_container)):
    """Retry status of the latest share"""
    status = container.share.get_status(subject_id)
    return {
        "state": status.state.value if status.state else None,
        "retry_count": status.retry_count,
        "last_error": status.last_error,
        "can_retry": status.can_retry,
    }


@router.get("/limits/{subject_id}")
async def share_limits(subject_id: str, container: ServiceContainer = Depends(get_container)):
    """Remaining upload/post allowance in the current window"""
    return {
        "upload": await container.rate_limiter.remaining("upload", subject_id),
        "post": await container.rate_limiter.remaining("post", subject_id),
    }
