# interviewhub/routers/profiles.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response, status

from interviewhub.data_context import DataContext
from interviewhub.deps import get_data, raise_for_context
from interviewhub.schemas import Dashboard, ErrorCode, Profile, ProfileUpdate

router = APIRouter(prefix="/api/v1", tags=["profiles"])


@router.get("/profiles/{user_id}", response_model=Profile)
async def get_profile(
    user_id: str,
    force: bool = Query(False),
    data: DataContext = Depends(get_data),
):
    """A user's profile; your own is created (empty) the first time you ask for it."""
    profile = await data.fetch_profile(user_id, force=force)
    if profile is None:
        raise_for_context(data, default=ErrorCode.NOT_FOUND)
    return profile


@router.put("/profile", response_model=Profile)
async def update_profile(body: ProfileUpdate, data: DataContext = Depends(get_data)):
    profile = await data.update_profile(body)
    if profile is None:
        raise_for_context(data)
    return profile


@router.post("/profile/avatar", response_model=Profile)
async def upload_avatar(
    request: Request,
    filename: str = Query("avatar.png", description="Original file name (extension is kept)"),
    data: DataContext = Depends(get_data),
):
    """Raw image bytes in the body; Content-Type must be image/*."""
    content = await request.body()
    content_type = request.headers.get("content-type", "")
    profile = await data.upload_avatar(filename, content, content_type)
    if profile is None:
        raise_for_context(data)
    return profile


@router.get("/dashboard", response_model=Dashboard)
async def dashboard(data: DataContext = Depends(get_data)):
    """Own profile, the feed and own posts in one round trip."""
    user = await data.require_user()
    if user is None:
        raise_for_context(data)
    profile, experiences, mine = await data.load_dashboard(user["id"])
    return Dashboard(
        profile=profile,
        experiences=experiences,
        user_experiences=mine,
        message=data.message,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(data: DataContext = Depends(get_data)):
    await data.sign_out()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
