# interviewhub/routers/experiences.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status

from interviewhub.data_context import ALL_EXPERIENCES, DataContext, user_experiences_key
from interviewhub.deps import get_data, raise_for_context
from interviewhub.schemas import ErrorCode, Experience, ExperienceCreate, ExperienceList, LikeState

router = APIRouter(prefix="/api/v1", tags=["experiences"])


@router.get("/experiences", response_model=ExperienceList)
async def list_experiences(
    force: bool = Query(False, description="Skip the cache and hit the backend"),
    data: DataContext = Depends(get_data),
):
    """Public feed, newest first. `is_stale` means a refresh is on its way."""
    items = await data.fetch_experiences(force=force)
    return ExperienceList(
        items=items, is_stale=data.cache.is_stale(ALL_EXPERIENCES), message=data.message
    )


@router.post("/experiences", response_model=Experience, status_code=status.HTTP_201_CREATED)
async def create_experience(body: ExperienceCreate, data: DataContext = Depends(get_data)):
    created = await data.create_experience(body)
    if created is None:
        raise_for_context(data)
    return created


@router.get("/experiences/{experience_id}", response_model=Experience)
async def get_experience(
    experience_id: str,
    force: bool = Query(False),
    data: DataContext = Depends(get_data),
):
    found = await data.fetch_experience(experience_id, force=force)
    if found is None:
        raise_for_context(data)
    return found


@router.delete("/experiences/{experience_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_experience(experience_id: str, data: DataContext = Depends(get_data)):
    if not await data.delete_experience(experience_id):
        raise_for_context(data)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/experiences/{experience_id}/like", response_model=LikeState)
async def toggle_like(experience_id: str, data: DataContext = Depends(get_data)):
    liked = await data.toggle_like(experience_id)
    if liked is None or data.last_error is not None:
        raise_for_context(data)
    return LikeState(experience_id=experience_id, liked=liked)


@router.get("/experiences/{experience_id}/likes")
async def like_count(experience_id: str, data: DataContext = Depends(get_data)) -> dict[str, Any]:
    query = data.like_count_query(experience_id)
    await query.fetch()
    result = query.result
    if result.value is None:
        raise_for_context(data, default=ErrorCode.UPSTREAM_ERROR)
    return {
        "experience_id": experience_id,
        "count": result.value,
        "is_stale": result.is_stale,
        "error": result.error,
    }


@router.get("/users/{user_id}/experiences", response_model=ExperienceList)
async def list_user_experiences(
    user_id: str,
    force: bool = Query(False),
    data: DataContext = Depends(get_data),
):
    items = await data.fetch_user_experiences(user_id, force=force)
    return ExperienceList(
        items=items,
        is_stale=data.cache.is_stale(user_experiences_key(user_id)),
        message=data.message,
    )

