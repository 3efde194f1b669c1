from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# --- Profiles ---
class Profile(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    email: str = ""
    name: str = ""
    about: str = ""
    linkedin: str = ""
    avatar_url: str = ""
    updated_at: str | None = None

    @classmethod
    def empty(cls, user_id: str, email: str = "") -> "Profile":
        """Default row created the first time a user's profile is requested."""
        return cls(id=user_id, email=email)


class ProfileUpdate(BaseModel):
    name: str | None = None
    about: str | None = None
    linkedin: str | None = None
    email: str | None = None


class AuthorSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    name: str = ""
    avatar_url: str = ""
    about: str = ""
    linkedin: str = ""


# --- Interview experiences (posts) ---
class ExperienceCreate(BaseModel):
    heading: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    position: str = ""
    mode: Literal["online", "offline"] = "online"
    selected: bool = False


class Experience(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    user_id: str
    heading: str = ""
    content: str = ""
    position: str = ""
    mode: str = "online"
    selected: bool = False
    created_at: str
    profiles: AuthorSummary | None = None


class Like(BaseModel):
    user_id: str
    experience_id: str


# --- What the UI layer renders ---
class QueryResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)
    value: Any = None
    loading: bool = False
    error: str | None = None
    is_stale: bool = True


class ExperienceList(BaseModel):
    items: list[Experience]
    is_stale: bool = False
    message: str | None = None


class Dashboard(BaseModel):
    profile: Profile | None
    experiences: list[Experience]
    user_experiences: list[Experience]
    message: str | None = None


class LikeState(BaseModel):
    experience_id: str
    liked: bool


# --- Error taxonomy ---
class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    INVALID_UPLOAD = "INVALID_UPLOAD"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorDetail(BaseModel):
    code: ErrorCode
    message: str
    hint: str | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
