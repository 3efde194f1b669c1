"""
Data orchestration between the UI layer, the cache and the hosted data service.

Reads (fetch_*):
  - fresh cache hit  -> returned, no network call
  - stale cache hit  -> returned immediately, refreshed in a background task
  - miss / force     -> remote read, result cached and published to state
  - remote failure   -> logged, `message` set, previous value (or None / []) returned;
                        malformed rows count as a remote failure
  - cache cleared mid-fetch (logout) -> result returned but neither cached nor published

Writes keep every cached collection that may hold the record in step with the
remote write (update_experience_cache / remove_experience_from_cache). Keys are
not linked to each other, so each mutation path touches every affected key.

Cache keys:
  profile_{user_id}, all_experiences, user_experiences_{user_id},
  experience_{id}, liked_{user_id}
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from pydantic import ValidationError

from interviewhub.cache import AppCache
from interviewhub.errors import NotFoundError, RemoteError
from interviewhub.observability import CACHE_LOOKUPS
from interviewhub.query import CachedQuery
from interviewhub.remote import RemoteDataService
from interviewhub.schemas import (
    AuthorSummary,
    ErrorCode,
    Experience,
    ExperienceCreate,
    Like,
    Profile,
    ProfileUpdate,
)
from interviewhub.utils import utc_now_iso

log = logging.getLogger(__name__)

V = TypeVar("V")

PROFILES = "profiles"
EXPERIENCES = "interview_experiences"
LIKES = "likes"
# feed rows embed the author's public profile
FEED_COLUMNS = "*,profiles!user_id(id,name,avatar_url,about,linkedin)"

ALL_EXPERIENCES = "all_experiences"
USER_EXPERIENCES_PREFIX = "user_experiences_"
EXPERIENCE_PREFIX = "experience_"
LIKED_PREFIX = "liked_"


def profile_key(user_id: str) -> str:
    return f"profile_{user_id}"


def user_experiences_key(user_id: str) -> str:
    return f"{USER_EXPERIENCES_PREFIX}{user_id}"


def experience_key(experience_id: str) -> str:
    return f"{EXPERIENCE_PREFIX}{experience_id}"


def liked_key(user_id: str) -> str:
    return f"{LIKED_PREFIX}{user_id}"


def like_count_key(experience_id: str) -> str:
    return f"like_count_{experience_id}"


def upsert_by_id(items: list[Experience], record: Experience) -> list[Experience]:
    """Replace the item with record.id in place, or prepend record if it is new."""
    updated: list[Experience] = []
    found = False
    for item in items:
        if item.id == record.id:
            found = True
            # inserts/updates come back without the embedded author
            if record.profiles is None and item.profiles is not None:
                record = record.model_copy(update={"profiles": item.profiles})
            updated.append(record)
        else:
            updated.append(item)
    if not found:
        updated.insert(0, record)
    return updated


class DataContext:
    def __init__(
        self,
        cache: AppCache,
        remote: RemoteDataService,
        *,
        avatar_bucket: str = "avatars",
        avatar_max_bytes: int = 2 * 1024 * 1024,
    ) -> None:
        self.cache = cache
        self.remote = remote
        self.avatar_bucket = avatar_bucket
        self.avatar_max_bytes = avatar_max_bytes

        # state rendered by the UI layer
        self.profile: Profile | None = None
        self.experiences: list[Experience] = []
        self.user_experiences: list[Experience] = []
        self.user_experiences_owner: str | None = None
        self.experience: Experience | None = None
        self.liked_ids: set[str] = set()
        self.profile_loading = False
        self.experiences_loading = False
        self.message: str | None = None
        self.last_error: ErrorCode | None = None
        self.not_found = False

        self._attached = True
        self._inflight: dict[str, asyncio.Task] = {}

    # ----------------------------------------------------------------------------------
    # State plumbing
    # ----------------------------------------------------------------------------------
    def _publish(self, attr: str, value: Any) -> None:
        # results that land after close() only reach the cache
        if self._attached:
            setattr(self, attr, value)

    def _publish_user_experiences(self, user_id: str, items: list[Experience]) -> None:
        if self._attached:
            self.user_experiences = items
            self.user_experiences_owner = user_id

    @contextmanager
    def _loading(self, attr: str | None):
        if attr:
            self._publish(attr, True)
        try:
            yield
        finally:
            if attr:
                self._publish(attr, False)

    def _fail(self, code: ErrorCode, message: str) -> None:
        self._publish("message", message)
        self._publish("last_error", code)

    def _notify(self, message: str) -> None:
        self._publish("message", message)
        self._publish("last_error", None)

    def dismiss(self) -> None:
        self.message = None
        self.last_error = None
        self.not_found = False

    def close(self) -> None:
        """Detach from the UI: in-flight fetches still fill the cache, not the state."""
        self._attached = False

    async def wait_for_refreshes(self) -> None:
        if self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    # ----------------------------------------------------------------------------------
    # Stale-while-revalidate read
    # ----------------------------------------------------------------------------------
    async def _read(
        self,
        key: str,
        resource: str,
        load: Callable[[], Awaitable[V | None]],
        publish: Callable[[V], None],
        *,
        force: bool,
        loading: str | None = None,
    ) -> V | None:
        if force:
            return await self._load(key, resource, load, publish, self.cache.get(key), loading)

        cached = self.cache.get_stale_while_revalidate(key)
        if cached.value is None:
            CACHE_LOOKUPS.labels(resource=resource, result="miss").inc()
            return await self._load(key, resource, load, publish, None, loading)

        publish(cached.value)
        if not cached.is_stale:
            CACHE_LOOKUPS.labels(resource=resource, result="hit").inc()
            return cached.value

        CACHE_LOOKUPS.labels(resource=resource, result="stale").inc()
        self._revalidate(key, resource, load, publish, cached.value)
        return cached.value

    async def _load(
        self,
        key: str,
        resource: str,
        load: Callable[[], Awaitable[V | None]],
        publish: Callable[[V], None],
        previous: V | None,
        loading: str | None,
        generation: int | None = None,
    ) -> V | None:
        if generation is None:
            generation = self.cache.generation
        with self._loading(loading):
            try:
                value = await load()
            except (RemoteError, ValidationError, KeyError) as e:
                log.warning(
                    "error fetching %s: %s",
                    resource,
                    e,
                    extra={"cache_key": key, "remote_code": getattr(e, "code", None)},
                )
                if previous is not None:
                    self._fail(ErrorCode.UPSTREAM_ERROR, f"Could not refresh {resource}")
                else:
                    self._fail(ErrorCode.UPSTREAM_ERROR, f"Error loading {resource}")
                return previous

        if self.cache.generation != generation:
            # cache was cleared (logout) while this fetch was in flight
            log.info("dropping %s fetched before the cache was cleared", resource, extra={"cache_key": key})
            return value

        if value is None:
            # not found: never cache absence
            self.cache.invalidate(key)
            return None

        self.cache.set(key, value)
        publish(value)
        return value

    def _revalidate(self, key, resource, load, publish, previous) -> None:
        if key in self._inflight:
            return
        task = asyncio.create_task(
            self._load(key, resource, load, publish, previous, None, self.cache.generation)
        )
        self._inflight[key] = task
        task.add_done_callback(lambda t: self._refresh_done(key, t))

    def _refresh_done(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            log.error("background refresh of %s crashed", key, exc_info=task.exception())

    # ----------------------------------------------------------------------------------
    # Profiles
    # ----------------------------------------------------------------------------------
    async def fetch_profile(self, user_id: str, force: bool = False) -> Profile | None:
        """
        Profile for user_id. A user's own profile is created (empty) on first access;
        someone else's missing profile is reported as not found.
        """
        self._publish("not_found", False)

        async def load() -> Profile | None:
            rows = await self.remote.query(PROFILES, filters={"id": user_id})
            if rows:
                return Profile.model_validate(rows[0])

            user = await self.remote.current_user()
            if not user or user.get("id") != user_id:
                self._publish("not_found", True)
                self._fail(ErrorCode.NOT_FOUND, "User not found")
                return None

            profile = Profile.empty(user_id, email=user.get("email") or "")
            await self.remote.insert(PROFILES, profile.model_dump(exclude_none=True))
            log.info("created default profile for %s", user_id)
            return profile

        return await self._read(
            profile_key(user_id),
            "profile",
            load,
            lambda p: self._publish("profile", p),
            force=force,
            loading="profile_loading",
        )

    def update_profile_cache(self, profile: Profile) -> None:
        """Store profile and refresh the author summary embedded in cached posts."""
        self.cache.set(profile_key(profile.id), profile)
        if self.profile is None or self.profile.id == profile.id:
            self._publish("profile", profile)

        author = AuthorSummary.model_validate(profile.model_dump())
        for key in [ALL_EXPERIENCES, *self.cache.keys(USER_EXPERIENCES_PREFIX)]:
            items = self.cache.get(key)
            if not items or not any(e.user_id == profile.id and e.profiles for e in items):
                continue
            patched = [
                e.model_copy(update={"profiles": author})
                if e.user_id == profile.id and e.profiles is not None
                else e
                for e in items
            ]
            self.cache.set(key, patched)
            self._sync_collection_state(key, patched)

        for key in self.cache.keys(EXPERIENCE_PREFIX):
            item = self.cache.get(key)
            if item is not None and item.user_id == profile.id and item.profiles is not None:
                self.cache.set(key, item.model_copy(update={"profiles": author}))

    async def update_profile(self, changes: ProfileUpdate) -> Profile | None:
        self.dismiss()
        user = await self.require_user()
        if user is None:
            return None
        user_id = user["id"]

        updates = {"id": user_id, **changes.model_dump(exclude_none=True), "updated_at": utc_now_iso()}
        try:
            rows = await self.remote.upsert(PROFILES, updates)
            profile = Profile.model_validate(rows[0]) if rows else None
        except (RemoteError, ValidationError) as e:
            log.warning(
                "error updating profile %s: %s",
                user_id,
                e,
                extra={"remote_code": getattr(e, "code", None)},
            )
            self._fail(ErrorCode.UPSTREAM_ERROR, "Error updating profile")
            return None

        if profile is None:
            profile = self._known_profile(user_id, user).model_copy(update=updates)
        self.update_profile_cache(profile)
        self._notify("Profile updated successfully!")
        return profile

    async def upload_avatar(self, filename: str, content: bytes, content_type: str) -> Profile | None:
        self.dismiss()
        if len(content) > self.avatar_max_bytes:
            limit_mb = self.avatar_max_bytes / (1024 * 1024)
            self._fail(ErrorCode.INVALID_UPLOAD, f"File size should be less than {limit_mb:g}MB")
            return None
        if not (content_type or "").startswith("image/"):
            self._fail(ErrorCode.INVALID_UPLOAD, "Please upload an image file")
            return None

        user = await self.require_user()
        if user is None:
            return None
        user_id = user["id"]

        ext = Path(filename).suffix.lstrip(".").lower() or content_type.split("/", 1)[1]
        path = f"{user_id}/avatar.{ext}"
        try:
            url = await self.remote.upload(self.avatar_bucket, path, content, content_type)
            rows = await self.remote.update(PROFILES, {"avatar_url": url}, filters={"id": user_id})
            profile = Profile.model_validate(rows[0]) if rows else None
        except (RemoteError, ValidationError) as e:
            log.warning(
                "error uploading avatar for %s: %s",
                user_id,
                e,
                extra={"remote_code": getattr(e, "code", None)},
            )
            self._fail(ErrorCode.UPSTREAM_ERROR, "Error uploading profile picture")
            return None

        if profile is None:
            profile = self._known_profile(user_id, user).model_copy(update={"avatar_url": url})
        self.update_profile_cache(profile)
        self._notify("Profile picture updated successfully!")
        return profile

    def _known_profile(self, user_id: str, user: dict[str, Any]) -> Profile:
        cached = self.cache.get(profile_key(user_id))
        if cached is not None:
            return cached
        if self.profile is not None and self.profile.id == user_id:
            return self.profile
        return Profile.empty(user_id, email=user.get("email") or "")

    # ----------------------------------------------------------------------------------
    # Experiences
    # ----------------------------------------------------------------------------------
    async def fetch_experiences(self, force: bool = False) -> list[Experience]:
        """Public feed, newest first, with author summaries."""

        async def load() -> list[Experience]:
            rows = await self.remote.query(EXPERIENCES, columns=FEED_COLUMNS, order="-created_at")
            return [Experience.model_validate(r) for r in rows]

        items = await self._read(
            ALL_EXPERIENCES,
            "experiences",
            load,
            lambda v: self._publish("experiences", v),
            force=force,
            loading="experiences_loading",
        )
        return items if items is not None else []

    async def fetch_user_experiences(self, user_id: str, force: bool = False) -> list[Experience]:
        async def load() -> list[Experience]:
            rows = await self.remote.query(
                EXPERIENCES, filters={"user_id": user_id}, order="-created_at"
            )
            return [Experience.model_validate(r) for r in rows]

        items = await self._read(
            user_experiences_key(user_id),
            "user experiences",
            load,
            lambda v: self._publish_user_experiences(user_id, v),
            force=force,
        )
        return items if items is not None else []

    async def fetch_experience(self, experience_id: str, force: bool = False) -> Experience | None:
        """Single post; absence sets not_found instead of an error."""
        self._publish("not_found", False)

        async def load() -> Experience | None:
            try:
                rows = await self.remote.query(
                    EXPERIENCES, filters={"id": experience_id}, columns=FEED_COLUMNS
                )
            except NotFoundError:
                rows = []
            if not rows:
                self._publish("not_found", True)
                self._fail(ErrorCode.NOT_FOUND, "Experience not found")
                self._publish("experience", None)
                return None
            return Experience.model_validate(rows[0])

        return await self._read(
            experience_key(experience_id),
            "experience",
            load,
            lambda v: self._publish("experience", v),
            force=force,
        )

    def _sync_collection_state(self, key: str, items: list[Experience]) -> None:
        if key == ALL_EXPERIENCES:
            self._publish("experiences", items)
        elif key == user_experiences_key(self.user_experiences_owner or ""):
            self._publish("user_experiences", items)

    def update_experience_cache(self, record: Experience) -> None:
        """Replace-or-prepend record in the feed and its author's collection (if cached)."""
        if record.profiles is None:
            author = self.cache.get(profile_key(record.user_id))
            if author is not None:
                record = record.model_copy(
                    update={"profiles": AuthorSummary.model_validate(author.model_dump())}
                )

        for key in (ALL_EXPERIENCES, user_experiences_key(record.user_id)):
            items = self.cache.get(key)
            if items is None:
                continue
            updated = upsert_by_id(items, record)
            self.cache.set(key, updated)
            self._sync_collection_state(key, updated)

        if self.cache.has(experience_key(record.id)):
            self.cache.set(experience_key(record.id), record)
        if self.experience is not None and self.experience.id == record.id:
            self._publish("experience", record)

    def remove_experience_from_cache(self, experience_id: str) -> None:
        """Drop experience_id from every cached collection, detail entry and like set."""
        for key in [ALL_EXPERIENCES, *self.cache.keys(USER_EXPERIENCES_PREFIX)]:
            items = self.cache.get(key)
            if items is None:
                continue
            kept = [e for e in items if e.id != experience_id]
            if len(kept) != len(items):
                self.cache.set(key, kept)
                self._sync_collection_state(key, kept)

        self.cache.invalidate(experience_key(experience_id))
        if self.experience is not None and self.experience.id == experience_id:
            self._publish("experience", None)

        # likes cascade with their post
        for key in self.cache.keys(LIKED_PREFIX):
            ids = self.cache.get(key) or []
            if experience_id in ids:
                self.cache.set(key, [i for i in ids if i != experience_id])
        if experience_id in self.liked_ids:
            self._publish("liked_ids", self.liked_ids - {experience_id})
        self.cache.invalidate(like_count_key(experience_id))

    async def create_experience(self, payload: ExperienceCreate) -> Experience | None:
        self.dismiss()
        user = await self.require_user()
        if user is None:
            return None

        record = {"user_id": user["id"], **payload.model_dump()}
        try:
            rows = await self.remote.insert(EXPERIENCES, record)
        except RemoteError as e:
            log.warning("error saving experience: %s", e, extra={"remote_code": e.code})
            self._fail(ErrorCode.UPSTREAM_ERROR, f"Error saving experience: {e.message}")
            return None
        if not rows:
            self._fail(ErrorCode.UPSTREAM_ERROR, "Error saving experience: nothing was stored")
            return None

        try:
            experience = Experience.model_validate(rows[0])
        except ValidationError as e:
            # stored, but the echoed row is unusable: let the next read pick it up
            log.warning("saved experience came back malformed: %s", e)
            self.cache.invalidate(ALL_EXPERIENCES)
            self.cache.invalidate(user_experiences_key(user["id"]))
            self._fail(ErrorCode.UPSTREAM_ERROR, "Experience saved, but could not be displayed")
            return None
        self.update_experience_cache(experience)
        self._notify("Experience saved!")
        return experience

    async def delete_experience(self, experience_id: str) -> bool:
        """
        Two-phase delete:
          1. drop the post from every cached collection right away
          2. delete remotely (owner only) and read it back
        If the remote delete fails or the row is still there, the local phase is
        discarded by re-fetching from the server.
        """
        self.dismiss()
        user = await self.require_user()
        if user is None:
            return False
        user_id = user["id"]
        author_id = self._cached_author(experience_id)

        self.remove_experience_from_cache(experience_id)

        try:
            await self.remote.delete(EXPERIENCES, filters={"id": experience_id, "user_id": user_id})
            remaining = await self.remote.query(
                EXPERIENCES, filters={"id": experience_id}, columns="id"
            )
        except RemoteError as e:
            log.warning(
                "error deleting experience %s: %s", experience_id, e, extra={"remote_code": e.code}
            )
            await self._resync(user_id, author_id)
            self._fail(ErrorCode.UPSTREAM_ERROR, "Error deleting experience")
            return False

        if remaining:
            log.warning("experience %s still present after delete, resynchronising", experience_id)
            await self._resync(user_id, author_id)
            self._fail(ErrorCode.FORBIDDEN, "You can only delete your own experiences")
            return False

        self._notify("Experience deleted")
        return True

    def _cached_author(self, experience_id: str) -> str | None:
        for key in [ALL_EXPERIENCES, *self.cache.keys(USER_EXPERIENCES_PREFIX)]:
            for item in self.cache.get(key) or []:
                if item.id == experience_id:
                    return item.user_id
        return None

    async def _resync(self, user_id: str, author_id: str | None) -> None:
        if author_id and author_id != user_id:
            self.cache.invalidate(user_experiences_key(author_id))
        for key in self.cache.keys(LIKED_PREFIX):
            if key != liked_key(user_id):
                self.cache.invalidate(key)
        await asyncio.gather(
            self.fetch_experiences(force=True),
            self.fetch_user_experiences(user_id, force=True),
            self.fetch_liked_ids(user_id, force=True),
        )

    # ----------------------------------------------------------------------------------
    # Likes
    # ----------------------------------------------------------------------------------
    async def fetch_liked_ids(self, user_id: str, force: bool = False) -> list[str]:
        async def load() -> list[str]:
            rows = await self.remote.query(
                LIKES, filters={"user_id": user_id}, columns="experience_id"
            )
            return [r["experience_id"] for r in rows]

        ids = await self._read(
            liked_key(user_id),
            "likes",
            load,
            lambda v: self._publish("liked_ids", set(v)),
            force=force,
        )
        return ids if ids is not None else []

    async def toggle_like(self, experience_id: str) -> bool | None:
        """
        Like or unlike; returns the new liked state. None when signed out or when
        the current liked set cannot be read.
        """
        self.dismiss()
        user = await self.require_user()
        if user is None:
            return None
        user_id = user["id"]
        key = liked_key(user_id)

        current = self.cache.get(key)
        if current is None:
            await self.fetch_liked_ids(user_id)
            current = self.cache.get(key)
        if current is None:
            # the liked set could not be read; flipping a guess would cache a partial set
            self._fail(ErrorCode.UPSTREAM_ERROR, "Could not update like")
            return None
        liked = experience_id in current
        flipped = [i for i in current if i != experience_id] if liked else [experience_id, *current]
        self.cache.set(key, flipped)
        self._publish("liked_ids", set(flipped))

        try:
            if liked:
                await self.remote.delete(
                    LIKES, filters={"user_id": user_id, "experience_id": experience_id}
                )
            else:
                like = Like(user_id=user_id, experience_id=experience_id)
                await self.remote.insert(LIKES, like.model_dump())
        except RemoteError as e:
            log.warning("error toggling like on %s: %s", experience_id, e, extra={"remote_code": e.code})
            self.cache.set(key, current)
            self._publish("liked_ids", set(current))
            self._fail(ErrorCode.UPSTREAM_ERROR, "Could not update like")
            return liked
        self.cache.invalidate(like_count_key(experience_id))
        self.dismiss()
        return not liked

    def like_count_query(self, experience_id: str, cache_time: float = 60) -> CachedQuery[int]:
        """Number of likes on a post, cached for a minute."""

        async def count() -> int:
            rows = await self.remote.query(
                LIKES, filters={"experience_id": experience_id}, columns="user_id"
            )
            return len(rows)

        return CachedQuery(self.cache, like_count_key(experience_id), count, cache_time=cache_time)

    # ----------------------------------------------------------------------------------
    # Session
    # ----------------------------------------------------------------------------------
    async def require_user(self) -> dict[str, Any] | None:
        try:
            user = await self.remote.current_user()
        except RemoteError as e:
            log.warning("error reading current user: %s", e, extra={"remote_code": e.code})
            user = None
        if not user or not user.get("id"):
            self._fail(ErrorCode.UNAUTHENTICATED, "Please sign in first")
            return None
        return user

    async def load_dashboard(self, user_id: str) -> tuple[Profile | None, list[Experience], list[Experience]]:
        """Profile, feed and the user's own posts, fetched concurrently."""
        profile, experiences, mine = await asyncio.gather(
            self.fetch_profile(user_id),
            self.fetch_experiences(),
            self.fetch_user_experiences(user_id),
        )
        return profile, experiences, mine

    def clear_cache(self) -> None:
        """Forget everything cached and displayed (logout)."""
        for task in self._inflight.values():
            task.cancel()
        self._inflight.clear()
        self.cache.clear()
        self.profile = None
        self.experiences = []
        self.user_experiences = []
        self.user_experiences_owner = None
        self.experience = None
        self.liked_ids = set()
        self.dismiss()

    async def sign_out(self) -> None:
        try:
            await self.remote.sign_out()
        except RemoteError as e:
            log.warning("error signing out: %s", e, extra={"remote_code": e.code})
        finally:
            self.clear_cache()
            log.info("session cache cleared")
