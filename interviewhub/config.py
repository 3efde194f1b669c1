# interviewhub/config.py
# Purpose: Read runtime knobs from the environment once, at startup.
# Pitfalls: Numeric env vars are parsed eagerly; a typo fails fast with ValueError.

from __future__ import annotations

import os
from dataclasses import dataclass

from interviewhub.cache import DEFAULT_TTL_SEC, STALE_SEC


@dataclass(frozen=True)
class Settings:
    supabase_url: str = "http://localhost:54321"
    supabase_anon_key: str = ""
    cache_ttl_sec: float = DEFAULT_TTL_SEC
    stale_sec: float = STALE_SEC
    remote_timeout_sec: float = 10.0
    avatar_bucket: str = "avatars"
    avatar_max_bytes: int = 2 * 1024 * 1024
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Build Settings from SUPABASE_* / IH_* / LOG_LEVEL env vars."""
    return Settings(
        supabase_url=os.getenv("SUPABASE_URL", Settings.supabase_url).rstrip("/"),
        supabase_anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
        cache_ttl_sec=float(os.getenv("IH_CACHE_TTL_SEC", str(DEFAULT_TTL_SEC))),
        stale_sec=float(os.getenv("IH_STALE_SEC", str(STALE_SEC))),
        remote_timeout_sec=float(os.getenv("IH_REMOTE_TIMEOUT_SEC", "10")),
        avatar_bucket=os.getenv("IH_AVATAR_BUCKET", "avatars"),
        avatar_max_bytes=int(os.getenv("IH_AVATAR_MAX_BYTES", str(2 * 1024 * 1024))),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
