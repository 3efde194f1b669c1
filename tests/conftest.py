import copy
import itertools
from typing import Any

import pytest

from interviewhub.cache import AppCache
from interviewhub.data_context import DataContext
from interviewhub.errors import RemoteError


class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemote:
    """In-memory stand-in for the hosted backend (same surface as SupabaseRemote)."""

    def __init__(self, user: dict[str, Any] | None = None):
        self.tables: dict[str, list[dict[str, Any]]] = {
            "profiles": [],
            "interview_experiences": [],
            "likes": [],
        }
        self.user = user
        self.sessions: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.fail_ops: set[str] = set()
        self.ignore_deletes = False
        self.uploads: dict[str, bytes] = {}
        self.signed_out = False
        self._ids = itertools.count(1)

    # ---- helpers ----
    def _check(self, op: str, table: str | None = None) -> None:
        self.calls.append((op, table))
        if op in self.fail_ops:
            raise RemoteError(f"{op} failed", code="503", status=503)

    def count(self, op: str, table: str | None = None) -> int:
        return sum(1 for o, t in self.calls if o == op and (table is None or t == table))

    @staticmethod
    def _match(row: dict[str, Any], filters: dict[str, Any] | None) -> bool:
        return all(row.get(k) == v for k, v in (filters or {}).items())

    def add_profile(self, **row: Any) -> dict[str, Any]:
        base = {"email": "", "name": "", "about": "", "linkedin": "", "avatar_url": ""}
        base.update(row)
        self.tables["profiles"].append(base)
        return base

    def add_experience(self, **row: Any) -> dict[str, Any]:
        seq = next(self._ids)
        base = {
            "id": f"exp-{seq}",
            "heading": f"Interview {seq}",
            "content": "went fine",
            "position": "SWE",
            "mode": "online",
            "selected": False,
            "created_at": f"2025-01-01T00:00:{seq:02d}+00:00",
        }
        base.update(row)
        self.tables["interview_experiences"].append(base)
        return base

    def _with_author(self, row: dict[str, Any]) -> dict[str, Any]:
        author = next((p for p in self.tables["profiles"] if p["id"] == row["user_id"]), None)
        out = dict(row)
        out["profiles"] = (
            {k: author[k] for k in ("id", "name", "avatar_url", "about", "linkedin")}
            if author
            else None
        )
        return out

    # ---- RemoteDataService ----
    async def query(self, table, *, filters=None, order=None, columns="*"):
        self._check("query", table)
        rows = [dict(r) for r in self.tables[table] if self._match(r, filters)]
        if order:
            col = order.lstrip("-")
            rows.sort(key=lambda r: r.get(col) or "", reverse=order.startswith("-"))
        if "profiles" in columns:
            rows = [self._with_author(r) for r in rows]
        elif columns != "*":
            wanted = [c.strip() for c in columns.split(",")]
            rows = [{c: r.get(c) for c in wanted} for r in rows]
        return rows

    async def insert(self, table, record):
        self._check("insert", table)
        row = dict(record)
        if table == "interview_experiences":
            seq = next(self._ids)
            row.setdefault("id", f"exp-{seq}")
            row.setdefault("created_at", f"2025-01-01T00:00:{seq:02d}+00:00")
        self.tables[table].append(row)
        return [dict(row)]

    async def upsert(self, table, record):
        self._check("upsert", table)
        for row in self.tables[table]:
            if row.get("id") == record.get("id"):
                row.update(record)
                return [dict(row)]
        self.tables[table].append(dict(record))
        return [dict(record)]

    async def update(self, table, changes, *, filters):
        self._check("update", table)
        out = []
        for row in self.tables[table]:
            if self._match(row, filters):
                row.update(changes)
                out.append(dict(row))
        return out

    async def delete(self, table, *, filters):
        self._check("delete", table)
        if self.ignore_deletes:
            return []
        gone = [r for r in self.tables[table] if self._match(r, filters)]
        self.tables[table] = [r for r in self.tables[table] if not self._match(r, filters)]
        if table == "interview_experiences":
            ids = {r["id"] for r in gone}
            self.tables["likes"] = [
                like for like in self.tables["likes"] if like["experience_id"] not in ids
            ]
        return gone

    async def current_user(self):
        self._check("current_user")
        return self.user

    async def upload(self, bucket, path, content, content_type):
        self._check("upload")
        self.uploads[f"{bucket}/{path}"] = content
        return f"https://cdn.test/{bucket}/{path}"

    async def sign_out(self):
        self._check("sign_out")
        self.signed_out = True

    def with_session(self, access_token):
        view = copy.copy(self)
        view.user = self.sessions.get(access_token or "")
        return view


ALICE = {"id": "u1", "email": "alice@example.com"}
BOB = {"id": "u2", "email": "bob@example.com"}


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def cache(clock):
    return AppCache(clock=clock)


@pytest.fixture()
def remote():
    return FakeRemote(user=ALICE)


@pytest.fixture()
def data(cache, remote):
    return DataContext(cache, remote)
