# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# This module provides pytest fixtures and configuration for all tests.
#
# Key features:
# - Sets up mock environment variables before any imports
# - An in-memory stand-in for the Supabase query builder
# - Fixtures that capture queued jobs and bypass Redis locks
# =============================================================================

import os
from contextlib import contextmanager
from copy import deepcopy
from typing import Any
from unittest.mock import patch
from uuid import uuid4

# =============================================================================
# Set up test environment BEFORE any imports
# =============================================================================
# This must happen before importing app.config which loads settings immediately

os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("APP_URL", "https://app.test")
os.environ.setdefault("STRIPE_PRICE_STANDARD", "price_standard")
os.environ.setdefault("STRIPE_PRICE_ENTERPRISE", "price_enterprise")
os.environ.setdefault("STRIPE_PRICE_TOPUP_10", "price_topup_10")

import pytest

from lib.supabase_client import SupabaseClient
from lib.utils import utc_now_iso


# =============================================================================
# In-memory Supabase
# =============================================================================

class FakeResponse:
    def __init__(self, data: Any, count: int | None = None):
        self.data = data
        self.count = count


class FakeQuery:
    """
    Enough of postgrest's query builder for the services.

    Embedded resources in select() ("*, plan:plans(*)") are ignored; put
    the embedded dict on the row itself when a test needs it.
    """

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.filters: list = []
        self.ordering: tuple[str, bool] | None = None
        self.window: tuple[int, int] | None = None
        self.max_rows: int | None = None
        self.want_single = False
        self.want_count = False
        self.on_conflict: str | None = None
        self.ignore_duplicates = False

    # -- operations --------------------------------------------------------

    def select(self, columns: str = "*", count: str | None = None):
        self.want_count = count is not None
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict: str | None = None, ignore_duplicates: bool = False, **kwargs):
        self.op, self.payload, self.on_conflict = "upsert", payload, on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    # -- filters -----------------------------------------------------------

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def lt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) < value)
        return self

    def in_(self, column, values):
        allowed = list(values)
        self.filters.append(lambda row: row.get(column) in allowed)
        return self

    def is_(self, column, value):
        expected = None if value == "null" else value
        self.filters.append(lambda row: row.get(column) is expected)
        return self

    def order(self, column, desc: bool = False):
        self.ordering = (column, desc)
        return self

    def range(self, start: int, end: int):
        self.window = (start, end)
        return self

    def limit(self, count: int):
        self.max_rows = count
        return self

    def single(self):
        self.want_single = True
        return self

    # -- execution ---------------------------------------------------------

    def _matches(self, row: dict) -> bool:
        return all(check(row) for check in self.filters)

    def execute(self) -> FakeResponse:
        self.db.calls.append(self)
        rows = self.db.tables.setdefault(self.table, [])

        if self.op in ("insert", "upsert"):
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            written = []
            for item in items:
                row = None
                if self.op == "upsert" and self.on_conflict:
                    keys = [key.strip() for key in self.on_conflict.split(",")]
                    row = next((r for r in rows if all(r.get(k) == item.get(k) for k in keys)), None)
                if row is not None and self.ignore_duplicates:
                    continue
                if row is not None:
                    row.update(deepcopy(item))
                else:
                    row = {"id": str(uuid4()), "created_at": utc_now_iso(), **deepcopy(item)}
                    rows.append(row)
                written.append(deepcopy(row))
            return FakeResponse(written)

        matched = [row for row in rows if self._matches(row)]

        if self.op == "update":
            for row in matched:
                row.update(deepcopy(self.payload))
            return FakeResponse(deepcopy(matched))

        if self.op == "delete":
            self.db.tables[self.table] = [row for row in rows if not self._matches(row)]
            return FakeResponse(deepcopy(matched))

        result = deepcopy(matched)
        total = len(result)
        if self.ordering:
            column, desc = self.ordering
            result.sort(key=lambda row: row.get(column) or "", reverse=desc)
        if self.window:
            result = result[self.window[0]:self.window[1] + 1]
        if self.max_rows is not None:
            result = result[:self.max_rows]

        if self.want_single:
            if len(result) != 1:
                raise Exception(f"PGRST116: JSON object requested, {len(result)} rows returned")
            return FakeResponse(result[0])

        return FakeResponse(result, count=total if self.want_count else None)


class FakeSupabase:
    """In-memory tables keyed by name. Rows are plain dicts."""

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[FakeQuery] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def seed(self, table: str, *rows: dict) -> list[dict]:
        stored = [{"id": str(uuid4()), "created_at": utc_now_iso(), **row} for row in rows]
        self.tables.setdefault(table, []).extend(stored)
        return stored

    def rows(self, table: str, **filters) -> list[dict]:
        return [
            row for row in self.tables.get(table, [])
            if all(row.get(key) == value for key, value in filters.items())
        ]

    def row(self, table: str, **filters) -> dict:
        matches = self.rows(table, **filters)
        assert len(matches) == 1, f"expected one {table} row for {filters}, found {len(matches)}"
        return matches[0]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def db():
    """Install a fresh in-memory Supabase as the shared client."""
    fake = FakeSupabase()
    previous = SupabaseClient._instance
    SupabaseClient._instance = fake
    yield fake
    SupabaseClient._instance = previous


@pytest.fixture
def queued_jobs():
    """
    Capture published jobs instead of sending them.

    Yields a list of (job_type, data) tuples.
    """
    published: list[tuple[str, dict]] = []

    def fake_publish(job_type, data, options=None):
        published.append((getattr(job_type, "value", job_type), data))
        return f"msg-{len(published)}"

    with patch("workers.queue.publish_job", side_effect=fake_publish):
        yield published


@pytest.fixture
def no_lock():
    """Replace the Redis version group lock with a no-op."""
    @contextmanager
    def fake_lock(group_id):
        yield

    with patch("core.services.version_service.version_group_lock", fake_lock):
        yield


@pytest.fixture
def user_id():
    return str(uuid4())


@pytest.fixture
def completed_job(db, user_id):
    """A finished staging job with no version group yet."""
    return db.seed("staging_jobs", {
        "user_id": user_id,
        "original_image_url": "https://test-project.supabase.co/storage/v1/object/public/staging-images/u/original.jpg",
        "staged_image_url": "https://test-project.supabase.co/storage/v1/object/public/staging-images/u/staged.png",
        "room_type": "living-room",
        "style": "modern",
        "status": "completed",
        "provider": "replicate",
        "credits_used": 1,
        "version_group_id": None,
        "is_primary_version": False,
        "parent_job_id": None,
        "property_id": None,
    })[0]
