"""
Shared test fixtures
In-memory Supabase stand-in covering the query builder subset the app uses
"""
import os
import uuid
from collections import defaultdict
from copy import deepcopy
from datetime import datetime
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

import pytest

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

ORG_ID = "11111111-1111-1111-1111-111111111111"
OTHER_ORG_ID = "22222222-2222-2222-2222-222222222222"
USER_ID = "33333333-3333-3333-3333-333333333333"
TOKEN = "valid-token"
ORG_PHONE = "+15550001111"


class FakeResponse:
    def __init__(self, data: List[Dict[str, Any]], count: Optional[int] = None):
        self.data = data
        self.count = count


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


class FakeQuery:
    def __init__(self, client: "FakeSupabase", table: str):
        self.client = client
        self.table = table
        self._op = "select"
        self._payload: Any = None
        self._on_conflict: Optional[str] = None
        self._count: Optional[str] = None
        self._filters: List[Tuple[str, str, Any]] = []
        self._order: Optional[Tuple[str, bool]] = None
        self._limit: Optional[int] = None
        self._range: Optional[Tuple[int, int]] = None

    # Query builders -----------------------------------------------------
    def select(self, *columns, count: Optional[str] = None):
        self._count = count
        return self

    def insert(self, data: Any):
        self._op = "insert"
        self._payload = data if isinstance(data, list) else [data]
        return self

    def update(self, data: Dict[str, Any]):
        self._op = "update"
        self._payload = data
        return self

    def upsert(self, data: Dict[str, Any], on_conflict: str = "id", **kwargs):
        self._op = "upsert"
        self._payload = data
        self._on_conflict = on_conflict
        return self

    def eq(self, column: str, value: Any):
        self._filters.append(("eq", column, value))
        return self

    def gte(self, column: str, value: Any):
        self._filters.append(("gte", column, value))
        return self

    def lte(self, column: str, value: Any):
        self._filters.append(("lte", column, value))
        return self

    def order(self, column: str, desc: bool = False):
        self._order = (column, desc)
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    # Execution ----------------------------------------------------------
    def _matches(self, row: Dict[str, Any]) -> bool:
        for op, column, value in self._filters:
            actual = row.get(column)
            if op == "eq" and actual != value:
                return False
            if op in ("gte", "lte"):
                if actual is None:
                    return False
                a, b = _comparable(actual), _comparable(value)
                if op == "gte" and not a >= b:
                    return False
                if op == "lte" and not a <= b:
                    return False
        return True

    def execute(self) -> FakeResponse:
        self.client.operations.append((self.table, self._op))
        outcome = self.client._next_outcome(self.table, self._op)
        if outcome == "error":
            raise Exception(f"simulated {self._op} failure on {self.table}")
        if outcome == "empty":
            return FakeResponse([], 0)

        rows = self.client.store[self.table]

        if self._op == "insert":
            inserted = []
            for item in self._payload:
                row = deepcopy(item)
                row.setdefault("id", str(uuid.uuid4()))
                rows.append(row)
                inserted.append(deepcopy(row))
            return FakeResponse(inserted)

        if self._op == "upsert":
            key = self._on_conflict
            for row in rows:
                if row.get(key) == self._payload.get(key):
                    row.update(deepcopy(self._payload))
                    return FakeResponse([deepcopy(row)])
            row = deepcopy(self._payload)
            row.setdefault("id", str(uuid.uuid4()))
            rows.append(row)
            return FakeResponse([deepcopy(row)])

        if self._op == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(deepcopy(self._payload))
                    updated.append(deepcopy(row))
            return FakeResponse(updated)

        matched = [deepcopy(r) for r in rows if self._matches(r)]
        total = len(matched)
        if self._order:
            column, desc = self._order
            matched.sort(key=lambda r: (r.get(column) is None, r.get(column) or ""), reverse=desc)
        if self._range:
            start, end = self._range
            matched = matched[start:end + 1]
        if self._limit is not None:
            matched = matched[: self._limit]
        return FakeResponse(matched, total if self._count else None)


class FakeAuth:
    def __init__(self, users: Dict[str, Dict[str, Any]]):
        self.users = users

    def get_user(self, token: str):
        user = self.users.get(token)
        if not user:
            return SimpleNamespace(user=None)
        return SimpleNamespace(user=SimpleNamespace(**user))


class FakeSupabase:
    """
    Minimal Supabase client double.

    inject(table, op, outcomes) scripts failures: "error" always raises,
    or a list like ["ok", "error"] is consumed one entry per execute().
    """

    def __init__(self):
        self.store: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.operations: List[Tuple[str, str]] = []
        self._faults: Dict[Tuple[str, str], Any] = {}
        self.auth = FakeAuth({TOKEN: {"id": USER_ID, "email": "agent@example.com"}})

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def inject(self, table: str, op: str, outcomes: Any) -> None:
        self._faults[(table, op)] = outcomes if isinstance(outcomes, str) else list(outcomes)

    def _next_outcome(self, table: str, op: str) -> str:
        outcomes = self._faults.get((table, op))
        if outcomes is None:
            return "ok"
        if isinstance(outcomes, str):
            return outcomes
        return outcomes.pop(0) if outcomes else "ok"

    def rows(self, table: str, **filters) -> List[Dict[str, Any]]:
        return [r for r in self.store[table] if all(r.get(k) == v for k, v in filters.items())]


@pytest.fixture
def fake_supabase():
    """Fake client seeded with one org, its phone line and a member profile"""
    client = FakeSupabase()
    client.store["organizations"].append({"id": ORG_ID, "phone_number": ORG_PHONE})
    client.store["profiles"].append({"id": USER_ID, "org_id": ORG_ID, "full_name": "Test Agent", "role": "owner"})
    return client


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TOKEN}"}
