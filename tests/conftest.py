"""
Shared fixtures: an in-process stand-in for the Supabase table API.
"""

import pytest
from types import SimpleNamespace


class FakeQuery:
    """Chainable query supporting the calls the assessment store makes."""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.action = "select"
        self.filters = []
        self.payload = None
        self.conflict = None
        self.order_key = None
        self.descending = False

    def select(self, *_columns):
        self.action = "select"
        return self

    def eq(self, key, value):
        self.filters.append((key, value))
        return self

    def order(self, key, desc=False):
        self.order_key = key
        self.descending = desc
        return self

    def insert(self, row):
        self.action = "insert"
        self.payload = row
        return self

    def upsert(self, row, on_conflict=None):
        self.action = "upsert"
        self.payload = row
        self.conflict = on_conflict
        return self

    def update(self, row):
        self.action = "update"
        self.payload = row
        return self

    def delete(self):
        self.action = "delete"
        return self

    def _matches(self, row):
        return all(row.get(key) == value for key, value in self.filters)

    def execute(self):
        rows = self.db.tables.setdefault(self.table, [])

        if self.action == "insert":
            row = dict(self.payload)
            row.setdefault("id", f"{self.table}_{len(rows) + 1}")
            rows.append(row)
            return SimpleNamespace(data=[dict(row)])

        if self.action == "upsert":
            key = self.conflict or "id"
            rows[:] = [r for r in rows if r.get(key) != self.payload.get(key)]
            rows.append(dict(self.payload))
            return SimpleNamespace(data=[dict(self.payload)])

        matching = [r for r in rows if self._matches(r)]
        if self.action == "delete":
            rows[:] = [r for r in rows if not self._matches(r)]
            return SimpleNamespace(data=matching)

        if self.action == "update":
            for row in matching:
                row.update(self.payload)
            return SimpleNamespace(data=[dict(r) for r in matching])

        if self.order_key:
            matching.sort(key=lambda r: r.get(self.order_key) or "", reverse=self.descending)
        return SimpleNamespace(data=[dict(r) for r in matching])


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.fail = False

    def table(self, name):
        if self.fail:
            raise ConnectionError("database unavailable")
        return FakeQuery(self, name)


@pytest.fixture
def fake_supabase():
    return FakeSupabase()
