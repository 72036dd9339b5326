import copy
import json
import os
from pathlib import Path

import pytest

import survey_store
from survey_model import definition_from_payload

SAMPLE_SURVEY = Path(__file__).resolve().parent.parent / "data" / "sample_survey.json"


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Just enough of the postgrest query builder for the store."""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self._order = None
        self._limit = None

    def select(self, cols="*"):
        self.op = "select"
        return self

    def insert(self, rows):
        self.op = "insert"
        self.payload = rows
        return self

    def update(self, values):
        self.op = "update"
        self.payload = values
        return self

    def eq(self, col, value):
        self.filters.append(lambda r: r.get(col) == value)
        return self

    def in_(self, col, values):
        values = list(values)
        self.filters.append(lambda r: r.get(col) in values)
        return self

    def order(self, col, desc=False):
        self._order = (col, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _match(self, row):
        return all(f(row) for f in self.filters)

    def execute(self):
        if (self.table, self.op) in self.db.fail:
            raise RuntimeError(f"{self.table} {self.op} rejected")
        self.db.calls.append((self.table, self.op))
        rows = self.db.tables.setdefault(self.table, [])

        if self.op == "insert":
            new = self.payload if isinstance(self.payload, list) else [self.payload]
            out = []
            for r in new:
                r = dict(r)
                r.setdefault("id", f"{self.table}-{len(rows) + 1}")
                rows.append(r)
                out.append(copy.deepcopy(r))
            return FakeResponse(out)

        if self.op == "update":
            out = []
            for r in rows:
                if self._match(r):
                    r.update(self.payload)
                    out.append(copy.deepcopy(r))
            return FakeResponse(out)

        out = [copy.deepcopy(r) for r in rows if self._match(r)]
        if self._order:
            col, desc = self._order
            present = [r for r in out if r.get(col) is not None]
            missing = [r for r in out if r.get(col) is None]
            out = sorted(present, key=lambda r: r[col], reverse=desc) + missing
        if self._limit is not None:
            out = out[: self._limit]
        return FakeResponse(out)


class FakeRpc:
    def __init__(self, db, fn, params):
        self.db = db
        self.fn = fn
        self.params = params

    def execute(self):
        self.db.calls.append(("rpc", self.fn, self.params))
        result = self.db.rpc_results.get(self.fn)
        if isinstance(result, Exception):
            raise result
        return FakeResponse(result)


class FakeSupabase:
    def __init__(self, tables=None):
        self.tables = copy.deepcopy(tables or {})
        self.rpc_results = {}
        self.fail = set()
        self.calls = []

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, fn, params=None):
        return FakeRpc(self, fn, params or {})

    def touched(self, table):
        return [c for c in self.calls if c[0] == table]


@pytest.fixture
def sample_payload():
    with open(SAMPLE_SURVEY, "r", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def sample_definition(sample_payload):
    return definition_from_payload(sample_payload)


def _tables_from_payload(payload):
    survey = dict(payload["survey"], is_active=True, created_at="2025-03-01T10:00:00Z")
    questions, options = [], []
    for qi, q in enumerate(payload["questions"]):
        row = {k: v for k, v in q.items() if k != "options"}
        row.update(survey_id=survey["id"], order_index=qi + 1)
        questions.append(row)
        for oi, o in enumerate(q["options"]):
            options.append(dict(o, question_id=q["id"], order_index=oi + 1))
    # Stored out of order on purpose
    questions.reverse()
    options.reverse()
    return {"surveys": [survey], "questions": questions, "question_options": options}


@pytest.fixture
def fake_db(sample_payload):
    tables = _tables_from_payload(sample_payload)
    tables["surveys"].append({
        "id": "old-survey",
        "title": "Pilot questionnaire",
        "is_active": False,
        "created_at": "2024-01-01T00:00:00Z",
    })
    tables["invite_tokens"] = [
        {"token": "tok-ok", "survey_id": sample_payload["survey"]["id"], "used_at": None},
        {"token": "tok-used", "survey_id": sample_payload["survey"]["id"], "used_at": "2025-03-02T00:00:00Z"},
        {"token": "tok-other", "survey_id": "old-survey", "used_at": None},
    ]
    return FakeSupabase(tables)


@pytest.fixture(autouse=True)
def env_only_settings(monkeypatch):
    """Settings come from the environment only, with no backend configured."""
    for name in ("SURVEY_ID", "STATS_BREAKDOWN_CODE", "SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL",
                 "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_KEY", "SUPABASE_ANON_KEY",
                 "APP_VERSION", "APP_BRANCH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(survey_store, "_sb_get", lambda name: os.environ.get(name) or None)
    monkeypatch.setattr(survey_store, "_sb_client", lambda: None)
