import contextlib

import pytest


class FakeCursor:
    """Records every statement and answers fetches from a queue of scripted results.

    ``results`` maps a SQL fragment to what fetchone/fetchall should return
    after a statement containing that fragment runs. Unmatched statements
    fetch ``None`` / ``[]``.
    """

    def __init__(self, results=None):
        self.results = list((results or {}).items())
        self.executed = []
        self._last = None

    def execute(self, query, params=None):
        self.executed.append((query, params))
        self._last = None
        for fragment, result in self.results:
            if fragment in query:
                self._last = result(params) if callable(result) else result
                break

    def fetchone(self):
        if isinstance(self._last, list):
            return self._last[0] if self._last else None
        return self._last

    def fetchall(self):
        if self._last is None:
            return []
        if isinstance(self._last, list):
            return self._last
        return [self._last]

    def queries(self, fragment):
        return [(q, p) for q, p in self.executed if fragment in q]


class FakeConn:
    def __init__(self, cursor):
        self._cursor = cursor
        self.commits = 0

    def cursor(self):
        return self._cursor


@pytest.fixture
def fake_db(monkeypatch):
    """Route repository and auth database access to one FakeCursor."""

    def install(results=None, modules=()):
        cursor = FakeCursor(results)
        conn = FakeConn(cursor)

        @contextlib.contextmanager
        def fake_db_connection(commit=False):
            yield conn
            if commit:
                conn.commits += 1

        def fake_db_execute(c, query, params=None):
            return c.execute(query, params)

        for module in modules:
            monkeypatch.setattr(module, "db_connection", fake_db_connection)
            monkeypatch.setattr(module, "db_execute", fake_db_execute)
        return cursor

    return install
