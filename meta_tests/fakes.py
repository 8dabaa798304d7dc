import threading
from collections import defaultdict

from mock import Mock


class FakePreparedStatement(object):
    def __init__(self, query_string):
        self.query_string = query_string
        self.is_idempotent = False
        self.fetch_size = None


class FakeSession(object):
    """
    Stands in for a driver session: INSERTs upsert into an in-memory table keyed
    by (p, c), SELECTs return `rows` (or the rows of `source`) in the given order,
    one small page at a time.

    insert_error(values, attempt) may return an exception to raise for that attempt.
    """

    def __init__(self, rows=None, source=None, insert_error=None, read_error=None):
        self.cluster = Mock(name='cluster')
        self.prepared = []
        self.table = {}
        self.scan_rows = list(rows) if rows is not None else None
        self.source = source
        self.insert_error = insert_error
        self.read_error = read_error
        self.attempts = defaultdict(int)
        self.executed = []
        self.scans = 0
        self._lock = threading.Lock()

    def prepare(self, query_string):
        statement = FakePreparedStatement(query_string)
        self.prepared.append(statement)
        return statement

    def execute(self, statement, parameters=None):
        if statement.query_string.startswith('INSERT'):
            return self._insert(tuple(parameters))
        return self._select()

    def _insert(self, values):
        with self._lock:
            self.attempts[values] += 1
            attempt = self.attempts[values]
        if self.insert_error is not None:
            error = self.insert_error(values, attempt)
            if error is not None:
                raise error
        with self._lock:
            self.executed.append(values)
            self.table[values[:2]] = values
        return []

    def _select(self):
        self.scans += 1
        if self.read_error is not None:
            raise self.read_error
        if self.scan_rows is not None:
            rows = list(self.scan_rows)
        else:
            rows = self.source.stored_rows() if self.source is not None else self.stored_rows()
        return self._pages(rows)

    @staticmethod
    def _pages(rows, page_size=3):
        for start in range(0, len(rows), page_size):
            for row in rows[start:start + page_size]:
                yield row

    def stored_rows(self):
        with self._lock:
            # newest first, to make sure readers do not rely on storage order
            return list(reversed(list(self.table.values())))
