import math
import sys
from pathlib import Path
from typing import Dict, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engines.errors import UpstreamUnavailable  # noqa: E402
from kv_store import MemoryKeyValueStore  # noqa: E402


class ManualClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCompletionClient:
    """Answers ``complete`` from a script of strings or exceptions."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[Dict] = []

    def complete(self, messages, *, purpose="completion"):
        self.calls.append({"messages": messages, "purpose": purpose})
        if not self.responses:
            raise UpstreamUnavailable("no scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    def purposes(self) -> List[str]:
        return [call["purpose"] for call in self.calls]


class _FakePipeline:
    def __init__(self, client):
        self.client = client
        self.commands = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.commands = []
        return False

    def incr(self, name):
        self.commands.append(("incr", (name,), {}))
        return self

    def expire(self, name, time, nx=False):
        self.commands.append(("expire", (name, time), {"nx": nx}))
        return self

    def execute(self):
        return [getattr(self.client, command)(*args, **kwargs) for command, args, kwargs in self.commands]


class FakeRedis:
    """The slice of the redis-py client the store uses, on a manual clock.

    Set ``fail`` to an exception to make every command raise it.
    """

    def __init__(self, clock):
        self.clock = clock
        self.data: Dict[str, tuple] = {}
        self.fail = None

    def _check(self):
        if self.fail is not None:
            raise self.fail

    def _live(self, name):
        entry = self.data.get(name)
        if entry is not None and entry[1] is not None and entry[1] <= self.clock():
            del self.data[name]
            return None
        return entry

    def pipeline(self, transaction=True):
        return _FakePipeline(self)

    def incr(self, name):
        self._check()
        entry = self._live(name)
        if entry is None:
            self.data[name] = ("1", None)
            return 1
        count = int(entry[0]) + 1
        self.data[name] = (str(count), entry[1])
        return count

    def expire(self, name, time, nx=False):
        self._check()
        entry = self._live(name)
        if entry is None or (nx and entry[1] is not None):
            return False
        self.data[name] = (entry[0], self.clock() + time)
        return True

    def ttl(self, name):
        self._check()
        entry = self._live(name)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return math.ceil(entry[1] - self.clock())

    def get(self, name):
        self._check()
        entry = self._live(name)
        return entry[0] if entry else None

    def set(self, name, value, ex=None):
        self._check()
        self.data[name] = (value, self.clock() + ex if ex else None)
        return True

    def delete(self, *names):
        self._check()
        removed = 0
        for name in names:
            if self._live(name) is not None:
                del self.data[name]
                removed += 1
        return removed

    def ping(self):
        self._check()
        return True


class FakeDataSource:
    def __init__(self, activities=None, moods=None, journal=None, preferences=None):
        self.activities = list(activities or [])
        self.moods = list(moods or [])
        self.journal = list(journal or [])
        self.preferences = preferences

    def list_activities(self, user_id: str, since=None):
        return [
            record
            for record in self.activities
            if record.user_id == user_id and (since is None or record.occurred_at >= since)
        ]

    def list_mood_samples(self, user_id: str):
        return [sample for sample in self.moods if sample.user_id == user_id]

    def list_journal_entries(self, user_id: str, limit: int = 10):
        return [entry for entry in self.journal if entry.user_id == user_id][:limit]

    def get_preferences(self, user_id: str):
        return self.preferences


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))

    # Reset the connection pool for each test
    monkeypatch.setattr(db, "_pool", db.SQLiteConnectionPool(str(db_path), max_connections=10))
    db.init()
    yield str(db_path)
    db._pool.close_all()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def memory_store(clock):
    return MemoryKeyValueStore(clock=clock)
