"""
Pytest configuration and fixtures.
"""
import copy
import shutil
import tempfile
from pathlib import Path

import pytest

from eduflow_cache.cache import AbstractCache, CacheEntry, TierResult
from eduflow_cache.config import ConfigManager


ISOLATED_ENV = (
    'REDIS_URL', 'DATABASE_URL', 'DEEPL_API_KEY', 'OPENAI_API_KEY',
    'VERCEL', 'AWS_LAMBDA_FUNCTION_NAME', 'NETLIFY',
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep tests independent of real services configured in the environment."""
    for name in ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def temp_dir():
    """Create temporary directory."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def config(temp_dir):
    """Default configuration with the local snapshot inside the temp directory."""
    cfg = copy.deepcopy(ConfigManager.DEFAULT_CONFIG)
    cfg['cache']['local']['directory'] = str(temp_dir)
    return cfg


class FakeTier(AbstractCache):
    """Dict-backed tier with switches for availability and backend failures."""

    def __init__(self, name, available=True, fail=False, set_error=None):
        super().__init__({})
        self.name = name
        self.available = available
        self.fail = fail
        self.set_error = set_error
        self.store = {}
        self.get_calls = []
        self.set_calls = []

    def is_available(self):
        return self.available

    def get(self, word, source_language, target_language):
        self.get_calls.append(word)
        if self.fail:
            return TierResult.from_error(ConnectionError("backend down"))
        value = self.store.get((word, source_language, target_language))
        if value is None:
            return TierResult.missing()
        return TierResult.from_value(value)

    def set(self, entry: CacheEntry):
        if self.set_error is not None:
            raise self.set_error
        self.set_calls.append(entry)
        if self.fail:
            return False
        self.store[(entry.word, entry.source_lang, entry.target_lang)] = entry.translation
        return True


class FakeRedisClient:
    """Minimal stand-in for a redis.Redis client."""

    def __init__(self, fail=False):
        self.data = {}
        self.expiry = {}
        self.fail = fail
        self.closed = False

    def get(self, key):
        if self.fail:
            raise ConnectionError("redis unreachable")
        return self.data.get(key)

    def set(self, key, value, ex=None):
        if self.fail:
            raise ConnectionError("redis unreachable")
        self.data[key] = value
        self.expiry[key] = ex
        return True

    def close(self):
        self.closed = True


class FakeCursor:
    def __init__(self, connection):
        self.connection = connection
        self._result = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        if self.connection.fail:
            raise RuntimeError("server closed the connection unexpectedly")
        statement = ' '.join(sql.split())
        self.connection.statements.append(statement)
        if statement.startswith('SELECT'):
            value = self.connection.rows.get(tuple(params))
            self._result = (value['translated_text'],) if value else None
        elif statement.startswith('INSERT'):
            assert 'ON CONFLICT (source_text, source_lang, target_lang) DO NOTHING' in statement
            source_text, source_lang, target_lang, translated_text, provider = params
            key = (source_text, source_lang, target_lang)
            if key not in self.connection.rows:
                self.connection.rows[key] = {'translated_text': translated_text, 'provider': provider}

    def fetchone(self):
        return self._result


class FakePgConnection:
    """Minimal stand-in for a psycopg2 connection."""

    def __init__(self, rows=None):
        self.rows = rows if rows is not None else {}
        self.statements = []
        self.autocommit = False
        self.closed = 0
        self.fail = False

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = 1
