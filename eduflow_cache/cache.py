#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Cache tier module for the translation cache.
Provides the local snapshot tier, the Redis fast tier and the Postgres durable tier
behind one tier contract.
"""

import os
import json
import math
import errno
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Optional, List, Callable
import logging

from .keys import derive_key, DEFAULT_SOURCE_LANGUAGE, DEFAULT_TARGET_LANGUAGE
from .utilities import current_millis, is_serverless


PROVIDER_PRIMARY = 'deepl'
PROVIDER_SECONDARY = 'openai'
PROVIDERS = (PROVIDER_PRIMARY, PROVIDER_SECONDARY)
DEFAULT_PROVIDER = PROVIDER_PRIMARY

DAY_MILLIS = 24 * 60 * 60 * 1000
SNAPSHOT_FILENAME = 'translation-cache.json'


@dataclass(frozen=True)
class CacheEntry:
    """A cached translation. Replaced as a whole on re-set, never merged."""
    word: str
    translation: str
    timestamp: int
    provider: str = DEFAULT_PROVIDER
    source_lang: str = DEFAULT_SOURCE_LANGUAGE
    target_lang: str = DEFAULT_TARGET_LANGUAGE

    @property
    def key(self) -> str:
        return derive_key(self.word, self.source_lang, self.target_lang)

    def to_snapshot(self) -> Dict[str, Any]:
        """Serialize to the on-disk snapshot record (provider is stored as 'source')."""
        return {
            'word': self.word,
            'translation': self.translation,
            'timestamp': self.timestamp,
            'source': self.provider,
        }

    @classmethod
    def from_snapshot(cls, record: Dict[str, Any],
                      source_lang: str = DEFAULT_SOURCE_LANGUAGE,
                      target_lang: str = DEFAULT_TARGET_LANGUAGE) -> 'CacheEntry':
        """
        Build an entry from an on-disk snapshot record.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has the wrong type
        """
        word = record['word']
        translation = record['translation']
        timestamp = record['timestamp']
        if not isinstance(word, str) or not isinstance(translation, str):
            raise ValueError("word and translation must be strings")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError("timestamp must be a number")
        if not math.isfinite(timestamp):
            raise ValueError(f"timestamp must be finite, got {timestamp!r}")
        # The snapshot does not record languages; these are the configured pair,
        # so entry.key may differ from the snapshot key the entry was stored under
        return cls(
            word=word,
            translation=translation,
            timestamp=int(timestamp),
            provider=record.get('source', DEFAULT_PROVIDER),
            source_lang=source_lang,
            target_lang=target_lang,
        )


class TierStatus(Enum):
    HIT = 'hit'
    MISS = 'miss'
    ERROR = 'error'


@dataclass(frozen=True)
class TierResult:
    """Outcome of a single tier lookup."""
    status: TierStatus
    value: Optional[str] = None
    error: Optional[BaseException] = None

    @classmethod
    def from_value(cls, value: str) -> 'TierResult':
        return cls(TierStatus.HIT, value=value)

    @classmethod
    def missing(cls) -> 'TierResult':
        return cls(TierStatus.MISS)

    @classmethod
    def from_error(cls, error: BaseException) -> 'TierResult':
        return cls(TierStatus.ERROR, error=error)

    @property
    def hit(self) -> bool:
        return self.status is TierStatus.HIT

    @property
    def failed(self) -> bool:
        return self.status is TierStatus.ERROR


class AbstractCache(ABC):
    """
    Abstract base class for cache tiers.
    """

    name = 'abstract'

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the cache tier.

        Args:
            config: Configuration dictionary
        """
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def get(self, word: str, source_language: str, target_language: str) -> TierResult:
        """
        Look up a translation.

        A missing entry is a MISS. Backend failures are reported as ERROR
        and never raised.

        Args:
            word: Source text
            source_language: Source language code
            target_language: Target language code

        Returns:
            TierResult for the lookup
        """
        pass

    @abstractmethod
    def set(self, entry: CacheEntry) -> bool:
        """
        Store a translation (idempotent upsert).

        Args:
            entry: Entry to store

        Returns:
            Boolean indicating success
        """
        pass

    def is_available(self) -> bool:
        """Whether this tier is configured and should be consulted."""
        return True

    def close(self) -> None:
        """Release backend resources."""
        pass


class LocalFileCache(AbstractCache):
    """
    In-process map mirrored to a JSON snapshot file. Last-resort fallback tier.
    """

    name = 'local'

    def __init__(self, config: Dict[str, Any], load: bool = True):
        """
        Initialize the local tier and load the existing snapshot.

        Args:
            config: Configuration dictionary
            load: Load the snapshot from disk on construction
        """
        super().__init__(config)
        local_config = config.get('cache', {}).get('local', {})
        self.source_language = config.get('source_language', DEFAULT_SOURCE_LANGUAGE)
        self.target_language = config.get('target_language', DEFAULT_TARGET_LANGUAGE)
        self.max_age_ms = int(local_config.get('max_age_days', 7) * DAY_MILLIS)
        self.directory = self._resolve_directory(local_config.get('directory'))
        self.path = os.path.join(self.directory, local_config.get('filename', SNAPSHOT_FILENAME))

        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._save_lock = threading.Lock()

        if load:
            self.load_snapshot()
            removed = self.remove_expired()
            if removed:
                self.logger.info(f"Cleaned {removed} expired cache entries on load")
                self.save_snapshot()

    @staticmethod
    def _resolve_directory(directory: Optional[str]) -> str:
        if directory:
            return directory
        if is_serverless():
            return tempfile.gettempdir()
        return os.path.join(os.getcwd(), 'data')

    def _handle_os_error(self, action: str, error: OSError) -> None:
        if error.errno == errno.EROFS:
            self.logger.warning(f"Cannot {action}: read-only filesystem ({self.path})")
        else:
            self.logger.error(f"Failed to {action}: {str(error)}")

    def _ensure_directory(self) -> bool:
        try:
            os.makedirs(self.directory, exist_ok=True)
            return True
        except OSError as e:
            self._handle_os_error('create cache directory', e)
            return False

    def is_expired(self, entry: CacheEntry, now: Optional[int] = None) -> bool:
        now = current_millis() if now is None else now
        return now - entry.timestamp > self.max_age_ms

    def get(self, word: str, source_language: str, target_language: str) -> TierResult:
        key = derive_key(word, source_language, target_language)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return TierResult.missing()

            if self.is_expired(entry):
                del self._entries[key]
                self.logger.debug(f"Expired cache entry removed for '{entry.word}'")
                return TierResult.missing()

        return TierResult.from_value(entry.translation)

    def set(self, entry: CacheEntry) -> bool:
        with self._lock:
            self._entries[entry.key] = entry
        return True

    def entry_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def entries(self) -> List[CacheEntry]:
        with self._lock:
            return list(self._entries.values())

    def remove_expired(self) -> int:
        """
        Remove every entry older than the maximum age.

        Returns:
            Number of entries removed
        """
        now = current_millis()
        with self._lock:
            expired_keys = [key for key, entry in self._entries.items() if self.is_expired(entry, now)]
            for key in expired_keys:
                del self._entries[key]
        return len(expired_keys)

    def clear(self) -> None:
        with self._lock:
            self._entries = {}

    def load_snapshot(self) -> int:
        """
        Replace the in-memory map with the contents of the snapshot file.

        A missing file leaves the map empty. An unreadable or malformed file is
        logged and also leaves the map empty.

        Returns:
            Number of entries loaded
        """
        if not os.path.exists(self.path):
            self.logger.info(f"No existing translation cache at {self.path}, starting fresh")
            with self._lock:
                self._entries = {}
            return 0

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except ValueError as e:
            self.logger.error(f"Malformed translation cache snapshot {self.path}: {str(e)}")
            data = {}
        except OSError as e:
            self._handle_os_error('read translation cache', e)
            data = {}

        if not isinstance(data, dict):
            self.logger.error(f"Translation cache snapshot {self.path} is not a JSON object, ignoring it")
            data = {}

        entries = {}
        for key, record in data.items():
            try:
                entries[key] = CacheEntry.from_snapshot(record, self.source_language, self.target_language)
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping malformed cache entry {key}: {str(e)}")

        with self._lock:
            self._entries = entries

        self.logger.info(f"Loaded translation cache with {len(entries)} entries")
        return len(entries)

    def save_snapshot(self) -> bool:
        """
        Write the whole in-memory map to the snapshot file.

        Returns:
            Boolean indicating success
        """
        if not self._ensure_directory():
            return False

        # Copy under the writer lock so snapshots land in order
        with self._save_lock:
            with self._lock:
                data = {key: entry.to_snapshot() for key, entry in self._entries.items()}
            try:
                with open(self.path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, ensure_ascii=False, indent=2)
                self.logger.info(f"Saved translation cache with {len(data)} entries")
                return True
            except OSError as e:
                self._handle_os_error('save translation cache', e)
                return False


class RedisCache(AbstractCache):
    """
    Redis-backed fast tier. Expiry is delegated to Redis key TTLs.
    """

    name = 'fast'

    def __init__(self, config: Dict[str, Any], client: Any = None):
        """
        Initialize the Redis tier.

        Args:
            config: Configuration dictionary
            client: Pre-built Redis client (built from the configured URL if omitted)
        """
        super().__init__(config)
        fast_config = config.get('cache', {}).get('fast', {})
        self.enabled = fast_config.get('enabled', True)
        self.key_prefix = fast_config.get('key_prefix', 'translation:')
        self.ttl = int(fast_config.get('ttl', 7 * 24 * 60 * 60))
        self.socket_timeout = fast_config.get('socket_timeout', 2.0)
        self.url = os.environ.get(fast_config.get('url_env', 'REDIS_URL')) or fast_config.get('url')

        self.client = client
        if self.client is None and self.enabled and self.url:
            self.client = self._create_client()

    def _create_client(self) -> Any:
        try:
            import redis
            client = redis.Redis.from_url(
                self.url,
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
            )
            self.logger.info("Redis cache client initialized")
            return client
        except Exception as e:
            self.logger.error(f"Error initializing Redis client: {str(e)}")
            return None

    def _redis_key(self, word: str, source_language: str, target_language: str) -> str:
        return f"{self.key_prefix}{derive_key(word, source_language, target_language)}"

    def is_available(self) -> bool:
        return self.enabled and self.client is not None

    def get(self, word: str, source_language: str, target_language: str) -> TierResult:
        if not self.is_available():
            return TierResult.missing()

        try:
            value = self.client.get(self._redis_key(word, source_language, target_language))
        except Exception as e:
            self.logger.error(f"Error reading from Redis cache: {str(e)}")
            return TierResult.from_error(e)

        if value is None:
            return TierResult.missing()
        if isinstance(value, bytes):
            value = value.decode('utf-8')
        return TierResult.from_value(value)

    def set(self, entry: CacheEntry) -> bool:
        if not self.is_available():
            return False

        try:
            self.client.set(
                self._redis_key(entry.word, entry.source_lang, entry.target_lang),
                entry.translation,
                ex=self.ttl
            )
            return True
        except Exception as e:
            self.logger.error(f"Error writing to Redis cache: {str(e)}")
            return False

    def close(self) -> None:
        if self.client is not None and hasattr(self.client, 'close'):
            try:
                self.client.close()
            except Exception as e:
                self.logger.warning(f"Error closing Redis client: {str(e)}")


class PostgresCache(AbstractCache):
    """
    PostgreSQL-backed durable tier. Inserts are conflict-safe: a duplicate
    (source_text, source_lang, target_lang) is a silent no-op.
    """

    name = 'durable'

    def __init__(self, config: Dict[str, Any], connect: Optional[Callable[[str], Any]] = None):
        """
        Initialize the PostgreSQL tier. The connection is opened on first use.

        Args:
            config: Configuration dictionary
            connect: Connection factory taking a connection string (psycopg2.connect if omitted)
        """
        super().__init__(config)
        durable_config = config.get('cache', {}).get('durable', {})
        self.enabled = durable_config.get('enabled', True)
        self.table = durable_config.get('table', 'translation_cache')
        self.connect_timeout = durable_config.get('connect_timeout', 5)
        self.connection_string = (
            os.environ.get(durable_config.get('connection_string_env', 'DATABASE_URL'))
            or durable_config.get('connection_string')
        )
        self._connect = connect
        self.conn = None

    def is_available(self) -> bool:
        return bool(self.enabled and self.connection_string)

    def _open_connection(self) -> Any:
        if self._connect is not None:
            return self._connect(self.connection_string)

        # Import psycopg2 here to avoid dependency if not used
        try:
            import psycopg2
        except ImportError:
            self.logger.error("psycopg2 not installed. Run: pip install psycopg2-binary")
            raise
        return psycopg2.connect(self.connection_string, connect_timeout=self.connect_timeout)

    def _get_connection(self) -> Any:
        if self.conn is None or getattr(self.conn, 'closed', 0):
            conn = self._open_connection()
            conn.autocommit = True
            try:
                self._initialize_db(conn)
            except Exception:
                conn.close()
                raise
            self.conn = conn
            self.logger.info("PostgreSQL cache initialized")
        return self.conn

    def _initialize_db(self, conn: Any) -> None:
        """
        Create the translation cache table and its unique lookup index if they don't exist.
        """
        with conn.cursor() as cursor:
            cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS {self.table} (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                source_text TEXT NOT NULL,
                source_lang VARCHAR(10) NOT NULL,
                target_lang VARCHAR(10) NOT NULL,
                translated_text TEXT NOT NULL,
                provider VARCHAR(50) NOT NULL,
                created_at TIMESTAMP NOT NULL DEFAULT now()
            )
            ''')

            # Conflict target for the idempotent insert
            cursor.execute(f'''
            CREATE UNIQUE INDEX IF NOT EXISTS idx_{self.table}_lookup ON {self.table}
            (source_text, source_lang, target_lang)
            ''')

    def _reset_connection(self) -> None:
        if self.conn is not None:
            try:
                self.conn.close()
            except Exception:
                self.logger.debug("Ignoring error while closing broken PostgreSQL connection")
        self.conn = None

    def get(self, word: str, source_language: str, target_language: str) -> TierResult:
        if not self.is_available():
            return TierResult.missing()

        try:
            conn = self._get_connection()
            with conn.cursor() as cursor:
                cursor.execute(
                    f'''
                    SELECT translated_text FROM {self.table}
                    WHERE source_text = %s AND source_lang = %s AND target_lang = %s
                    LIMIT 1
                    ''',
                    (word, source_language, target_language)
                )
                row = cursor.fetchone()
        except Exception as e:
            self.logger.error(f"Error retrieving from PostgreSQL cache: {str(e)}")
            self._reset_connection()
            return TierResult.from_error(e)

        if row and row[0]:
            return TierResult.from_value(row[0])
        return TierResult.missing()

    def set(self, entry: CacheEntry) -> bool:
        if not self.is_available():
            return False

        try:
            conn = self._get_connection()
            with conn.cursor() as cursor:
                cursor.execute(
                    f'''
                    INSERT INTO {self.table}
                    (source_text, source_lang, target_lang, translated_text, provider)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (source_text, source_lang, target_lang) DO NOTHING
                    ''',
                    (entry.word, entry.source_lang, entry.target_lang, entry.translation, entry.provider)
                )
            return True
        except Exception as e:
            self.logger.error(f"Error saving to PostgreSQL cache: {str(e)}")
            self._reset_connection()
            return False

    def close(self) -> None:
        self._reset_connection()
