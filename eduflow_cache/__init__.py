"""
EduFlow translation cache: a tiered (Redis, PostgreSQL, local snapshot) cache for
word translations.
"""

from .cache import (
    CacheEntry, TierResult, TierStatus, AbstractCache, LocalFileCache, RedisCache, PostgresCache,
    PROVIDER_PRIMARY, PROVIDER_SECONDARY, DEFAULT_PROVIDER
)
from .keys import derive_key
from .manager import CacheManager
from .persistence import PersistenceScheduler

__version__ = '1.0.0'
