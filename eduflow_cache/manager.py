#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Cache manager for the translation cache.
Composes the fast, durable and local tiers into one logical cache with
read-through fallback and write-through population.
"""

import threading
import concurrent.futures
from typing import Dict, Any, Optional, List
import logging

from .cache import (
    AbstractCache, CacheEntry, LocalFileCache, RedisCache, PostgresCache,
    TierResult, DEFAULT_PROVIDER, PROVIDERS
)
from .keys import DEFAULT_SOURCE_LANGUAGE, DEFAULT_TARGET_LANGUAGE
from .persistence import PersistenceScheduler
from .utilities import current_millis


class CacheManager:
    """
    Coordinates lookups and writes across the cache tiers.

    Lookup order is fast tier, durable tier, then local tier. A durable hit is
    copied into the fast tier. A local hit is returned as-is and never copied
    upward, since the local snapshot may be stale relative to the shared tiers.
    """

    def __init__(self, local: LocalFileCache, fast: Optional[AbstractCache] = None,
                 durable: Optional[AbstractCache] = None,
                 scheduler: Optional[PersistenceScheduler] = None,
                 config: Optional[Dict[str, Any]] = None):
        """
        Initialize the cache manager.

        Args:
            local: Local snapshot tier
            fast: Fast shared tier (optional)
            durable: Durable tier (optional, consulted only when available)
            scheduler: Snapshot persistence policy (defaults to flushing every 10 entries)
            config: Configuration dictionary
        """
        self.config = config or {}
        self.logger = logging.getLogger(self.__class__.__name__)
        self.local = local
        self.fast = fast
        self.durable = durable
        self.scheduler = scheduler or PersistenceScheduler(local)
        self.max_workers = self.config.get('cache', {}).get('max_workers', 8)

        # Stats tracking
        self.hit_count = 0
        self.miss_count = 0
        self.tier_hits = {tier.name: 0 for tier in self._tiers()}
        self.lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'CacheManager':
        """
        Build a cache manager with every tier created from configuration.

        Args:
            config: Configuration dictionary

        Returns:
            Initialized cache manager
        """
        local = LocalFileCache(config)
        interval = config.get('cache', {}).get('local', {}).get('flush_interval', 10)
        return cls(
            local=local,
            fast=RedisCache(config),
            durable=PostgresCache(config),
            scheduler=PersistenceScheduler(local, interval),
            config=config,
        )

    def _tiers(self) -> List[AbstractCache]:
        return [tier for tier in (self.fast, self.durable, self.local) if tier is not None]

    def _lookup(self, tier: Optional[AbstractCache], word: str,
                source_language: str, target_language: str) -> TierResult:
        if tier is None or not tier.is_available():
            return TierResult.missing()
        result = tier.get(word, source_language, target_language)
        if result.failed:
            self.logger.warning(f"{tier.name} tier unavailable for '{word}', falling through")
        return result

    def _record(self, tier_name: Optional[str]) -> None:
        with self.lock:
            if tier_name is None:
                self.miss_count += 1
            else:
                self.hit_count += 1
                self.tier_hits[tier_name] = self.tier_hits.get(tier_name, 0) + 1

    def get(self, word: str, source_language: str = DEFAULT_SOURCE_LANGUAGE,
            target_language: str = DEFAULT_TARGET_LANGUAGE) -> Optional[str]:
        """
        Get a translation from the cache.

        Args:
            word: Source text to look up
            source_language: Source language code
            target_language: Target language code

        Returns:
            Cached translation or None if not found in any tier
        """
        lookup_word = word.strip()

        result = self._lookup(self.fast, lookup_word, source_language, target_language)
        if result.hit:
            self.logger.debug(f"Redis cache hit for '{word}' -> '{result.value}'")
            self._record(self.fast.name)
            return result.value

        result = self._lookup(self.durable, lookup_word, source_language, target_language)
        if result.hit:
            self.logger.debug(f"DB cache hit for '{word}' -> '{result.value}'")
            if self.fast is not None:
                self.fast.set(CacheEntry(
                    word=lookup_word,
                    translation=result.value,
                    timestamp=current_millis(),
                    source_lang=source_language,
                    target_lang=target_language,
                ))
            self._record(self.durable.name)
            return result.value

        result = self.local.get(word, source_language, target_language)
        if result.hit:
            self.logger.debug(f"File cache hit for '{word}' -> '{result.value}'")
            self._record(self.local.name)
            return result.value

        self.logger.debug(f"Cache miss for '{word}' ({source_language} -> {target_language})")
        self._record(None)
        return None

    def set(self, word: str, translation: str, provider: str = DEFAULT_PROVIDER,
            source_language: str = DEFAULT_SOURCE_LANGUAGE,
            target_language: str = DEFAULT_TARGET_LANGUAGE) -> None:
        """
        Store a translation in every tier.

        Args:
            word: Source text
            translation: Translated text
            provider: Upstream service that produced the translation
            source_language: Source language code
            target_language: Target language code
        """
        entry = CacheEntry(
            word=word.strip(),
            translation=translation.strip(),
            timestamp=current_millis(),
            provider=provider,
            source_lang=source_language,
            target_lang=target_language,
        )

        if self.fast is not None:
            self.fast.set(entry)

        if self.durable is not None and self.durable.is_available():
            self.durable.set(entry)

        self.local.set(entry)
        self.logger.debug(f"Cached translation: '{entry.word}' -> '{entry.translation}' (source: {provider})")

        self.scheduler.after_set()

    def get_multiple(self, words: List[str], source_language: str = DEFAULT_SOURCE_LANGUAGE,
                     target_language: str = DEFAULT_TARGET_LANGUAGE) -> Dict[str, Any]:
        """
        Look up several words one at a time.

        Words are not deduplicated; a repeated miss appears repeatedly in 'missing'.

        Args:
            words: Source texts in caller order
            source_language: Source language code
            target_language: Target language code

        Returns:
            Dictionary with 'cached' (word -> translation) and 'missing' (list of words)
        """
        cached = {}
        missing = []

        for word in words:
            translation = self.get(word, source_language, target_language)
            if translation:
                cached[word] = translation
            else:
                missing.append(word)

        self.logger.info(f"Cache lookup - Found: {len(cached)}, Missing: {len(missing)}")
        return {'cached': cached, 'missing': missing}

    def set_multiple(self, translations: Dict[str, str], provider: str = DEFAULT_PROVIDER,
                     source_language: str = DEFAULT_SOURCE_LANGUAGE,
                     target_language: str = DEFAULT_TARGET_LANGUAGE) -> None:
        """
        Store several translations concurrently, then flush the local snapshot.

        Args:
            translations: Mapping of source text to translated text
            provider: Upstream service that produced the translations
            source_language: Source language code
            target_language: Target language code
        """
        if translations:
            max_workers = max(1, min(len(translations), self.max_workers))
            with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures = [
                    executor.submit(self.set, word, translation, provider, source_language, target_language)
                    for word, translation in translations.items()
                ]
                concurrent.futures.wait(futures)

            # Surface programming errors from workers once every write has finished
            for future in futures:
                future.result()

        self.scheduler.after_batch()

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the local tier contents and lookup counters.

        Entry counts cover the local tier only; the shared tiers are not enumerated.

        Returns:
            Dictionary with cache statistics
        """
        entries = self.local.entries()

        count_by_provider = {provider: 0 for provider in PROVIDERS}
        for entry in entries:
            count_by_provider[entry.provider] = count_by_provider.get(entry.provider, 0) + 1

        timestamps = [entry.timestamp for entry in entries]

        with self.lock:
            total_requests = self.hit_count + self.miss_count
            hit_rate = (self.hit_count / total_requests) if total_requests > 0 else 0
            stats = {
                'total_entries': len(entries),
                'count_by_provider': count_by_provider,
                'oldest_entry_timestamp': min(timestamps) if timestamps else None,
                'newest_entry_timestamp': max(timestamps) if timestamps else None,
                'hit_count': self.hit_count,
                'miss_count': self.miss_count,
                'hit_rate': hit_rate,
                'tier_hits': dict(self.tier_hits),
            }

        return stats

    def clear_expired(self) -> int:
        """
        Remove expired entries from the local tier.

        Returns:
            Number of entries removed
        """
        removed = self.local.remove_expired()
        if removed:
            self.logger.info(f"Cleaned {removed} expired cache entries")
        self.scheduler.after_sweep(removed)
        return removed

    def clear_all(self) -> None:
        """
        Empty the local tier and persist the empty snapshot.
        The fast and durable tiers are owned externally and left untouched.
        """
        self.local.clear()
        self.scheduler.after_clear()
        self.logger.info("Cleared all local translation cache entries")

    def close(self) -> None:
        for tier in self._tiers():
            tier.close()
