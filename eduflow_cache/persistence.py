#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Snapshot persistence policy for the local cache tier.
Flushes are synchronous consequences of writes; there is no background timer.
"""

import logging

from .cache import LocalFileCache


class PersistenceScheduler:
    """
    Decides when the local tier snapshot is written to disk.
    """

    def __init__(self, local: LocalFileCache, interval: int = 10):
        """
        Initialize the scheduler.

        Args:
            local: Local tier whose snapshot is managed
            interval: Flush after a single set when the entry count is a multiple of this
        """
        if interval < 1:
            raise ValueError("Flush interval must be at least 1")
        self.local = local
        self.interval = interval
        self.logger = logging.getLogger(self.__class__.__name__)

    def should_flush(self, entry_count: int) -> bool:
        """
        Determine if a single-entry write should trigger a flush.

        Uses the running entry count rather than a write counter, so replacing an
        existing entry at a multiple of the interval flushes again.

        Args:
            entry_count: Current number of entries in the local tier

        Returns:
            Boolean indicating if the snapshot should be saved
        """
        return entry_count > 0 and entry_count % self.interval == 0

    def after_set(self) -> bool:
        """Flush opportunistically after an individual set."""
        if self.should_flush(self.local.entry_count()):
            return self.flush()
        return False

    def after_batch(self) -> bool:
        """Flush unconditionally after a batch write."""
        return self.flush()

    def after_sweep(self, removed: int) -> bool:
        """Flush after an expiry sweep if anything was removed."""
        if removed > 0:
            return self.flush()
        return False

    def after_clear(self) -> bool:
        """Flush the emptied map after a full clear."""
        return self.flush()

    def flush(self) -> bool:
        self.logger.debug(f"Flushing local cache snapshot to {self.local.path}")
        return self.local.save_snapshot()
