#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Cache key derivation for translation entries.
"""

import hashlib

DEFAULT_SOURCE_LANGUAGE = 'zh'
DEFAULT_TARGET_LANGUAGE = 'vi'


def derive_key(word: str, source_language: str = DEFAULT_SOURCE_LANGUAGE,
               target_language: str = DEFAULT_TARGET_LANGUAGE) -> str:
    """
    Generate a stable cache key for a translation entry.

    The word is trimmed and lower-cased, so inputs that differ only in casing or
    surrounding whitespace map to the same key. An empty word still yields a key.

    Args:
        word: Source text
        source_language: Source language code
        target_language: Target language code

    Returns:
        SHA-256 hex digest
    """
    key = f"{word.strip().lower()}_{source_language}_{target_language}"
    return hashlib.sha256(key.encode('utf-8')).hexdigest()
