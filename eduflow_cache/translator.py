#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Translator module for the translation cache.
Wraps the upstream translation providers and the cache-first word translation flow.
"""

import os
import json
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional
import logging
import concurrent.futures

import requests
from openai import OpenAI, OpenAIError

from .cache import PROVIDER_PRIMARY, PROVIDER_SECONDARY
from .manager import CacheManager
from .utilities import retry


class TranslationError(Exception):
    """Raised when a provider cannot produce a translation."""


class RetryableStatusError(TranslationError):
    """Raised for rate limiting and server errors that are worth retrying."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code


class AbstractTranslator(ABC):
    """
    Abstract base class for translators.
    """

    provider = 'abstract'

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the translator.

        Args:
            config: Configuration dictionary
        """
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self.retry_config = config.get('retry', {})

    @abstractmethod
    def translate(self, text: str, source_language: str, target_language: str) -> str:
        """
        Translate a single text string.

        Raises:
            TranslationError: If the provider fails
        """
        pass

    def batch_translate(self, texts: List[str], source_language: str, target_language: str) -> Dict[str, str]:
        """
        Translate several texts. Texts that fail are left out of the result.

        Args:
            texts: Texts to translate
            source_language: Source language code
            target_language: Target language code

        Returns:
            Mapping of text to translation
        """
        results = {}
        for text in texts:
            try:
                results[text] = self.translate(text, source_language, target_language)
            except TranslationError as e:
                self.logger.error(f"{self.provider} translation error for '{text}': {str(e)}")
        return results


class DeepLTranslator(AbstractTranslator):
    """
    Translator implementation using the DeepL REST API.
    """

    provider = PROVIDER_PRIMARY
    FREE_API_URL = "https://api-free.deepl.com/v2"
    PRO_API_URL = "https://api.deepl.com/v2"

    def __init__(self, config: Dict[str, Any], session: Optional[requests.Session] = None):
        """
        Initialize the DeepL translator.

        Args:
            config: Configuration dictionary
            session: HTTP session (a new one is created if omitted)

        Raises:
            ValueError: If the API key is not configured
        """
        super().__init__(config)
        deepl_config = config.get('providers', {}).get('deepl', {})
        self.api_key = os.environ.get(deepl_config.get('api_key_env', 'DEEPL_API_KEY'))
        if not self.api_key:
            raise ValueError("DeepL API key not found in environment variables")

        self.timeout = deepl_config.get('timeout', 30)
        self.base_url = self.FREE_API_URL if self.api_key.endswith(':fx') else self.PRO_API_URL

        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"DeepL-Auth-Key {self.api_key}",
            "Content-Type": "application/json",
        })

        self._post = retry(
            max_attempts=self.retry_config.get('max_attempts', 3),
            backoff_factor=self.retry_config.get('backoff_factor', 2),
            exceptions=(requests.ConnectionError, requests.Timeout, RetryableStatusError)
        )(self._post)
        self.logger.info(f"Initialized DeepL client ({self.base_url})")

    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        response = self.session.post(f"{self.base_url}/translate", json=payload, timeout=self.timeout)
        if response.status_code == 429 or response.status_code >= 500:
            raise RetryableStatusError(response.status_code, response.text[:200])
        return response

    def translate(self, text: str, source_language: str, target_language: str) -> str:
        payload = {
            "text": [text],
            "source_lang": source_language.upper(),
            "target_lang": target_language.upper(),
        }

        try:
            response = self._post(payload)
        except requests.RequestException as e:
            raise TranslationError(f"DeepL request failed: {str(e)}") from e

        if response.status_code != 200:
            raise TranslationError(f"DeepL returned HTTP {response.status_code}: {response.text[:200]}")

        try:
            translation = response.json()["translations"][0]["text"]
        except (ValueError, KeyError, IndexError) as e:
            raise TranslationError(f"Unexpected DeepL response: {str(e)}") from e

        self.logger.debug(f"DeepL translation: '{text}' -> '{translation}'")
        return translation


class OpenAITranslator(AbstractTranslator):
    """
    Translator implementation using the OpenAI chat completions API.
    """

    provider = PROVIDER_SECONDARY

    def __init__(self, config: Dict[str, Any], client: Optional[OpenAI] = None):
        """
        Initialize the OpenAI translator.

        Args:
            config: Configuration dictionary
            client: OpenAI client (built from the configured API key if omitted)

        Raises:
            ValueError: If the API key is not configured
        """
        super().__init__(config)
        openai_config = config.get('providers', {}).get('openai', {})
        self.model = openai_config.get('model', 'gpt-4o-mini')
        self.temperature = openai_config.get('temperature', 0.1)
        self.max_tokens = openai_config.get('max_tokens', 1500)

        if client is None:
            api_key = os.environ.get(openai_config.get('api_key_env', 'OPENAI_API_KEY'))
            if not api_key:
                raise ValueError("OpenAI API key not found in environment variables")
            client = OpenAI(api_key=api_key)
        self.client = client
        self.logger.info(f"Initialized OpenAI client with model {self.model}")

    def _get_system_prompt(self, source_language: str, target_language: str) -> str:
        return (
            f"You are a professional translator from '{source_language}' to '{target_language}'. "
            "Return only a JSON object with the source words as keys and their translations as values."
        )

    def batch_translate(self, texts: List[str], source_language: str, target_language: str) -> Dict[str, str]:
        if not texts:
            return {}

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self._get_system_prompt(source_language, target_language)},
                    {"role": "user", "content": ", ".join(texts)}
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"}
            )
            content = response.choices[0].message.content or "{}"
            parsed = json.loads(content)
        except OpenAIError as e:
            self.logger.error(f"OpenAI translation error: {str(e)}")
            return {}
        except ValueError as e:
            self.logger.error(f"OpenAI returned invalid JSON: {str(e)}")
            return {}

        if not isinstance(parsed, dict):
            self.logger.error("OpenAI response is not a JSON object")
            return {}

        return {
            text: str(parsed[text]).strip()
            for text in texts
            if isinstance(parsed.get(text), str) and parsed[text].strip()
        }

    def translate(self, text: str, source_language: str, target_language: str) -> str:
        translation = self.batch_translate([text], source_language, target_language).get(text)
        if not translation:
            raise TranslationError(f"OpenAI returned no translation for '{text}'")
        return translation


class TranslationManager:
    """
    Translates words cache-first: cached words are returned directly, misses go to
    the primary provider with per-word fallback to the secondary provider, and
    fresh results are written back to the cache.
    """

    def __init__(self, config: Dict[str, Any], cache_manager: CacheManager,
                 primary: Optional[AbstractTranslator] = None,
                 secondary: Optional[AbstractTranslator] = None):
        """
        Initialize the translation manager.

        Args:
            config: Configuration dictionary
            cache_manager: Cache manager instance
            primary: Primary translator (DeepL from configuration if omitted)
            secondary: Fallback translator (OpenAI from configuration if omitted)
        """
        self.config = config
        self.cache_manager = cache_manager
        self.logger = logging.getLogger(self.__class__.__name__)

        self.primary = primary if primary is not None else self._build_translator(DeepLTranslator)
        self.secondary = secondary if secondary is not None else self._build_translator(OpenAITranslator)
        self.source_language = config.get('source_language', 'zh')
        self.target_language = config.get('target_language', 'vi')
        self.max_workers = config.get('cache', {}).get('max_workers', 8)

        self.stats = {
            'cached_hits': 0,
            'api_calls': 0,
            'fallbacks': 0,
            'errors': 0
        }

    def _build_translator(self, translator_cls: type) -> Optional[AbstractTranslator]:
        try:
            return translator_cls(self.config)
        except ValueError as e:
            self.logger.warning(f"{translator_cls.__name__} unavailable: {str(e)}")
            return None

    def _translate_primary(self, words: List[str], source_language: str,
                           target_language: str) -> Dict[str, str]:
        if self.primary is None or not words:
            return {}

        results = {}
        max_workers = max(1, min(len(words), self.max_workers))
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_word = {
                executor.submit(self.primary.translate, word, source_language, target_language): word
                for word in words
            }
            for future in concurrent.futures.as_completed(future_to_word):
                word = future_to_word[future]
                try:
                    results[word] = future.result()
                except TranslationError as e:
                    self.logger.error(f"Primary translation error for '{word}': {str(e)}")
        return results

    def translate_words(self, words: List[str], source_language: Optional[str] = None,
                        target_language: Optional[str] = None) -> Dict[str, str]:
        """
        Translate a list of words, using the cache wherever possible.

        Blank words are skipped and duplicates are looked up once. Words that no
        provider could translate map to themselves and are not cached.

        Args:
            words: Words to translate
            source_language: Source language code (configured default if omitted)
            target_language: Target language code (configured default if omitted)

        Returns:
            Mapping of each word to its translation
        """
        source_language = source_language or self.source_language
        target_language = target_language or self.target_language

        unique_words = list(dict.fromkeys(word.strip() for word in words if word and word.strip()))
        if not unique_words:
            return {}

        lookup = self.cache_manager.get_multiple(unique_words, source_language, target_language)
        results = dict(lookup['cached'])
        missing = lookup['missing']
        self.stats['cached_hits'] += len(results)

        if not missing:
            return results

        primary_results = self._translate_primary(missing, source_language, target_language)
        self.stats['api_calls'] += len(missing) if self.primary is not None else 0

        fallback_words = [word for word in missing if word not in primary_results]
        secondary_results = {}
        if fallback_words and self.secondary is not None:
            self.logger.info(f"Falling back to {self.secondary.provider} for {len(fallback_words)} words")
            self.stats['fallbacks'] += len(fallback_words)
            secondary_results = self.secondary.batch_translate(fallback_words, source_language, target_language)

        if primary_results:
            self.cache_manager.set_multiple(primary_results, PROVIDER_PRIMARY, source_language, target_language)
        if secondary_results:
            self.cache_manager.set_multiple(secondary_results, PROVIDER_SECONDARY, source_language, target_language)

        results.update(primary_results)
        results.update(secondary_results)

        for word in missing:
            if word not in results:
                self.logger.error(f"No provider could translate '{word}', returning it unchanged")
                self.stats['errors'] += 1
                results[word] = word

        return results

    def get_stats(self) -> Dict[str, int]:
        """
        Get statistics from the translation process.

        Returns:
            Dictionary of translation statistics
        """
        return dict(self.stats)
