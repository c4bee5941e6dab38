#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration management for the translation cache.
Handles loading and validation of YAML configuration and command line overrides.
"""

import os
import re
import copy
import yaml
from typing import Dict, Any, Optional
import logging


# Template YAML configuration with comments
CONFIG_YAML_TEMPLATE = """# EduFlow Translation Cache Configuration

# Default language pair for word translations
source_language: "zh"
target_language: "vi"

#--------------------
# CACHE SETTINGS
#--------------------
cache:
  # Worker threads used by batch writes
  max_workers: 8

  # Local snapshot tier (last-resort fallback)
  local:
    # Directory of the JSON snapshot. Leave empty to use ./data, or the
    # system temp directory on serverless hosts.
    directory: null
    filename: "translation-cache.json"
    # Entries older than this are treated as missing
    max_age_days: 7
    # Save the snapshot whenever the entry count is a multiple of this
    flush_interval: 10

  # Fast shared tier (Redis)
  fast:
    enabled: true
    # Environment variable holding the Redis URL, e.g. redis://localhost:6379/0
    url_env: "REDIS_URL"
    key_prefix: "translation:"
    # Key expiry in seconds (default: 7 days)
    ttl: 604800
    socket_timeout: 2.0

  # Durable tier (PostgreSQL)
  durable:
    enabled: true
    # Environment variable holding the PostgreSQL connection string
    connection_string_env: "DATABASE_URL"
    table: "translation_cache"
    connect_timeout: 5

#--------------------
# TRANSLATION PROVIDERS
#--------------------
providers:
  deepl:
    api_key_env: "DEEPL_API_KEY"
    timeout: 30
  openai:
    api_key_env: "OPENAI_API_KEY"
    model: "gpt-4o-mini"
    temperature: 0.1
    max_tokens: 1500

# Retry settings for provider calls
retry:
  max_attempts: 3
  backoff_factor: 2

#--------------------
# LOGGING SETTINGS
#--------------------
logging:
  # Logging level: DEBUG, INFO, WARNING, ERROR
  level: "INFO"
  # Log file path (null logs to the console only)
  log_file: null
"""

TABLE_NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


class ConfigManager:
    """
    Handles loading, validating and providing access to configuration.
    """

    # Default configuration
    DEFAULT_CONFIG = {
        'source_language': 'zh',
        'target_language': 'vi',
        'cache': {
            'max_workers': 8,
            'local': {
                'directory': None,
                'filename': 'translation-cache.json',
                'max_age_days': 7,
                'flush_interval': 10,
            },
            'fast': {
                'enabled': True,
                'url_env': 'REDIS_URL',
                'key_prefix': 'translation:',
                'ttl': 604800,  # 7 days in seconds
                'socket_timeout': 2.0,
            },
            'durable': {
                'enabled': True,
                'connection_string_env': 'DATABASE_URL',
                'table': 'translation_cache',
                'connect_timeout': 5,
            },
        },
        'providers': {
            'deepl': {
                'api_key_env': 'DEEPL_API_KEY',
                'timeout': 30,
            },
            'openai': {
                'api_key_env': 'OPENAI_API_KEY',
                'model': 'gpt-4o-mini',
                'temperature': 0.1,
                'max_tokens': 1500,
            },
        },
        'retry': {
            'max_attempts': 3,
            'backoff_factor': 2,
        },
        'logging': {
            'level': 'INFO',
            'log_file': None,
        },
    }

    def __init__(self, config_path: Optional[str] = None, cli_overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the YAML configuration file (defaults only if omitted)
            cli_overrides: Dictionary of command-line overrides
        """
        self.config_path = config_path
        self.cli_overrides = cli_overrides or {}
        self.logger = logging.getLogger(self.__class__.__name__)
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """
        Load configuration from YAML file and apply overrides.

        Returns:
            Dict containing merged configuration
        """
        # Start with default configuration
        config = copy.deepcopy(self.DEFAULT_CONFIG)

        # Load from YAML file if provided and exists
        if self.config_path:
            try:
                if os.path.exists(self.config_path):
                    with open(self.config_path, 'r', encoding='utf-8') as config_file:
                        file_config = yaml.safe_load(config_file)
                    if isinstance(file_config, dict):
                        self._deep_update(config, file_config)
                    else:
                        self.logger.warning(f"Empty or invalid configuration file: {self.config_path}")
                else:
                    self.logger.warning(f"Configuration file not found: {self.config_path}")
            except (OSError, yaml.YAMLError) as e:
                self.logger.error(f"Error loading configuration file: {str(e)}")
                # Continue with default configuration

        # Apply command-line overrides
        self._apply_cli_overrides(config)

        # Validate the configuration
        self._validate_config(config)

        return config

    def _deep_update(self, target: Dict[str, Any], source: Dict[str, Any]) -> None:
        """
        Recursively update a nested dictionary.

        Args:
            target: Target dictionary to update
            source: Source dictionary with updates
        """
        for key, value in source.items():
            if isinstance(value, dict) and key in target and isinstance(target[key], dict):
                self._deep_update(target[key], value)
            else:
                target[key] = value

    def _apply_cli_overrides(self, config: Dict[str, Any]) -> None:
        """
        Apply command-line overrides to the configuration.

        Args:
            config: Configuration dictionary to update
        """
        for key, value in self.cli_overrides.items():
            # Handle nested keys using dot notation (e.g., 'cache.local.max_age_days')
            if '.' in key:
                parts = key.split('.')
                current = config

                for part in parts[:-1]:
                    if not isinstance(current.get(part), dict):
                        current[part] = {}
                    current = current[part]

                current[parts[-1]] = value
            elif isinstance(value, dict) and isinstance(config.get(key), dict):
                self._deep_update(config[key], value)
            else:
                config[key] = value

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """
        Validate the configuration and reset recoverable values to defaults.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ValueError: If a cache setting is invalid
        """
        cache_config = config.get('cache', {})
        local_config = cache_config.get('local', {})

        if local_config.get('flush_interval', 0) < 1:
            raise ValueError("cache.local.flush_interval must be a positive integer")

        if local_config.get('max_age_days', 0) <= 0:
            raise ValueError("cache.local.max_age_days must be positive")

        table = cache_config.get('durable', {}).get('table', '')
        if not TABLE_NAME_PATTERN.match(str(table)):
            raise ValueError(f"Invalid durable cache table name: {table!r}")

        if cache_config.get('max_workers', 0) < 1:
            self.logger.warning("Invalid cache.max_workers, setting to default (8)")
            cache_config['max_workers'] = 8

        # Shared tiers are optional; report when they are configured off by environment
        url_env = cache_config.get('fast', {}).get('url_env')
        if url_env and not os.environ.get(url_env):
            self.logger.info(f"Environment variable '{url_env}' not set, Redis cache tier disabled")

        connection_env = cache_config.get('durable', {}).get('connection_string_env')
        if connection_env and not os.environ.get(connection_env):
            self.logger.info(f"Environment variable '{connection_env}' not set, PostgreSQL cache tier disabled")

        # Validate retry settings
        retry_config = config.setdefault('retry', {})
        if retry_config.get('max_attempts', 0) < 1:
            retry_config['max_attempts'] = 3
        if retry_config.get('backoff_factor', 0) < 0:
            retry_config['backoff_factor'] = 2

    def get_config(self) -> Dict[str, Any]:
        """
        Get the complete configuration.

        Returns:
            Dict containing the merged and validated configuration
        """
        return self.config

    def get_value(self, key: str, default: Any = None) -> Any:
        """
        Get a specific configuration value.

        Args:
            key: Configuration key (supports dot notation for nested keys)
            default: Default value if key is not found

        Returns:
            Configuration value or default
        """
        current = self.config
        for part in key.split('.'):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        return current


def write_config_template(path: str, overwrite: bool = False) -> bool:
    """
    Write a commented template configuration file.

    Args:
        path: Destination of the YAML file
        overwrite: Replace an existing file

    Returns:
        True if the file was written, False if it already existed
    """
    if os.path.exists(path) and not overwrite:
        return False

    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(CONFIG_YAML_TEMPLATE)
    return True
