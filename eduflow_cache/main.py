#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Command line entry point for inspecting and maintaining the translation cache.
"""

import os
import sys
import json
import argparse
from typing import Dict, List, Any, Optional

from .config import ConfigManager, write_config_template
from .manager import CacheManager
from .translator import TranslationManager
from .utilities import set_up_logging


DEFAULT_CONFIG_PATH = os.path.join('config', 'config.yaml')

# Directories created by the init command
DIRECTORIES = ['config', 'data', 'logs']


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='EduFlow translation cache')
    parser.add_argument('--config', default=DEFAULT_CONFIG_PATH, help='Path to configuration YAML file')
    parser.add_argument('--cache-dir', help='Override the local snapshot directory')
    parser.add_argument('--source-language', help='Override source language')
    parser.add_argument('--target-language', help='Override target language')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', required=True)
    subparsers.add_parser('init', help='Create the directory layout and a template configuration')
    subparsers.add_parser('stats', help='Show local cache statistics')
    subparsers.add_parser('clear-expired', help='Remove expired entries from the local cache')
    subparsers.add_parser('clear', help='Remove every entry from the local cache')

    get_parser = subparsers.add_parser('get', help='Look up cached translations')
    get_parser.add_argument('words', nargs='+', help='Words to look up')

    translate_parser = subparsers.add_parser('translate', help='Translate words, using the cache first')
    translate_parser.add_argument('words', nargs='+', help='Words to translate')

    return parser


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    cli_args: Dict[str, Any] = {}
    if args.cache_dir:
        cli_args['cache.local.directory'] = args.cache_dir
    if args.source_language:
        cli_args['source_language'] = args.source_language
    if args.target_language:
        cli_args['target_language'] = args.target_language
    if args.verbose:
        cli_args['logging.level'] = 'DEBUG'
    return cli_args


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def run_init(config_path: str) -> int:
    for directory in DIRECTORIES:
        os.makedirs(directory, exist_ok=True)
        print(f"  Created directory: {directory}")

    if write_config_template(config_path):
        print(f"Created template configuration: {config_path}")
    else:
        print(f"File already exists: {config_path}")
    return 0


def run_command(args: argparse.Namespace, config: Dict[str, Any], cache_manager: CacheManager) -> int:
    source_language = config.get('source_language')
    target_language = config.get('target_language')

    if args.command == 'stats':
        _print_json(cache_manager.get_stats())
    elif args.command == 'clear-expired':
        removed = cache_manager.clear_expired()
        print(f"Removed {removed} expired cache entries")
    elif args.command == 'clear':
        cache_manager.clear_all()
        print("Cleared local translation cache")
    elif args.command == 'get':
        lookup = cache_manager.get_multiple(args.words, source_language, target_language)
        _print_json(lookup)
        if lookup['missing']:
            return 1
    elif args.command == 'translate':
        translation_manager = TranslationManager(config, cache_manager)
        _print_json(translation_manager.translate_words(args.words, source_language, target_language))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point for the cache command line.

    Returns:
        Process exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == 'init':
        return run_init(args.config)

    config = ConfigManager(args.config, _cli_overrides(args)).get_config()
    logger = set_up_logging(
        config.get('logging', {}).get('level', 'INFO'),
        config.get('logging', {}).get('log_file')
    )

    cache_manager = CacheManager.from_config(config)
    try:
        return run_command(args, config, cache_manager)
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        return 130
    except Exception as e:
        logger.exception(f"Unhandled exception: {str(e)}")
        return 1
    finally:
        cache_manager.close()


if __name__ == "__main__":
    sys.exit(main())
