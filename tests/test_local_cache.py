import os
import json
import errno
import logging
import tempfile

from eduflow_cache.cache import LocalFileCache, CacheEntry, DAY_MILLIS, TierStatus
from eduflow_cache.keys import derive_key
from eduflow_cache.utilities import current_millis


def _entry(word, translation, age_days=0, provider='deepl'):
    return CacheEntry(
        word=word,
        translation=translation,
        timestamp=current_millis() - int(age_days * DAY_MILLIS),
        provider=provider,
    )


def test_cold_start_without_snapshot(config, temp_dir):
    local = LocalFileCache(config)

    assert local.entry_count() == 0
    assert local.path == os.path.join(str(temp_dir), 'translation-cache.json')
    assert not os.path.exists(local.path)


def test_set_then_get_is_case_insensitive(config):
    local = LocalFileCache(config)
    local.set(_entry('Hello', 'xin chào'))

    result = local.get('  hello ', 'zh', 'vi')

    assert result.status is TierStatus.HIT
    assert result.value == 'xin chào'
    assert local.get('hello', 'zh', 'en').status is TierStatus.MISS


def test_expired_entry_is_a_miss_and_removed(config):
    local = LocalFileCache(config)
    local.set(_entry('旧', 'cũ', age_days=8))
    assert local.entry_count() == 1

    result = local.get('旧', 'zh', 'vi')

    assert result.status is TierStatus.MISS
    assert local.entry_count() == 0


def test_entry_just_inside_max_age_is_kept(config):
    local = LocalFileCache(config)
    local.set(_entry('新', 'mới', age_days=6.9))

    assert local.get('新', 'zh', 'vi').hit


def test_snapshot_round_trip(config):
    local = LocalFileCache(config)
    local.set(_entry('你好', 'xin chào', provider='openai'))
    assert local.save_snapshot()

    with open(local.path, encoding='utf-8') as f:
        data = json.load(f)
    record = data[derive_key('你好')]
    assert record['word'] == '你好'
    assert record['translation'] == 'xin chào'
    assert record['source'] == 'openai'
    assert isinstance(record['timestamp'], int)

    reloaded = LocalFileCache(config)
    assert reloaded.entry_count() == 1
    assert reloaded.entries()[0].provider == 'openai'
    assert reloaded.get('你好', 'zh', 'vi').value == 'xin chào'


def test_load_drops_expired_entries_and_rewrites_snapshot(config, temp_dir):
    fresh = _entry('新', 'mới')
    stale = _entry('旧', 'cũ', age_days=30)
    path = os.path.join(str(temp_dir), 'translation-cache.json')
    with open(path, 'w', encoding='utf-8') as f:
        json.dump({fresh.key: fresh.to_snapshot(), stale.key: stale.to_snapshot()}, f)

    local = LocalFileCache(config)

    assert local.entry_count() == 1
    with open(path, encoding='utf-8') as f:
        assert list(json.load(f)) == [fresh.key]


def test_malformed_snapshot_starts_empty(config, temp_dir, caplog):
    path = os.path.join(str(temp_dir), 'translation-cache.json')
    with open(path, 'w', encoding='utf-8') as f:
        f.write('{not json')

    with caplog.at_level(logging.ERROR):
        local = LocalFileCache(config)

    assert local.entry_count() == 0
    assert 'Malformed translation cache snapshot' in caplog.text


def test_non_object_snapshot_starts_empty(config, temp_dir):
    path = os.path.join(str(temp_dir), 'translation-cache.json')
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(['a', 'b'], f)

    assert LocalFileCache(config).entry_count() == 0


def test_malformed_entries_are_skipped(config, temp_dir):
    good = _entry('好', 'tốt')
    path = os.path.join(str(temp_dir), 'translation-cache.json')
    with open(path, 'w', encoding='utf-8') as f:
        json.dump({
            good.key: good.to_snapshot(),
            'missing-fields': {'word': '坏'},
            'bad-timestamp': {'word': '坏', 'translation': 'xấu', 'timestamp': 'yesterday'},
        }, f)

    local = LocalFileCache(config)

    assert local.entry_count() == 1
    assert local.get('好', 'zh', 'vi').value == 'tốt'


def test_non_finite_timestamps_are_skipped(config, temp_dir):
    path = os.path.join(str(temp_dir), 'translation-cache.json')
    with open(path, 'w', encoding='utf-8') as f:
        f.write(
            '{"overflow": {"word": "猫", "translation": "mèo", "timestamp": 1e999, "source": "deepl"},'
            ' "infinite": {"word": "狗", "translation": "chó", "timestamp": Infinity, "source": "deepl"},'
            ' "nan": {"word": "鸟", "translation": "chim", "timestamp": NaN, "source": "deepl"}}'
        )

    local = LocalFileCache(config)

    assert local.entry_count() == 0


def test_reloaded_entries_carry_configured_language_pair(config):
    local = LocalFileCache(config)
    entry = CacheEntry(word='猫', translation='cat', timestamp=current_millis(),
                       source_lang='zh', target_lang='en')
    local.set(entry)
    assert local.save_snapshot()

    reloaded = LocalFileCache(config)

    assert reloaded.get('猫', 'zh', 'en').value == 'cat'
    [loaded] = reloaded.entries()
    assert loaded.target_lang == 'vi'
    assert loaded.key != entry.key


def test_read_only_snapshot_write_is_not_fatal(config, monkeypatch, caplog):
    local = LocalFileCache(config)
    local.set(_entry('猫', 'mèo'))

    def read_only_open(path, *args, **kwargs):
        raise OSError(errno.EROFS, 'Read-only file system', path)

    monkeypatch.setattr('eduflow_cache.cache.open', read_only_open, raising=False)

    with caplog.at_level(logging.WARNING):
        assert local.save_snapshot() is False

    assert 'read-only filesystem' in caplog.text
    assert local.get('猫', 'zh', 'vi').value == 'mèo'


def test_read_only_filesystem_is_not_fatal(config, monkeypatch, caplog):
    local = LocalFileCache(config, load=False)
    local.directory = os.path.join(local.directory, 'nested')
    local.path = os.path.join(local.directory, 'translation-cache.json')
    local.set(_entry('猫', 'mèo'))

    def read_only_makedirs(path, exist_ok=False):
        raise OSError(errno.EROFS, 'Read-only file system', path)

    monkeypatch.setattr('eduflow_cache.cache.os.makedirs', read_only_makedirs)

    with caplog.at_level(logging.WARNING):
        assert local.save_snapshot() is False

    assert 'read-only filesystem' in caplog.text
    assert local.get('猫', 'zh', 'vi').value == 'mèo'


def test_other_filesystem_errors_are_logged(config, temp_dir, caplog):
    blocker = temp_dir / 'blocker'
    blocker.write_text('not a directory')
    config['cache']['local']['directory'] = str(blocker / 'cache')
    local = LocalFileCache(config, load=False)
    local.set(_entry('猫', 'mèo'))

    with caplog.at_level(logging.ERROR):
        assert local.save_snapshot() is False

    assert 'Failed to create cache directory' in caplog.text


def test_directory_is_created_lazily(config, temp_dir):
    config['cache']['local']['directory'] = str(temp_dir / 'a' / 'b')
    local = LocalFileCache(config)
    assert not os.path.exists(local.directory)

    local.set(_entry('猫', 'mèo'))
    assert local.save_snapshot()
    assert os.path.exists(local.path)


def test_serverless_host_uses_temp_directory(config, monkeypatch):
    config['cache']['local']['directory'] = None
    monkeypatch.setenv('VERCEL', '1')

    local = LocalFileCache(config, load=False)

    assert local.directory == tempfile.gettempdir()


def test_default_directory_is_project_data(config, temp_dir, monkeypatch):
    config['cache']['local']['directory'] = None
    monkeypatch.chdir(temp_dir)

    local = LocalFileCache(config, load=False)

    assert local.directory == os.path.join(str(temp_dir), 'data')


def test_remove_expired_and_clear(config):
    local = LocalFileCache(config)
    local.set(_entry('新', 'mới'))
    local.set(_entry('旧', 'cũ', age_days=10))
    local.set(_entry('老', 'già', age_days=8))

    assert local.remove_expired() == 2
    assert local.entry_count() == 1

    local.clear()
    assert local.entry_count() == 0


def test_reset_replaces_whole_entry(config):
    local = LocalFileCache(config)
    first = CacheEntry(word='猫', translation='mèo', timestamp=1000, provider='openai')
    local.set(first)
    local.set(_entry('猫', 'con mèo', provider='deepl'))

    [entry] = local.entries()
    assert entry.translation == 'con mèo'
    assert entry.provider == 'deepl'
    assert entry.timestamp > first.timestamp
