import os
from concurrent.futures import ThreadPoolExecutor

import pytest

from .stat_cache import StatCache

BASE_NS = 1_600_000_000 * 10**9


@pytest.fixture
def cache():
    return StatCache()


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "main.c"
    path.write_text("int main(void) { return 0; }\n")
    os.utime(path, ns=(BASE_NS, BASE_NS))
    return path


def test_stat_returns_file_metadata(cache, source):
    info = cache.stat(source)
    assert info.st_mtime_ns == BASE_NS
    assert info.st_size == source.stat().st_size


def test_stat_is_memoized(cache, source):
    first = cache.stat(source)
    os.utime(source, ns=(BASE_NS + 5, BASE_NS + 5))
    second = cache.stat(str(source))

    assert second is first
    assert second.st_mtime_ns == BASE_NS
    assert cache.misses == 1
    assert cache.hits == 1


def test_invalidate_forces_fresh_lookup(cache, source):
    cache.stat(source)
    os.utime(source, ns=(BASE_NS + 5, BASE_NS + 5))

    cache.invalidate(source)

    assert source not in cache
    assert cache.stat(source).st_mtime_ns == BASE_NS + 5


def test_invalidate_unknown_path_is_harmless(cache, tmp_path):
    cache.invalidate(tmp_path / "never-seen")
    assert len(cache) == 0


def test_missing_file_raises_and_is_not_cached(cache, tmp_path):
    path = tmp_path / "later.h"
    with pytest.raises(FileNotFoundError):
        cache.stat(path)
    assert path not in cache

    path.write_text("")
    assert cache.stat(path).st_size == 0
    assert path in cache


def test_clear(cache, source):
    cache.stat(source)
    assert len(cache) == 1
    cache.clear()
    assert len(cache) == 0


def test_contains_rejects_non_paths(cache):
    assert 42 not in cache


def test_concurrent_lookups_agree(cache, tmp_path):
    paths = []
    for i in range(8):
        path = tmp_path / f"f{i}.h"
        path.write_text("")
        os.utime(path, ns=(BASE_NS + i, BASE_NS + i))
        paths.append(path)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(cache.stat, paths * 50))

    assert len(cache) == 8
    for path, info in zip(paths * 50, results):
        assert info.st_mtime_ns == cache.stat(path).st_mtime_ns
