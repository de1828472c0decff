"""
Tests for reload triggers (file watcher and SIGHUP)
"""

import os
import signal
import asyncio

import pytest

from gateway.services.reload import ConfigWatcher, install_sighup_handler, reload_from_file, remove_sighup_handler
from gateway.services.table_store import TableStore


def _bump_mtime(path: str, seconds: int = 10):
    stat = os.stat(path)
    os.utime(path, (stat.st_atime + seconds, stat.st_mtime + seconds))


class TestReloadFromFile:

    @pytest.mark.asyncio
    async def test_reload_success(self, config_file):
        store = TableStore.from_file(config_file())

        assert await reload_from_file(store, trigger="test") is True
        assert store.current.version == 2

    @pytest.mark.asyncio
    async def test_reload_failure_is_not_raised(self, config_file):
        path = config_file()
        store = TableStore.from_file(path)
        with open(path, "w") as f:
            f.write('{"routes": [{"prefix": "no-slash", "backend": "http://a"}]}')

        assert await reload_from_file(store, trigger="test") is False
        assert store.current.version == 1
        assert store.last_error is not None


class TestConfigWatcher:

    @pytest.mark.asyncio
    async def test_unchanged_file_is_not_reloaded(self, config_file):
        store = TableStore.from_file(config_file())
        watcher = ConfigWatcher(store, interval=60)
        watcher.start()
        try:
            assert await watcher.check() is False
            assert store.current.version == 1
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_changed_file_is_reloaded(self, config_file, sample_config):
        path = config_file()
        store = TableStore.from_file(path)
        watcher = ConfigWatcher(store, interval=60)
        watcher.start()
        try:
            sample_config["mocks"] = []
            config_file(sample_config)
            _bump_mtime(path)

            assert await watcher.check() is True
            assert store.current.version == 2
            assert len(store.current.mocks) == 0
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_watcher_loop_picks_up_changes(self, config_file):
        path = config_file()
        store = TableStore.from_file(path)
        watcher = ConfigWatcher(store, interval=0.01)
        watcher.start()
        try:
            _bump_mtime(path)
            for _ in range(100):
                if store.current.version == 2:
                    break
                await asyncio.sleep(0.01)
            assert store.current.version == 2
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_watcher_survives_rejected_file(self, config_file):
        path = config_file()
        store = TableStore.from_file(path)
        watcher = ConfigWatcher(store, interval=0.01)
        watcher.start()
        try:
            with open(path, "w") as f:
                f.write("mocks:\n  - pattern: /a\n    body:\n      released: 2024-01-01\n")
            _bump_mtime(path, seconds=10)
            for _ in range(100):
                if store.last_error:
                    break
                await asyncio.sleep(0.01)
            assert store.last_error is not None
            assert not watcher._task.done()

            config_file()
            _bump_mtime(path, seconds=20)
            for _ in range(100):
                if store.current.version == 2:
                    break
                await asyncio.sleep(0.01)
            assert store.current.version == 2
        finally:
            await watcher.stop()


@pytest.mark.skipif(not hasattr(signal, "SIGHUP"), reason="SIGHUP is POSIX only")
@pytest.mark.asyncio
async def test_sighup_triggers_reload(config_file):
    store = TableStore.from_file(config_file())
    assert install_sighup_handler(store) is True
    try:
        os.kill(os.getpid(), signal.SIGHUP)
        for _ in range(100):
            if store.current.version == 2:
                break
            await asyncio.sleep(0.01)
        assert store.current.version == 2
    finally:
        remove_sighup_handler()
