"""
Reload Triggers
SIGHUP handler and config-file watcher feeding the table store
"""

import os
import signal
import asyncio
from typing import Optional

import structlog

from gateway.models.gateway_config import InvalidConfigurationError
from gateway.services.table_store import TableStore

logger = structlog.get_logger(__name__)


async def reload_from_file(store: TableStore, trigger: str) -> bool:
    """Reload the configured file; failures are logged and the old tables kept"""
    try:
        tables = await store.load_file()
    except InvalidConfigurationError as e:
        logger.error("Reload failed", trigger=trigger, error=e.message)
        return False
    except Exception as e:
        logger.error("Reload failed unexpectedly", trigger=trigger, error=str(e), exc_info=True)
        return False
    logger.info("Reload complete", trigger=trigger, version=tables.version)
    return True


def install_sighup_handler(store: TableStore, loop: Optional[asyncio.AbstractEventLoop] = None) -> bool:
    """Reload the tables whenever the process receives SIGHUP (POSIX only)"""
    if not hasattr(signal, "SIGHUP"):
        return False
    loop = loop or asyncio.get_running_loop()
    try:
        loop.add_signal_handler(
            signal.SIGHUP,
            lambda: loop.create_task(reload_from_file(store, trigger="sighup")),
        )
    except (NotImplementedError, RuntimeError) as e:
        logger.warning("SIGHUP reload unavailable", error=str(e))
        return False
    logger.info("SIGHUP reload handler installed")
    return True


def remove_sighup_handler(loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
    if not hasattr(signal, "SIGHUP"):
        return
    loop = loop or asyncio.get_running_loop()
    try:
        loop.remove_signal_handler(signal.SIGHUP)
    except (NotImplementedError, RuntimeError):
        pass


class ConfigWatcher:
    """Polls the config file's modification time and reloads on change"""

    def __init__(self, store: TableStore, interval: float):
        self.store = store
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._last_mtime: Optional[float] = None

    def _mtime(self) -> Optional[float]:
        path = self.store.config_path
        if not path:
            return None
        try:
            return os.stat(path).st_mtime
        except OSError:
            return None

    async def check(self) -> bool:
        """Reload if the file changed since the last check"""
        mtime = self._mtime()
        if mtime is None or mtime == self._last_mtime:
            return False
        self._last_mtime = mtime
        return await reload_from_file(self.store, trigger="file-watch")

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.check()
            except Exception as e:
                logger.error("Config watch check failed", path=self.store.config_path, error=str(e), exc_info=True)

    def start(self):
        # The file loaded at startup is the baseline
        self._last_mtime = self._mtime()
        self._task = asyncio.create_task(self._run())
        logger.info("Config watcher started", path=self.store.config_path, interval=self.interval)

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Config watcher stopped")
