"""Hot reload of the gateway config file via watchdog."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Awaitable, Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import GatewayConfig, load_config

LOG = logging.getLogger(__name__)

ConfigLoader = Callable[[str], GatewayConfig]
ApplyConfig = Callable[[GatewayConfig], Awaitable[None]]


def event_touches_file(event: FileSystemEvent, file_name: str) -> bool:
    """Return true when a watchdog event concerns `file_name` (either end of a move)."""
    if event.is_directory:
        return False
    for attr in ("src_path", "dest_path"):
        path = getattr(event, attr, None)
        if path and Path(str(path)).name == file_name:
            return True
    return False


class _ConfigFileHandler(FileSystemEventHandler):
    """Forward events for one file name to the asyncio loop."""

    def __init__(self, file_name: str, loop: asyncio.AbstractEventLoop, changed: asyncio.Event) -> None:
        super().__init__()
        self._file_name = file_name
        self._loop = loop
        self._changed = changed

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event_touches_file(event, self._file_name):
            self._loop.call_soon_threadsafe(self._changed.set)


class ConfigReloadWatcher:
    """Reload the config when its file changes and hand it to `apply`.

    A config that fails to load or validate is logged and skipped; the
    running config stays in place.
    """

    def __init__(
        self,
        config_file: Path,
        apply: ApplyConfig,
        *,
        loader: ConfigLoader = load_config,
        debounce_seconds: float = 0.2,
    ) -> None:
        self.config_file = config_file
        self._apply = apply
        self._loader = loader
        self._debounce = debounce_seconds

    async def reload_now(self) -> bool:
        """Load and apply the config file once; return whether it was applied."""
        LOG.info("configuration change detected at %s, reloading", self.config_file)
        try:
            new_cfg = self._loader(str(self.config_file))
        except Exception as exc:
            LOG.warning("configuration reload failed, keeping current config: %s", exc)
            return False
        await self._apply(new_cfg)
        LOG.info("configuration reloaded")
        return True

    async def run(self) -> None:
        """Watch the config file's directory until cancelled."""
        loop = asyncio.get_running_loop()
        changed = asyncio.Event()
        handler = _ConfigFileHandler(self.config_file.name, loop, changed)
        observer = Observer()
        observer.schedule(handler, str(self.config_file.parent.resolve()), recursive=False)
        observer.start()
        try:
            while True:
                await changed.wait()
                # Editors write in several steps; let the burst settle first.
                await asyncio.sleep(self._debounce)
                changed.clear()
                await self.reload_now()
        finally:
            observer.stop()
            with contextlib.suppress(RuntimeError):
                await asyncio.to_thread(observer.join, 2.0)
