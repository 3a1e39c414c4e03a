"""
The capability surface the interpreter consumes, with working defaults.

Every capability is an attribute or method of `ClientHost`; embedders
replace individual ones by passing objects to the constructor, by
assignment, or by subclassing. Methods decorated with `host_api_method`
are published into `globals` (lowerCamelCase) so `_handler` operations
can call them by name.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from clientops.clientops_config import RuntimeConfig
from clientops.clientops_dom import MemoryDocument
from clientops.clientops_storage import FileStore, MemoryStore
from clientops.clientops_http import FetchResponse, http_request
from clientops.clientops_channels import WebSocketChannel
from clientops.clientops_modules import import_module

logger = logging.getLogger(__name__)
console_logger = logging.getLogger("clientops.console")

CONSOLE_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

_DEFAULT = object()


def host_api_method(func):
    """A decorator to explicitly mark host methods callable from `_handler` ops."""
    func._is_host_api = True
    return func


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


class MemoryClipboard:
    """A process-local clipboard."""
    def __init__(self, text: str = ""):
        self._text = text

    async def write_text(self, text: str):
        self._text = text

    async def read_text(self) -> str:
        return self._text


class LogNotifier:
    """Displays notifications by logging them; permission is always granted."""
    def __init__(self, permission: str = "granted"):
        self.permission = permission
        self.shown: List[Dict[str, str]] = []

    async def request_permission(self) -> str:
        return self.permission

    def show(self, title: str, body: str = ""):
        self.shown.append({"title": title, "body": body})
        logger.info("Notification: %s - %s", title, body)


class ClientHost:
    """Owns the capabilities and the background tasks of one interpreter."""
    def __init__(self, config: Optional[RuntimeConfig] = None, *,
                 document=None, local_storage=None, session_storage=None,
                 clipboard=None, notifier=_DEFAULT,
                 globals: Optional[Dict[str, Callable]] = None):
        self.config = config or RuntimeConfig.from_env()
        self.active_tasks: set = set()
        self.pending_timers: set = set()
        self.document = document if document is not None else MemoryDocument()
        if local_storage is None:
            local_storage = FileStore(self.config.storage_path) if self.config.storage_path else MemoryStore()
        self.local_storage = local_storage
        self.session_storage = session_storage if session_storage is not None else MemoryStore()
        self.clipboard = clipboard if clipboard is not None else MemoryClipboard()
        # None means notifications are unavailable on this host
        self.notifier = LogNotifier() if notifier is _DEFAULT else notifier
        self.globals: Dict[str, Any] = dict(globals or {})
        self._bind_host_api_methods()

    def _bind_host_api_methods(self):
        for name in dir(self):
            if name.startswith("_"):
                continue
            member = getattr(self, name, None)
            if callable(member) and getattr(member, "_is_host_api", False):
                self.globals.setdefault(camel_case(name), member)

    # --- Background tasks ---

    def spawn(self, coro, label: Optional[str] = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=label)
        self._register_task(task)
        return task

    def _register_task(self, task: asyncio.Task):
        self.active_tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        self.active_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background operation %s failed", task.get_name(), exc_info=exc)

    @host_api_method
    def cancel_tasks(self) -> int:
        count = len(self.active_tasks) + len(self.pending_timers)
        for task in list(self.active_tasks):
            task.cancel()
        for handle in list(self.pending_timers):
            handle.cancel()
        self.active_tasks.clear()
        self.pending_timers.clear()
        return count

    async def wait_idle(self):
        """Waits until no tracked task or pending timer remains (intervals never finish)."""
        loop = asyncio.get_running_loop()
        while self.active_tasks or self.pending_timers:
            if self.active_tasks:
                await asyncio.gather(*list(self.active_tasks), return_exceptions=True)
            else:
                soonest = min(h.when() for h in self.pending_timers)
                await asyncio.sleep(max(soonest - loop.time(), 0))

    # --- Timers ---

    def _call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        def _fire():
            self.pending_timers.discard(handle)
            callback()
        handle = asyncio.get_running_loop().call_later(delay, _fire)
        self.pending_timers.add(handle)
        return handle

    def set_timeout(self, ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._call_later(max(float(ms or 0), 0) / 1000, callback)

    def set_interval(self, ms: float, callback: Callable[[], None]) -> asyncio.Task:
        return self.spawn(self._interval_loop(max(float(ms or 0), 1) / 1000, callback), "interval")

    async def _interval_loop(self, delay: float, callback: Callable[[], None]):
        while True:
            await asyncio.sleep(delay)
            callback()

    def clear_interval(self, handle):
        handle.cancel()

    def request_animation_frame(self, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._call_later(self.config.frame_interval, callback)

    def cancel_animation_frame(self, handle):
        self.pending_timers.discard(handle)
        handle.cancel()

    # --- Network, channels, modules ---

    async def fetch(self, url: str, options: Optional[Dict] = None) -> FetchResponse:
        return await http_request(url, options,
                                  timeout=self.config.http_timeout,
                                  retries=self.config.http_retries,
                                  backoff=self.config.http_backoff)

    def open_channel(self, url: str, **callbacks) -> WebSocketChannel:
        channel = WebSocketChannel(url, **callbacks)
        self._register_task(channel.start())
        return channel

    async def import_module(self, locator: str):
        return await import_module(locator, timeout=self.config.http_timeout)

    # --- Log sink ---

    def log(self, level: Optional[str], message: Any):
        console_logger.log(CONSOLE_LEVELS.get(level or "", logging.INFO), "%s", message)
