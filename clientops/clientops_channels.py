"""
Duplex message channels backed by websockets.

A channel connects in the background as soon as it is opened. Event
callbacks are plain synchronous callables; the interpreter passes ones
that schedule continuation operations as tasks.
"""
import asyncio
import logging
from typing import Any, Callable, Optional

import websockets
from websockets.exceptions import WebSocketException

logger = logging.getLogger(__name__)


def _notify(callback: Optional[Callable], *args):
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.exception("Channel callback failed")


class WebSocketChannel:
    """One client connection; `send` waits until the socket is open."""
    def __init__(self, url: str, *,
                 on_open: Optional[Callable[[], Any]] = None,
                 on_message: Optional[Callable[[Any], Any]] = None,
                 on_close: Optional[Callable[[], Any]] = None,
                 on_error: Optional[Callable[[Exception], Any]] = None):
        self.url = url
        self.on_open = on_open
        self.on_message = on_message
        self.on_close = on_close
        self.on_error = on_error
        self.task: Optional[asyncio.Task] = None
        self._ws = None
        self._settled = asyncio.Event()

    def start(self) -> asyncio.Task:
        self.task = asyncio.get_running_loop().create_task(self._run(), name=f"channel:{self.url}")
        return self.task

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def _run(self):
        try:
            async with websockets.connect(self.url) as ws:
                self._ws = ws
                self._settled.set()
                _notify(self.on_open)
                async for message in ws:
                    _notify(self.on_message, message)
        except (OSError, WebSocketException) as e:
            logger.warning("Channel %s failed: %s", self.url, e)
            _notify(self.on_error, e)
        finally:
            self._ws = None
            self._settled.set()
            _notify(self.on_close)

    async def send(self, message: Any):
        await self._settled.wait()
        if self._ws is None:
            raise ConnectionError(f"channel to {self.url} is not open")
        await self._ws.send(message)

    async def close(self):
        if self._ws is not None:
            await self._ws.close()
        elif self.task is not None and not self.task.done():
            self.task.cancel()
