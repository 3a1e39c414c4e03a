"""
Operations that reach outside the interpreter: timers, duplex channels,
HTTP fetch, dynamic module import and foreign calls.

Resources created here are tracked by id in the evaluator's
`Registries`; releasing an unknown id is always a no-op.
"""
import time
import logging
import collections.abc
from typing import Any, Dict, Mapping, TYPE_CHECKING

from clientops.clientops_datatypes import OperationError, stringify
from clientops.clientops_interpreter import call_maybe_async
from clientops.clientops_template import resolve_template

if TYPE_CHECKING:
    from clientops.clientops_interpreter import Evaluator

logger = logging.getLogger(__name__)


def _generated_id() -> str:
    return str(int(time.time() * 1000))


def _lookup_member(target: Any, name: str):
    if isinstance(target, collections.abc.Mapping):
        return target.get(name)
    return getattr(target, name, None)


class IOLib:
    """Timers, channels, fetch and foreign-code operations."""
    def __init__(self, evaluator: 'Evaluator'):
        self.evaluator = evaluator

    @property
    def host(self):
        return self.evaluator.host

    @property
    def registries(self):
        return self.evaluator.registries

    def handlers(self) -> Dict[str, Any]:
        return {
            "setTimeout": self._set_timeout,
            "setInterval": self._set_interval,
            "clearInterval": self._clear_interval,
            "requestAnimationFrame": self._request_animation_frame,
            "cancelAnimationFrame": self._cancel_animation_frame,
            "wsConnect": self._ws_connect,
            "wsSend": self._ws_send,
            "wsClose": self._ws_close,
            "fetch": self._fetch,
            "importModule": self._import_module,
            "callModuleFn": self._call_module_fn,
        }

    # --- Timers ---
    async def _set_timeout(self, op: Mapping, ctx: Mapping):
        self.host.set_timeout(op.get("ms") or 0, self.evaluator.schedule(op.get("callback"), ctx, "timeout"))

    async def _set_interval(self, op: Mapping, ctx: Mapping):
        interval_id = op.get("id") or _generated_id()
        previous = self.registries.release("intervals", interval_id)
        if previous is not None:
            self.host.clear_interval(previous)
        callback = self.evaluator.schedule(op.get("callback"), ctx, f"interval:{interval_id}")
        self.registries.intervals[interval_id] = self.host.set_interval(op.get("ms") or 0, callback)

    async def _clear_interval(self, op: Mapping, ctx: Mapping):
        handle = self.registries.release("intervals", op.get("id"))
        if handle is not None:
            self.host.clear_interval(handle)

    async def _request_animation_frame(self, op: Mapping, ctx: Mapping):
        frame_id = op.get("id") or _generated_id()
        previous = self.registries.release("frames", frame_id)
        if previous is not None:
            self.host.cancel_animation_frame(previous)
        run = self.evaluator.schedule(op.get("callback"), ctx, f"frame:{frame_id}")
        handle = None

        def _on_frame():
            # A fired frame is no longer live
            if self.registries.frames.get(frame_id) is handle:
                self.registries.frames.pop(frame_id, None)
            run()

        handle = self.host.request_animation_frame(_on_frame)
        self.registries.frames[frame_id] = handle

    async def _cancel_animation_frame(self, op: Mapping, ctx: Mapping):
        handle = self.registries.release("frames", op.get("id"))
        if handle is not None:
            self.host.cancel_animation_frame(handle)

    # --- Duplex channels ---
    async def _ws_connect(self, op: Mapping, ctx: Mapping):
        channel_id = op.get("id")
        if not channel_id:
            raise OperationError("wsConnect requires id", op)
        url = resolve_template(op.get("url"), ctx)
        previous = self.registries.release("channels", channel_id)
        if previous is not None:
            await previous.close()

        on_message = op.get("onMessage")

        def _message(data):
            if on_message:
                self.host.spawn(self.evaluator.run_continuation(on_message, ctx, data=data),
                                f"channel:{channel_id}:message")

        def _error(exc=None):
            if op.get("onError"):
                self.host.spawn(self.evaluator.run_continuation(op["onError"], ctx, error=stringify(exc)),
                                f"channel:{channel_id}:error")

        channel = self.host.open_channel(
            url,
            on_open=self.evaluator.schedule(op.get("onOpen"), ctx, f"channel:{channel_id}:open"),
            on_message=_message,
            on_close=self.evaluator.schedule(op.get("onClose"), ctx, f"channel:{channel_id}:close"),
            on_error=_error,
        )
        self.registries.channels[channel_id] = channel

    async def _ws_send(self, op: Mapping, ctx: Mapping):
        channel = self.registries.channels.get(op.get("id")) if op.get("id") else None
        if channel is None:
            return None
        message = resolve_template(op.get("message"), ctx)
        if not isinstance(message, (str, bytes)):
            message = stringify(message)
        await channel.send(message)

    async def _ws_close(self, op: Mapping, ctx: Mapping):
        channel = self.registries.release("channels", op.get("id"))
        if channel is not None:
            await channel.close()

    # --- HTTP ---
    async def _fetch(self, op: Mapping, ctx: Mapping):
        try:
            url = resolve_template(op.get("url"), ctx)
            options = await self.evaluator.walker.resolve(op.get("options") or {}, ctx, "fetch.options")
            response = await self.host.fetch(url, options)
            data = response.read(op.get("responseType") or "text")
            if op.get("onSuccess"):
                await self.evaluator.run_continuation(op["onSuccess"], ctx, data=data)
            return data
        except Exception as err:
            logger.warning("fetch %s failed: %s", op.get("url"), err)
            if op.get("onError"):
                await self.evaluator.run_continuation(op["onError"], ctx, error=str(err))
            return None

    # --- Foreign code ---
    async def _import_module(self, op: Mapping, ctx: Mapping):
        name, url = op.get("name"), op.get("url")
        if not name or not url:
            raise OperationError("importModule requires name and url", op)
        self.registries.modules[name] = await self.host.import_module(resolve_template(url, ctx))

    def _target_module(self, op: Mapping):
        module_name = op.get("module")
        if not module_name:
            return self.host.globals
        if module_name in self.registries.modules:
            return self.registries.modules[module_name]
        if module_name in self.host.globals:
            return self.host.globals[module_name]
        raise OperationError(f"Module not found: {module_name}", op)

    async def _call_module_fn(self, op: Mapping, ctx: Mapping):
        fn_name = op.get("fn")
        if not fn_name:
            raise OperationError("callModuleFn requires fn", op)
        target = self._target_module(op)
        func = _lookup_member(target, fn_name)
        if not callable(func):
            where = op.get("module") or "global"
            raise OperationError(f"Function not found on module '{where}': {fn_name}", op)
        args = await self.evaluator.resolve_arguments(op.get("args"), ctx)
        result = await call_maybe_async(func, args)
        if op.get("onResult"):
            await self.evaluator.run_continuation(op["onResult"], ctx, data=result)
        return result
