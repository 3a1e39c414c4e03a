"""
The core clientops interpreter: the Evaluator and its operation registry.

`Evaluator.execute(op, ctx)` is the single public entry point. It runs
one operation node and everything nested inside it:

  - a batch (`_ops`) runs its entries in order, each awaited;
  - a handler call (`_handler`) invokes a host global by name;
  - a tagged node (`_op`) is dispatched through the handler registry.

Handlers live in three libraries (stdlib, control flow, I/O) and are
registered by kind tag; hosts may add or replace kinds with
`Evaluator.register_op`.
"""
import inspect
import logging
import collections.abc
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from clientops.clientops_datatypes import (
    ControlSignal, Registries, is_operation, is_signal, is_return, unwrap_return,
)
from clientops.clientops_template import resolve_template
from clientops.clientops_walker import TreeWalker
from clientops.clientops_conditions import ConditionEvaluator
from clientops.clientops_config import RuntimeConfig

logger = logging.getLogger(__name__)

OpHandler = Callable[[Mapping, Mapping], Awaitable[Any]]


class Evaluator:
    """The clientops execution engine."""
    def __init__(self, host=None, registries: Optional[Registries] = None,
                 config: Optional[RuntimeConfig] = None):
        from clientops.clientops_host import ClientHost
        self.config = config or (host.config if host is not None else RuntimeConfig.from_env())
        self.host = host if host is not None else ClientHost(config=self.config)
        self.registries = registries if registries is not None else Registries()
        self.side_effects: List[Dict[str, Any]] = []
        self.walker = TreeWalker(self)
        self.conditions = ConditionEvaluator(self)
        self.handlers: Dict[str, OpHandler] = {}
        self._load_libraries()

    def _load_libraries(self):
        from clientops.clientops_stdlib import StdLib
        from clientops.clientops_control import ControlFlow
        from clientops.clientops_io import IOLib
        for lib in (StdLib(self), ControlFlow(self), IOLib(self)):
            self.handlers.update(lib.handlers())

    def register_op(self, kind: str, handler: OpHandler):
        """Adds (or replaces) the handler for an `_op` kind tag."""
        if not kind:
            raise ValueError("op kind must be a non-empty string")
        self.handlers[kind] = handler

    def _dbg(self, *parts):
        if self.config.debug:
            logger.debug(" ".join(map(str, parts)))

    # -----------------------------------------------------------------
    # Entry points
    # -----------------------------------------------------------------

    async def execute(self, op: Any, ctx: Optional[Mapping] = None) -> Any:
        """Public entry point. Unwraps `return` and drops stray loop signals."""
        result = await self.exec_op(op, ctx if ctx is not None else {})
        if is_return(result):
            return result.value
        if is_signal(result):
            logger.warning("'%s' escaped outside of any loop: %r", result.kind, op)
            return None
        return result

    async def exec_op(self, op: Any, ctx: Mapping) -> Any:
        """Runs one node; control signals are returned, not unwrapped."""
        if not isinstance(op, collections.abc.Mapping):
            logger.warning("Invalid operation: %r", op)
            return None

        self._dbg("Executing operation:", op, "with context:", ctx)

        batch = op.get("_ops")
        if isinstance(batch, list):
            return await self._exec_batch(batch, ctx)

        if op.get("_handler"):
            return await self._call_handler(op, ctx)

        kind = op.get("_op")
        handler = self.handlers.get(kind) if isinstance(kind, str) else None
        if handler is None:
            logger.warning("Unknown client operation: %r", op)
            return None
        return await handler(op, ctx)

    async def _exec_batch(self, batch: list, ctx: Mapping) -> Any:
        self._dbg("Processing batch of", len(batch), "operations")
        for sub_op in batch:
            result = await self.exec_op(sub_op, ctx)
            if is_signal(result):
                return result
        return None

    # -----------------------------------------------------------------
    # Handler dispatch
    # -----------------------------------------------------------------

    async def _call_handler(self, op: Mapping, ctx: Mapping) -> Any:
        name = op.get("fn")
        func = self.host.globals.get(name) if isinstance(name, str) else None
        if not callable(func):
            logger.warning("Function not found for handler: %s", name)
            return None
        args = await self.resolve_arguments(op.get("args"), ctx)
        self._dbg("Calling handler:", name, "with args:", args)
        return await call_maybe_async(func, args)

    async def resolve_argument(self, arg: Any, ctx: Mapping) -> Any:
        """Operation → executed, composite → tree-walked, scalar → templated."""
        if is_operation(arg):
            return unwrap_return(await self.exec_op(arg, ctx))
        if isinstance(arg, (collections.abc.Mapping, list)):
            return await self.walker.resolve(arg, ctx, "args")
        return resolve_template(arg, ctx)

    async def resolve_arguments(self, args: Any, ctx: Mapping) -> list:
        resolved = []
        for arg in args or []:
            resolved.append(await self.resolve_argument(arg, ctx))
        return resolved

    # -----------------------------------------------------------------
    # Continuations and background work
    # -----------------------------------------------------------------

    async def run_continuation(self, continuation: Any, ctx: Mapping, **payload) -> Any:
        """Runs a continuation op with `payload` merged into a copy of it."""
        if not continuation:
            return None
        if payload and isinstance(continuation, collections.abc.Mapping):
            continuation = {**continuation, **payload}
        return await self.execute(continuation, ctx)

    def schedule(self, op: Any, ctx: Mapping, label: str, **payload) -> Callable[[], None]:
        """Returns a zero-argument callback that runs `op` as a tracked task."""
        def _fire():
            if op:
                self.host.spawn(self.run_continuation(op, ctx, **payload), label)
        return _fire

    def elements(self, op: Mapping, ctx: Mapping) -> list:
        """Template-resolves `selector` and returns the matching elements."""
        selector = op.get("selector")
        if not selector:
            return []
        if isinstance(selector, list):
            resolved = [resolve_template(s, ctx) for s in selector]
        else:
            resolved = resolve_template(selector, ctx)
        els = self.host.document.select(resolved)
        self._dbg(f'Selector "{resolved}" found {len(els)} elements')
        return els


async def call_maybe_async(func: Callable, args: list) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


__all__ = [
    "Evaluator",
    "ControlSignal",
    "call_maybe_async",
]
