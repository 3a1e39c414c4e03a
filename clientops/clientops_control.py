"""
Structured control flow: `if_`, the five loop kinds, `break`/`continue`/
`return` and `declareFunction`.

Non-local exits are `ControlSignal` values returned from `exec_op`.
Each loop inspects its body result: `break` and `continue` stop here,
`return` keeps travelling to the enclosing declared-function call.
"""
import logging
import textwrap
import collections.abc
from typing import Any, Dict, Mapping, TYPE_CHECKING

from clientops.clientops_datatypes import (
    BREAK, CONTINUE, ControlSignal, OperationError, is_operation, is_return, is_signal,
)

if TYPE_CHECKING:
    from clientops.clientops_interpreter import Evaluator

logger = logging.getLogger(__name__)

_LOOP_DONE = object()


class ControlFlow:
    """Language primitives that steer evaluation."""
    def __init__(self, evaluator: 'Evaluator'):
        self.evaluator = evaluator

    def handlers(self) -> Dict[str, Any]:
        return {
            "if_": self._if,
            "while_loop": self._while,
            "do_while_loop": self._do_while,
            "loop_until": self._loop_until,
            "for_loop": self._for,
            "foreach_loop": self._foreach,
            "break": self._break,
            "continue": self._continue,
            "return": self._return,
            "declareFunction": self._declare_function,
        }

    async def _test(self, op: Mapping, ctx: Mapping) -> bool:
        """Evaluates `condition` as a tree, or as a resolved inline value.

        `_complexCondition` forces tree mode; a plain record that is not
        an operation is always a tree.
        """
        condition = op.get("condition")
        is_tree = isinstance(condition, collections.abc.Mapping) and not is_operation(condition)
        if op.get("_complexCondition") or is_tree:
            return await self.evaluator.conditions.eval(condition, ctx)
        return bool(await self.evaluator.resolve_argument(condition, ctx))

    async def _run_body(self, body: Any, ctx: Mapping) -> Any:
        """Runs one iteration; returns `_LOOP_DONE` on break, a return signal to propagate, else None."""
        if not body:
            return None
        result = await self.evaluator.exec_op(body, ctx)
        if is_return(result):
            return result
        if is_signal(result) and result.kind == "break":
            return _LOOP_DONE
        return None

    # --- Conditionals ---
    async def _if(self, op: Mapping, ctx: Mapping):
        if await self._test(op, ctx):
            if op.get("then"):
                return await self.evaluator.exec_op(op["then"], ctx)
        elif op.get("else"):
            return await self.evaluator.exec_op(op["else"], ctx)
        return None

    # --- Loops ---
    async def _while(self, op: Mapping, ctx: Mapping):
        while await self.evaluator.conditions.eval(op.get("condition"), ctx):
            outcome = await self._run_body(op.get("body"), ctx)
            if outcome is _LOOP_DONE:
                break
            if outcome is not None:
                return outcome
        return None

    async def _do_while(self, op: Mapping, ctx: Mapping):
        while True:
            outcome = await self._run_body(op.get("body"), ctx)
            if outcome is _LOOP_DONE:
                break
            if outcome is not None:
                return outcome
            if not await self.evaluator.conditions.eval(op.get("condition"), ctx):
                break
        return None

    async def _loop_until(self, op: Mapping, ctx: Mapping):
        while True:
            outcome = await self._run_body(op.get("body"), ctx)
            if outcome is _LOOP_DONE:
                break
            if outcome is not None:
                return outcome
            if await self.evaluator.conditions.eval(op.get("condition"), ctx):
                break
        return None

    async def _for(self, op: Mapping, ctx: Mapping):
        if op.get("init"):
            await self.evaluator.exec_op(op["init"], ctx)
        while await self._test(op, ctx):
            outcome = await self._run_body(op.get("body"), ctx)
            if outcome is _LOOP_DONE:
                break
            if outcome is not None:
                return outcome
            # Runs after a normal pass and after `continue` alike
            if op.get("increment"):
                await self.evaluator.exec_op(op["increment"], ctx)
        return None

    async def _foreach_collection(self, op: Mapping, ctx: Mapping):
        collection = op.get("collection")
        if is_operation(collection):
            collection = await self.evaluator.exec_op(collection, ctx)
        if not collection:
            return None
        if isinstance(collection, (list, collections.abc.Mapping)):
            return collection
        if isinstance(collection, (str, bytes, bytearray)):
            return collection
        if isinstance(collection, collections.abc.Iterable):
            # Live collections are frozen so the iteration count is fixed here
            return list(collection)
        return collection

    async def _foreach(self, op: Mapping, ctx: Mapping):
        logger.debug("[foreach_loop] Starting foreach loop %r", op)
        collection = await self._foreach_collection(op, ctx)
        if collection is None:
            logger.debug("[foreach_loop] Collection is empty, skipping loop.")
            return None

        if isinstance(collection, list):
            entries = list(enumerate(collection))
        elif isinstance(collection, collections.abc.Mapping):
            entries = [(k, v) for k, v in collection.items()]
        else:
            logger.warning("[foreach_loop] Unsupported collection type: %s", type(collection).__name__)
            return None

        item_var, index_var = op.get("itemVar"), op.get("indexVar")
        for index, item in entries:
            loop_ctx = dict(ctx)
            if item_var:
                loop_ctx[item_var] = item
            if index_var:
                loop_ctx[index_var] = index
            try:
                outcome = await self._run_body(op.get("body"), loop_ctx)
            except Exception:
                logger.error("[foreach_loop] Error in loop body at %r", index)
                raise
            if outcome is _LOOP_DONE:
                break
            if outcome is not None:
                return outcome
        return None

    # --- Signals ---
    async def _break(self, op: Mapping, ctx: Mapping):
        return BREAK

    async def _continue(self, op: Mapping, ctx: Mapping):
        return CONTINUE

    async def _return(self, op: Mapping, ctx: Mapping):
        value = op.get("value")
        if value is not None:
            value = await self.evaluator.resolve_argument(value, ctx)
        return ControlSignal("return", value)

    # --- Functions ---
    async def _declare_function(self, op: Mapping, ctx: Mapping):
        name = op.get("name")
        if not name:
            raise OperationError("declareFunction requires a name", op)
        params = op.get("params")
        if not isinstance(params, list):
            params = []
        body = op.get("body")
        if isinstance(body, str):
            func = self._compile_text_function(name, params, body)
        elif isinstance(body, (collections.abc.Mapping, list)):
            func = self._make_tree_function(name, params, body, ctx)
        else:
            raise OperationError("Unsupported function body type", op)
        self.evaluator.host.globals[name] = func
        return None

    def _compile_text_function(self, name: str, params: list, body: str):
        """Builds a Python function from source text over the host globals."""
        namespace = self.evaluator.host.globals
        source = f"def _declared({', '.join(params)}):\n" + textwrap.indent(textwrap.dedent(body) or "pass", "    ")
        code = compile(source, f"<declareFunction {name}>", "exec")
        local_ns: Dict[str, Any] = {}
        exec(code, namespace, local_ns)
        func = local_ns["_declared"]
        func.__name__ = func.__qualname__ = name
        return func

    def _make_tree_function(self, name: str, params: list, body: Any, declared_ctx: Mapping):
        evaluator = self.evaluator

        async def declared_function(*args):
            bound = {p: (args[i] if i < len(args) else None) for i, p in enumerate(params)}
            # Parameters are bound into the ambient scope as well as the body's context
            evaluator.host.globals.update(bound)
            call_ctx = {**declared_ctx, **bound}
            result = await evaluator.exec_op(body, call_ctx) if isinstance(body, collections.abc.Mapping) \
                else await evaluator.exec_op({"_ops": body}, call_ctx)
            if is_return(result):
                return result.value
            if is_signal(result):
                logger.warning("'%s' escaped function %s", result.kind, name)
            return None

        declared_function.__name__ = name
        declared_function.__qualname__ = name
        return declared_function
