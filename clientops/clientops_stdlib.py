"""
The standard operation library: elements, stores, variables, clipboard,
notifications, arithmetic, conversion and logging.
"""
import json
import math
import random
import logging
import functools
import collections.abc
from typing import Any, Dict, Mapping, TYPE_CHECKING

from clientops.clientops_datatypes import OperationError, stringify, to_number
from clientops.clientops_template import resolve_template

if TYPE_CHECKING:
    from clientops.clientops_interpreter import Evaluator

logger = logging.getLogger(__name__)


# Arithmetic never faults: bad operands give NaN, overflow gives infinity.

def _num(value: Any):
    try:
        return to_number(value)
    except (TypeError, ValueError):
        return math.nan


def _arg(args: tuple, i: int):
    return args[i] if i < len(args) else math.nan


def _has_nan(args: tuple) -> bool:
    return any(isinstance(a, float) and math.isnan(a) for a in args)


def _divide(x, y):
    if y == 0:
        if x == 0 or math.isnan(x):
            return math.nan
        return math.copysign(math.inf, x) * math.copysign(1.0, y)
    try:
        return x / y
    except OverflowError:
        return math.inf if (x > 0) == (y > 0) else -math.inf


def _mod(*args):
    a, b = _arg(args, 0), _arg(args, 1)
    if b == 0 or _has_nan((a, b)) or math.isinf(a):
        return math.nan
    if math.isinf(b):
        return a
    if isinstance(a, int) and isinstance(b, int):
        return int(math.fmod(a, b))
    return math.fmod(a, b)


def _pow(*args):
    a, b = _arg(args, 0), _arg(args, 1)
    try:
        result = a ** b
    except ZeroDivisionError:
        return math.inf
    except OverflowError:
        return math.inf
    return math.nan if isinstance(result, complex) else result


def _sqrt(*args):
    a = _arg(args, 0)
    if math.isnan(a) or a < 0:
        return math.nan
    return math.sqrt(a)


def _min(*args):
    return math.nan if _has_nan(args) else min(args, default=math.inf)


def _max(*args):
    return math.nan if _has_nan(args) else max(args, default=-math.inf)


def _integral(fn):
    def apply(*args):
        a = _arg(args, 0)
        return fn(a) if math.isfinite(a) else a
    return apply


def _random(*args):
    if len(args) == 2:
        low, high = args
        if not (math.isfinite(low) and math.isfinite(high)):
            return math.nan
        return math.floor(random.random() * (high - low + 1)) + low
    return random.random()


def _fold(step, start=None):
    def apply(*args):
        if start is None and not args:
            return math.nan
        values = args if start is None else (start, *args)
        return functools.reduce(step, values)
    return apply


MATH_FUNCTIONS = {
    "sum": _fold(lambda x, y: x + y, 0),
    "subtract": _fold(lambda x, y: x - y),
    "multiply": _fold(lambda x, y: x * y, 1),
    "divide": _fold(_divide),
    "mod": _mod,
    "pow": _pow,
    "sqrt": _sqrt,
    "abs": lambda *a: abs(_arg(a, 0)),
    "min": _min,
    "max": _max,
    "round": _integral(lambda x: math.floor(x + 0.5)),
    "floor": _integral(math.floor),
    "ceil": _integral(math.ceil),
    "random": _random,
}


def convert_value(value: Any, target_type: Any) -> Any:
    """Coerces `value` to string, number, boolean, json or array."""
    match target_type:
        case "string":
            return stringify(value)
        case "number":
            try:
                return to_number(value)
            except (TypeError, ValueError):
                return math.nan
        case "boolean":
            return bool(value)
        case "json":
            if isinstance(value, (bytes, bytearray)):
                value = bytes(value).decode("utf-8", errors="replace")
            if not isinstance(value, str):
                return value
            try:
                return json.loads(value)
            except ValueError:
                return None
        case "array":
            if isinstance(value, list):
                return value
            if isinstance(value, collections.abc.Sequence) and not isinstance(value, (str, bytes, bytearray)):
                return list(value)
            return [value] if value else []
        case _:
            return value


class StdLib:
    """Python implementations of the non-control-flow operation kinds."""
    def __init__(self, evaluator: 'Evaluator'):
        self.evaluator = evaluator

    @property
    def host(self):
        return self.evaluator.host

    def handlers(self) -> Dict[str, Any]:
        return {
            # --- Elements ---
            "query": self._query,
            "queryAll": self._query_all,
            "getValue": self._get_value,
            "setValue": self._set_value,
            "getText": self._get_text,
            "setText": self._set_text,
            "addClass": self._add_class,
            "removeClass": self._remove_class,
            "show": self._show,
            "hide": self._hide,
            "setAttrs": self._set_attrs,
            # --- Stores ---
            "localSet": self._local_set,
            "localGet": self._local_get,
            "localRemove": self._local_remove,
            "sessionSet": self._session_set,
            "sessionGet": self._session_get,
            "sessionRemove": self._session_remove,
            "setVar": self._set_var,
            "getVar": self._get_var,
            # --- Clipboard and notifications ---
            "copyText": self._copy_text,
            "readText": self._read_text,
            "notify": self._notify,
            # --- Values ---
            "math": self._math,
            "convert": self._convert,
            "trim": self._trim,
            "console": self._console,
        }

    # --- Elements ---
    async def _query(self, op: Mapping, ctx: Mapping):
        els = self.evaluator.elements(op, ctx)
        return els[0] if els else None

    async def _query_all(self, op: Mapping, ctx: Mapping):
        selector = resolve_template(op.get("selector"), ctx)
        if not selector:
            return []
        return self.host.document.live(selector)

    async def _get_value(self, op: Mapping, ctx: Mapping):
        els = self.evaluator.elements(op, ctx)
        if not els:
            self.evaluator._dbg("getValue", op.get("selector"), "- no element found")
            return None
        return els[0].value

    async def _set_value(self, op: Mapping, ctx: Mapping):
        for el in self.evaluator.elements(op, ctx):
            el.value = stringify(resolve_template(op.get("value"), ctx))

    async def _get_text(self, op: Mapping, ctx: Mapping):
        els = self.evaluator.elements(op, ctx)
        if not els:
            self.evaluator._dbg("getText", op.get("selector"), "- no element found")
            return None
        return els[0].text_content

    async def _set_text(self, op: Mapping, ctx: Mapping):
        for el in self.evaluator.elements(op, ctx):
            el.text_content = stringify(resolve_template(op.get("value"), ctx))

    async def _add_class(self, op: Mapping, ctx: Mapping):
        for el in self.evaluator.elements(op, ctx):
            el.class_list.add(stringify(resolve_template(op.get("className"), ctx)))

    async def _remove_class(self, op: Mapping, ctx: Mapping):
        for el in self.evaluator.elements(op, ctx):
            el.class_list.remove(stringify(resolve_template(op.get("className"), ctx)))

    async def _show(self, op: Mapping, ctx: Mapping):
        for el in self.evaluator.elements(op, ctx):
            el.style["display"] = "block"

    async def _hide(self, op: Mapping, ctx: Mapping):
        for el in self.evaluator.elements(op, ctx):
            el.style["display"] = "none"

    async def _set_attrs(self, op: Mapping, ctx: Mapping):
        attrs = op.get("attrs")
        if not isinstance(attrs, collections.abc.Mapping):
            return None
        for el in self.evaluator.elements(op, ctx):
            for name, raw in attrs.items():
                value = resolve_template(raw, ctx)
                if value is False or value is None:
                    el.remove_attribute(name)
                elif value is True:
                    el.set_attribute(name, "")
                else:
                    el.set_attribute(name, stringify(value))

    # --- Stores ---
    async def _local_set(self, op: Mapping, ctx: Mapping):
        self.host.local_storage.set_item(op.get("key"), resolve_template(op.get("value"), ctx))

    async def _local_get(self, op: Mapping, ctx: Mapping):
        return self.host.local_storage.get_item(op.get("key"))

    async def _local_remove(self, op: Mapping, ctx: Mapping):
        self.host.local_storage.remove_item(op.get("key"))

    async def _session_set(self, op: Mapping, ctx: Mapping):
        self.host.session_storage.set_item(op.get("key"), resolve_template(op.get("value"), ctx))

    async def _session_get(self, op: Mapping, ctx: Mapping):
        return self.host.session_storage.get_item(op.get("key"))

    async def _session_remove(self, op: Mapping, ctx: Mapping):
        self.host.session_storage.remove_item(op.get("key"))

    async def _set_var(self, op: Mapping, ctx: Mapping):
        value = await self.evaluator.resolve_argument(op.get("value"), ctx)
        self.evaluator.registries.variables[op.get("name")] = value
        logger.debug("[setVar] Stored variable %s = %r", op.get("name"), value)

    async def _get_var(self, op: Mapping, ctx: Mapping):
        value = self.evaluator.registries.variables.get(op.get("name"))
        logger.debug("[getVar] Retrieved variable %s = %r", op.get("name"), value)
        return value

    # --- Clipboard and notifications ---
    async def _copy_text(self, op: Mapping, ctx: Mapping):
        await self.host.clipboard.write_text(stringify(resolve_template(op.get("text"), ctx)))

    async def _read_text(self, op: Mapping, ctx: Mapping):
        return await self.host.clipboard.read_text()

    async def _notify(self, op: Mapping, ctx: Mapping):
        notifier = self.host.notifier
        if notifier is None:
            return None
        if notifier.permission != "granted":
            await notifier.request_permission()
        if notifier.permission == "granted":
            title = stringify(resolve_template(op.get("title") or "Notification", ctx))
            body = stringify(resolve_template(op.get("body") or "", ctx))
            notifier.show(title, body)

    # --- Values ---
    async def _math(self, op: Mapping, ctx: Mapping):
        fn_name = op.get("fn")
        if not fn_name:
            raise OperationError("math operation requires fn", op)
        func = MATH_FUNCTIONS.get(fn_name)
        if func is None:
            raise OperationError(f"Unknown math function: {fn_name}", op)
        args = await self.evaluator.resolve_arguments(op.get("args"), ctx)
        return func(*(_num(a) for a in args))

    async def _convert(self, op: Mapping, ctx: Mapping):
        value = await self.evaluator.resolve_argument(op.get("op"), ctx)
        return convert_value(value, op.get("targetType"))

    async def _trim(self, op: Mapping, ctx: Mapping):
        value = await self.evaluator.resolve_argument(op.get("op"), ctx)
        return value.strip() if isinstance(value, str) else value

    async def _console(self, op: Mapping, ctx: Mapping):
        level = op.get("level")
        message = await self.evaluator.resolve_argument(op.get("message"), ctx)
        self.host.log(level, message)
        self.evaluator.side_effects.append({"topics": ["console", level or "log"], "message": message})
