"""
Defines the core data types shared by the clientops interpreter.

An operation node is a plain mapping (usually decoded from JSON). It is
recognised by one of three discriminator fields: `_op` (a kind tag),
`_ops` (a batch of nodes) or `_handler` (a named host call).
"""

import json
import math
import collections.abc
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


OP_MARKERS = ("_op", "_ops", "_handler")


class OperationError(Exception):
    """A fatal fault raised by an operation with missing or invalid input."""
    def __init__(self, message: str, op: Optional[dict] = None):
        super().__init__(message)
        self.op = op


class ControlSignal:
    """A non-error, non-local exit: `break`, `continue` or `return`.

    Signals are returned up the call chain (never raised). Loops absorb
    `break`/`continue`, a declared-function call absorbs `return`.
    """
    __slots__ = ("kind", "value")

    def __init__(self, kind: str, value: Any = None):
        if kind not in ("break", "continue", "return"):
            raise ValueError(f"Unknown control signal: {kind!r}")
        self.kind = kind
        self.value = value

    def __repr__(self) -> str:
        if self.kind == "return":
            return f"<ControlSignal return {self.value!r}>"
        return f"<ControlSignal {self.kind}>"

    def __eq__(self, other):
        if not isinstance(other, ControlSignal):
            return NotImplemented
        return self.kind == other.kind and self.value == other.value


BREAK = ControlSignal("break")
CONTINUE = ControlSignal("continue")


def is_signal(x) -> bool:
    return isinstance(x, ControlSignal)


def is_return(x) -> bool:
    return isinstance(x, ControlSignal) and x.kind == "return"


def unwrap_return(x):
    return x.value if is_return(x) else x


def is_operation(node: Any) -> bool:
    """True when `node` is a record carrying an operation discriminator."""
    if not isinstance(node, collections.abc.Mapping):
        return False
    return any(node.get(marker) for marker in OP_MARKERS)


# =================================================================
# Value conventions
# =================================================================

def stringify(value: Any) -> str:
    """Render a value as text the way templates and stores expect."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, (list, tuple, collections.abc.Mapping)):
        try:
            return json.dumps(_plain(value), separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def _plain(value):
    if isinstance(value, collections.abc.Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def to_number(value: Any):
    """Coerce a value to int/float; raises ValueError for non-numeric text."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if value is None:
        return 0
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return 0
        try:
            return int(s)
        except ValueError:
            return float(s)
    raise ValueError(f"not a number: {value!r}")


def _is_number(x) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def loose_equals(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, bool):
        a = int(a)
    if isinstance(b, bool):
        b = int(b)
    if _is_number(a) and isinstance(b, str):
        a, b = b, a
    if isinstance(a, str) and _is_number(b):
        try:
            return to_number(a) == b
        except ValueError:
            return False
    return a == b


def strict_equals(a: Any, b: Any) -> bool:
    if _is_number(a) and _is_number(b):
        return a == b
    if type(a) is not type(b):
        return False
    return a == b


def _ordering_operands(a: Any, b: Any):
    if isinstance(a, str) and isinstance(b, str):
        return a, b
    return to_number(a), to_number(b)


def compare(a: Any, operator: str, b: Any) -> bool:
    """Apply an ordering operator; incomparable operands yield False."""
    try:
        x, y = _ordering_operands(a, b)
        match operator:
            case ">":
                return x > y
            case ">=":
                return x >= y
            case "<":
                return x < y
            case "<=":
                return x <= y
    except (TypeError, ValueError):
        return False
    raise ValueError(f"Unknown ordering operator: {operator!r}")


# =================================================================
# Process-scoped registries
# =================================================================

@dataclass
class Registries:
    """Live resources created and released by explicit operations.

    One instance is owned by each runner and handed to its evaluator, so
    separate runners never share channels, timers or variables.
    """
    channels: Dict[str, Any] = field(default_factory=dict)
    intervals: Dict[str, Any] = field(default_factory=dict)
    frames: Dict[str, Any] = field(default_factory=dict)
    modules: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)

    def release(self, registry: str, key: Any):
        """Removes and returns an entry; absent keys yield None."""
        if key is None:
            return None
        return getattr(self, registry).pop(key, None)
