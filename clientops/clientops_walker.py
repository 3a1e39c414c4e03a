"""
Recursively resolves JSON-like structures, running embedded operations.
"""
import collections.abc
from typing import Any, Mapping, TYPE_CHECKING

from clientops.clientops_datatypes import is_operation
from clientops.clientops_template import resolve_template

if TYPE_CHECKING:
    from clientops.clientops_interpreter import Evaluator


class TreeWalker:
    """Builds a resolved copy of a tree; the input is never mutated."""
    def __init__(self, evaluator: 'Evaluator'):
        self.evaluator = evaluator

    async def resolve(self, node: Any, ctx: Mapping, path: str = "root") -> Any:
        self.evaluator._dbg("resolve", path)
        if isinstance(node, list):
            out = []
            for i, item in enumerate(node):
                out.append(await self.resolve(item, ctx, f"{path}[{i}]"))
            return out

        if isinstance(node, collections.abc.Mapping):
            if is_operation(node):
                # Sibling fields belong to the operation; it is handed over whole.
                self.evaluator._dbg("executing operation at", path)
                return await self.evaluator.exec_op(node, ctx)
            out = {}
            for key, value in node.items():
                out[key] = await self.resolve(value, ctx, f"{path}.{key}")
            return out

        if isinstance(node, str):
            return resolve_template(node, ctx)

        return node
