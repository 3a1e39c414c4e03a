"""
Evaluates condition trees to booleans.

Three shapes are accepted:
  - binary:   {left, operator, right}
  - logical:  {conditions: [...], operator: "&&" | "||"}
  - negation: {operator: "!", value | conditions: [one]}
"""
import logging
import collections.abc
from typing import Any, Mapping, TYPE_CHECKING

from clientops.clientops_datatypes import loose_equals, strict_equals, compare
from clientops.clientops_template import resolve_template

if TYPE_CHECKING:
    from clientops.clientops_interpreter import Evaluator

logger = logging.getLogger(__name__)


class ConditionEvaluator:
    """Evaluates condition nodes, executing operation-valued operands."""
    def __init__(self, evaluator: 'Evaluator'):
        self.evaluator = evaluator

    async def eval(self, cond: Any, ctx: Mapping) -> bool:
        if not cond:
            return False
        if not isinstance(cond, collections.abc.Mapping):
            # Inline scalars degrade to their template-resolved truthiness
            return bool(resolve_template(cond, ctx))

        operator = cond.get("operator")

        if operator == "!":
            return await self._eval_not(cond, ctx)

        if cond.get("conditions") and operator:
            return await self._eval_group(cond, ctx)

        return await self._eval_binary(cond, ctx)

    async def _eval_not(self, cond: Mapping, ctx: Mapping) -> bool:
        value = cond.get("value")
        if value:
            if isinstance(value, collections.abc.Mapping):
                return not await self.eval(value, ctx)
            return not resolve_template(value, ctx)
        conditions = cond.get("conditions")
        if isinstance(conditions, list) and len(conditions) == 1:
            return not await self.eval(conditions[0], ctx)
        logger.warning("Invalid NOT condition format: %r", cond)
        return False

    async def _eval_group(self, cond: Mapping, ctx: Mapping) -> bool:
        # Every sub-condition runs; side effects are never skipped.
        results = []
        for sub in cond.get("conditions") or []:
            results.append(await self.eval(sub, ctx))
        match cond.get("operator"):
            case "&&":
                return all(results)
            case "||":
                return any(results)
            case other:
                logger.warning("Unknown logical group operator: %r", other)
                return False

    async def _eval_binary(self, cond: Mapping, ctx: Mapping) -> bool:
        # Operands: nested operations run, literals are walked, strings templated
        left = await self.evaluator.resolve_argument(cond.get("left"), ctx)
        right = await self.evaluator.resolve_argument(cond.get("right"), ctx)
        operator = cond.get("operator")
        self.evaluator._dbg("condition", left, operator, right)
        match operator:
            case "==":
                return loose_equals(left, right)
            case "===":
                return strict_equals(left, right)
            case "!=":
                return not loose_equals(left, right)
            case "!==":
                return not strict_equals(left, right)
            case ">" | ">=" | "<" | "<=":
                return compare(left, operator, right)
            case _:
                logger.warning("Unknown binary operator in condition: %r", operator)
                return bool(cond)
