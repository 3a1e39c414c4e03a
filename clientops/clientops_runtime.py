import logging
import collections.abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional

from clientops.clientops_config import RuntimeConfig
from clientops.clientops_datatypes import OperationError, Registries
from clientops.clientops_host import ClientHost
from clientops.clientops_interpreter import Evaluator

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """The structured result of running one operation tree."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_op: Optional[Mapping] = None
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        """Formats an error message, naming the failing op kind when known."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_op and self.error_op.get("_op"):
            return f"Error in '{self.error_op.get('_op')}': {msg}"
        return msg


class OpRunner:
    """Owns one host, one set of registries and one evaluator.

    Runners are independent: two runners never share variables, timers,
    channels or imported modules.
    """
    def __init__(self, host: Optional[ClientHost] = None, config: Optional[RuntimeConfig] = None):
        self.config = config or (host.config if host is not None else RuntimeConfig.from_env())
        self.host = host if host is not None else ClientHost(config=self.config)
        self.registries = Registries()
        self.evaluator = Evaluator(host=self.host, registries=self.registries, config=self.config)

    def register_op(self, kind: str, handler):
        self.evaluator.register_op(kind, handler)

    def register_handler(self, name: str, func):
        """Publishes a callable for `_handler` and `callModuleFn` lookups."""
        self.host.globals[name] = func

    async def execute(self, op: Any, context: Optional[Mapping] = None) -> Any:
        """Runs `op`; faults propagate to the caller."""
        return await self.evaluator.execute(op, context)

    async def handle_op(self, op: Any, context: Optional[Mapping] = None) -> ExecutionResult:
        """Runs `op` and reports the outcome instead of raising."""
        self.evaluator.side_effects.clear()
        try:
            if context is not None and not isinstance(context, collections.abc.Mapping):
                raise TypeError(f"context must be a mapping, not {type(context).__name__}")
            value = await self.evaluator.execute(op, context)
        except OperationError as e:
            msg = f"OperationError: {e}"
            self.evaluator.side_effects.append({'topics': ['stderr'], 'message': msg})
            return ExecutionResult(status='error', error_message=msg, error_op=e.op,
                                   side_effects=list(self.evaluator.side_effects))
        except Exception as e:
            logger.debug("Operation failed", exc_info=True)
            msg = f"{type(e).__name__}: {e}"
            self.evaluator.side_effects.append({'topics': ['stderr'], 'message': msg})
            return ExecutionResult(status='error', error_message=msg,
                                   side_effects=list(self.evaluator.side_effects))
        return ExecutionResult(status='success', value=value,
                               side_effects=list(self.evaluator.side_effects))

    async def shutdown(self):
        """Closes channels, cancels timers and background tasks."""
        for channel_id in list(self.registries.channels):
            channel = self.registries.release("channels", channel_id)
            try:
                await channel.close()
            except Exception:
                logger.warning("Failed to close channel %s", channel_id, exc_info=True)
        for interval_id in list(self.registries.intervals):
            self.host.clear_interval(self.registries.release("intervals", interval_id))
        for frame_id in list(self.registries.frames):
            self.host.cancel_animation_frame(self.registries.release("frames", frame_id))
        return self.host.cancel_tasks()
