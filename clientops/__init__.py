from clientops.clientops_config import RuntimeConfig
from clientops.clientops_datatypes import ControlSignal, OperationError, Registries, is_operation
from clientops.clientops_dom import Element, LiveCollection, MemoryDocument
from clientops.clientops_host import ClientHost, host_api_method
from clientops.clientops_interpreter import Evaluator
from clientops.clientops_runtime import ExecutionResult, OpRunner
from clientops.clientops_template import resolve_template

__all__ = [
    "ClientHost",
    "ControlSignal",
    "Element",
    "Evaluator",
    "ExecutionResult",
    "LiveCollection",
    "MemoryDocument",
    "OpRunner",
    "OperationError",
    "Registries",
    "RuntimeConfig",
    "host_api_method",
    "is_operation",
    "resolve_template",
]
