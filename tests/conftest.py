import pytest

from clientops.clientops_config import RuntimeConfig
from clientops.clientops_dom import MemoryDocument
from clientops.clientops_host import ClientHost
from clientops.clientops_runtime import OpRunner


PAGE = [
    {"tag": "form", "id": "login", "children": [
        {"tag": "input", "id": "user", "class": "field", "value": "ada"},
        {"tag": "input", "id": "pass", "class": "field secret", "value": "pw"},
        {"tag": "button", "id": "go", "class": "btn primary", "text": "Sign in"},
    ]},
    {"tag": "ul", "id": "list", "children": [
        {"tag": "li", "class": "item", "text": "one"},
        {"tag": "li", "class": "item", "text": "two"},
    ]},
    {"tag": "p", "id": "status", "text": "idle"},
]


@pytest.fixture
def config():
    return RuntimeConfig(frame_interval=0.001)


@pytest.fixture
def host(config):
    return ClientHost(config, document=MemoryDocument.from_tree(PAGE))


@pytest.fixture
def runner(host):
    return OpRunner(host=host)


@pytest.fixture
def calls(host):
    """Records every call to the `record` host global."""
    seen = []

    def record(*args):
        seen.append(args[0] if len(args) == 1 else list(args))
        return len(seen)

    host.globals["record"] = record
    return seen
