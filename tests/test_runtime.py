import asyncio
import json

import pytest

from clientops import ClientHost, ExecutionResult, OpRunner, RuntimeConfig, host_api_method


def assert_ok(res, expected=None):
    assert res.status == "success", f"expected success, got {res}"
    if expected is not None:
        assert res.value == expected, f"expected {expected!r}, got {res.value!r}"


@pytest.mark.asyncio
async def test_end_to_end_condition_and_variables(runner):
    await runner.execute({
        "_op": "if_",
        "condition": {"left": {"_op": "math", "fn": "sum", "args": [1, 2]}, "operator": "==", "right": 3},
        "then": {"_op": "setVar", "name": "r", "value": "yes"},
    })
    assert await runner.execute({"_op": "getVar", "name": "r"}) == "yes"


@pytest.mark.asyncio
async def test_handle_op_success_collects_side_effects(runner):
    res = await runner.handle_op({"_ops": [
        {"_op": "console", "message": "step {{n}}"},
        {"_op": "return", "value": {"_op": "math", "fn": "sum", "args": ["{{n}}", 1]}},
    ]}, {"n": 1})
    assert_ok(res, 2)
    assert res.side_effects == [{"topics": ["console", "log"], "message": "step 1"}]

    again = await runner.handle_op({"_op": "getVar", "name": "missing"})
    assert_ok(again)
    assert again.side_effects == []


@pytest.mark.asyncio
async def test_handle_op_converts_faults_into_results(runner):
    res = await runner.handle_op({"_op": "math", "fn": "cube", "args": [2]})
    assert res.status == "error"
    assert res.error_message == "OperationError: Unknown math function: cube"
    assert res.format_error() == "Error in 'math': OperationError: Unknown math function: cube"
    assert res.side_effects[-1]["topics"] == ["stderr"]

    runner.register_handler("explode", lambda: 1 / 0)
    res2 = await runner.handle_op({"_handler": True, "fn": "explode", "args": []})
    assert res2.status == "error"
    assert res2.error_message.startswith("ZeroDivisionError")
    assert res2.format_error() == res2.error_message

    res3 = await runner.handle_op({"_op": "getVar"}, context=["not", "a", "mapping"])
    assert res3.status == "error"
    assert "context must be a mapping" in res3.error_message


def test_execution_result_format_error_on_success():
    assert ExecutionResult(status="success", value=1).format_error() == ""


class GameHost(ClientHost):
    def __init__(self):
        super().__init__(RuntimeConfig())
        self.hp = 100

    @host_api_method
    def take_damage(self, amount):
        self.hp -= int(amount)
        return self.hp

    def not_exposed(self):
        return "hidden"


@pytest.mark.asyncio
async def test_host_methods_exposed_as_camel_case_handlers():
    host = GameHost()
    runner = OpRunner(host=host)
    assert "takeDamage" in host.globals
    assert "cancelTasks" in host.globals
    assert "notExposed" not in host.globals
    res = await runner.handle_op({"_handler": True, "fn": "takeDamage", "args": ["{{hit}}"]}, {"hit": 5})
    assert_ok(res, 95)
    assert host.hp == 95


@pytest.mark.asyncio
async def test_explicit_globals_win_over_host_methods():
    host = ClientHost(RuntimeConfig(), globals={"cancelTasks": lambda: "mine"})
    runner = OpRunner(host=host)
    assert await runner.execute({"_handler": True, "fn": "cancelTasks", "args": []}) == "mine"


@pytest.mark.asyncio
async def test_runners_are_isolated(config):
    one, two = OpRunner(config=config), OpRunner(config=config)
    await one.execute({"_op": "setVar", "name": "k", "value": 1})
    await one.execute({"_op": "localSet", "key": "k", "value": 1})
    assert await two.execute({"_op": "getVar", "name": "k"}) is None
    assert await two.execute({"_op": "localGet", "key": "k"}) is None


def test_config_from_env():
    cfg = RuntimeConfig.from_env({
        "CLIENTOPS_DEBUG": "yes",
        "CLIENTOPS_STORAGE_PATH": "/tmp/store.json",
        "CLIENTOPS_FRAME_INTERVAL": "0.5",
        "CLIENTOPS_HTTP_TIMEOUT": "3",
        "CLIENTOPS_HTTP_RETRIES": "2",
    })
    assert cfg.debug is True
    assert cfg.storage_path == "/tmp/store.json"
    assert cfg.frame_interval == 0.5
    assert cfg.http_timeout == 3.0
    assert cfg.http_retries == 2


def test_config_defaults_and_overrides():
    cfg = RuntimeConfig.from_env({}, debug=True, http_retries=1)
    assert cfg.debug is True
    assert cfg.http_retries == 1
    assert cfg.storage_path is None
    assert cfg.http_timeout is None
    with pytest.raises(TypeError):
        RuntimeConfig.from_env({}, colour="blue")
    with pytest.raises(ValueError):
        RuntimeConfig.from_env({"CLIENTOPS_HTTP_TIMEOUT": "soon"})


@pytest.mark.asyncio
async def test_run_ops_file_prints_console_and_value(tmp_path, capsys):
    from run_ops import run_ops_file

    ops = tmp_path / "ops.json"
    ops.write_text(json.dumps({"_ops": [
        {"_op": "console", "message": "hello {{who}}"},
        {"_op": "setTimeout", "ms": 1, "callback": {"_op": "setVar", "name": "t", "value": 1}},
        {"_op": "return", "value": {"_op": "math", "fn": "sum", "args": [2, 3]}},
    ]}), encoding="utf-8")
    context = tmp_path / "ctx.yaml"
    context.write_text("who: world\n", encoding="utf-8")

    await run_ops_file(str(ops), str(context))
    out = capsys.readouterr().out.splitlines()
    assert out == ["hello world", "5"]


@pytest.mark.asyncio
async def test_run_ops_file_exits_nonzero_on_error(tmp_path, capsys):
    from run_ops import run_ops_file

    ops = tmp_path / "bad.yaml"
    ops.write_text("_op: math\nfn: cube\nargs: [1]\n", encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        await run_ops_file(str(ops))
    assert exc.value.code == 1
    assert "Unknown math function" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_shutdown_cancels_background_tasks(runner, host):
    await runner.execute({"_op": "setTimeout", "ms": 1000, "callback": {"_op": "getVar", "name": "x"}})
    assert host.pending_timers
    await runner.shutdown()
    assert not host.pending_timers
    await asyncio.wait_for(host.wait_idle(), timeout=1)
