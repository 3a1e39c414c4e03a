import logging

import pytest

from clientops import OperationError


def get(name):
    return {"_op": "getVar", "name": name}


def set_(name, value):
    return {"_op": "setVar", "name": name, "value": value}


def incr(name):
    return set_(name, {"_op": "math", "fn": "sum", "args": [get(name), 1]})


def less_than(name, limit):
    return {"left": get(name), "operator": "<", "right": limit}


def record(*args):
    return {"_handler": True, "fn": "record", "args": list(args)}


@pytest.mark.asyncio
async def test_for_loop_counts(runner, calls):
    await runner.execute({
        "_op": "for_loop",
        "init": set_("i", 0),
        "condition": less_than("i", 3),
        "_complexCondition": True,
        "increment": incr("i"),
        "body": record(get("i")),
    })
    assert calls == [0, 1, 2]


@pytest.mark.asyncio
async def test_continue_still_runs_increment(runner, calls):
    await runner.execute({
        "_op": "for_loop",
        "init": set_("i", 0),
        "condition": less_than("i", 3),
        "_complexCondition": True,
        "increment": incr("i"),
        "body": {"_ops": [
            {"_op": "if_", "_complexCondition": True,
             "condition": {"left": get("i"), "operator": "==", "right": 1},
             "then": {"_op": "continue"}},
            record(get("i")),
        ]},
    })
    assert calls == [0, 2]
    assert await runner.execute(get("i")) == 3


@pytest.mark.asyncio
async def test_while_loop_pre_test(runner, calls):
    await runner.execute({"_ops": [
        set_("n", 0),
        {"_op": "while_loop", "condition": less_than("n", 3),
         "body": {"_ops": [incr("n"), record(get("n"))]}},
        {"_op": "while_loop", "condition": less_than("n", 0), "body": record("never")},
    ]})
    assert calls == [1, 2, 3]


@pytest.mark.asyncio
async def test_do_while_runs_body_once_when_false(runner, calls):
    await runner.execute({"_op": "do_while_loop",
                          "condition": {"left": 1, "operator": "==", "right": 2},
                          "body": record("once")})
    assert calls == ["once"]


@pytest.mark.asyncio
async def test_loop_until_stops_when_condition_holds(runner, calls):
    await runner.execute({"_ops": [
        set_("n", 0),
        {"_op": "loop_until",
         "condition": {"left": get("n"), "operator": ">=", "right": 2},
         "body": {"_ops": [incr("n"), record(get("n"))]}},
    ]})
    assert calls == [1, 2]


@pytest.mark.asyncio
async def test_break_exits_nearest_loop_only(runner, calls):
    await runner.execute({"_ops": [
        set_("n", 0),
        {"_op": "while_loop",
         "condition": {"left": 1, "operator": "==", "right": 1},
         "body": {"_ops": [
             incr("n"),
             {"_op": "if_", "_complexCondition": True,
              "condition": {"left": get("n"), "operator": "==", "right": 3},
              "then": {"_op": "break"}},
             record(get("n")),
         ]}},
        record("after"),
    ]})
    assert calls == [1, 2, "after"]


@pytest.mark.asyncio
async def test_foreach_over_record_binds_keys_in_order(runner, calls):
    await runner.execute({
        "_op": "foreach_loop",
        "collection": {"x": 1, "y": 2},
        "itemVar": "value",
        "indexVar": "key",
        "body": record("{{key}}={{value}}"),
    })
    assert calls == ["x=1", "y=2"]


@pytest.mark.asyncio
async def test_foreach_uses_derived_context(runner, calls):
    ctx = {"item": "outer"}
    await runner.execute({
        "_op": "foreach_loop",
        "collection": ["a", "b"],
        "itemVar": "item",
        "indexVar": "i",
        "body": record("{{i}}:{{item}}"),
    }, ctx)
    assert calls == ["0:a", "1:b"]
    assert ctx == {"item": "outer"}


@pytest.mark.asyncio
async def test_foreach_over_live_collection_is_fixed_at_start(runner, host, calls):
    def grow():
        host.document.get_element_by_id("list").append_child(host.document.create_element("li"))

    runner.register_handler("grow", grow)
    await runner.execute({
        "_op": "foreach_loop",
        "collection": {"_op": "queryAll", "selector": "li"},
        "itemVar": "el",
        "body": {"_ops": [{"_handler": True, "fn": "grow", "args": []}, record("tick")]},
    })
    assert calls == ["tick", "tick"]
    assert len(host.document.query_selector_all("li")) == 4


@pytest.mark.asyncio
async def test_foreach_skips_empty_and_rejects_text(runner, calls, caplog):
    await runner.execute({"_op": "foreach_loop", "collection": [], "body": record("x")})
    with caplog.at_level(logging.WARNING):
        await runner.execute({"_op": "foreach_loop", "collection": "abc", "body": record("x")})
    assert calls == []
    assert "Unsupported collection type" in caplog.text


@pytest.mark.asyncio
async def test_if_branches_and_inline_conditions(runner):
    op = {"_op": "if_", "condition": "{{flag}}",
          "then": {"_op": "convert", "op": "yes", "targetType": "string"},
          "else": {"_op": "convert", "op": "no", "targetType": "string"}}
    assert await runner.execute(op, {"flag": "1"}) == "yes"
    assert await runner.execute(op, {"flag": ""}) == "no"

    await runner.execute(set_("on", True))
    inline = {"_op": "if_", "condition": get("on"), "then": get("on")}
    assert await runner.execute(inline) is True
    assert await runner.execute({"_op": "if_", "condition": "", "then": get("on")}) is None


@pytest.mark.asyncio
async def test_if_evaluates_condition_tree_without_flag(runner):
    await runner.execute({
        "_op": "if_",
        "condition": {"left": 1, "operator": "==", "right": 2},
        "then": set_("r", "yes"),
        "else": set_("r", "no"),
    })
    assert await runner.execute(get("r")) == "no"

    await runner.execute({
        "_op": "if_",
        "condition": {"operator": "!", "value": {"left": 1, "operator": "==", "right": 2}},
        "then": set_("r", "negated"),
    })
    assert await runner.execute(get("r")) == "negated"


@pytest.mark.asyncio
async def test_false_tree_inside_loop_body_does_not_break(runner, calls):
    await runner.execute({
        "_op": "for_loop",
        "init": set_("i", 0),
        "condition": less_than("i", 3),
        "increment": incr("i"),
        "body": {"_ops": [
            {"_op": "if_",
             "condition": {"left": get("i"), "operator": ">", "right": 10},
             "then": {"_op": "break"}},
            record(get("i")),
        ]},
    })
    assert calls == [0, 1, 2]


@pytest.mark.asyncio
async def test_return_is_absorbed_at_function_boundary(runner, host, calls):
    await runner.execute({
        "_op": "declareFunction",
        "name": "find",
        "params": ["limit"],
        "body": [
            {"_op": "foreach_loop", "collection": [1, 2, 3], "itemVar": "x",
             "body": {"_ops": [
                 record("{{x}}"),
                 {"_op": "if_", "_complexCondition": True,
                  "condition": {"left": "{{x}}", "operator": "==", "right": "{{limit}}"},
                  "then": {"_op": "return", "value": "found {{x}}"}},
             ]}},
            {"_op": "return", "value": "none"},
        ],
    })
    assert await runner.execute({"_handler": True, "fn": "find", "args": [2]}) == "found 2"
    assert calls == ["1", "2"]
    assert await host.globals["find"](9) == "none"
    # Parameters are visible in the ambient scope after a call
    assert host.globals["limit"] == 9


@pytest.mark.asyncio
async def test_text_function_body(runner, host):
    await runner.execute({"_op": "declareFunction", "name": "add2", "params": ["a", "b"],
                          "body": "return a + b"})
    assert host.globals["add2"](2, 3) == 5
    assert await runner.execute({"_handler": True, "fn": "add2", "args": [4, 5]}) == 9


@pytest.mark.asyncio
async def test_declare_function_faults(runner):
    with pytest.raises(OperationError):
        await runner.execute({"_op": "declareFunction", "body": "return 1"})
    with pytest.raises(OperationError):
        await runner.execute({"_op": "declareFunction", "name": "f", "body": 42})


@pytest.mark.asyncio
async def test_stray_signals_at_entry_point(runner, caplog):
    with caplog.at_level(logging.WARNING):
        assert await runner.execute({"_op": "break"}) is None
    assert "escaped outside of any loop" in caplog.text
    assert await runner.execute({"_op": "return", "value": "{{v}}"}, {"v": "out"}) == "out"


@pytest.mark.asyncio
async def test_return_propagates_out_of_nested_loops(runner, calls):
    result = await runner.execute({"_ops": [
        {"_op": "foreach_loop", "collection": [1, 2], "itemVar": "a", "body":
            {"_op": "foreach_loop", "collection": [1, 2], "itemVar": "b", "body": {"_ops": [
                record("{{a}}{{b}}"),
                {"_op": "return", "value": "{{a}}{{b}}"},
            ]}}},
        record("unreached"),
    ]})
    assert result == "11"
    assert calls == ["11"]
