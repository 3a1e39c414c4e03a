import pytest

from clientops.clientops_template import resolve_template


def test_indexed_path_resolves():
    assert resolve_template("{{a.b[0]}}", {"a": {"b": [42]}}) == "42"


def test_missing_path_is_empty_string():
    assert resolve_template("{{a.missing.deep}}", {"a": {}}) == ""
    assert resolve_template("x={{nope}}", {}) == "x="


@pytest.mark.parametrize("value", [None, 3, 2.5, True, ["{{a}}"], {"k": "{{a}}"}])
def test_non_string_passes_through(value):
    assert resolve_template(value, {"a": 1}) is value


def test_multiple_placeholders_all_substitute():
    ctx = {"user": {"name": "Ada"}, "count": 3}
    assert resolve_template("{{user.name}} has {{ count }} items", ctx) == "Ada has 3 items"


def test_scalars_render_with_value_conventions():
    ctx = {"flag": False, "ratio": 2.0, "none": None}
    assert resolve_template("{{flag}}|{{ratio}}|{{none}}", ctx) == "false|2|"


def test_containers_render_as_compact_json():
    ctx = {"items": [1, 2], "rec": {"a": "b"}}
    assert resolve_template("{{items}}", ctx) == "[1,2]"
    assert resolve_template("{{rec}}", ctx) == '{"a":"b"}'


def test_no_html_escaping():
    assert resolve_template("{{html}}", {"html": "<b>&</b>"}) == "<b>&</b>"


def test_index_out_of_range_is_empty():
    assert resolve_template("[{{xs[5]}}]", {"xs": [1]}) == "[]"
