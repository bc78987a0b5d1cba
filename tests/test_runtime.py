import pytest

from xetpl import __version__
from xetpl.engine.runtime import (
    MISSING,
    Context,
    ResourceQueue,
    build_globals,
    capture_output,
    context_vars,
    count,
    escape,
    is_logged,
    json_encode,
)


class TestMissing:
    def test_renders_empty(self):
        assert str(MISSING) == ""
        assert not MISSING
        assert len(MISSING) == 0
        assert list(MISSING) == []

    def test_chained_access(self):
        assert MISSING.title.text is MISSING
        assert MISSING["key"] is MISSING
        assert MISSING() is MISSING

    def test_comparisons(self):
        assert MISSING == None  # noqa: E711
        assert MISSING == 0
        assert MISSING == ""
        assert MISSING != 1
        assert MISSING < 3
        assert not MISSING > 0
        assert MISSING <= 0

    def test_arithmetic(self):
        assert MISSING + 1 == 1
        assert 1 + MISSING == 1
        assert MISSING + "a" == "a"
        assert MISSING - 2 == -2
        assert 5 - MISSING == 5
        assert MISSING * 3 == 0
        assert -MISSING == 0


class TestContext:
    def test_attribute_access(self):
        ctx = Context(title="Home")
        assert ctx.title == "Home"
        assert ctx.unknown is MISSING

    def test_item_access_is_strict(self):
        ctx = Context()
        with pytest.raises(KeyError):
            ctx["unknown"]

    def test_attribute_assignment(self):
        ctx = Context()
        ctx.i = 1
        ctx.i += 1
        assert ctx["i"] == 2
        del ctx.i
        assert "i" not in ctx

    def test_mapping(self):
        ctx = Context({"a": 1}, b=2)
        assert vars(ctx) == {"a": 1, "b": 2}
        assert list(ctx) == ["a", "b"]
        assert len(ctx) == 2

    @pytest.mark.parametrize("name", ["items", "keys", "values", "get", "pop", "update", "is_logged"])
    def test_variables_never_shadowed(self, name):
        ctx = Context({name: [1, 2]})
        assert getattr(ctx, name) == [1, 2]
        assert getattr(Context(), name) is MISSING

    def test_context_vars(self):
        assert context_vars(Context(a=1)) == {"a": 1}
        assert context_vars({"a": 1}) == {"a": 1}
        assert context_vars(None) == {}

    def test_is_logged(self):
        assert is_logged(Context(session={"is_logged": True}))
        assert is_logged({"session": {"is_logged": True}})
        assert not is_logged(Context(session={"is_logged": False}))
        assert not is_logged(Context(session="yes"))
        assert not is_logged(Context())
        assert not is_logged(Context(is_logged=True))


class TestResourceQueue:
    def test_files_ordered_by_index(self):
        queue = ResourceQueue()
        queue.load_file("b.js", index=5)
        queue.load_file("a.js")
        queue.load_file("c.js", index=-1)
        queue.load_file("x.css", "screen")
        assert [r.target for r in queue.scripts()] == ["c.js", "a.js", "b.js"]
        assert [r.target for r in queue.stylesheets()] == ["x.css"]

    def test_reload_replaces(self):
        queue = ResourceQueue()
        queue.load_file("a.js", "head", index=1)
        queue.load_file("a.js", "head", index=2)
        assert [r.index for r in queue.scripts()] == [2]

    def test_unload(self):
        queue = ResourceQueue()
        queue.load_file("a.css", "all")
        queue.load_file("b.css")
        queue.unload_file("a.css", "", "all")
        queue.unload_file("missing.css")
        assert [r.target for r in queue.stylesheets()] == ["b.css"]

    def test_unload_script_ignores_type(self):
        queue = ResourceQueue()
        queue.load_file("a.js", "body")
        queue.load_file("b.js", "head")
        queue.unload_file("a.js")
        queue.unload_file("b.js", "", "body")
        assert queue.scripts() == []

    def test_script_reload_with_other_type_replaces(self):
        queue = ResourceQueue()
        queue.load_file("a.js", "head")
        queue.load_file("a.js", "body")
        assert [r.media for r in queue.scripts()] == ["body"]

    def test_stylesheets_keyed_by_media(self):
        queue = ResourceQueue()
        queue.load_file("a.css", "print")
        queue.load_file("a.css", "screen")
        queue.unload_file("a.css", "", "print")
        assert [r.media for r in queue.stylesheets()] == ["screen"]

    def test_bundles_are_deduplicated(self):
        queue = ResourceQueue()
        for _ in range(2):
            queue.load_js_plugin("ui")
            queue.load_lang("tpl/lang")
            queue.load_filter("tpl/filter", "insert.xml")
            queue.load_ruleset("files/ruleset/login.xml")
        queue.load_js_plugin(MISSING)
        assert queue.plugins == ["ui"]
        assert queue.langs == ["tpl/lang"]
        assert queue.filters == [("tpl/filter", "insert.xml")]
        assert queue.rulesets == ["files/ruleset/login.xml"]


def test_capture_output_closes_buffer():
    with capture_output() as output:
        output.append("a")
    assert output.getvalue() == "a"
    with pytest.raises(ValueError):
        output.append("b")


def test_capture_output_closes_on_error():
    with pytest.raises(RuntimeError):
        with capture_output() as output:
            raise RuntimeError("boom")
    assert output.closed


def test_helpers():
    assert escape('<a href="x">') == "&lt;a href=&quot;x&quot;&gt;"
    assert escape(MISSING) == ""
    assert json_encode({"a": [1, None]}) == '{"a":[1,null]}'
    assert json_encode(MISSING) == "null"
    assert count([1, 2]) == 2
    assert count(MISSING) == 0
    assert count(5) == 1


def test_build_globals():
    namespace = build_globals(debug=True)
    assert namespace["__DEBUG__"] is True
    assert namespace["__VERSION__"] == __version__
    assert build_globals()["__DEBUG__"] is False
