import hashlib
import os
import re
import time

import pytest

from xetpl import __version__
from xetpl.cache import MemoryCacheBackend
from xetpl.engine.errors import (
    IncludeDepthError,
    MalformedDirectiveError,
    TemplateNotFoundError,
    TemplateRenderError,
)
from xetpl.engine.handler import CodeCache, TemplateHandler
from xetpl.engine.runtime import MISSING, Context, ResourceQueue
from xetpl.security.csrf import CSRFProtection


def test_render(handler, write):
    write("tpl/list.html", "<h1>{$title}</h1>")
    assert handler.compile("tpl", "list.html", context={"title": "Home"}) == "<h1>Home</h1>"


def test_extension_is_optional(handler, write):
    write("tpl/list.html", "ok")
    assert handler.compile("tpl", "list") == "ok"


def test_absolute_template_path(handler, write, app_root):
    write("tpl/list.html", "ok")
    assert handler.compile(app_root / "tpl", "list.html") == "ok"


def test_missing_template(handler, app_root):
    assert handler.compile("tpl", "nope.html") == (
        f"Err : '{app_root.as_posix()}/tpl/nope.html' template file does not exists."
    )


def test_init(handler, write, app_root):
    write("modules/board/skins/default/list.html")
    unit = handler.init("modules/board/skins/default", "list")
    assert unit.filename == "list.html"
    assert unit.path == f"{app_root.as_posix()}/modules/board/skins/default/"
    assert unit.web_path == "/modules/board/skins/default/"
    assert unit.cache_key == hashlib.md5((unit.file + __version__).encode()).hexdigest()
    assert unit.backend_key == f"template:{unit.file}"
    assert unit.is_root


class TestCompiledFiles:
    def test_compiled_file_written(self, handler, write, app_root):
        write("tpl/a.html", "x")
        handler.compile("tpl", "a.html")
        unit = handler.init("tpl", "a.html")
        compiled = app_root / "files/cache/template_compiled" / f"{unit.cache_key}.compiled.py"
        assert str(compiled) == unit.compiled_file
        assert compiled.read_text(encoding="utf-8").startswith("# xetpl compiled template:")

    def test_second_render_hits_cache(self, handler, write):
        write("tpl/a.html", "{$n}")
        assert handler.compile("tpl", "a.html", context={"n": 1}) == "1"
        assert handler.compile("tpl", "a.html", context={"n": 2}) == "2"
        assert handler.stats.compiles == 1
        assert handler.stats.cache_hits == 1
        assert handler.stats.calls == 2

    def test_stale_compiled_file_is_rebuilt(self, handler, write):
        source = write("tpl/a.html", "old")
        assert handler.compile("tpl", "a.html") == "old"

        source.write_text("new", encoding="utf-8")
        future = time.time() + 60
        os.utime(source, (future, future))
        assert handler.compile("tpl", "a.html") == "new"
        assert handler.stats.compiles == 2

    def test_empty_compiled_file_is_a_miss(self, handler, write):
        write("tpl/a.html", "x")
        handler.compile("tpl", "a.html")
        unit = handler.init("tpl", "a.html")
        open(unit.compiled_file, "w").close()
        assert handler.compile("tpl", "a.html") == "x"
        assert handler.stats.compiles == 2

    def test_clear_cache(self, handler, write):
        write("tpl/a.html", "a")
        write("tpl/b.html", "b")
        handler.compile("tpl", "a.html")
        handler.compile("tpl", "b.html")
        assert handler.clear_cache() == 2
        assert handler.clear_cache() == 0


class TestMemoryBackend:
    @pytest.fixture
    def backend(self):
        return MemoryCacheBackend(max_size=10)

    @pytest.fixture
    def handler(self, config, backend):
        return TemplateHandler(config, backend=backend)

    def test_empty_backend_is_kept(self, handler, backend):
        assert len(backend) == 0
        assert handler.backend is backend

    def test_payload_stored_in_backend(self, handler, backend, write, app_root):
        write("tpl/a.html", "{$n}")
        handler.compile("tpl", "a.html", context={"n": 1})
        unit = handler.init("tpl", "a.html")
        assert unit.backend_key in backend
        assert not os.path.exists(unit.compiled_file)

    def test_stored_payload_is_used(self, handler, backend, write):
        write("tpl/a.html", "compiled from source")
        unit = handler.init("tpl", "a.html")
        payload = handler.parse(unit, "from the cache").source
        backend.put(unit.backend_key, payload)
        assert handler.compile("tpl", "a.html") == "from the cache"
        assert handler.stats.compiles == 0

    def test_stale_entry_is_replaced(self, handler, backend, write):
        source = write("tpl/a.html", "new")
        unit = handler.init("tpl", "a.html")
        backend.put(unit.backend_key, handler.parse(unit, "old").source)
        future = time.time() + 60
        os.utime(source, (future, future))
        assert handler.compile("tpl", "a.html") == "new"

    def test_clear_cache_clears_backend(self, handler, backend, write):
        write("tpl/a.html", "x")
        handler.compile("tpl", "a.html")
        handler.clear_cache()
        assert len(backend) == 0


class TestIncludes:
    def test_include(self, handler, write):
        write("tpl/header.html", "<header>{$title}</header>")
        write("tpl/page.html", '<include target="header.html" /><main/>')
        assert handler.compile("tpl", "page.html", context={"title": "T"}) == "<header>T</header><main/>"

    def test_include_from_other_directory(self, handler, write):
        write("common/footer.html", "foot")
        write("tpl/page.html", '<!--#include("../common/footer.html")-->')
        assert handler.compile("tpl", "page.html") == "foot"

    def test_missing_include_file_renders_nothing(self, handler, write):
        write("tpl/page.html", 'a<include target="gone.html" />b')
        assert handler.compile("tpl", "page.html") == "ab"

    def test_include_cycle(self, handler, write):
        write("tpl/page.html", '<include target="page.html" />')
        with pytest.raises(IncludeDepthError):
            handler.compile("tpl", "page.html")

    def test_include_restores_tpl_path(self, handler, write, app_root):
        write("sub/part.html", "[{$tpl_path}]")
        write("tpl/page.html", '<include target="../sub/part.html" />{$tpl_path}')
        out = handler.compile("tpl", "page.html")
        assert out == f"[{app_root.as_posix()}/sub/]{app_root.as_posix()}/tpl/"

    def test_include_shares_resources(self, handler, write):
        write("tpl/css/part.css")
        write("tpl/part.html", '<load target="css/part.css" />')
        write("tpl/page.html", '<include target="part.html" />')
        resources = ResourceQueue()
        handler.compile("tpl", "page.html", resources=resources)
        assert [r.target for r in resources.stylesheets()] == ["tpl/css/part.css"]


class TestLoops:
    def test_items_loop(self, handler, write):
        write("tpl/list.html", '<ul><li loop="$items=>$v">{$v}</li></ul>')
        out = handler.compile("tpl", "list.html", context={"items": ["a", "b"]})
        assert out == "<ul><li>a</li><li>b</li></ul>"

    @pytest.mark.parametrize("context", [{}, {"items": []}, {"items": None}])
    def test_items_loop_guarded(self, handler, write, context):
        write("tpl/list.html", '<ul><li loop="$items=>$v">{$v}</li></ul>')
        assert handler.compile("tpl", "list.html", context=context) == "<ul></ul>"

    def test_loop_and_cond_on_one_tag(self, handler, write):
        write("tpl/list.html", '<ul><li loop="$items=>$k,$v" cond="$v != $skip">{$k}{$v}</li></ul>')
        out = handler.compile("tpl", "list.html", context={"items": ["a", "b", "c"], "skip": "b"})
        assert out == "<ul><li>0a</li><li>2c</li></ul>"

    @pytest.mark.parametrize("name", ["keys", "get", "update", "is_logged"])
    def test_variable_named_like_mapping_method(self, handler, write, name):
        write("tpl/list.html", f'<i loop="${name}=>$v">{{$v}}</i>')
        assert handler.compile("tpl", "list.html", context={name: [1, 2]}) == "<i>1</i><i>2</i>"


class TestResources:
    def test_unload_script_loaded_with_type(self, handler, write):
        write("tpl/js/a.js")
        write("tpl/js/b.js")
        write(
            "tpl/page.html",
            '<load target="js/a.js" type="body" /><load target="js/b.js" />'
            '<unload target="js/a.js" />',
        )
        resources = ResourceQueue()
        handler.compile("tpl", "page.html", resources=resources)
        assert [r.target for r in resources.scripts()] == ["tpl/js/b.js"]

    def test_unload_stylesheet_by_media(self, handler, write):
        write("tpl/css/a.css")
        write(
            "tpl/page.html",
            '<load target="css/a.css" media="print" /><load target="css/a.css" media="screen" />'
            '<unload target="css/a.css" media="print" />',
        )
        resources = ResourceQueue()
        handler.compile("tpl", "page.html", resources=resources)
        assert [r.media for r in resources.stylesheets()] == ["screen"]


def test_root_render_sets_tpl_path(handler, write, app_root):
    write("tpl/a.html", "x")
    context = Context()
    handler.compile("tpl", "a.html", context=context)
    assert context.tpl_path == f"{app_root.as_posix()}/tpl/"


def test_logged_info_copied_from_session(handler, write):
    write("tpl/a.html", "{$logged_info['nick']}")
    session = {"is_logged": True, "logged_info": {"nick": "kim"}}
    context = Context(session=session)
    assert handler.compile("tpl", "a.html", context=context) == "kim"


def test_logged_info_requires_login(handler, write):
    write("tpl/a.html", "x")
    context = Context(session={"is_logged": False, "logged_info": {"nick": "kim"}})
    handler.compile("tpl", "a.html", context=context)
    assert context.logged_info is MISSING


def test_compile_direct(handler, write):
    write("tpl/a.html", "{$n}")
    source = handler.compile_direct("tpl", "a.html")
    assert "def render(_ctx, _res, _tpl, _out, _depth=0):" in source
    assert not os.path.exists(handler.init("tpl", "a.html").compiled_file)


def test_compile_direct_missing(handler):
    with pytest.raises(TemplateNotFoundError):
        handler.compile_direct("tpl", "nope.html")


def test_render_error(handler, write):
    write("tpl/a.html", "{$n / 0}")
    with pytest.raises(TemplateRenderError) as info:
        handler.compile("tpl", "a.html", context={"n": 1})
    assert isinstance(info.value.__cause__, ZeroDivisionError)


def test_strict_compile_error(handler, write):
    write("tpl/a.html", "<!--@frobnicate-->")
    with pytest.raises(MalformedDirectiveError):
        handler.compile("tpl", "a.html")


def test_lenient_compile_error(config, write):
    config.set("template.strict", False)
    write("tpl/a.html", "a<!--@frobnicate-->b")
    assert TemplateHandler(config).compile("tpl", "a.html") == "ab"


def test_debug_global(config, write):
    config.set("template.debug", True)
    write("tpl/a.html", "<!--@if(__DEBUG__)-->debug<!--@end-->")
    assert TemplateHandler(config).compile("tpl", "a.html") == "debug"


class TestCSRF:
    @pytest.fixture
    def csrf(self):
        return CSRFProtection(secret_key="test-secret")

    @pytest.fixture
    def handler(self, config, csrf):
        config.set("forms.csrf", True)
        return TemplateHandler(config, csrf=csrf)

    def test_token_field(self, handler, csrf, write):
        write("tpl/form.html", '<form method="post"></form>')
        context = Context(session={"session_id": "s1"})
        out = handler.compile("tpl", "form.html", context=context)
        token = re.search(r'name="_csrf_token" value="([^"]+)"', out).group(1)
        assert csrf.validate_token(token, "s1")
        assert not csrf.validate_token(token, "s2")

    def test_disabled_by_default(self, config, write):
        write("tpl/form.html", "<form></form>")
        assert "_csrf_token" not in TemplateHandler(config).compile("tpl", "form.html")


def test_code_cache_lru():
    cache = CodeCache(max_size=2)
    a, b, c = (compile(s, "<t>", "exec") for s in ("a = 1", "b = 2", "c = 3"))
    cache.set("a", a)
    cache.set("b", b)
    cache.get("a")
    cache.set("c", c)
    assert "a" in cache and "c" in cache
    assert "b" not in cache
    assert len(cache) == 2


def test_injected_csrf_is_kept(config):
    config.set("forms.csrf", True)
    csrf = CSRFProtection(secret_key="test-secret")
    assert TemplateHandler(config, csrf=csrf).csrf is csrf
