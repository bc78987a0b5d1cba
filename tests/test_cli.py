import os

import orjson
import pytest

from xetpl.cli.commands.render import parse_vars
from xetpl.cli.main import cli
from xetpl.utils.logger import configure_logging


@pytest.fixture(autouse=True)
def isolated(monkeypatch):
    for key in list(os.environ):
        if key.startswith("XETPL_"):
            monkeypatch.delenv(key)
    yield
    configure_logging()


def run(app_root, *args):
    return cli(["--root", str(app_root), *args])


def test_no_command(capsys):
    assert cli([]) == 0
    assert "usage" in capsys.readouterr().out


def test_render(app_root, write, capsys):
    page = write("tpl/page.html", "<h1>{$title}</h1><p>{$n + 1}</p>")
    assert run(app_root, "render", str(page), "--var", "title=Home", "--var", "n=41") == 0
    assert capsys.readouterr().out == "<h1>Home</h1><p>42</p>"


def test_render_vars_file(app_root, write, tmp_path, capsys):
    page = write("tpl/page.html", "{$a}-{$b}")
    vars_file = tmp_path / "vars.json"
    vars_file.write_bytes(orjson.dumps({"a": "x", "b": "y"}))
    assert run(app_root, "render", str(page), "--vars", str(vars_file), "--var", "b=z") == 0
    assert capsys.readouterr().out == "x-z"


def test_render_missing(app_root, capsys):
    assert run(app_root, "render", str(app_root / "nope.html")) == 1
    assert "template not found" in capsys.readouterr().err


def test_render_compile_error(app_root, write, capsys):
    page = write("tpl/page.html", "<!--@frobnicate-->")
    assert run(app_root, "render", str(page)) == 1
    assert "unknown control keyword" in capsys.readouterr().err


def test_lenient_render(app_root, write, capsys):
    page = write("tpl/page.html", "a<!--@frobnicate-->b")
    assert run(app_root, "--lenient", "render", str(page)) == 0
    assert capsys.readouterr().out == "ab"


def test_compile(app_root, write, capsys):
    page = write("tpl/page.html", "{$a}")
    assert run(app_root, "compile", str(page)) == 0
    out = capsys.readouterr().out
    assert "def render(_ctx, _res, _tpl, _out, _depth=0):" in out
    assert "_append(_str(_ctx.a))" in out


def test_check_ok(app_root, write, capsys):
    page = write("tpl/page.html", "<p cond=\"$a\">x</p>")
    assert run(app_root, "check", str(page)) == 0
    assert capsys.readouterr().out == f"{page}: ok\n"


def test_check_reports_errors(app_root, write, capsys):
    page = write("tpl/page.html", "line\n<!--@frobnicate-->")
    assert run(app_root, "check", str(page)) == 1
    out = capsys.readouterr().out
    assert out.startswith(f"{page}:2: error: unknown control keyword 'frobnicate'")


def test_check_json(app_root, write, capsys):
    good = write("tpl/good.html", "x")
    bad = write("tpl/bad.html", '<include target="nowhere/x.html" />')
    assert run(app_root, "check", "--json", str(good), str(bad)) == 0
    reports = orjson.loads(capsys.readouterr().out)
    assert reports[0] == {"file": str(good), "diagnostics": []}
    assert reports[1]["diagnostics"][0]["kind"] == "unresolved_path"
    assert reports[1]["diagnostics"][0]["severity"] == "warning"


def test_check_missing_file(app_root, capsys):
    assert run(app_root, "check", str(app_root / "nope.html")) == 1
    assert "does not exist" in capsys.readouterr().out


def test_clear_cache(app_root, write, capsys):
    page = write("tpl/page.html", "x")
    run(app_root, "render", str(page))
    capsys.readouterr()
    assert run(app_root, "clear-cache") == 0
    assert capsys.readouterr().out.startswith("Removed 1 compiled template(s) from ")


def test_parse_vars():
    assert parse_vars(["n=1", "s=hello", 'j={"a":1}', "e="]) == {
        "n": 1,
        "s": "hello",
        "j": {"a": 1},
        "e": "",
    }
    with pytest.raises(ValueError):
        parse_vars(["novalue"])
