import os

import pytest

from xetpl.core.config import Config, get_config, set_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("XETPL_"):
            monkeypatch.delenv(key)


def test_defaults():
    config = Config()
    assert config.get("template.strict") is True
    assert config.get_int("template.max_include_depth") == 16
    assert config.get("template.compiled_dir") == "files/cache/template_compiled"
    assert config.get("cache.backend") == "file"
    assert config.get("forms.csrf") is False
    assert config.get("missing.key", "x") == "x"


def test_set_overrides():
    config = Config()
    config.set("template.strict", False)
    assert config.get("template.strict") is False
    assert config.get("template.extension") == ".html"


def test_typed_getters():
    config = Config()
    config.set("a.int", "12")
    config.set("a.bool", "yes")
    config.set("a.float", "1.5")
    config.set("a.bad", "nope")
    assert config.get_int("a.int") == 12
    assert config.get_bool("a.bool") is True
    assert config.get_float("a.float") == 1.5
    assert config.get_int("a.bad", 3) == 3


def test_section_and_item_access():
    config = Config()
    assert config.section("log") == {"level": "WARNING", "format": "text"}
    assert config["cache.max_size"] == 100
    assert "template.root" in config
    with pytest.raises(KeyError):
        config["nope"]


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("XETPL_TEMPLATE_MAX_INCLUDE_DEPTH", "8")
    monkeypatch.setenv("XETPL_TEMPLATE_STRICT", "false")
    monkeypatch.setenv("XETPL_CACHE_BACKEND", "memory")
    config = Config.load()
    assert config.get("template.max_include_depth") == 8
    assert config.get("template.strict") is False
    assert config.get("cache.backend") == "memory"


def test_env_json_value(monkeypatch):
    monkeypatch.setenv("XETPL_EXTRA_LIST", '["a", "b"]')
    assert Config.load().get("extra.list") == ["a", "b"]


def test_env_disabled(monkeypatch):
    monkeypatch.setenv("XETPL_CACHE_BACKEND", "memory")
    assert Config.load(env=False).get("cache.backend") == "file"


def test_load_directory(tmp_path, monkeypatch):
    (tmp_path / "app.py").write_text(
        'config = {"template": {"strict": False, "web_root": "/xe"}}\n', encoding="utf-8"
    )
    (tmp_path / "production.py").write_text('config = {"template": {"web_root": "/prod"}}\n', encoding="utf-8")
    monkeypatch.setenv("XETPL_ENV", "production")
    config = Config.load(tmp_path)
    assert config.get("template.strict") is False
    assert config.get("template.web_root") == "/prod"


def test_load_file_with_module_names(tmp_path):
    path = tmp_path / "settings.py"
    path.write_text('cache = {"backend": "memory"}\n_private = 1\n', encoding="utf-8")
    config = Config.load(path)
    assert config.get("cache.backend") == "memory"
    assert config.get("_private") is None


def test_env_beats_file(tmp_path, monkeypatch):
    path = tmp_path / "settings.py"
    path.write_text('config = {"cache": {"backend": "memory"}}\n', encoding="utf-8")
    monkeypatch.setenv("XETPL_CACHE_BACKEND", "file")
    assert Config.load(path).get("cache.backend") == "file"


def test_missing_path():
    with pytest.raises(FileNotFoundError):
        Config.load("/nonexistent/xetpl-config")


def test_global_config():
    config = Config()
    set_config(config)
    try:
        assert get_config() is config
    finally:
        set_config(None)
