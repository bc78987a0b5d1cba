"""
Shared fixtures: an application root in tmp_path with template files.
"""

from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from xetpl.core.config import Config
from xetpl.engine.codegen import MODULE_NAME
from xetpl.engine.handler import TemplateHandler
from xetpl.engine.runtime import Context, ResourceQueue, build_globals


@pytest.fixture
def app_root(tmp_path: Path) -> Path:
    root = tmp_path / "app"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def write(app_root: Path) -> Callable[[str, str], Path]:
    """Write a file under the application root, creating directories."""
    def _write(relative: str, content: str = "") -> Path:
        path = app_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def config(app_root: Path) -> Config:
    config = Config()
    config.set("template.root", str(app_root))
    config.set("template.max_include_depth", 4)
    return config


@pytest.fixture
def handler(config: Config) -> TemplateHandler:
    return TemplateHandler(config)


def run_module(
    source: str,
    context: Optional[Context] = None,
    resources: Optional[ResourceQueue] = None,
    tpl: Any = None,
) -> str:
    """Execute a compiled module and return what render() produced."""
    namespace = build_globals()
    namespace["__name__"] = MODULE_NAME
    exec(compile(source, "<test>", "exec"), namespace)

    out: list = []
    namespace["render"](
        context if context is not None else Context(),
        resources if resources is not None else ResourceQueue(),
        tpl,
        out,
    )
    return "".join(out)
