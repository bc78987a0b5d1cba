"""
xetpl - HTML Template Compiler
==============================

Compiles HTML templates with loop/cond attributes, ``{...}`` expressions,
resource directives and comment-form control flow into Python modules,
caches them and renders them.

Quick Start:
    from xetpl import Config, TemplateHandler, Context

    config = Config.load()
    config.set("template.root", "/srv/app")

    handler = TemplateHandler(config)
    html = handler.compile("skins/default", "list.html", context=Context(items=rows))

Command line:
    $ xetpl render skins/default/list.html --var title=Home
    $ xetpl check skins/default/*.html
"""

from __future__ import annotations

__version__ = "1.0.0"
__license__ = "MIT"

from typing import TYPE_CHECKING

from xetpl.core.config import Config

if TYPE_CHECKING:
    from xetpl.engine.handler import TemplateHandler
    from xetpl.engine.runtime import Context, ResourceQueue, MISSING
    from xetpl.engine.pipeline import parse
    from xetpl.cache import MemoryCacheBackend, NullCacheBackend
    from xetpl.security.csrf import CSRFProtection


def __getattr__(name: str):
    """Lazy loading of the engine for faster startup."""
    _imports = {
        "TemplateHandler": "xetpl.engine.handler",
        "Context": "xetpl.engine.runtime",
        "ResourceQueue": "xetpl.engine.runtime",
        "MISSING": "xetpl.engine.runtime",
        "parse": "xetpl.engine.pipeline",
        "CacheBackend": "xetpl.cache",
        "MemoryCacheBackend": "xetpl.cache",
        "NullCacheBackend": "xetpl.cache",
        "CSRFProtection": "xetpl.security.csrf",
        "TemplateError": "xetpl.engine.errors",
        "TemplateSyntaxError": "xetpl.engine.errors",
        "TemplateNotFoundError": "xetpl.engine.errors",
        "Logger": "xetpl.utils.logger",
    }

    if name in _imports:
        import importlib
        module = importlib.import_module(_imports[name])
        return getattr(module, name)

    raise AttributeError(f"module 'xetpl' has no attribute '{name}'")


__all__ = [
    "__version__",
    "__license__",
    "Config",
    "TemplateHandler",
    "Context",
    "ResourceQueue",
    "MISSING",
    "parse",
    "CacheBackend",
    "MemoryCacheBackend",
    "NullCacheBackend",
    "CSRFProtection",
    "TemplateError",
    "TemplateSyntaxError",
    "TemplateNotFoundError",
    "Logger",
]
