"""
xetpl CLI Cache Command
=======================

Remove compiled templates.
"""

from __future__ import annotations

from xetpl.engine.handler import TemplateHandler


def clear_cache(handler: TemplateHandler) -> int:
    removed = handler.clear_cache()
    print(f"Removed {removed} compiled template(s) from {handler.compiled_dir}")
    return 0
