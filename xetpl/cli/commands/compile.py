"""
xetpl CLI Compile Command
=========================

Print the Python module a template compiles to.
"""

from __future__ import annotations

import os
import sys

from xetpl.engine.handler import TemplateHandler


def compile_template(handler: TemplateHandler, file: str) -> int:
    """
    Print the compiled source of ``file``.

    Returns:
        Exit code
    """
    path = os.path.abspath(file)
    source = handler.compile_direct(os.path.dirname(path), os.path.basename(path))
    sys.stdout.write(source)
    return 0
