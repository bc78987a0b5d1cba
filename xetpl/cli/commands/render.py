"""
xetpl CLI Render Command
========================

Render a template with variables from the command line or a JSON file.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson

from xetpl.engine.handler import TemplateHandler
from xetpl.engine.runtime import Context, ResourceQueue


def parse_vars(pairs: List[str], vars_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Build template variables.

    ``--var name=value`` values are read as JSON when they parse as JSON
    and as plain strings otherwise; they override the JSON file.
    """
    variables: Dict[str, Any] = {}

    if vars_file:
        data = orjson.loads(Path(vars_file).read_bytes())
        if not isinstance(data, dict):
            raise ValueError(f"{vars_file}: expected a JSON object")
        variables.update(data)

    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ValueError(f"--var expects name=value, got {pair!r}")
        try:
            variables[name] = orjson.loads(value)
        except orjson.JSONDecodeError:
            variables[name] = value

    return variables


def render_template(
    handler: TemplateHandler,
    file: str,
    pairs: List[str],
    vars_file: Optional[str] = None,
) -> int:
    """
    Render ``file`` to stdout.

    Returns:
        Exit code
    """
    path = os.path.abspath(file)
    if not os.path.isfile(path):
        print(f"Error: template not found: {file}", file=sys.stderr)
        return 1

    context = Context(parse_vars(pairs, vars_file))
    resources = ResourceQueue()

    output = handler.compile(
        os.path.dirname(path),
        os.path.basename(path),
        context=context,
        resources=resources,
    )
    sys.stdout.write(output)
    return 0
