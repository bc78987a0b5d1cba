"""
xetpl CLI Check Command
=======================

Compile templates leniently and report every diagnostic.
"""

from __future__ import annotations

import os
import sys
from typing import Any, Dict, List

import orjson

from xetpl.engine.errors import TemplateError
from xetpl.engine.handler import TemplateHandler


def check_templates(handler: TemplateHandler, files: List[str], as_json: bool = False) -> int:
    """
    Report diagnostics for ``files``.

    Returns:
        1 if any template has an error-severity diagnostic, else 0
    """
    handler.strict = False
    reports: List[Dict[str, Any]] = []
    failed = False

    for file in files:
        path = os.path.abspath(file)
        unit = handler.init(os.path.dirname(path), os.path.basename(path))
        report: Dict[str, Any] = {"file": file, "diagnostics": []}

        if not os.path.isfile(unit.file):
            report["error"] = "template file does not exist"
            failed = True
        else:
            try:
                result = handler.parse(unit)
            except TemplateError as e:
                report["error"] = str(e)
                failed = True
            else:
                report["diagnostics"] = [d.to_dict() for d in result.diagnostics]
                failed = failed or not result.ok

        reports.append(report)

    if as_json:
        sys.stdout.write(orjson.dumps(reports, option=orjson.OPT_INDENT_2).decode() + "\n")
    else:
        for report in reports:
            _print_report(report)

    return 1 if failed else 0


def _print_report(report: Dict[str, Any]) -> None:
    if "error" in report:
        print(f"{report['file']}: error: {report['error']}")
        return
    if not report["diagnostics"]:
        print(f"{report['file']}: ok")
        return
    for diagnostic in report["diagnostics"]:
        line = f":{diagnostic['line']}" if diagnostic["line"] else ""
        print(f"{report['file']}{line}: {diagnostic['severity']}: {diagnostic['message']}")
