"""
xetpl Form Security Augmenter
=============================

Post-pass over compiled ``<form>`` regions.

For every form it:

1. moves a ``ruleset`` attribute into a hidden field and registers the
   ruleset file for client-side validation;
2. adds hidden ``act``, ``mid`` and ``vid`` fields that are missing;
3. adds a hidden ``error_return_url`` so server-side validators can send
   the user back on failure;
4. adds a hidden CSRF token field when enabled.

Injected fields are placed at the start of the form body in the order
error_return_url, act, mid, vid, ruleset, CSRF token.
"""

from __future__ import annotations

import re
from html import escape
from typing import List, Optional

from xetpl.engine.codegen import marker
from xetpl.engine.errors import Diagnostics, DiagnosticKind, Severity

IDENTITY_FIELDS = ("act", "mid", "vid")

_FORM_RE = re.compile(
    r"(<form(?=[\s>])(?:<\?py [\s\S]*? \?>|[^<>])*?>)((?:(?!<form[\s>]).)*?)(</form>)",
    re.I | re.S,
)
_RULESET_ATTR = re.compile(r"\sruleset=\"([^\"]*?)\"", re.I)
_IDENTITY_INPUT = re.compile(r"<input[^>]* name=\"(act|mid|vid)\"", re.I)
_RETURN_URL_INPUT = re.compile(r"<input[^>]*name=\"error_return_url\"[^>]*>", re.I)
_MODULE_PATH = re.compile(r"(?:^|\.?/)(modules/[\w-]+)")


def hidden_input(name: str, value: str) -> str:
    return f'<input type="hidden" name="{name}" value="{value}" />'


class FormAugmenter:
    """
    Injects security fields into forms.

    Args:
        diagnostics: Diagnostics collector
        template_dir: Template directory relative to the application root,
            used to find a module's ruleset directory
        csrf_field: Name of the CSRF hidden field, None to disable
    """

    def __init__(
        self,
        diagnostics: Diagnostics,
        template_dir: str = "",
        csrf_field: Optional[str] = None,
    ) -> None:
        self.diagnostics = diagnostics
        self.template_dir = template_dir
        self.csrf_field = csrf_field

    def compile(self, buffer: str) -> str:
        return _FORM_RE.sub(self._augment, buffer)

    def ruleset_path(self, name: str) -> Optional[str]:
        """Ruleset XML for ``@name`` shorthand or the current module."""
        if name.startswith("@"):
            return f"files/ruleset/{name[1:]}.xml"
        module = _MODULE_PATH.search(self.template_dir)
        if module:
            return f"{module.group(1)}/ruleset/{name}.xml"
        return None

    def _augment(self, match: re.Match) -> str:
        open_tag, body, close_tag = match.groups()
        fields: List[str] = []

        if not _RETURN_URL_INPUT.search(body):
            fields.append(hidden_input("error_return_url", marker("echo", "escape(_ctx.request_uri)")))

        present = {name.lower() for name in _IDENTITY_INPUT.findall(body)}
        for name in IDENTITY_FIELDS:
            if name not in present:
                fields.append(hidden_input(name, marker("echo", f"escape(_ctx.{name})")))

        ruleset = _RULESET_ATTR.search(open_tag)
        if ruleset:
            open_tag = open_tag[:ruleset.start()] + open_tag[ruleset.end():]
            open_tag = self._register_ruleset(ruleset, open_tag, fields)

        if self.csrf_field and not re.search(
            rf"<input[^>]*name=\"{re.escape(self.csrf_field)}\"", body, re.I
        ):
            fields.append(hidden_input(self.csrf_field, marker("echo", "_tpl.csrf_token(_ctx)")))

        return open_tag + "".join(fields) + body + close_tag

    def _register_ruleset(self, ruleset: re.Match, open_tag: str, fields: List[str]) -> str:
        name = ruleset.group(1)
        if not name.lstrip("@"):
            self.diagnostics.report(
                DiagnosticKind.MALFORMED_DIRECTIVE,
                "empty form ruleset",
                text=ruleset.group(0).strip(),
            )
            return open_tag

        fields.append(hidden_input("ruleset", escape(name.lstrip("@"))))

        path = self.ruleset_path(name)
        if path is None:
            self.diagnostics.report(
                DiagnosticKind.UNRESOLVED_PATH,
                f"ruleset '{name}' is outside a module; use '@{name}'",
                text=ruleset.group(0).strip(),
                severity=Severity.WARNING,
            )
            return open_tag

        return marker("exec", f"_res.load_ruleset({path!r})") + open_tag
