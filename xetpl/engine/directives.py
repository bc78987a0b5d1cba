"""
xetpl Directive Dispatcher
==========================

Recognises and translates the inline directives of a template in a single
pass over the buffer.

Directive forms, in match priority:

    {$title}  {count($list)}  {@ $i = 0}       expression echo / statement
    <include target="header.html" />            resource directives, tag form
    <load target="css/board.css" media="all" />
    <!--#include("footer.html")-->              resource directives, comment form
    <!--%import("js/board.js",type="body")-->
    <!--%load_js_plugin("ui")-->
    <!--@if($a)--> ... <!--@else--> ... <!--@end-->   control flow

Code markers inserted by earlier stages are matched first and left alone.
"""

from __future__ import annotations

import posixpath
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from xetpl.engine.codegen import marker
from xetpl.engine.errors import Diagnostics, DiagnosticKind, Severity, UnresolvedPathError
from xetpl.engine.paths import resolve_relative_dir, split_target
from xetpl.engine.variables import (
    normalize_expression,
    normalize_statement,
    split_assignment,
    split_top_level,
    unwrap_parens,
)

# Ordered dispatch table: (handler name, pattern)
DIRECTIVE_PATTERNS: List[Tuple[str, str]] = [
    ("code", r"<\?py [\s\S]*? \?>"),
    (
        "expr",
        r"\{(?P<expr_body>@[\s\S]+?"
        r"|(?=\$\w+|__[A-Z]+|\w+(?:\.\w+)*\(|\d+|['\"].*?['\"]).+?)\}",
    ),
    (
        "resource",
        r"<(?P<comment>!--[#%])?"
        r"(?P<kind>include|import|(?P<un>un)?load(?(un)|(?:_js_plugin)?))"
        r"(?(comment)\(\"(?P<arg>[^\"]+)\")"
        r"(?P<attrs>.*?)"
        r"(?(comment)\)--|/)>",
    ),
    ("control", r"<!--@(?P<keyword>[a-z@]+)(?P<rest>.*?)-->"),
]

DIRECTIVE_RE = re.compile(
    "|".join(f"(?P<{name}>{pattern})" for name, pattern in DIRECTIVE_PATTERNS)
)

_KEYWORD_RE = re.compile(
    r"^(?:(?P<block>(?:end)?(?:if|switch|for(?:each)?|while)|end)"
    r"|(?P<branch>else(?:if)?)"
    r"|(?P<break_prefix>break@)?(?P<label>case|default)"
    r"|(?P<brk>break))$"
)

_FOREACH_AS = re.compile(r"^(?P<iterable>.+?)\s+as\s+(?P<first>.+?)(?:\s*=>\s*(?P<second>.+))?$", re.S)
_TAG_ATTRS = re.compile(r' (\w+)="([^"]+)"')
_COMMENT_ATTRS = re.compile(r',(\w+)="([^"]+)"')
_REMOTE = re.compile(r"^https?://", re.I)
_INDEX = re.compile(r"^-?\d+$")

_TRUTHY = ("true", "yes", "y", "1")


def parse_attributes(text: str, pattern: re.Pattern = _TAG_ATTRS) -> Dict[str, str]:
    """
    Parse ``name="value"`` pairs.

    On duplicate names the last occurrence wins.
    """
    return {name: value for name, value in pattern.findall(text)}


class DirectiveDispatcher:
    """
    Translates directives into code markers.

    Example:
        dispatcher = DirectiveDispatcher(diagnostics, file="/app/tpl/list.html", root="/app")
        buffer = dispatcher.compile(buffer)
    """

    def __init__(
        self,
        diagnostics: Diagnostics,
        file: Optional[Union[str, Path]] = None,
        root: Optional[Union[str, Path]] = None,
    ) -> None:
        self.diagnostics = diagnostics
        self.file = str(file) if file else None
        self.root = str(root) if root else None
        self._handlers: Dict[str, Callable[[re.Match], str]] = {
            "code": lambda m: m.group(0),
            "expr": self._expression,
            "resource": self._resource,
            "control": self._control,
        }

    def compile(self, buffer: str) -> str:
        return DIRECTIVE_RE.sub(self._dispatch, buffer)

    def _dispatch(self, match: re.Match) -> str:
        return self._handlers[match.lastgroup](match)

    def _malformed(self, match: re.Match, message: str) -> str:
        self.diagnostics.report(
            DiagnosticKind.MALFORMED_DIRECTIVE,
            message,
            text=match.group(0),
            offset=match.start(),
        )
        return ""

    # {...}

    def _expression(self, match: re.Match) -> str:
        body = match.group("expr_body")
        if body.startswith("@"):
            return "".join(marker("exec", stmt) for stmt in normalize_statement(body[1:]))
        return marker("echo", normalize_expression(body))

    # include / import / load / unload / load_js_plugin

    def _resource(self, match: re.Match) -> str:
        kind = match.group("kind")

        if match.group("comment"):
            attrs = parse_attributes(match.group("attrs"), _COMMENT_ATTRS)
            attrs["target"] = match.group("arg")
        else:
            attrs = parse_attributes(match.group("attrs"))
            if not attrs:
                self._malformed(match, f"<{kind}> directive without attributes")
                return match.group(0)

        if kind == "load_js_plugin":
            return self._js_plugin(match, attrs)
        if not attrs.get("target"):
            return self._malformed(match, f"<{kind}> directive without a target")
        if kind == "include":
            return self._include(match, attrs["target"])
        return self._load(match, kind, attrs)

    def _js_plugin(self, match: re.Match, attrs: Dict[str, str]) -> str:
        plugin = attrs.get("target") or attrs.get("name")
        if not plugin:
            return self._malformed(match, "load_js_plugin without a plugin name")
        if "$" in plugin:
            argument = normalize_expression(plugin)
        else:
            argument = repr(plugin)
        return marker("exec", f"_res.load_js_plugin({argument})")

    def _resolve_dir(self, match: re.Match, dirname: str, severity: Severity) -> Optional[str]:
        if not self.file or not self.root:
            self.diagnostics.report(
                DiagnosticKind.UNRESOLVED_PATH,
                "relative path without a current template file",
                text=match.group(0),
                offset=match.start(),
                severity=severity,
            )
            return None
        try:
            return resolve_relative_dir(dirname, self.file, self.root)
        except UnresolvedPathError as e:
            self.diagnostics.report(
                DiagnosticKind.UNRESOLVED_PATH,
                str(e),
                text=match.group(0),
                offset=match.start(),
                severity=severity,
            )
            return None

    def _include(self, match: re.Match, target: str) -> str:
        dirname, basename, _ = split_target(target)
        # A missing include renders as nothing
        directory = self._resolve_dir(match, dirname, Severity.WARNING)
        if directory is None:
            return ""
        return marker("include", directory, basename)

    def _load(self, match: re.Match, kind: str, attrs: Dict[str, str]) -> str:
        target = attrs["target"]
        dirname, basename, ext = split_target(target)
        unload = kind == "unload"
        remote = bool(_REMOTE.match(target))

        directory = None
        if not remote:
            directory = self._resolve_dir(match, dirname, Severity.ERROR)
            if directory is None:
                return ""
            target = basename if directory == "." else f"{directory}/{basename}"

        target_ie = attrs.get("targetie", "")
        meta = None

        if ext == "xml":
            if remote or unload:
                return ""
            if basename == "lang.xml" and posixpath.basename(dirname) == "lang":
                code = f"_res.load_lang({directory!r})"
            else:
                code = f"_res.load_filter({directory!r}, {basename!r})"
        elif ext in ("js", "css"):
            media = attrs.get("type" if ext == "js" else "media", "")
            if unload:
                code = f"_res.unload_file({target!r}, {target_ie!r}, {media!r})"
            else:
                index = attrs.get("index", "0")
                if not _INDEX.match(index):
                    return self._malformed(match, f"load index must be an integer, got {index!r}")
                meta = target
                code = (
                    f"_res.load_file({target!r}, {media!r}, target_ie={target_ie!r}, "
                    f"index={int(index)}, use_cdn={attrs.get('usecdn', '').lower() in _TRUTHY}, "
                    f"cdn_prefix={attrs.get('cdnprefix', '')!r}, "
                    f"cdn_version={attrs.get('cdnversion', '')!r})"
                )
        else:
            return self._malformed(match, f"cannot {kind} a '.{ext}' resource")

        result = marker("exec", code)
        if meta:
            result = marker("meta", meta) + result
        return result

    # <!--@keyword(...)-->

    def _control(self, match: re.Match) -> str:
        keyword = _KEYWORD_RE.match(match.group("keyword"))
        if keyword is None:
            return self._malformed(match, f"unknown control keyword '{match.group('keyword')}'")

        rest = unwrap_parens(match.group("rest"))

        if keyword.group("block"):
            return self._block(match, keyword.group("block"), rest)

        if keyword.group("branch") == "else":
            return marker("else")
        if keyword.group("branch"):
            if not rest:
                return self._malformed(match, "elseif without a condition")
            return marker("elif", normalize_expression(rest))

        if keyword.group("label"):
            prefix = marker("break") if keyword.group("break_prefix") else ""
            if keyword.group("label") == "default":
                return prefix + marker("default")
            if not rest:
                return self._malformed(match, "case without a value")
            return prefix + marker("case", normalize_expression(rest))

        return marker("break")

    def _block(self, match: re.Match, block: str, rest: str) -> str:
        if block.startswith("end"):
            return marker("end")
        if not rest:
            return self._malformed(match, f"{block} without an expression")

        if block == "if":
            return marker("if", normalize_expression(rest))
        if block == "switch":
            return marker("switch", normalize_expression(rest))
        if block == "while":
            assignment = split_assignment(rest)
            if assignment:
                target, expr = assignment
                return marker("whileset", normalize_expression(target), normalize_expression(expr))
            return marker("while", normalize_expression(rest))
        if block == "for":
            clauses = split_top_level(rest, ";")
            if len(clauses) != 3:
                return self._malformed(match, "for needs init; condition; step")
            init, cond, step = clauses
            return marker(
                "for",
                normalize_statement(init, split_commas=True),
                normalize_expression(cond),
                normalize_statement(step, split_commas=True),
            )

        parts = _FOREACH_AS.match(rest)
        if parts is None:
            return self._malformed(match, "foreach needs 'collection as [key =>] value'")
        if parts.group("second"):
            key, value = parts.group("first"), parts.group("second")
        else:
            key, value = None, parts.group("first")
        return marker(
            "foreach",
            normalize_expression(parts.group("iterable")),
            normalize_expression(value),
            normalize_expression(key) if key else None,
        )
